"""
Tests for the error classifier.

Every exception maps to exactly one disposition; retry hints and chunk
outcomes follow from it.
"""

import pytest
import requests
from dramatiq.middleware import TimeLimitExceeded
from sqlalchemy.exc import IntegrityError, OperationalError

from app.services.indexer.chunk_size import ChunkOutcome
from app.services.indexer.error_classifier import (
    ErrorDisposition,
    classify_error,
    is_fatal,
    summarize_error,
)
from app.utils.exceptions import (
    AnchorMismatchError,
    ChainTimeoutError,
    ConfigurationError,
    CursorConflictError,
    DataInconsistencyError,
    RangeNotReadyError,
    RateLimitedError,
    ReorgDepthExceededError,
    ReorgDuringFetchError,
    UnknownChainError,
)


def _http_error(status: int, retry_after: str | None = None) -> requests.exceptions.HTTPError:
    response = requests.Response()
    response.status_code = status
    if retry_after is not None:
        response.headers["Retry-After"] = retry_after
    return requests.exceptions.HTTPError(f"{status} error", response=response)


class TestRateLimited:
    """Throttling is recognised from several provider signals."""

    def test_rate_limited_error_keeps_retry_after(self):
        result = classify_error(RateLimitedError("slow down", retry_after=12))

        assert result.disposition == ErrorDisposition.RATE_LIMITED
        assert result.retry_after == 12

    def test_rate_limited_error_without_hint_uses_default(self):
        result = classify_error(RateLimitedError("slow down"), default_cooldown=45)

        assert result.retry_after == 45

    def test_http_429_with_retry_after_header(self):
        result = classify_error(_http_error(429, "7"))

        assert result.disposition == ErrorDisposition.RATE_LIMITED
        assert result.retry_after == 7.0

    def test_json_rpc_throttle_code(self):
        result = classify_error(ValueError({"code": -32005, "message": "limit exceeded"}))

        assert result.disposition == ErrorDisposition.RATE_LIMITED

    def test_rate_limited_feeds_error_outcome(self):
        assert classify_error(RateLimitedError("x")).chunk_outcome == ChunkOutcome.ERROR


class TestTransient:
    """Transient failures are retried and shrink the chunk size."""

    @pytest.mark.parametrize(
        "exc",
        [
            TimeoutError(),
            ChainTimeoutError("rpc timed out"),
            TimeLimitExceeded(),
            requests.exceptions.ReadTimeout(),
        ],
    )
    def test_timeouts(self, exc):
        result = classify_error(exc)

        assert result.disposition == ErrorDisposition.TRANSIENT
        assert result.is_timeout is True
        assert result.chunk_outcome == ChunkOutcome.TIMEOUT

    @pytest.mark.parametrize(
        "exc",
        [
            ConnectionError("reset"),
            ReorgDuringFetchError("moved"),
            OperationalError("SELECT 1", {}, Exception("db down")),
            _http_error(502),
        ],
    )
    def test_transient_errors(self, exc):
        result = classify_error(exc)

        assert result.disposition == ErrorDisposition.TRANSIENT
        assert result.is_retryable is True
        assert result.chunk_outcome == ChunkOutcome.ERROR

    @pytest.mark.parametrize(
        "exc",
        [CursorConflictError("lost"), RangeNotReadyError(101, 50)],
    )
    def test_contention_is_retried_without_shrinking(self, exc):
        result = classify_error(exc)

        assert result.disposition == ErrorDisposition.TRANSIENT
        assert result.is_retryable is True
        assert result.is_contention is True
        assert result.chunk_outcome is None

    def test_unknown_exception_defaults_to_transient(self):
        class SomethingOdd(Exception):
            pass

        result = classify_error(SomethingOdd("?"))

        assert result.disposition == ErrorDisposition.TRANSIENT
        assert result.reason == "unclassified:SomethingOdd"


class TestDataInconsistency:
    """Data inconsistencies escalate to a reorg check."""

    @pytest.mark.parametrize(
        "exc", [DataInconsistencyError("mismatch"), AnchorMismatchError(100, "0xabc")]
    )
    def test_data_inconsistency(self, exc):
        result = classify_error(exc)

        assert result.disposition == ErrorDisposition.DATA_INCONSISTENCY
        assert result.is_retryable is False
        assert result.chunk_outcome is None


class TestFatal:
    """Fatal errors are never retried."""

    @pytest.mark.parametrize(
        "exc",
        [
            ReorgDepthExceededError(1000, 100),
            ConfigurationError("bad config"),
            UnknownChainError(56),
            IntegrityError("INSERT", {}, Exception("duplicate")),
            ValueError("bad payload"),
            TypeError("wrong type"),
        ],
    )
    def test_fatal_errors(self, exc):
        assert classify_error(exc).disposition == ErrorDisposition.FATAL
        assert is_fatal(exc) is True

    def test_transient_is_not_fatal(self):
        assert is_fatal(ConnectionError()) is False


class TestSummarizeError:
    """Stored error summaries."""

    def test_prefixes_type_name(self):
        assert summarize_error(ValueError("boom")) == "ValueError: boom"

    def test_strips_html_error_pages(self):
        summary = summarize_error(Exception("<html><body><h1>502 Bad Gateway</h1></body></html>"))

        assert summary == "Exception: 502 Bad Gateway"

    def test_truncates_long_messages(self):
        summary = summarize_error(Exception("x" * 1000))

        assert summary == "Exception: " + "x" * 200 + "..."

    def test_tags_network_failures(self):
        summary = summarize_error(ConnectionError("Connection reset by peer"))

        assert summary.startswith("ConnectionError: RPC Error:")
