"""
Error classifier.

Maps any exception raised while running a job to a disposition:
transient, rate limited, data inconsistency or fatal. Classification only
looks at the exception's type and attributes, never at job payloads.
"""

import re
from dataclasses import dataclass
from enum import StrEnum

import aiohttp
import requests
from dramatiq.middleware import TimeLimitExceeded
from pydantic import ValidationError
from sqlalchemy.exc import DataError, IntegrityError, OperationalError, ProgrammingError
from web3.exceptions import TimeExhausted, Web3Exception

from app.config.constants import (
    ERROR_MESSAGE_MAX_LENGTH,
    ERROR_MESSAGE_TRUNCATED_LENGTH,
    RPC_RATE_LIMIT_CODES,
)
from app.services.indexer.chunk_size import ChunkOutcome
from app.utils.exceptions import (
    ChainTimeoutError,
    ContentionError,
    DataInconsistencyError,
    FatalIndexerError,
    RateLimitedError,
    TransientIndexerError,
)


class ErrorDisposition(StrEnum):
    """How a failed job is handled."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    DATA_INCONSISTENCY = "data_inconsistency"
    FATAL = "fatal"


@dataclass(frozen=True)
class ErrorClassification:
    """Classifier verdict for one exception."""

    disposition: ErrorDisposition
    reason: str
    retry_after: float | None = None
    is_timeout: bool = False
    is_contention: bool = False

    @property
    def is_retryable(self) -> bool:
        """Transient and rate-limited failures are retried."""
        return self.disposition in (
            ErrorDisposition.TRANSIENT,
            ErrorDisposition.RATE_LIMITED,
        )

    @property
    def chunk_outcome(self) -> ChunkOutcome | None:
        """Outcome fed to the chunk sizer, None when unrelated to load."""
        if self.is_contention:
            return None
        if self.disposition == ErrorDisposition.TRANSIENT:
            return ChunkOutcome.TIMEOUT if self.is_timeout else ChunkOutcome.ERROR
        if self.disposition == ErrorDisposition.RATE_LIMITED:
            return ChunkOutcome.ERROR
        return None


# Exception categories based on handling strategy

TIMEOUT_ERRORS = (
    TimeoutError,
    TimeLimitExceeded,
    TimeExhausted,
    ChainTimeoutError,
    requests.exceptions.Timeout,
)

TRANSIENT_ERRORS = (
    TransientIndexerError,
    ConnectionError,
    OperationalError,
    Web3Exception,
    requests.exceptions.RequestException,
    aiohttp.ClientError,
)

FATAL_ERRORS = (
    FatalIndexerError,
    ValidationError,
    IntegrityError,
    ProgrammingError,
    DataError,
    ValueError,
    TypeError,
)

_RATE_LIMIT_MESSAGES = ("rate limit", "too many requests", "limit exceeded")
_HTML_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")
_NETWORK_MARKERS = ("ECONNRESET", "ETIMEDOUT", "ECONNREFUSED", "ENOTFOUND", "Connection reset")


def _http_status(exc: BaseException) -> int | None:
    """Extract an HTTP status code from requests/aiohttp errors."""
    if isinstance(exc, aiohttp.ClientResponseError):
        return exc.status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _retry_after_header(exc: BaseException) -> float | None:
    """Read a numeric Retry-After header if the provider sent one."""
    headers = None
    if isinstance(exc, aiohttp.ClientResponseError):
        headers = exc.headers
    else:
        headers = getattr(getattr(exc, "response", None), "headers", None)
    if not headers:
        return None
    value = headers.get("Retry-After")
    try:
        return max(float(value), 0.0) if value is not None else None
    except (TypeError, ValueError):
        return None


def _rpc_error_code(exc: BaseException) -> int | None:
    """Extract a JSON-RPC error code from a web3 RPC error."""
    response = getattr(exc, "rpc_response", None)
    if isinstance(response, dict):
        error = response.get("error")
        if isinstance(error, dict) and isinstance(error.get("code"), int):
            return error["code"]
    if exc.args and isinstance(exc.args[0], dict):
        code = exc.args[0].get("code")
        if isinstance(code, int):
            return code
    return None


def _is_rate_limited(exc: BaseException) -> bool:
    if _http_status(exc) == 429:
        return True
    if _rpc_error_code(exc) in RPC_RATE_LIMIT_CODES:
        return True
    if isinstance(exc, (Web3Exception, requests.exceptions.RequestException)):
        message = str(exc).lower()
        return any(marker in message for marker in _RATE_LIMIT_MESSAGES)
    return False


def classify_error(
    exc: BaseException,
    default_cooldown: float = 30.0,
) -> ErrorClassification:
    """
    Classify an exception raised by a job handler.

    Total over all exceptions: anything unrecognised is transient so that
    it is retried a bounded number of times and then surfaced as failed.

    Args:
        exc: Raised exception
        default_cooldown: Cool-down in seconds when a throttled provider
            does not say how long to wait

    Returns:
        ErrorClassification with disposition and retry hints
    """
    name = type(exc).__name__

    if isinstance(exc, RateLimitedError):
        return ErrorClassification(
            ErrorDisposition.RATE_LIMITED,
            name,
            retry_after=exc.retry_after if exc.retry_after is not None else default_cooldown,
        )
    if _is_rate_limited(exc):
        retry_after = _retry_after_header(exc)
        return ErrorClassification(
            ErrorDisposition.RATE_LIMITED,
            name,
            retry_after=retry_after if retry_after is not None else default_cooldown,
        )

    if isinstance(exc, DataInconsistencyError):
        return ErrorClassification(ErrorDisposition.DATA_INCONSISTENCY, name)

    if isinstance(exc, FatalIndexerError):
        return ErrorClassification(ErrorDisposition.FATAL, name)

    # Out-of-order chunks and lost cursor races during a healthy catch-up
    if isinstance(exc, ContentionError):
        return ErrorClassification(ErrorDisposition.TRANSIENT, name, is_contention=True)

    if isinstance(exc, TIMEOUT_ERRORS):
        return ErrorClassification(ErrorDisposition.TRANSIENT, name, is_timeout=True)

    if isinstance(exc, TRANSIENT_ERRORS):
        return ErrorClassification(ErrorDisposition.TRANSIENT, name)

    if isinstance(exc, FATAL_ERRORS):
        return ErrorClassification(ErrorDisposition.FATAL, name)

    return ErrorClassification(ErrorDisposition.TRANSIENT, f"unclassified:{name}")


def is_fatal(exc: BaseException) -> bool:
    """
    Check if exception must never be retried.

    Args:
        exc: Exception to check

    Returns:
        True if the classifier deems it fatal
    """
    return classify_error(exc).disposition == ErrorDisposition.FATAL


def summarize_error(exc: BaseException) -> str:
    """
    Produce a short, storable description of an exception.

    Strips HTML error pages returned by gateways, collapses whitespace,
    tags low-level network failures and truncates very long messages.

    Args:
        exc: Exception to describe

    Returns:
        Single-line summary prefixed with the exception type
    """
    message = _WHITESPACE.sub(" ", _HTML_TAG.sub(" ", str(exc))).strip()
    if len(message) > ERROR_MESSAGE_MAX_LENGTH:
        message = message[:ERROR_MESSAGE_TRUNCATED_LENGTH] + "..."
    if any(marker in message for marker in _NETWORK_MARKERS):
        message = f"RPC Error: {message}"
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__
