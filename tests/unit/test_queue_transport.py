"""
Tests for the dramatiq transport: retry predicate and actor routing.
"""

import pytest

from app.config.settings import settings
from app.models.pair import PairKey
from app.services.indexer.jobs import CatchupJob, JobPriority, RangeJob, ReorgJob
from app.utils.exceptions import (
    ConfigurationError,
    CursorConflictError,
    RateLimitedError,
    ReorgDepthExceededError,
)
from jobs.broker import should_retry
from jobs.queue import actor_name_for

KEY = PairKey.of(1, "0xdac17f958d2ee523a2206206994597c13d831ec7")


class TestShouldRetry:
    """Test the broker's retry predicate."""

    def test_transient_retried_within_budget(self):
        assert should_retry(0, CursorConflictError("lost")) is True
        assert should_retry(settings.job_max_retries - 1, ConnectionError()) is True

    def test_budget_exhausted(self):
        assert should_retry(settings.job_max_retries, ConnectionError()) is False

    def test_rate_limited_past_requeues_is_retried(self):
        assert should_retry(0, RateLimitedError("throttled")) is True

    @pytest.mark.parametrize(
        "exc", [ReorgDepthExceededError(100, 10), ConfigurationError("x"), ValueError("bad")]
    )
    def test_fatal_never_retried(self, exc):
        assert should_retry(0, exc) is False


class TestActorRouting:
    """Test job to actor mapping."""

    def test_live_range_job(self):
        assert actor_name_for(RangeJob(KEY, 1, 10), JobPriority.NORMAL) == "index_block_range"

    def test_catchup_chunk(self):
        assert actor_name_for(RangeJob(KEY, 1, 10), JobPriority.HIGH) == "index_catchup_chunk"

    def test_catchup_job(self):
        assert actor_name_for(CatchupJob(KEY, 1, 10, 5), JobPriority.HIGH) == "split_catchup"

    def test_reorg_job(self):
        assert actor_name_for(ReorgJob(KEY, 5, "0xabc"), JobPriority.HIGHEST) == "resolve_reorg"
