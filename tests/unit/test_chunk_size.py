"""
Tests for adaptive chunk sizing.

Covers:
- Additive increase on fast success (+25%, at least +1)
- Hold on slow success
- Halving on timeout and error
- Clamping to [min, max]
- Duration mapping and starting sizes by lag
"""

import pytest

from app.services.indexer.chunk_size import (
    ChunkOutcome,
    next_chunk_size,
    optimal_chunk_size,
    outcome_for_duration,
)


class TestNextChunkSize:
    """Test next_chunk_size policy."""

    def test_fast_success_grows_by_quarter(self):
        """Fast success adds current // 4."""
        assert next_chunk_size(500, ChunkOutcome.SUCCESS_FAST, minimum=10, maximum=5000) == 625

    def test_fast_success_grows_by_at_least_one(self):
        """Small sizes still grow."""
        assert next_chunk_size(1, ChunkOutcome.SUCCESS_FAST, minimum=1, maximum=100) == 2
        assert next_chunk_size(3, ChunkOutcome.SUCCESS_FAST, minimum=1, maximum=100) == 4

    def test_fast_success_capped_at_maximum(self):
        """Growth never exceeds the cap."""
        assert next_chunk_size(4800, ChunkOutcome.SUCCESS_FAST, minimum=10, maximum=5000) == 5000
        assert next_chunk_size(5000, ChunkOutcome.SUCCESS_FAST, minimum=10, maximum=5000) == 5000

    def test_slow_success_holds(self):
        """Slow success keeps the size."""
        assert next_chunk_size(700, ChunkOutcome.SUCCESS_SLOW, minimum=10, maximum=5000) == 700

    @pytest.mark.parametrize("outcome", [ChunkOutcome.TIMEOUT, ChunkOutcome.ERROR])
    def test_failure_halves(self, outcome):
        """Timeouts and errors halve the size."""
        assert next_chunk_size(500, outcome, minimum=10, maximum=5000) == 250

    def test_failure_floored_at_minimum(self):
        """Halving never goes below the floor."""
        assert next_chunk_size(15, ChunkOutcome.ERROR, minimum=10, maximum=5000) == 10
        assert next_chunk_size(10, ChunkOutcome.TIMEOUT, minimum=10, maximum=5000) == 10

    def test_out_of_range_input_is_clamped_first(self):
        """A stored size outside the bounds is clamped before applying the outcome."""
        assert next_chunk_size(2, ChunkOutcome.SUCCESS_SLOW, minimum=10, maximum=5000) == 10
        assert next_chunk_size(9000, ChunkOutcome.SUCCESS_SLOW, minimum=10, maximum=5000) == 5000

    def test_repeated_failures_converge_to_minimum(self):
        """Result always stays within bounds."""
        size = 5000
        for _ in range(20):
            size = next_chunk_size(size, ChunkOutcome.ERROR, minimum=10, maximum=5000)
            assert 10 <= size <= 5000
        assert size == 10

    def test_invalid_bounds_rejected(self):
        """min < 1 or max < min is a programming error."""
        with pytest.raises(ValueError):
            next_chunk_size(10, ChunkOutcome.ERROR, minimum=0, maximum=10)
        with pytest.raises(ValueError):
            next_chunk_size(10, ChunkOutcome.ERROR, minimum=20, maximum=10)


class TestOutcomeForDuration:
    """Test duration to outcome mapping."""

    def test_fast_below_threshold(self):
        assert outcome_for_duration(2.5, 10.0) == ChunkOutcome.SUCCESS_FAST

    def test_slow_at_or_above_threshold(self):
        assert outcome_for_duration(10.0, 10.0) == ChunkOutcome.SUCCESS_SLOW
        assert outcome_for_duration(42.0, 10.0) == ChunkOutcome.SUCCESS_SLOW


class TestOptimalChunkSize:
    """Test starting chunk size by lag."""

    @pytest.mark.parametrize(
        ("lag", "expected"),
        [(0, 1), (1, 1), (5, 2), (20, 5), (100, 10), (500, 20), (501, 5000)],
    )
    def test_tiers(self, lag, expected):
        assert optimal_chunk_size(lag, 5000) == expected

    def test_respects_maximum(self):
        assert optimal_chunk_size(300, 15) == 15
