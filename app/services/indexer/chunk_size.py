"""
Adaptive chunk sizing.

Additive increase on fast success, hold on slow success, multiplicative
decrease on timeout or error. All functions are pure.
"""

from enum import StrEnum

from app.config.constants import CHUNK_DECREASE_DIVISOR, CHUNK_INCREASE_DIVISOR


class ChunkOutcome(StrEnum):
    """Result of one range job, as seen by the chunk sizer."""

    SUCCESS_FAST = "success_fast"
    SUCCESS_SLOW = "success_slow"
    TIMEOUT = "timeout"
    ERROR = "error"


def next_chunk_size(
    previous: int,
    outcome: ChunkOutcome,
    *,
    minimum: int,
    maximum: int,
) -> int:
    """
    Compute the chunk size to use after an outcome.

    Args:
        previous: Chunk size the outcome was observed with
        outcome: Observed outcome
        minimum: Floor (>= 1)
        maximum: Cap (>= minimum)

    Returns:
        New chunk size within [minimum, maximum]
    """
    if minimum < 1 or maximum < minimum:
        raise ValueError(f"Invalid chunk bounds: min={minimum}, max={maximum}")

    current = min(max(previous, minimum), maximum)

    if outcome == ChunkOutcome.SUCCESS_FAST:
        step = max(current // CHUNK_INCREASE_DIVISOR, 1)
        return min(current + step, maximum)
    if outcome == ChunkOutcome.SUCCESS_SLOW:
        return current
    # Timeout or error
    return max(current // CHUNK_DECREASE_DIVISOR, minimum)


def outcome_for_duration(elapsed_seconds: float, fast_threshold_seconds: float) -> ChunkOutcome:
    """Map a successful run's duration to fast or slow."""
    if elapsed_seconds < fast_threshold_seconds:
        return ChunkOutcome.SUCCESS_FAST
    return ChunkOutcome.SUCCESS_SLOW


def optimal_chunk_size(lag: int, maximum: int) -> int:
    """
    Starting chunk size for a given lag behind head.

    Small lags get small chunks so a freshly reset pair reaches head
    quickly without over-fetching.

    Args:
        lag: Blocks between cursor and head
        maximum: Configured chunk cap

    Returns:
        Chunk size in [1, maximum]
    """
    if lag <= 1:
        size = 1
    elif lag <= 5:
        size = 2
    elif lag <= 20:
        size = 5
    elif lag <= 100:
        size = 10
    elif lag <= 500:
        size = 20
    else:
        size = maximum
    return max(1, min(size, maximum))
