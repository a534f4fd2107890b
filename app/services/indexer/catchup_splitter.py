"""
Catch-up splitter.

Turns one large catch-up job into contiguous, prioritized range jobs. The
pair's catch-up flag stays taken until the cursor reaches the end of the
range; the range job that gets there releases it.
"""

from collections.abc import Iterator
from fractions import Fraction

from loguru import logger

from app.services.indexer.jobs import (
    CatchupJob,
    CatchupResult,
    JobPriority,
    JobSubmitter,
    RangeJob,
)


def plan_chunks(from_block: int, to_block: int, chunk_size: int) -> Iterator[tuple[int, int]]:
    """
    Partition [from_block, to_block] into inclusive chunks.

    Chunks are contiguous, non-overlapping, strictly increasing and at most
    `chunk_size` blocks long; only the last one may be shorter.

    Args:
        from_block: First block (inclusive)
        to_block: Last block (inclusive)
        chunk_size: Max blocks per chunk (>= 1)

    Yields:
        (chunk_from, chunk_to) tuples
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

    current = from_block
    while current <= to_block:
        chunk_to = min(current + chunk_size - 1, to_block)
        yield current, chunk_to
        current = chunk_to + 1


def catchup_progress(current_from: int, from_block: int, to_block: int) -> float:
    """
    Fraction of a catch-up range already submitted.

    Computed as (current_from - from) / (to - from) with exact rational
    arithmetic, so block numbers in the billions lose no precision before
    the final float conversion. Clamped to [0, 1].

    Args:
        current_from: Start of the next chunk to submit
        from_block: Start of the catch-up range
        to_block: End of the catch-up range

    Returns:
        Progress in [0.0, 1.0]
    """
    if current_from > to_block:
        return 1.0
    span = to_block - from_block
    if span <= 0:
        return 0.0
    ratio = Fraction(current_from - from_block, span)
    return float(min(max(ratio, Fraction(0)), Fraction(1)))


class CatchupSplitter:
    """Consumes catch-up jobs."""

    def __init__(
        self,
        queue: JobSubmitter,
        progress_log_every: int = 10,
    ) -> None:
        """
        Initialize splitter.

        Args:
            queue: Job submitter for the range chunks
            progress_log_every: Log progress every N chunks
        """
        self.queue = queue
        self.progress_log_every = max(progress_log_every, 1)

    async def split(self, job: CatchupJob) -> CatchupResult:
        """
        Submit every chunk of the catch-up range.

        A failed submission propagates and fails the whole job; chunks
        already submitted are safe to submit again on retry.

        Args:
            job: Catch-up job

        Returns:
            CatchupResult with chunks_created and final progress
        """
        total_blocks = job.to_block - job.from_block + 1
        logger.info(
            f"[Catchup] {job.key}: splitting {total_blocks} blocks "
            f"({job.from_block} -> {job.to_block}) into chunks of {job.chunk_size}"
        )

        chunks_created = 0
        progress = 0.0
        for chunk_from, chunk_to in plan_chunks(job.from_block, job.to_block, job.chunk_size):
            await self.queue.submit(
                RangeJob(job.key, chunk_from, chunk_to),
                priority=JobPriority.HIGH,
            )
            chunks_created += 1
            progress = catchup_progress(chunk_to + 1, job.from_block, job.to_block)

            if chunks_created % self.progress_log_every == 0:
                logger.info(
                    f"[Catchup] {job.key} progress: {progress * 100:.1f}% "
                    f"({chunks_created} chunks submitted)"
                )

        logger.success(
            f"[Catchup] {job.key}: {chunks_created} chunks submitted "
            f"({job.from_block} -> {job.to_block})"
        )
        return CatchupResult(
            key=job.key,
            from_block=job.from_block,
            to_block=job.to_block,
            chunks_created=chunks_created,
            progress=progress,
        )
