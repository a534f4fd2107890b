"""
Block range worker.

Indexes one contiguous block range: fetches Transfer logs, persists them
and advances the pair's cursor in a single transaction.
"""

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.pair import PairKey
from app.repositories.block_checkpoint_repository import BlockCheckpointRepository
from app.repositories.indexer_state_repository import IndexerStateRepository
from app.repositories.transfer_event_repository import TransferEventRepository
from app.services.indexer.chain_oracle import BlockHeader, ChainOracle, TransferLog
from app.services.indexer.jobs import (
    JobPriority,
    JobSubmitter,
    RangeJob,
    RangeResult,
    ReorgJob,
)
from app.utils.exceptions import (
    AnchorMismatchError,
    ConfigurationError,
    CursorConflictError,
    RangeNotReadyError,
    ReorgDuringFetchError,
)


class BlockRangeWorker:
    """Consumes range jobs."""

    def __init__(
        self,
        session: AsyncSession,
        oracle: ChainOracle,
        queue: JobSubmitter,
    ) -> None:
        """
        Initialize worker.

        Args:
            session: Database session (one transaction per job)
            oracle: Chain oracle for the job's chain
            queue: Job submitter for self-detected reorgs
        """
        self.session = session
        self.oracle = oracle
        self.queue = queue
        self.state_repo = IndexerStateRepository(session)
        self.event_repo = TransferEventRepository(session)
        self.checkpoint_repo = BlockCheckpointRepository(session)

    async def process(self, job: RangeJob) -> RangeResult:
        """
        Index [from_block, to_block] for the job's pair.

        Args:
            job: Range job

        Returns:
            RangeResult describing what happened

        Raises:
            RangeNotReadyError: The preceding range is not persisted yet
            ReorgDuringFetchError: The chain moved while fetching
            CursorConflictError: Another writer advanced the cursor first
        """
        key = job.key
        state = await self.state_repo.get_state(key)
        if state is None:
            raise ConfigurationError(f"No indexer state for {key}")

        cursor = state.last_indexed_block
        expected_version = state.version
        anchor_hash = state.last_block_hash

        if job.to_block <= cursor:
            logger.debug(
                f"[RangeWorker] {key}: {job.from_block}-{job.to_block} "
                f"already indexed (cursor {cursor})"
            )
            return RangeResult(key, job.from_block, job.to_block, skipped=True)

        if job.from_block > cursor + 1:
            raise RangeNotReadyError(job.from_block, cursor)

        start = max(job.from_block, cursor + 1)
        first = await self.oracle.block_at(start)

        if anchor_hash is not None and first.parent_hash != anchor_hash:
            logger.warning(
                f"[RangeWorker] {key}: parent of block {start} is "
                f"{first.parent_hash}, expected {anchor_hash}; reporting reorg"
            )
            try:
                await self.queue.submit(
                    ReorgJob(key, start - 1, anchor_hash),
                    priority=JobPriority.HIGHEST,
                )
            except Exception as e:
                # Left to the executor's data-inconsistency path
                raise AnchorMismatchError(start - 1, anchor_hash) from e
            return RangeResult(key, start, job.to_block, reorg_suspected=True)

        last = first if start == job.to_block else await self.oracle.block_at(job.to_block)
        logs = await self.oracle.logs_in_range(key.contract_address, start, job.to_block)
        self._check_consistency(key, first, last, logs)

        hashes = {log.block_number: log.block_hash for log in logs}
        hashes[first.number] = first.hash
        hashes[last.number] = last.hash

        try:
            written = await self.event_repo.upsert_logs(key, logs)
            await self.checkpoint_repo.upsert_hashes(key, hashes)
            advanced = await self.state_repo.advance_cursor(
                key, expected_version, job.to_block, last.hash, written
            )
            if not advanced:
                raise CursorConflictError(
                    f"Cursor of {key} moved while indexing {start}-{job.to_block}"
                )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"[RangeWorker] {key}: indexed {start}-{job.to_block} "
            f"({written} transfers)"
        )
        return RangeResult(key, start, job.to_block, events_indexed=written)

    @staticmethod
    def _check_consistency(
        key: PairKey,
        first: BlockHeader,
        last: BlockHeader,
        logs: list[TransferLog],
    ) -> None:
        """Logs at the range edges must belong to the fetched headers."""
        for log in logs:
            if log.block_number < first.number or log.block_number > last.number:
                raise ReorgDuringFetchError(
                    f"{key}: log at block {log.block_number} outside "
                    f"{first.number}-{last.number}"
                )
            expected = (
                first.hash if log.block_number == first.number
                else last.hash if log.block_number == last.number
                else None
            )
            if expected is not None and log.block_hash != expected:
                raise ReorgDuringFetchError(
                    f"{key}: block {log.block_number} hash changed during fetch"
                )
