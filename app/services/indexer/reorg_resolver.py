"""
Reorg resolver.

Rolls a pair back to its last canonical block: deletes events and
checkpoints above it, rewinds the cursor and appends an audit record.
The next coordinator tick re-indexes the invalidated range.
"""

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.indexer_state import IndexerState
from app.repositories.block_checkpoint_repository import BlockCheckpointRepository
from app.repositories.indexer_state_repository import IndexerStateRepository
from app.repositories.reorg_record_repository import ReorgRecordRepository
from app.repositories.transfer_event_repository import TransferEventRepository
from app.services.indexer.chain_oracle import ChainOracle
from app.services.indexer.jobs import ReorgJob, ReorgResult
from app.services.indexer.reorg_detector import ReorgDetector
from app.utils.exceptions import BlockNotFoundError, ConfigurationError, CursorConflictError


class ReorgResolver:
    """Consumes reorg jobs."""

    def __init__(self, session: AsyncSession, oracle: ChainOracle, max_depth: int) -> None:
        """
        Initialize resolver.

        Args:
            session: Database session (one transaction per job)
            oracle: Chain oracle for the job's chain
            max_depth: Maximum walk-back when the suspect block is not canonical
        """
        self.session = session
        self.oracle = oracle
        self.max_depth = max_depth
        self.state_repo = IndexerStateRepository(session)
        self.event_repo = TransferEventRepository(session)
        self.checkpoint_repo = BlockCheckpointRepository(session)
        self.reorg_repo = ReorgRecordRepository(session)

    async def _confirm_ancestor(self, state: IndexerState, job: ReorgJob) -> tuple[int, str]:
        """
        Resolve the block to roll back to.

        A job from the detector names a block that was canonical when it
        was checked; a job from a range worker names the cursor block whose
        identity is in doubt. Either way the block is kept only if the chain
        still has the expected hash there, otherwise the ancestor search
        runs below it.
        """
        try:
            header = await self.oracle.block_at(job.suspect_block)
        except BlockNotFoundError:
            header = None

        if header is not None and job.suspect_hash is not None and header.hash == job.suspect_hash:
            return job.suspect_block, header.hash

        detector = ReorgDetector(self.session, self.oracle, self.max_depth)
        return await detector.find_common_ancestor(state, job.suspect_block)

    async def resolve(self, job: ReorgJob) -> ReorgResult:
        """
        Roll the pair back to the confirmed ancestor.

        Idempotent: when the cursor is already at or below the ancestor
        nothing is changed and no record is written.

        Args:
            job: Reorg job

        Returns:
            ReorgResult with rollback details

        Raises:
            ReorgDepthExceededError: No ancestor within max_depth
            CursorConflictError: Cursor moved during the rollback
        """
        key = job.key
        state = await self.state_repo.get_state(key)
        if state is None:
            raise ConfigurationError(f"No indexer state for {key}")

        previous_cursor = state.last_indexed_block
        ancestor, ancestor_hash = await self._confirm_ancestor(state, job)

        if ancestor >= previous_cursor:
            logger.info(
                f"[ReorgResolver] {key}: cursor {previous_cursor} already at or "
                f"below block {ancestor}, nothing to roll back"
            )
            return ReorgResult(key, rollback_to=ancestor, noop=True)

        try:
            events_deleted = await self.event_repo.delete_above(key, ancestor)
            await self.checkpoint_repo.delete_above(key, ancestor)
            rewound = await self.state_repo.rollback_cursor(
                key, state.version, ancestor, ancestor_hash
            )
            if not rewound:
                raise CursorConflictError(
                    f"Cursor of {key} moved during rollback to {ancestor}"
                )
            await self.reorg_repo.append(
                key,
                invalidated_from_block=ancestor + 1,
                invalidated_to_block=previous_cursor,
                new_canonical_hash=ancestor_hash,
                old_block_hash=state.last_block_hash,
                events_deleted=events_deleted,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        depth = previous_cursor - ancestor
        logger.warning(
            f"[ReorgResolver] {key}: rolled back {previous_cursor} -> {ancestor} "
            f"(depth {depth}, {events_deleted} transfers deleted)"
        )
        return ReorgResult(
            key,
            rollback_to=ancestor,
            invalidated_from_block=ancestor + 1,
            invalidated_to_block=previous_cursor,
            depth=depth,
            events_deleted=events_deleted,
        )
