"""
Indexer management service.

Operator-facing view and controls: status reports, pausing and resuming
pairs, rewinding a cursor and browsing the reorg history.
"""

from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.indexer_state import IndexerState, IndexerStatus
from app.models.pair import PairKey
from app.models.reorg_record import ReorgRecord
from app.repositories.block_checkpoint_repository import BlockCheckpointRepository
from app.repositories.indexer_state_repository import IndexerStateRepository
from app.repositories.reorg_record_repository import ReorgRecordRepository
from app.repositories.transfer_event_repository import TransferEventRepository
from app.services.indexer.chain_oracle import ChainOracle
from app.services.indexer.chunk_size import optimal_chunk_size
from app.utils.datetime_utils import seconds_since
from app.utils.exceptions import BlockNotFoundError, ConfigurationError, CursorConflictError


@dataclass
class IndexerStatusReport:
    """Snapshot of one pair for operators."""

    key: PairKey
    status: str
    last_indexed_block: int
    last_block_hash: str | None
    current_block: int
    lag: int
    blocks_per_second: float
    is_catching_up: bool
    chunk_size: int
    transfers_indexed: int
    error_count: int
    last_error: str | None
    last_indexed_at: datetime | None

    @classmethod
    def from_state(cls, state: IndexerState) -> "IndexerStatusReport":
        indexed_blocks = max(state.last_indexed_block - max(state.start_block - 1, 0), 0)
        elapsed = seconds_since(state.created_at) or 0.0
        return cls(
            key=PairKey.of(state.chain_id, state.contract_address),
            status=state.status,
            last_indexed_block=state.last_indexed_block,
            last_block_hash=state.last_block_hash,
            current_block=state.current_block,
            lag=max(state.current_block - state.last_indexed_block, 0),
            blocks_per_second=round(indexed_blocks / elapsed, 2) if elapsed > 0 else 0.0,
            is_catching_up=state.is_catching_up,
            chunk_size=state.chunk_size,
            transfers_indexed=state.transfers_indexed,
            error_count=state.error_count,
            last_error=state.last_error,
            last_indexed_at=state.last_indexed_at,
        )

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["key"] = str(self.key)
        if self.last_indexed_at is not None:
            data["last_indexed_at"] = self.last_indexed_at.isoformat()
        return data


class IndexerManagementService:
    """Operator commands for indexed pairs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        oracle_for: Callable[[int], ChainOracle],
        chunk_size_min: int,
        chunk_size_max: int,
    ) -> None:
        """
        Initialize management service.

        Args:
            session_factory: Session factory
            oracle_for: Returns the oracle for a chain id
            chunk_size_min: Floor used when re-seeding the chunk size
            chunk_size_max: Cap used when re-seeding the chunk size
        """
        self.session_factory = session_factory
        self.oracle_for = oracle_for
        self.chunk_size_min = chunk_size_min
        self.chunk_size_max = chunk_size_max

    async def _require_state(self, repo: IndexerStateRepository, key: PairKey) -> IndexerState:
        state = await repo.get_state(key)
        if state is None:
            raise ConfigurationError(f"No indexer state for {key}")
        return state

    async def get_status(self, key: PairKey) -> IndexerStatusReport:
        """
        Get status report for a pair.

        Raises:
            ConfigurationError: Pair was never indexed
        """
        async with self.session_factory() as session:
            state = await self._require_state(IndexerStateRepository(session), key)
            return IndexerStatusReport.from_state(state)

    async def list_statuses(self) -> list[IndexerStatusReport]:
        """Status reports for every known pair."""
        async with self.session_factory() as session:
            states = await IndexerStateRepository(session).list_states()
            return [IndexerStatusReport.from_state(state) for state in states]

    async def _set_status(
        self, key: PairKey, status: IndexerStatus, *, clear_errors: bool = False
    ) -> None:
        async with self.session_factory() as session:
            repo = IndexerStateRepository(session)
            if not await repo.set_status(key, status):
                raise ConfigurationError(f"No indexer state for {key}")
            if clear_errors:
                await repo.clear_errors(key)
            await session.commit()

    async def stop(self, key: PairKey) -> None:
        """Pause scheduling for a pair. In-flight jobs still finish."""
        await self._set_status(key, IndexerStatus.STOPPED)
        logger.info(f"[Management] {key}: stopped")

    async def start(self, key: PairKey) -> None:
        """Resume scheduling of a stopped pair."""
        await self._set_status(key, IndexerStatus.RUNNING)
        logger.info(f"[Management] {key}: started")

    async def resume(self, key: PairKey) -> None:
        """Resume a halted pair and clear its error bookkeeping."""
        await self._set_status(key, IndexerStatus.RUNNING, clear_errors=True)
        logger.success(f"[Management] {key}: resumed")

    async def reset(self, key: PairKey, block_number: int) -> IndexerStatusReport:
        """
        Move the cursor of a pair to `block_number`.

        Events and checkpoints above the block are removed, the catch-up
        flag is released and the chunk size is re-seeded for the new lag.

        Args:
            key: Pair key
            block_number: New cursor block

        Returns:
            Status report after the reset

        Raises:
            ValueError: Negative block number
            ConfigurationError: Pair was never indexed
            CursorConflictError: Cursor moved concurrently; retry the reset
        """
        if block_number < 0:
            raise ValueError(f"Block number must be >= 0, got {block_number}")

        try:
            header = await self.oracle_for(key.chain_id).block_at(block_number)
            block_hash = header.hash
        except BlockNotFoundError:
            block_hash = None

        async with self.session_factory() as session:
            state_repo = IndexerStateRepository(session)
            checkpoint_repo = BlockCheckpointRepository(session)
            state = await self._require_state(state_repo, key)

            try:
                events_deleted = await TransferEventRepository(session).delete_above(
                    key, block_number
                )
                await checkpoint_repo.delete_above(key, block_number)
                if block_hash is not None:
                    await checkpoint_repo.upsert_hashes(key, {block_number: block_hash})

                if not await state_repo.rollback_cursor(
                    key, state.version, block_number, block_hash
                ):
                    raise CursorConflictError(f"Cursor of {key} moved during reset")

                lag = max(state.current_block - block_number, 0)
                chunk_size = max(
                    optimal_chunk_size(lag, self.chunk_size_max), self.chunk_size_min
                )
                await state_repo.update_chunk_size(key, state.chunk_size, chunk_size)
                await state_repo.clear_errors(key)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.warning(
            f"[Management] {key}: cursor reset {state.last_indexed_block} -> "
            f"{block_number} ({events_deleted} transfers deleted)"
        )
        return await self.get_status(key)

    async def list_reorgs(self, key: PairKey | None = None, limit: int = 20) -> list[ReorgRecord]:
        """Most recent reorg records, newest first."""
        async with self.session_factory() as session:
            return await ReorgRecordRepository(session).list_recent(key, limit)
