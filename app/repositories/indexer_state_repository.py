"""
IndexerState repository.

Data access layer for per-pair indexing cursors. Every mutation of the
cursor or of the catch-up flag is a single conditional UPDATE
(compare-and-set on `version` or on the flag itself), so two writers can
never both succeed against the same snapshot.
"""

from typing import Any

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.indexer_state import IndexerState, IndexerStatus
from app.models.pair import PairKey
from app.repositories.base import BaseRepository
from app.utils.datetime_utils import utc_now


class IndexerStateRepository(BaseRepository[IndexerState]):
    """Repository for indexer cursors."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(IndexerState, session)

    def _where_pair(self, key: PairKey) -> list[Any]:
        return [
            IndexerState.chain_id == key.chain_id,
            IndexerState.contract_address == key.contract_address,
        ]

    async def _update(self, key: PairKey, *conditions: Any, **values: Any) -> bool:
        """Conditional UPDATE of one pair; True if the row matched."""
        stmt = (
            update(IndexerState)
            .where(*self._where_pair(key), *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def get_state(self, key: PairKey) -> IndexerState | None:
        """
        Get the current state of a pair.

        Always reloads from the database so a previously loaded instance
        in this session never masks a concurrent update.

        Args:
            key: Pair key

        Returns:
            IndexerState or None
        """
        stmt = (
            select(IndexerState)
            .where(*self._where_pair(key))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_state(
        self, key: PairKey, start_block: int, chunk_size: int
    ) -> IndexerState:
        """
        Get state for a pair, creating it at `start_block` if missing.

        The initial cursor is the block before `start_block`, so the first
        range job starts exactly at `start_block`.

        Args:
            key: Pair key
            start_block: First block to index
            chunk_size: Initial chunk size

        Returns:
            Existing or newly created state
        """
        state = await self.get_state(key)
        if state:
            return state

        # Concurrent creators race on the unique key; the loser inserts nothing
        stmt = (
            self._insert()
            .values(
                chain_id=key.chain_id,
                contract_address=key.contract_address,
                status=IndexerStatus.RUNNING.value,
                start_block=start_block,
                last_indexed_block=max(start_block - 1, 0),
                current_block=0,
                is_catching_up=False,
                chunk_size=chunk_size,
                transfers_indexed=0,
                error_count=0,
                version=1,
                created_at=utc_now(),
                updated_at=utc_now(),
            )
            .on_conflict_do_nothing(index_elements=["chain_id", "contract_address"])
        )
        await self.session.execute(stmt)
        await self.session.flush()

        state = await self.get_state(key)
        if state is None:
            raise RuntimeError(f"IndexerState for {key} vanished after insert")
        return state

    async def list_states(self, status: IndexerStatus | None = None) -> list[IndexerState]:
        """
        List all pair states.

        Args:
            status: Optional status filter

        Returns:
            States ordered by chain and contract
        """
        stmt = select(IndexerState).order_by(
            IndexerState.chain_id, IndexerState.contract_address
        )
        if status is not None:
            stmt = stmt.where(IndexerState.status == status.value)
        result = await self.session.execute(
            stmt.execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def compare_and_set(
        self, key: PairKey, expected_version: int, **changes: Any
    ) -> bool:
        """
        Apply `changes` only if the row is still at `expected_version`.

        Increments the version on success.

        Args:
            key: Pair key
            expected_version: Version observed by the caller
            **changes: Column values to set

        Returns:
            True if this caller won, False if the row moved on
        """
        return await self._update(
            key,
            IndexerState.version == expected_version,
            version=IndexerState.version + 1,
            **changes,
        )

    async def advance_cursor(
        self,
        key: PairKey,
        expected_version: int,
        block_number: int,
        block_hash: str,
        events_indexed: int,
    ) -> bool:
        """
        Move the cursor forward after a range was persisted.

        Never moves it backwards: a snapshot whose cursor is already at or
        past `block_number` cannot match. Clears the error counter and, once
        the cursor reaches the catch-up target, releases catch-up ownership.

        Returns:
            True if the cursor advanced
        """
        target_reached = IndexerState.catchup_target_block <= block_number
        return await self._update(
            key,
            IndexerState.version == expected_version,
            IndexerState.last_indexed_block < block_number,
            version=IndexerState.version + 1,
            last_indexed_block=block_number,
            last_block_hash=block_hash,
            transfers_indexed=IndexerState.transfers_indexed + events_indexed,
            last_indexed_at=utc_now(),
            error_count=0,
            is_catching_up=case(
                (target_reached, False), else_=IndexerState.is_catching_up
            ),
            catchup_started_at=case(
                (target_reached, None), else_=IndexerState.catchup_started_at
            ),
            catchup_target_block=case(
                (target_reached, None), else_=IndexerState.catchup_target_block
            ),
        )

    async def rollback_cursor(
        self,
        key: PairKey,
        expected_version: int,
        block_number: int,
        block_hash: str | None,
    ) -> bool:
        """
        Force the cursor back to `block_number` (reorg or operator reset).

        Also releases the catch-up flag.

        Returns:
            True if this caller won the compare-and-set
        """
        return await self.compare_and_set(
            key,
            expected_version,
            last_indexed_block=block_number,
            last_block_hash=block_hash,
            is_catching_up=False,
            catchup_started_at=None,
            catchup_target_block=None,
        )

    async def try_begin_catchup(
        self, key: PairKey, expected_version: int, target_block: int
    ) -> bool:
        """
        Take catch-up ownership of a pair up to `target_block`.

        Succeeds only if nobody owns it and the row is unchanged since the
        caller read it. Ownership lasts until the cursor reaches the target
        (see advance_cursor), a reorg or reset rewinds the cursor, or the
        coordinator releases a stale flag.

        Returns:
            True if this caller now owns the pair
        """
        return await self._update(
            key,
            IndexerState.version == expected_version,
            IndexerState.is_catching_up.is_(False),
            version=IndexerState.version + 1,
            is_catching_up=True,
            catchup_started_at=utc_now(),
            catchup_target_block=target_block,
        )

    async def finish_catchup(self, key: PairKey, reached_block: int | None = None) -> bool:
        """
        Release catch-up ownership.

        Guarded by the flag rather than the version: range jobs advance
        the cursor concurrently with the caller.

        Args:
            key: Pair key
            reached_block: Only release if the cursor is at or past this block

        Returns:
            True if the flag was set and is now cleared
        """
        conditions = [IndexerState.is_catching_up.is_(True)]
        if reached_block is not None:
            conditions.append(IndexerState.last_indexed_block >= reached_block)
        return await self._update(
            key,
            *conditions,
            version=IndexerState.version + 1,
            is_catching_up=False,
            catchup_started_at=None,
            catchup_target_block=None,
        )

    async def update_chunk_size(self, key: PairKey, previous: int, new: int) -> bool:
        """
        Compare-and-set on the chunk size alone.

        Does not bump the version, so chunk tuning never makes a cursor
        writer lose its compare-and-set.

        Returns:
            True if the stored size was still `previous`
        """
        if previous == new:
            return True
        return await self._update(
            key, IndexerState.chunk_size == previous, chunk_size=new
        )

    async def set_current_block(self, key: PairKey, head: int) -> None:
        """Record the latest observed chain head."""
        await self._update(key, current_block=head)

    async def record_error(self, key: PairKey, message: str) -> None:
        """Increment the error counter and store the last error."""
        await self._update(
            key,
            error_count=IndexerState.error_count + 1,
            last_error=message,
            last_error_at=utc_now(),
        )

    async def set_status(
        self, key: PairKey, status: IndexerStatus, error: str | None = None
    ) -> bool:
        """
        Change the scheduling status of a pair.

        Args:
            key: Pair key
            status: New status
            error: Error stored alongside a halt

        Returns:
            True if the pair exists
        """
        values: dict[str, Any] = {"status": status.value}
        if error is not None:
            values.update(last_error=error, last_error_at=utc_now())
        return await self._update(key, **values)

    async def clear_errors(self, key: PairKey) -> None:
        """Reset error bookkeeping (operator resume/reset)."""
        await self._update(key, error_count=0, last_error=None, last_error_at=None)
