"""
Indexer coordinator.

Scheduling loop: on every tick decides, per (chain, contract) pair,
whether to submit a range job, a catch-up job, or nothing.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.settings import Settings
from app.models.indexer_state import IndexerState
from app.models.pair import PairKey
from app.repositories.indexer_state_repository import IndexerStateRepository
from app.services.indexer.chain_oracle import BlockRef, ChainOracle
from app.services.indexer.jobs import (
    CatchupJob,
    Job,
    JobPriority,
    JobSubmitter,
    RangeJob,
)
from app.utils.datetime_utils import seconds_since, utc_now


class Coordinator:
    """
    Per-tick job dispatcher.

    Submits at most one job per pair per tick. Catch-up ownership is taken
    with a compare-and-set on the state row, so two coordinators reading the
    same snapshot cannot both start a catch-up, and it is held until the
    cursor reaches the catch-up target. Range jobs always start at
    the persisted cursor, so a stale in-flight job and a fresh one overlap
    only in ways the worker treats as idempotent.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        oracle_for: Callable[[int], ChainOracle],
        queue: JobSubmitter,
        pairs: dict[PairKey, int],
        *,
        catchup_threshold: int,
        chunk_size_initial: int,
        catchup_stale_after_seconds: float,
    ) -> None:
        """
        Initialize coordinator.

        Args:
            session_factory: Session factory
            oracle_for: Returns the oracle for a chain id
            queue: Job submitter
            pairs: Indexed pairs mapped to their start block
            catchup_threshold: Gap above which catch-up mode is used
            chunk_size_initial: Chunk size for newly created pairs
            catchup_stale_after_seconds: Age after which a catch-up flag is released
        """
        self.session_factory = session_factory
        self.oracle_for = oracle_for
        self.queue = queue
        self.pairs = pairs
        self.catchup_threshold = catchup_threshold
        self.chunk_size_initial = chunk_size_initial
        self.catchup_stale_after_seconds = catchup_stale_after_seconds

        self._lock = asyncio.Lock()
        self.last_tick_at: datetime | None = None
        self.last_tick_dispatched = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        oracle_for: Callable[[int], ChainOracle],
        queue: JobSubmitter,
    ) -> "Coordinator":
        """Build a coordinator for the configured contracts."""
        pairs = {
            PairKey.of(contract.chain_id, contract.address): settings.start_block_for(
                contract.chain_id, contract.address
            )
            for contract in settings.indexed_contracts
        }
        return cls(
            session_factory,
            oracle_for,
            queue,
            pairs,
            catchup_threshold=settings.catchup_threshold,
            chunk_size_initial=settings.chunk_size_initial,
            catchup_stale_after_seconds=settings.catchup_stale_after_seconds,
        )

    async def tick(self) -> dict[PairKey, Job | None]:
        """
        Run one scheduling pass over all pairs.

        A tick that starts while the previous one is still dispatching is
        skipped.

        Returns:
            Job submitted per pair (None where nothing was submitted)
        """
        if self._lock.locked():
            logger.warning("[Coordinator] Previous tick still running, skipping")
            return {}

        async with self._lock:
            dispatched: dict[PairKey, Job | None] = {}
            for key, start_block in self.pairs.items():
                try:
                    dispatched[key] = await self.tick_pair(key, start_block)
                except Exception as e:
                    logger.error(f"[Coordinator] {key}: tick failed: {e}")
                    dispatched[key] = None

            self.last_tick_at = utc_now()
            self.last_tick_dispatched = sum(1 for job in dispatched.values() if job)
            return dispatched

    async def tick_pair(self, key: PairKey, start_block: int) -> Job | None:
        """
        Schedule work for one pair.

        Args:
            key: Pair key
            start_block: Configured start block (used on first sight)

        Returns:
            Submitted job or None
        """
        try:
            head = await self.oracle_for(key.chain_id).head()
        except Exception as e:
            logger.warning(f"[Coordinator] {key}: chain head unavailable, skipping: {e}")
            return None

        async with self.session_factory() as session:
            repo = IndexerStateRepository(session)
            state = await repo.get_or_create_state(key, start_block, self.chunk_size_initial)
            await repo.set_current_block(key, head.number)
            await session.commit()

            return await self.dispatch(session, state, head)

    async def dispatch(
        self, session: AsyncSession, state: IndexerState, head: BlockRef
    ) -> Job | None:
        """
        Decide and submit the job for a state snapshot.

        Args:
            session: Database session
            state: State snapshot read for this tick
            head: Chain head observed for this tick

        Returns:
            Submitted job or None
        """
        repo = IndexerStateRepository(session)
        key = PairKey.of(state.chain_id, state.contract_address)

        if not state.is_running:
            return None

        if state.is_catching_up:
            target = state.catchup_target_block
            if target is not None and state.last_indexed_block >= target:
                # Target reached without the advance releasing the flag
                await repo.finish_catchup(key, reached_block=target)
                await session.commit()
                logger.info(f"[Coordinator] {key}: catch-up to {target} complete")
                return None
            await self._release_if_stale(session, repo, key, state)
            return None

        gap = head.number - state.last_indexed_block
        if gap <= 0:
            return None

        start = state.last_indexed_block + 1

        if gap > self.catchup_threshold:
            won = await repo.try_begin_catchup(key, state.version, head.number)
            await session.commit()
            if not won:
                logger.debug(f"[Coordinator] {key}: catch-up already claimed")
                return None

            job = CatchupJob(key, start, head.number, state.chunk_size)
            try:
                await self.queue.submit(job, priority=JobPriority.HIGH)
            except Exception:
                # Nothing was queued: give the pair back to the next tick
                await repo.finish_catchup(key)
                await session.commit()
                raise
            logger.info(
                f"[Coordinator] {key}: {gap} blocks behind, catch-up "
                f"{start} -> {head.number} (chunk {state.chunk_size})"
            )
            return job

        job = RangeJob(key, start, head.number)
        await self.queue.submit(job)
        logger.debug(f"[Coordinator] {key}: range {start} -> {head.number}")
        return job

    async def _release_if_stale(
        self,
        session: AsyncSession,
        repo: IndexerStateRepository,
        key: PairKey,
        state: IndexerState,
    ) -> None:
        """Release a catch-up flag whose owner is presumed dead."""
        age = seconds_since(state.catchup_started_at)
        if age is None or age <= self.catchup_stale_after_seconds:
            return

        released = await repo.compare_and_set(
            key,
            state.version,
            is_catching_up=False,
            catchup_started_at=None,
            catchup_target_block=None,
        )
        await session.commit()
        if released:
            logger.warning(
                f"[Coordinator] {key}: catch-up flag held for {age:.0f}s, released"
            )
