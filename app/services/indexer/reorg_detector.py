"""
Reorg detector.

Compares each pair's cursor hash with the chain and, on mismatch, finds
the highest stored block that is still canonical.
"""

import asyncio
from collections.abc import Callable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.indexer_state import IndexerState, IndexerStatus
from app.models.pair import PairKey
from app.repositories.block_checkpoint_repository import BlockCheckpointRepository
from app.repositories.indexer_state_repository import IndexerStateRepository
from app.services.indexer.chain_oracle import ChainOracle
from app.services.indexer.error_classifier import summarize_error
from app.services.indexer.jobs import JobPriority, JobSubmitter, ReorgJob
from app.utils.exceptions import BlockNotFoundError, ReorgDepthExceededError


def pair_key(state: IndexerState) -> PairKey:
    """Key of a state row."""
    return PairKey.of(state.chain_id, state.contract_address)


class ReorgDetector:
    """Reorg detection for one pair at a time."""

    def __init__(self, session: AsyncSession, oracle: ChainOracle, max_depth: int) -> None:
        """
        Initialize detector.

        Args:
            session: Database session
            oracle: Chain oracle for the pair's chain
            max_depth: Maximum blocks to walk back from the cursor
        """
        self.session = session
        self.oracle = oracle
        self.max_depth = max_depth
        self.checkpoint_repo = BlockCheckpointRepository(session)

    async def check(self, state: IndexerState) -> ReorgJob | None:
        """
        Check whether the cursor block is still canonical.

        Args:
            state: Current state of the pair

        Returns:
            ReorgJob pointing at the common ancestor, or None if the
            cursor still matches the chain

        Raises:
            ReorgDepthExceededError: No ancestor within max_depth
        """
        if state.last_indexed_block <= 0 or state.last_block_hash is None:
            return None

        key = pair_key(state)
        header = await self.oracle.block_at(state.last_indexed_block)
        if header.hash == state.last_block_hash:
            return None

        logger.warning(
            f"[ReorgDetector] {key}: block {state.last_indexed_block} hash changed "
            f"({state.last_block_hash} -> {header.hash})"
        )
        ancestor, ancestor_hash = await self.find_common_ancestor(
            state, state.last_indexed_block
        )
        logger.warning(
            f"[ReorgDetector] {key}: common ancestor at block {ancestor} "
            f"(depth {state.last_indexed_block - ancestor})"
        )
        return ReorgJob(key, ancestor, ancestor_hash)

    async def _matches(self, number: int, stored_hash: str) -> str | None:
        """Chain hash of `number` if it equals the stored hash."""
        try:
            header = await self.oracle.block_at(number)
        except BlockNotFoundError:
            # Block missing from the new chain: cannot be canonical
            return None
        return header.hash if header.hash == stored_hash else None

    async def find_common_ancestor(self, state: IndexerState, upto: int) -> tuple[int, str]:
        """
        Highest block <= `upto` whose stored hash is still canonical.

        Hash linkage makes "stored hash matches chain" true for every block
        below the fork point and false above it, so a binary search over the
        stored checkpoints finds the boundary in O(log n) RPC calls.

        Args:
            state: Current state of the pair
            upto: Highest block to consider

        Returns:
            (block_number, chain_hash) of the ancestor

        Raises:
            ReorgDepthExceededError: No match within max_depth of `upto`
        """
        key = pair_key(state)
        floor_block = max(upto - self.max_depth, 0)
        initial_cursor = max(state.start_block - 1, 0)

        candidates = await self.checkpoint_repo.get_hashes(key, floor_block, upto)

        best: tuple[int, str] | None = None
        lo, hi = 0, len(candidates) - 1
        while lo <= hi:
            mid = (lo + hi) // 2
            number, stored_hash = candidates[mid]
            chain_hash = await self._matches(number, stored_hash)
            if chain_hash is not None:
                best = (number, chain_hash)
                lo = mid + 1
            else:
                hi = mid - 1

        if best is not None:
            return best

        # Everything indexed so far is inside the window: restart the pair
        if floor_block <= initial_cursor:
            header = await self.oracle.block_at(initial_cursor)
            return initial_cursor, header.hash

        raise ReorgDepthExceededError(upto, self.max_depth)


class ReorgMonitor:
    """Periodic reorg scan over all running pairs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        oracle_for: Callable[[int], ChainOracle],
        queue: JobSubmitter,
        max_depth: int,
    ) -> None:
        """
        Initialize monitor.

        Args:
            session_factory: Session factory
            oracle_for: Returns the oracle for a chain id
            queue: Job submitter for reorg jobs
            max_depth: Maximum reorg depth handled automatically
        """
        self.session_factory = session_factory
        self.oracle_for = oracle_for
        self.queue = queue
        self.max_depth = max_depth
        self._lock = asyncio.Lock()

    async def tick(self) -> list[ReorgJob]:
        """
        Check every running pair once.

        Returns:
            Reorg jobs submitted during this tick
        """
        if self._lock.locked():
            logger.warning("[ReorgDetector] Previous scan still running, skipping tick")
            return []

        async with self._lock:
            async with self.session_factory() as session:
                states = await IndexerStateRepository(session).list_states(
                    IndexerStatus.RUNNING
                )

            submitted = []
            for state in states:
                job = await self._check_pair(state)
                if job is not None:
                    submitted.append(job)
            return submitted

    async def _check_pair(self, state: IndexerState) -> ReorgJob | None:
        key = pair_key(state)
        try:
            async with self.session_factory() as session:
                detector = ReorgDetector(session, self.oracle_for(key.chain_id), self.max_depth)
                job = await detector.check(state)
        except ReorgDepthExceededError as e:
            await self._halt(key, e)
            return None
        except Exception as e:
            logger.warning(f"[ReorgDetector] {key}: check skipped: {e}")
            return None

        if job is None:
            return None
        try:
            await self.queue.submit(job, priority=JobPriority.HIGHEST)
        except Exception as e:
            logger.error(f"[ReorgDetector] {key}: failed to submit reorg job: {e}")
            return None
        return job

    async def _halt(self, key: PairKey, error: Exception) -> None:
        logger.critical(
            f"[ReorgDetector] {key}: {error}. Pair halted, manual intervention required"
        )
        async with self.session_factory() as session:
            await IndexerStateRepository(session).set_status(
                key, IndexerStatus.HALTED, error=summarize_error(error)
            )
            await session.commit()
