"""
Integration tests for the coordinator.

Covers dispatch decisions, catch-up ownership under concurrent
coordinators and recovery of a stale catch-up flag.
"""

from datetime import timedelta

import pytest

from app.models.indexer_state import IndexerStatus
from app.repositories.indexer_state_repository import IndexerStateRepository
from app.services.indexer.coordinator import Coordinator
from app.services.indexer.jobs import CatchupJob, JobPriority, RangeJob
from app.utils.datetime_utils import utc_now


def _coordinator(session_factory, chain, queue, pair, start_block=1, **overrides):
    options = {
        "catchup_threshold": 1000,
        "chunk_size_initial": 500,
        "catchup_stale_after_seconds": 1800,
    }
    options.update(overrides)
    return Coordinator(
        session_factory, lambda chain_id: chain, queue, {pair: start_block}, **options
    )


class TestDispatch:
    """Per-tick dispatch decisions."""

    @pytest.mark.asyncio
    async def test_first_tick_creates_state_and_submits_range(
        self, session_factory, chain, queue, pair, load_state
    ):
        """A new pair starts at its start block."""
        coordinator = _coordinator(session_factory, chain, queue, pair, start_block=50)

        job = await coordinator.tick_pair(pair, 50)

        state = await load_state()
        assert job == RangeJob(pair, 50, 200)
        assert queue.submitted == [(job, JobPriority.NORMAL, None)]
        assert state.last_indexed_block == 49
        assert state.current_block == 200
        assert state.chunk_size == 500

    @pytest.mark.asyncio
    async def test_range_job_covers_whole_gap(self, session_factory, chain, queue, pair):
        """Below the threshold the gap is not split by chunk size."""
        coordinator = _coordinator(
            session_factory, chain, queue, pair, chunk_size_initial=10
        )

        job = await coordinator.tick_pair(pair, 1)

        assert job == RangeJob(pair, 1, 200)

    @pytest.mark.asyncio
    async def test_large_gap_starts_catchup(self, session_factory, chain, queue, pair, load_state):
        chain.extend(5000)
        coordinator = _coordinator(session_factory, chain, queue, pair)

        job = await coordinator.tick_pair(pair, 1)

        state = await load_state()
        assert job == CatchupJob(pair, 1, 5000, 500)
        assert queue.submitted == [(job, JobPriority.HIGH, None)]
        assert state.is_catching_up is True
        assert state.catchup_started_at is not None

    @pytest.mark.asyncio
    async def test_no_dispatch_while_catching_up(self, session_factory, chain, queue, pair):
        chain.extend(5000)
        coordinator = _coordinator(session_factory, chain, queue, pair)

        await coordinator.tick_pair(pair, 1)
        second = await coordinator.tick_pair(pair, 1)

        assert second is None
        assert len(queue.submitted) == 1

    @pytest.mark.asyncio
    async def test_no_dispatch_at_head(self, session_factory, chain, queue, pair, state_factory):
        await state_factory(start_block=201)
        coordinator = _coordinator(session_factory, chain, queue, pair, start_block=201)

        assert await coordinator.tick_pair(pair, 201) is None
        assert queue.submitted == []

    @pytest.mark.asyncio
    async def test_stopped_pair_skipped(self, session_factory, chain, queue, pair, state_factory):
        await state_factory(start_block=1)
        async with session_factory() as session:
            await IndexerStateRepository(session).set_status(pair, IndexerStatus.STOPPED)
            await session.commit()
        coordinator = _coordinator(session_factory, chain, queue, pair)

        assert await coordinator.tick_pair(pair, 1) is None
        assert queue.submitted == []

    @pytest.mark.asyncio
    async def test_head_unavailable_skips_pair(self, session_factory, chain, queue, pair):
        async def no_head():
            raise ConnectionError("rpc down")

        chain.head = no_head
        coordinator = _coordinator(session_factory, chain, queue, pair)

        result = await coordinator.tick()

        assert result == {pair: None}
        assert coordinator.last_tick_at is not None
        assert coordinator.last_tick_dispatched == 0


class TestCatchupOwnership:
    """Only one coordinator can start a catch-up from a given snapshot."""

    @pytest.mark.asyncio
    async def test_stale_snapshots_single_winner(
        self, session_factory, chain, queue, pair, state_factory, load_state
    ):
        """Two coordinators reading the same version: exactly one submits."""
        chain.extend(5000)
        await state_factory(start_block=1)
        head = await chain.head()
        first = _coordinator(session_factory, chain, queue, pair)
        second = _coordinator(session_factory, chain, queue, pair)

        async with session_factory() as session_a, session_factory() as session_b:
            snapshot_a = await IndexerStateRepository(session_a).get_state(pair)
            snapshot_b = await IndexerStateRepository(session_b).get_state(pair)
            assert snapshot_a.version == snapshot_b.version

            job_a = await first.dispatch(session_a, snapshot_a, head)
            job_b = await second.dispatch(session_b, snapshot_b, head)

        assert [job_a is None, job_b is None].count(True) == 1
        assert len(queue.jobs(CatchupJob)) == 1
        assert (await load_state()).is_catching_up is True

    @pytest.mark.asyncio
    async def test_failed_submit_releases_flag(self, session_factory, chain, queue, pair, load_state):
        chain.extend(5000)
        queue.fail_with = ConnectionError("broker down")
        coordinator = _coordinator(session_factory, chain, queue, pair)

        result = await coordinator.tick()

        assert result == {pair: None}
        assert (await load_state()).is_catching_up is False

    @pytest.mark.asyncio
    async def test_stale_flag_released_then_catchup_restarts(
        self, session_factory, chain, queue, pair, state_factory, load_state
    ):
        """A flag older than the stale timeout is released by the next tick."""
        chain.extend(5000)
        state = await state_factory(start_block=1)
        async with session_factory() as session:
            await IndexerStateRepository(session).compare_and_set(
                pair,
                state.version,
                is_catching_up=True,
                catchup_started_at=utc_now() - timedelta(hours=2),
            )
            await session.commit()
        coordinator = _coordinator(session_factory, chain, queue, pair)

        released_tick = await coordinator.tick_pair(pair, 1)
        assert released_tick is None
        assert (await load_state()).is_catching_up is False

        restarted = await coordinator.tick_pair(pair, 1)
        assert restarted == CatchupJob(pair, 1, 5000, 500)

    @pytest.mark.asyncio
    async def test_fresh_flag_kept(self, session_factory, chain, queue, pair, state_factory, load_state):
        chain.extend(5000)
        state = await state_factory(start_block=1)
        async with session_factory() as session:
            await IndexerStateRepository(session).try_begin_catchup(
                pair, state.version, 5000
            )
            await session.commit()
        coordinator = _coordinator(session_factory, chain, queue, pair)

        assert await coordinator.tick_pair(pair, 1) is None
        assert (await load_state()).is_catching_up is True

    @pytest.mark.asyncio
    async def test_ownership_held_after_split(
        self, session_factory, executor, chain, queue, pair, load_state
    ):
        """Queuing the chunks does not hand the pair back to the next tick."""
        chain.extend(5000)
        coordinator = _coordinator(session_factory, chain, queue, pair)

        job = await coordinator.tick_pair(pair, 1)
        await executor.execute(job, JobPriority.HIGH)

        assert len(queue.jobs(RangeJob)) == 10
        assert await coordinator.tick_pair(pair, 1) is None
        assert len(queue.jobs(CatchupJob)) == 1
        state = await load_state()
        assert state.is_catching_up is True
        assert state.catchup_target_block == 5000

    @pytest.mark.asyncio
    async def test_last_chunk_releases_ownership(
        self, session_factory, executor, chain, queue, pair, load_state
    ):
        chain.extend(5000)
        coordinator = _coordinator(session_factory, chain, queue, pair)
        job = await coordinator.tick_pair(pair, 1)
        await executor.execute(job, JobPriority.HIGH)

        chunks = queue.jobs(RangeJob)
        for chunk in chunks[:-1]:
            await executor.execute(chunk, JobPriority.HIGH)
        assert (await load_state()).is_catching_up is True

        await executor.execute(chunks[-1], JobPriority.HIGH)

        state = await load_state()
        assert state.last_indexed_block == 5000
        assert state.is_catching_up is False
        assert state.catchup_target_block is None
        assert await coordinator.tick_pair(pair, 1) is None

    @pytest.mark.asyncio
    async def test_reached_target_released_by_tick(
        self, session_factory, chain, queue, pair, state_factory, load_state
    ):
        """A flag whose target the cursor already passed is released, then work resumes."""
        chain.extend(5000)
        state = await state_factory(start_block=1)
        async with session_factory() as session:
            await IndexerStateRepository(session).compare_and_set(
                pair,
                state.version,
                last_indexed_block=150,
                is_catching_up=True,
                catchup_started_at=utc_now(),
                catchup_target_block=100,
            )
            await session.commit()
        coordinator = _coordinator(session_factory, chain, queue, pair)

        assert await coordinator.tick_pair(pair, 1) is None
        assert (await load_state()).is_catching_up is False

        assert await coordinator.tick_pair(pair, 1) == CatchupJob(pair, 151, 5000, 500)


class TestTickOverlap:
    """Ticks never overlap."""

    @pytest.mark.asyncio
    async def test_tick_skipped_while_previous_runs(self, session_factory, chain, queue, pair):
        coordinator = _coordinator(session_factory, chain, queue, pair)

        async with coordinator._lock:
            result = await coordinator.tick()

        assert result == {}
        assert queue.submitted == []
