"""
Integration tests for the job executor.

Each test makes the fake chain fail in a specific way and checks how
the failure is handled: retry, delayed requeue, reorg escalation or halt.
"""

from dataclasses import replace

import pytest

from app.models.indexer_state import IndexerStatus
from app.services.indexer.executor import JobExecutor
from app.services.indexer.jobs import CatchupJob, JobPriority, RangeJob, ReorgJob
from app.repositories.indexer_state_repository import IndexerStateRepository
from app.utils.exceptions import (
    ConfigurationError,
    CursorConflictError,
    DataInconsistencyError,
    RangeNotReadyError,
    RateLimitedError,
)


class TestSuccess:
    """Successful jobs feed the chunk sizer."""

    @pytest.mark.asyncio
    async def test_fast_range_grows_chunk_size(self, executor, pair, state_factory, load_state):
        await state_factory(start_block=1, chunk_size=500)

        result = await executor.execute(RangeJob(pair, 1, 100))

        state = await load_state()
        assert result.to_block == 100
        assert state.last_indexed_block == 100
        assert state.chunk_size == 625

    @pytest.mark.asyncio
    async def test_skipped_range_leaves_chunk_size(self, executor, pair, state_factory, load_state):
        await state_factory(start_block=1, chunk_size=500)
        await executor.execute(RangeJob(pair, 1, 100))

        result = await executor.execute(RangeJob(pair, 1, 100))

        assert result.skipped is True
        assert (await load_state()).chunk_size == 625

    @pytest.mark.asyncio
    async def test_catchup_job_submits_chunks(self, executor, queue, pair, state_factory):
        await state_factory(start_block=1)

        result = await executor.execute(CatchupJob(pair, 1, 1000, 300), JobPriority.HIGH)

        assert result.chunks_created == 4
        assert queue.jobs(RangeJob)[-1] == RangeJob(pair, 901, 1000)


class TestRateLimited:
    """Throttled range jobs are requeued after the provider's cool-down."""

    @pytest.mark.asyncio
    async def test_requeued_with_delay(self, executor, chain, queue, pair, state_factory, load_state):
        await state_factory(start_block=1, chunk_size=500)
        chain.fail_next = RateLimitedError("too many requests", retry_after=7)

        result = await executor.execute(RangeJob(pair, 1, 100), JobPriority.HIGH)

        assert result is None
        [(job, priority, delay_ms)] = queue.submitted
        assert job == RangeJob(pair, 1, 100)
        assert job.requeues == 1
        assert priority == JobPriority.HIGH
        assert delay_ms == 7000

        state = await load_state()
        assert state.error_count == 1
        assert state.chunk_size == 250
        assert state.status == IndexerStatus.RUNNING

    @pytest.mark.asyncio
    async def test_default_cooldown_without_hint(self, executor, chain, queue, pair, state_factory):
        await state_factory(start_block=1)
        chain.fail_next = RateLimitedError("too many requests")

        await executor.execute(RangeJob(pair, 1, 100))

        assert queue.submitted[0][2] == 30000

    @pytest.mark.asyncio
    async def test_requeue_budget_exhausted_raises(self, executor, chain, queue, pair, state_factory):
        await state_factory(start_block=1)
        chain.fail_next = RateLimitedError("too many requests", retry_after=7)

        with pytest.raises(RateLimitedError):
            await executor.execute(RangeJob(pair, 1, 100, requeues=3))

        assert queue.submitted == []


class TestTransient:
    """Transient failures are re-raised for queue retry."""

    @pytest.mark.asyncio
    async def test_connection_error_raised_and_chunk_halved(
        self, executor, chain, queue, pair, state_factory, load_state
    ):
        await state_factory(start_block=1, chunk_size=500)
        chain.fail_next = ConnectionError("connection reset")

        with pytest.raises(ConnectionError):
            await executor.execute(RangeJob(pair, 1, 100))

        state = await load_state()
        assert state.chunk_size == 250
        assert state.error_count == 1
        assert state.last_indexed_block == 0
        assert state.status == IndexerStatus.RUNNING
        assert queue.submitted == []

    @pytest.mark.asyncio
    async def test_soft_timeout(
        self, session_factory, chain, queue, executor_config, pair, state_factory, load_state
    ):
        """A range job slower than the soft limit fails as a timeout."""
        await state_factory(start_block=1, chunk_size=500)
        executor = JobExecutor(
            session_factory,
            lambda chain_id: chain,
            queue,
            replace(executor_config, range_job_timeout_seconds=0.05),
        )
        chain.logs_delay = 1.0

        with pytest.raises(TimeoutError):
            await executor.execute(RangeJob(pair, 1, 100))

        state = await load_state()
        assert state.chunk_size == 250
        assert state.last_indexed_block == 0


class TestDataInconsistency:
    """Inconsistencies escalate to a reorg job instead of a retry."""

    @pytest.mark.asyncio
    async def test_escalates_from_cursor(self, executor, chain, queue, pair, state_factory, load_state):
        await state_factory(start_block=1, chunk_size=500)
        await executor.execute(RangeJob(pair, 1, 50))
        chain.fail_next = DataInconsistencyError("stored hash disagrees")

        result = await executor.execute(RangeJob(pair, 51, 100))

        assert result is None
        assert queue.submitted == [
            (ReorgJob(pair, 50, chain.hash_of(50)), JobPriority.HIGHEST, None)
        ]
        # Not a load signal: chunk size only reflects the earlier success
        assert (await load_state()).chunk_size == 625


class TestFatal:
    """Fatal failures halt the pair."""

    @pytest.mark.asyncio
    async def test_halts_pair_and_raises(self, executor, chain, queue, pair, state_factory, load_state):
        await state_factory(start_block=1, chunk_size=500)
        chain.fail_next = ConfigurationError("contract has no Transfer event")

        with pytest.raises(ConfigurationError):
            await executor.execute(RangeJob(pair, 1, 100))

        state = await load_state()
        assert state.status == IndexerStatus.HALTED
        assert state.last_error.startswith("ConfigurationError")
        assert state.chunk_size == 500
        assert queue.submitted == []


class TestContention:
    """Catch-up chunks racing each other are retried without touching the chunk size."""

    @pytest.mark.asyncio
    async def test_early_chunk_deferred(self, executor, queue, pair, state_factory, load_state):
        """A chunk that runs before its predecessor waits for a retry."""
        await state_factory(start_block=1, chunk_size=4000)

        for _ in range(3):
            with pytest.raises(RangeNotReadyError):
                await executor.execute(RangeJob(pair, 101, 200), JobPriority.HIGH)

        state = await load_state()
        assert state.chunk_size == 4000
        assert state.error_count == 0
        assert state.last_error is None
        assert state.last_indexed_block == 0
        assert queue.submitted == []

    @pytest.mark.asyncio
    async def test_chunks_complete_out_of_order(
        self, executor, session_factory, pair, state_factory, load_state
    ):
        """Later chunks picked up first still converge on the catch-up target."""
        state = await state_factory(start_block=1, chunk_size=500)
        async with session_factory() as session:
            await IndexerStateRepository(session).try_begin_catchup(pair, state.version, 300)
            await session.commit()

        attempts = [(201, 300), (101, 200), (1, 100), (201, 300), (101, 200), (201, 300)]
        deferred = 0
        for from_block, to_block in attempts:
            try:
                await executor.execute(RangeJob(pair, from_block, to_block), JobPriority.HIGH)
            except RangeNotReadyError:
                deferred += 1

        state = await load_state()
        assert deferred == 3
        assert state.last_indexed_block == 300
        assert state.is_catching_up is False
        assert state.catchup_target_block is None
        # Three fast successes, no shrink from the deferred attempts
        assert state.chunk_size == 976
        assert state.error_count == 0

    @pytest.mark.asyncio
    async def test_lost_cursor_race_keeps_chunk_size(
        self, executor, session_factory, chain, pair, state_factory, load_state
    ):
        await state_factory(start_block=1, chunk_size=500)

        async def concurrent_writer():
            async with session_factory() as session:
                repo = IndexerStateRepository(session)
                current = await repo.get_state(pair)
                await repo.advance_cursor(pair, current.version, 5, chain.hash_of(5), 0)
                await session.commit()

        chain.on_logs = concurrent_writer

        with pytest.raises(CursorConflictError):
            await executor.execute(RangeJob(pair, 1, 50), JobPriority.HIGH)

        state = await load_state()
        assert state.last_indexed_block == 5
        assert state.chunk_size == 500
        assert state.error_count == 0


class TestErrorCount:
    """The error counter tracks failures since the cursor last moved."""

    @pytest.mark.asyncio
    async def test_success_clears_error_count(self, executor, chain, pair, state_factory, load_state):
        await state_factory(start_block=1, chunk_size=500)
        chain.fail_next = ConnectionError("connection reset")
        with pytest.raises(ConnectionError):
            await executor.execute(RangeJob(pair, 1, 100))
        assert (await load_state()).error_count == 1

        await executor.execute(RangeJob(pair, 1, 100))

        state = await load_state()
        assert state.error_count == 0
        assert state.last_indexed_block == 100
