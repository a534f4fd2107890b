"""
Job executor.

Runs one job through its handler and applies the error classifier's
disposition to failures. Also feeds range job outcomes back into the
adaptive chunk size of the pair.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.constants import CHUNK_SIZE_UPDATE_ATTEMPTS
from app.config.settings import Settings
from app.models.indexer_state import IndexerStatus
from app.models.pair import PairKey
from app.repositories.indexer_state_repository import IndexerStateRepository
from app.services.indexer.block_range_worker import BlockRangeWorker
from app.services.indexer.catchup_splitter import CatchupSplitter
from app.services.indexer.chain_oracle import ChainOracle
from app.services.indexer.chunk_size import ChunkOutcome, next_chunk_size, outcome_for_duration
from app.services.indexer.error_classifier import (
    ErrorClassification,
    ErrorDisposition,
    classify_error,
    summarize_error,
)
from app.services.indexer.jobs import (
    CatchupJob,
    CatchupResult,
    Job,
    JobPriority,
    JobSubmitter,
    RangeJob,
    RangeResult,
    ReorgJob,
    ReorgResult,
)
from app.services.indexer.reorg_resolver import ReorgResolver
from app.utils.exceptions import AnchorMismatchError

JobResult = RangeResult | CatchupResult | ReorgResult


@dataclass(frozen=True)
class ExecutorConfig:
    """Tunables used by the executor."""

    chunk_size_min: int
    chunk_size_max: int
    chunk_fast_threshold_seconds: float
    range_job_timeout_seconds: float
    reorg_max_depth: int
    rate_limit_default_cooldown_seconds: float
    rate_limit_max_requeues: int
    catchup_progress_log_every: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExecutorConfig":
        return cls(
            chunk_size_min=settings.chunk_size_min,
            chunk_size_max=settings.chunk_size_max,
            chunk_fast_threshold_seconds=settings.chunk_fast_threshold_seconds,
            range_job_timeout_seconds=settings.range_job_timeout_seconds,
            reorg_max_depth=settings.reorg_max_depth,
            rate_limit_default_cooldown_seconds=settings.rate_limit_default_cooldown_seconds,
            rate_limit_max_requeues=settings.rate_limit_max_requeues,
            catchup_progress_log_every=settings.catchup_progress_log_every,
        )


class JobExecutor:
    """Runs jobs and handles their failures."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        oracle_for: Callable[[int], ChainOracle],
        queue: JobSubmitter,
        config: ExecutorConfig,
    ) -> None:
        """
        Initialize executor.

        Args:
            session_factory: Session factory (one session per job)
            oracle_for: Returns the oracle for a chain id
            queue: Job submitter
            config: Executor tunables
        """
        self.session_factory = session_factory
        self.oracle_for = oracle_for
        self.queue = queue
        self.config = config

    async def execute(
        self, job: Job, priority: JobPriority = JobPriority.NORMAL
    ) -> JobResult | None:
        """
        Run a job.

        Args:
            job: Job to run
            priority: Priority the job was submitted with (reused on requeue)

        Returns:
            Result payload, or None when the failure was handled by
            submitting follow-up work (reorg job or delayed requeue)

        Raises:
            Exception: Transient failures (for queue retry) and fatal ones
        """
        started = time.monotonic()
        try:
            result = await self._run(job)
        except Exception as exc:
            return await self._handle_failure(job, priority, exc)

        if isinstance(result, RangeResult) and not (result.skipped or result.reorg_suspected):
            elapsed = time.monotonic() - started
            await self._tune_chunk_size(
                job.key,
                outcome_for_duration(elapsed, self.config.chunk_fast_threshold_seconds),
            )

        logger.info(f"[Executor] {job.kind} job for {job.key} finished: {result.as_dict()}")
        return result

    async def _run(self, job: Job) -> JobResult:
        oracle = self.oracle_for(job.key.chain_id)
        async with self.session_factory() as session:
            if isinstance(job, RangeJob):
                worker = BlockRangeWorker(session, oracle, self.queue)
                return await asyncio.wait_for(
                    worker.process(job),
                    timeout=self.config.range_job_timeout_seconds,
                )
            if isinstance(job, CatchupJob):
                splitter = CatchupSplitter(
                    self.queue, self.config.catchup_progress_log_every
                )
                return await splitter.split(job)
            if isinstance(job, ReorgJob):
                resolver = ReorgResolver(session, oracle, self.config.reorg_max_depth)
                return await resolver.resolve(job)
        raise TypeError(f"Unsupported job type: {type(job).__name__}")

    async def _handle_failure(
        self, job: Job, priority: JobPriority, exc: Exception
    ) -> JobResult | None:
        classification = classify_error(
            exc, self.config.rate_limit_default_cooldown_seconds
        )
        summary = summarize_error(exc)

        if classification.is_contention:
            logger.debug(f"[Executor] {job.kind} job for {job.key} deferred: {summary}")
            raise exc

        await self._record_error(job.key, summary)

        if isinstance(job, RangeJob) and classification.chunk_outcome is not None:
            await self._tune_chunk_size(job.key, classification.chunk_outcome)

        disposition = classification.disposition

        if disposition == ErrorDisposition.DATA_INCONSISTENCY:
            reorg_job = await self._reorg_job_for(job, exc)
            if reorg_job is not None:
                logger.warning(
                    f"[Executor] {job.kind} job for {job.key}: {summary}; "
                    f"escalating to reorg check at block {reorg_job.suspect_block}"
                )
                await self.queue.submit(reorg_job, priority=JobPriority.HIGHEST)
                return None
            raise exc

        if disposition == ErrorDisposition.RATE_LIMITED:
            if await self._requeue_after_cooldown(job, priority, classification):
                return None
            raise exc

        if disposition == ErrorDisposition.FATAL:
            await self._halt(job.key, summary)
            logger.critical(
                f"[Executor] {job.kind} job for {job.key} failed fatally: {summary}. "
                f"Pair halted until resumed by an operator"
            )
            raise exc

        logger.warning(
            f"[Executor] {job.kind} job for {job.key} failed "
            f"({classification.reason}), will retry: {summary}"
        )
        raise exc

    async def _requeue_after_cooldown(
        self,
        job: Job,
        priority: JobPriority,
        classification: ErrorClassification,
    ) -> bool:
        """Re-submit a throttled range job after the provider's cool-down."""
        if not isinstance(job, RangeJob):
            return False
        if job.requeues >= self.config.rate_limit_max_requeues:
            logger.warning(
                f"[Executor] {job.key}: rate limited {job.requeues} times, "
                f"falling back to regular retries"
            )
            return False

        delay_seconds = classification.retry_after or self.config.rate_limit_default_cooldown_seconds
        await self.queue.submit(
            replace(job, requeues=job.requeues + 1),
            priority=priority,
            delay_ms=int(delay_seconds * 1000),
        )
        logger.info(
            f"[Executor] {job.key}: rate limited, range {job.from_block}-{job.to_block} "
            f"requeued in {delay_seconds:.0f}s"
        )
        return True

    async def _reorg_job_for(self, job: Job, exc: Exception) -> ReorgJob | None:
        """Build the reorg job a data inconsistency escalates to."""
        if isinstance(exc, AnchorMismatchError):
            return ReorgJob(job.key, exc.suspect_block, exc.expected_hash)

        async with self.session_factory() as session:
            state = await IndexerStateRepository(session).get_state(job.key)
        if state is None or state.last_block_hash is None:
            return None
        return ReorgJob(job.key, state.last_indexed_block, state.last_block_hash)

    async def _tune_chunk_size(self, key: PairKey, outcome: ChunkOutcome) -> None:
        """Apply one outcome to the pair's chunk size."""
        try:
            async with self.session_factory() as session:
                repo = IndexerStateRepository(session)
                for _ in range(CHUNK_SIZE_UPDATE_ATTEMPTS):
                    state = await repo.get_state(key)
                    if state is None:
                        return
                    new_size = next_chunk_size(
                        state.chunk_size,
                        outcome,
                        minimum=self.config.chunk_size_min,
                        maximum=self.config.chunk_size_max,
                    )
                    if await repo.update_chunk_size(key, state.chunk_size, new_size):
                        await session.commit()
                        if new_size != state.chunk_size:
                            logger.debug(
                                f"[Executor] {key}: chunk size {state.chunk_size} -> "
                                f"{new_size} ({outcome})"
                            )
                        return
                    await session.rollback()
        except Exception as e:
            logger.warning(f"[Executor] {key}: chunk size update failed: {e}")

    async def _record_error(self, key: PairKey, summary: str) -> None:
        try:
            async with self.session_factory() as session:
                await IndexerStateRepository(session).record_error(key, summary)
                await session.commit()
        except Exception as e:
            logger.warning(f"[Executor] {key}: could not record error: {e}")

    async def _halt(self, key: PairKey, summary: str) -> None:
        try:
            async with self.session_factory() as session:
                await IndexerStateRepository(session).set_status(
                    key, IndexerStatus.HALTED, error=summary
                )
                await session.commit()
        except Exception as e:
            logger.error(f"[Executor] {key}: could not halt pair: {e}")
