"""
Transfer indexer tasks.

Dramatiq actors consuming the four indexer job queues. Every actor
decodes its payload, runs the job through the JobExecutor and returns
the result payload. Failures are re-raised so the Retries middleware can
apply backoff (transient) or give up (fatal).

Run workers with:
    dramatiq jobs.tasks.indexer_tasks
"""

from typing import Any

import dramatiq
from loguru import logger

from app.config.constants import (
    CATCHUP_JOB_TIME_LIMIT,
    PRIORITY_BLOCK_RANGE,
    PRIORITY_CATCHUP,
    PRIORITY_REORG,
    QUEUE_BLOCK_RANGES,
    QUEUE_CATCHUP,
    QUEUE_CATCHUP_CHUNKS,
    QUEUE_REORGS,
    RANGE_JOB_TIME_LIMIT,
    REORG_JOB_TIME_LIMIT,
)
from app.config.settings import settings
from app.services.indexer.chain_oracle import ChainRegistry
from app.services.indexer.executor import ExecutorConfig, JobExecutor
from app.services.indexer.jobs import JobPriority, job_from_payload
from jobs.async_runner import run_async
from jobs.broker import broker  # noqa: F401  (registers the broker before actors)
from jobs.queue import DramatiqJobQueue
from jobs.utils.database import task_session_maker

# One RPC provider per chain for the whole worker process
chain_registry = ChainRegistry(settings)


def _build_executor() -> JobExecutor:
    return JobExecutor(
        task_session_maker,
        chain_registry.get,
        DramatiqJobQueue(),
        ExecutorConfig.from_settings(settings),
    )


def _execute(payload: dict[str, Any], priority: JobPriority) -> dict[str, Any] | None:
    """Decode a payload and run it to completion in this thread's loop."""
    job = job_from_payload(payload)

    with logger.contextualize(pair=str(job.key), job_kind=job.kind):
        try:
            result = run_async(_build_executor().execute(job, priority))
        except Exception as e:
            logger.error(f"[Worker] {job.kind} job for {job.key} failed: {e}")
            raise

    return result.as_dict() if result is not None else None


@dramatiq.actor(
    queue_name=QUEUE_BLOCK_RANGES,
    priority=PRIORITY_BLOCK_RANGE,
    time_limit=RANGE_JOB_TIME_LIMIT,  # 5 min timeout
)
def index_block_range(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Index a live range up to the chain head."""
    return _execute(payload, JobPriority.NORMAL)


@dramatiq.actor(
    queue_name=QUEUE_CATCHUP_CHUNKS,
    priority=PRIORITY_CATCHUP,
    time_limit=RANGE_JOB_TIME_LIMIT,  # 5 min timeout
)
def index_catchup_chunk(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Index one chunk of a catch-up range."""
    return _execute(payload, JobPriority.HIGH)


@dramatiq.actor(
    queue_name=QUEUE_CATCHUP,
    priority=PRIORITY_CATCHUP,
    time_limit=CATCHUP_JOB_TIME_LIMIT,  # 2 min timeout
)
def split_catchup(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Split a catch-up range into prioritized chunks."""
    return _execute(payload, JobPriority.HIGH)


@dramatiq.actor(
    queue_name=QUEUE_REORGS,
    priority=PRIORITY_REORG,
    time_limit=REORG_JOB_TIME_LIMIT,  # 5 min timeout
)
def resolve_reorg(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Roll a pair back to its last canonical block."""
    return _execute(payload, JobPriority.HIGHEST)
