"""
Dramatiq job queue.

JobSubmitter implementation that routes indexer jobs to their actors.
"""

import asyncio

import dramatiq
from loguru import logger

from app.services.indexer.jobs import (
    CatchupJob,
    Job,
    JobPriority,
    RangeJob,
    ReorgJob,
    job_to_payload,
)


def actor_name_for(job: Job, priority: JobPriority) -> str:
    """
    Name of the actor that consumes a job.

    Range jobs submitted above normal priority are catch-up chunks and go
    to their own queue so they are not starved by live range jobs.
    """
    if isinstance(job, RangeJob):
        if priority < JobPriority.NORMAL:
            return "index_catchup_chunk"
        return "index_block_range"
    if isinstance(job, CatchupJob):
        return "split_catchup"
    if isinstance(job, ReorgJob):
        return "resolve_reorg"
    raise TypeError(f"Unsupported job type: {type(job).__name__}")


class DramatiqJobQueue:
    """Submits jobs as dramatiq messages."""

    def __init__(self, broker: dramatiq.Broker | None = None) -> None:
        """
        Initialize queue.

        Args:
            broker: Broker to submit to (global broker if None)
        """
        self._broker = broker

    def _actor(self, name: str) -> dramatiq.Actor:
        # Actors register themselves on import
        from jobs.tasks import indexer_tasks  # noqa: F401

        broker = self._broker or dramatiq.get_broker()
        return broker.get_actor(name)

    async def submit(
        self,
        job: Job,
        priority: JobPriority = JobPriority.NORMAL,
        delay_ms: int | None = None,
    ) -> None:
        """
        Enqueue a job.

        Args:
            job: Job to enqueue
            priority: Scheduling priority (selects the actor for range jobs)
            delay_ms: Delay before the job becomes visible
        """
        actor = self._actor(actor_name_for(job, priority))
        payload = job_to_payload(job)

        # Broker clients are synchronous
        message = await asyncio.to_thread(
            actor.send_with_options, args=(payload,), delay=delay_ms
        )
        logger.debug(
            f"[Queue] {job.key}: {job.kind} job queued to {actor.actor_name} "
            f"(message {message.message_id}, delay {delay_ms or 0}ms)"
        )
