"""
Indexer scheduler.

Drives the periodic scans of the transfer indexer:
- Coordinator tick (range / catch-up dispatch) every COORDINATOR_INTERVAL_SECONDS
- Reorg scan every REORG_CHECK_INTERVAL_SECONDS

Jobs themselves run in dramatiq workers (jobs/tasks/indexer_tasks.py).

Usage:
    python -m jobs.scheduler
"""

import asyncio
import signal
import sys

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from app.config.database import async_engine, async_session_maker
from app.config.settings import settings
from app.services.indexer.chain_oracle import ChainRegistry
from app.services.indexer.coordinator import Coordinator
from app.services.indexer.management import IndexerManagementService
from app.services.indexer.reorg_detector import ReorgMonitor
from app.utils.datetime_utils import utc_now
from app.utils.logging_config import setup_logging
from jobs.health import (
    set_coordinator,
    set_management,
    set_scheduler,
    start_health_server,
    stop_health_server,
)
from jobs.queue import DramatiqJobQueue

# Global scheduler instance for external shutdown
scheduler_instance: AsyncIOScheduler | None = None


def create_scheduler(coordinator: Coordinator, monitor: ReorgMonitor) -> AsyncIOScheduler:
    """
    Build the scheduler with the indexer's periodic jobs.

    Overlapping runs are dropped (max_instances=1) and missed runs are
    merged (coalesce=True).

    Args:
        coordinator: Coordinator to tick
        monitor: Reorg monitor to tick

    Returns:
        Configured, not yet started scheduler
    """
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        coordinator.tick,
        "interval",
        seconds=settings.coordinator_interval_seconds,
        id="indexer_coordinator",
        name="Indexer coordinator tick",
        max_instances=1,
        coalesce=True,
        next_run_time=utc_now(),
    )
    scheduler.add_job(
        monitor.tick,
        "interval",
        seconds=settings.reorg_check_interval_seconds,
        id="reorg_monitor",
        name="Reorg detector scan",
        max_instances=1,
        coalesce=True,
    )
    return scheduler


async def main() -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    global scheduler_instance

    setup_logging("scheduler", settings.log_level)

    chains = ChainRegistry(settings)
    queue = DramatiqJobQueue()
    coordinator = Coordinator.from_settings(settings, async_session_maker, chains.get, queue)
    monitor = ReorgMonitor(async_session_maker, chains.get, queue, settings.reorg_max_depth)

    if not coordinator.pairs:
        logger.warning("No INDEXED_CONTRACTS configured, coordinator has nothing to do")

    scheduler = create_scheduler(coordinator, monitor)
    scheduler_instance = scheduler

    set_scheduler(scheduler)
    set_coordinator(coordinator, max_tick_age=settings.coordinator_interval_seconds * 10)
    set_management(
        IndexerManagementService(
            async_session_maker,
            chains.get,
            settings.chunk_size_min,
            settings.chunk_size_max,
        )
    )
    runner, _ = await start_health_server(port=settings.health_check_port)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    scheduler.start()
    logger.success(
        f"Scheduler started: {len(coordinator.pairs)} pairs, "
        f"coordinator every {settings.coordinator_interval_seconds}s, "
        f"reorg scan every {settings.reorg_check_interval_seconds}s"
    )

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down scheduler...")
        scheduler.shutdown(wait=False)
        await stop_health_server(runner)
        await async_engine.dispose()
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Scheduler stopped by user (KeyboardInterrupt)")
    except Exception as e:
        logger.exception(f"Scheduler crashed: {e}")
        sys.exit(1)
