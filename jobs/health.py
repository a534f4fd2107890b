"""
Health check server for the indexer scheduler.

Endpoints:
- /health: scheduler jobs and the coordinator's last tick
- /readiness: ready once the scheduler runs and a tick has completed
- /liveness: process is up
- /status: per-pair indexer status reports
"""

import asyncio

from aiohttp import web
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from app.services.indexer.coordinator import Coordinator
from app.services.indexer.management import IndexerManagementService
from app.utils.datetime_utils import seconds_since

# Components registered by the scheduler process
_scheduler: AsyncIOScheduler | None = None
_coordinator: Coordinator | None = None
_max_tick_age: float | None = None
_management: IndexerManagementService | None = None


def set_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Register the scheduler whose jobs are reported."""
    global _scheduler
    _scheduler = scheduler
    logger.info("[Health] Scheduler registered")


def set_coordinator(coordinator: Coordinator, max_tick_age: float) -> None:
    """
    Register the coordinator whose ticks are reported.

    Args:
        coordinator: Coordinator driven by the scheduler
        max_tick_age: Seconds without a completed tick before the
            service reports itself as degraded
    """
    global _coordinator, _max_tick_age
    _coordinator = coordinator
    _max_tick_age = max_tick_age


def set_management(service: IndexerManagementService) -> None:
    """Register the service backing /status."""
    global _management
    _management = service


def coordinator_info() -> dict | None:
    """Last tick of the registered coordinator."""
    if _coordinator is None:
        return None

    age = seconds_since(_coordinator.last_tick_at)
    return {
        "pairs": len(_coordinator.pairs),
        "last_tick_at": (
            _coordinator.last_tick_at.isoformat() if _coordinator.last_tick_at else None
        ),
        "last_tick_age_seconds": round(age, 1) if age is not None else None,
        "last_tick_dispatched": _coordinator.last_tick_dispatched,
        "stale": (
            age is not None and _max_tick_age is not None and age > _max_tick_age
        ),
    }


def _scheduled_jobs() -> list[dict]:
    return [
        {
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
        }
        for job in _scheduler.get_jobs()
    ]


async def health_handler(request: web.Request) -> web.Response:
    """
    Health check endpoint.

    Healthy while the scheduler runs and the coordinator keeps ticking;
    degraded when the last completed tick is older than the allowed age.
    """
    if _scheduler is None:
        return web.json_response(
            {"status": "unhealthy", "error": "Scheduler not initialized"},
            status=503,
        )

    try:
        is_running = _scheduler.running
        jobs = _scheduled_jobs()
        coordinator = coordinator_info()
    except Exception as e:
        logger.error(f"[Health] Health check failed: {e}")
        return web.json_response({"status": "unhealthy", "error": str(e)}, status=503)

    status = "healthy" if is_running else "stopped"
    if is_running and coordinator and coordinator["stale"]:
        status = "degraded"

    return web.json_response(
        {
            "status": status,
            "scheduler_running": is_running,
            "jobs_count": len(jobs),
            "jobs": jobs,
            "coordinator": coordinator,
        }
    )


async def readiness_handler(request: web.Request) -> web.Response:
    """Ready once the scheduler runs and the coordinator has ticked at least once."""
    ticked = _coordinator is None or _coordinator.last_tick_at is not None
    ready = _scheduler is not None and _scheduler.running and ticked
    return web.json_response(
        {"status": "ready" if ready else "not_ready", "ready": ready},
        status=200 if ready else 503,
    )


async def liveness_handler(request: web.Request) -> web.Response:
    """Process is alive."""
    return web.json_response({"status": "alive", "alive": True})


async def status_handler(request: web.Request) -> web.Response:
    """Per-pair status reports."""
    if _management is None:
        return web.json_response({"error": "Management service not initialized"}, status=503)

    try:
        reports = await _management.list_statuses()
    except Exception as e:
        logger.error(f"[Health] Status query failed: {e}")
        return web.json_response({"error": str(e)}, status=503)

    return web.json_response({"pairs": [report.as_dict() for report in reports]})


def create_app() -> web.Application:
    """aiohttp application with all health routes."""
    app = web.Application()
    app.router.add_get("/health", health_handler)
    app.router.add_get("/readiness", readiness_handler)
    app.router.add_get("/liveness", liveness_handler)
    app.router.add_get("/status", status_handler)
    return app


async def start_health_server(
    host: str = "0.0.0.0",
    port: int = 8081,
) -> tuple[web.AppRunner, web.TCPSite]:
    """
    Start health check server.

    Args:
        host: Host to bind to
        port: Port to bind to

    Returns:
        Tuple of (AppRunner, TCPSite) for cleanup
    """
    runner = web.AppRunner(create_app())
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"[Health] Server listening on http://{host}:{port} (/health, /readiness, /liveness, /status)")
    return runner, site


async def stop_health_server(
    runner: web.AppRunner,
    timeout: int = 5,
) -> None:
    """
    Stop health check server gracefully.

    Args:
        runner: AppRunner to cleanup
        timeout: Maximum time to wait for cleanup in seconds
    """
    logger.info("[Health] Stopping server...")
    try:
        await asyncio.wait_for(runner.cleanup(), timeout=timeout)
        logger.info("[Health] Server stopped")
    except TimeoutError:
        logger.warning(f"[Health] Server cleanup timed out after {timeout}s")
    except Exception as e:
        logger.error(f"[Health] Error stopping server: {e}")
