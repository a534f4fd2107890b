"""
Dramatiq broker configuration.

Redis-based message broker for the indexer job queues.
"""

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import (
    AgeLimit,
    Callbacks,
    CurrentMessage,
    Pipelines,
    Retries,
    ShutdownNotifications,
    TimeLimit,
)
from loguru import logger

from app.config.settings import settings
from app.services.indexer.error_classifier import is_fatal
from jobs.async_runner import EventLoopCleanup


def should_retry(retries_so_far: int, exception: BaseException) -> bool:
    """
    Retry predicate for the Retries middleware.

    Fatal errors are never retried; everything else is retried until the
    configured budget is spent. Rate-limited range jobs only get here once
    the executor has used up its delayed re-submissions.

    Args:
        retries_so_far: Retries already performed for the message
        exception: Exception raised by the actor

    Returns:
        True if the message should be retried
    """
    if is_fatal(exception):
        return False
    return retries_so_far < settings.job_max_retries


def _middleware() -> list:
    # Listed explicitly so Retries is configured exactly once
    return [
        AgeLimit(),
        TimeLimit(),
        ShutdownNotifications(),
        Callbacks(),
        Pipelines(),
        CurrentMessage(),
        EventLoopCleanup(),
        Retries(
            max_retries=settings.job_max_retries,
            min_backoff=settings.job_min_backoff_ms,
            max_backoff=settings.job_max_backoff_ms,
            retry_when=should_retry,
        ),
    ]


if settings.environment == "testing":
    broker = StubBroker(middleware=_middleware())
else:
    broker = RedisBroker(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password if settings.redis_password else None,
        db=settings.redis_db,
        middleware=_middleware(),
    )

# Set as default broker
dramatiq.set_broker(broker)

logger.info(
    f"Dramatiq broker initialized ({type(broker).__name__}): "
    f"redis://{settings.redis_host}:{settings.redis_port}/{settings.redis_db}"
)
logger.info(
    f"Middleware enabled: ShutdownNotifications, CurrentMessage, EventLoopCleanup, "
    f"Retries (max {settings.job_max_retries}, exponential backoff)"
)
