"""
Async runner for dramatiq actors.

Every dramatiq worker thread owns exactly one event loop, created on the
first job the thread runs and closed when the thread shuts down. The
indexer's sessions and web3 executors stay bound to that loop.
"""

import asyncio
import threading
from collections.abc import Coroutine
from typing import Any, TypeVar

from dramatiq.middleware import Middleware
from loguru import logger

T = TypeVar("T")

_thread_local = threading.local()


def get_event_loop() -> asyncio.AbstractEventLoop:
    """Event loop owned by the calling thread, created on first use."""
    loop = getattr(_thread_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        _thread_local.loop = loop
        logger.debug(f"[AsyncRunner] Event loop created for {threading.current_thread().name}")
    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run a coroutine to completion on the calling thread's loop.

    Args:
        coro: Coroutine to run

    Returns:
        Result of the coroutine
    """
    return get_event_loop().run_until_complete(coro)


def close_event_loop() -> bool:
    """
    Close the calling thread's loop, if it has one.

    Pending async generators and the default executor are shut down
    first so web3 calls still in flight are not abandoned.

    Returns:
        True if a loop was closed
    """
    loop = getattr(_thread_local, "loop", None)
    _thread_local.loop = None
    if loop is None or loop.is_closed():
        return False

    try:
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.run_until_complete(loop.shutdown_default_executor())
    finally:
        loop.close()
    logger.debug(f"[AsyncRunner] Event loop closed for {threading.current_thread().name}")
    return True


class EventLoopCleanup(Middleware):
    """Closes each worker thread's event loop when the thread stops."""

    def after_worker_thread_shutdown(self, broker, thread):
        close_event_loop()
