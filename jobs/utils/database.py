"""
Database access for dramatiq workers.

Worker threads each run their own event loop (see jobs.async_runner) and
an asyncpg connection cannot move between loops, so the worker engine
never pools connections.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config.settings import settings


def create_task_engine(database_url: str | None = None) -> AsyncEngine:
    """Engine for worker threads; defaults to the configured database."""
    return create_async_engine(
        database_url or settings.database_url,
        echo=settings.database_echo,
        poolclass=NullPool,
    )


def create_task_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """One session per job; rows stay readable after commit for result payloads."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


task_engine = create_task_engine()
task_session_maker = create_task_session_maker(task_engine)
