#!/usr/bin/env python3
"""
Create the indexer tables directly from the models.

Meant for development and test databases; production schemas are
managed with Alembic.

Usage:
    python scripts/init_database.py
    python scripts/init_database.py --drop   # recreate from scratch
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger
from sqlalchemy.ext.asyncio import create_async_engine

from app.config.settings import settings
from app.models import Base

# Configure logger for script
logger.remove()
logger.add(sys.stderr, level="INFO")


async def init_database(drop: bool = False) -> None:
    """
    Create every indexer table that does not exist yet.

    Args:
        drop: Drop all indexer tables first (refused in production)
    """
    if drop and settings.environment == "production":
        raise SystemExit("Refusing to drop tables in production")

    engine = create_async_engine(settings.database_url, echo=False)
    try:
        async with engine.begin() as conn:
            if drop:
                logger.warning("Dropping indexer tables...")
                await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all, checkfirst=True)
    finally:
        await engine.dispose()

    tables = ", ".join(sorted(Base.metadata.tables))
    logger.success(f"Indexer tables ready: {tables}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Create indexer tables")
    parser.add_argument("--drop", action="store_true", help="Drop tables before creating them")
    args = parser.parse_args()
    asyncio.run(init_database(drop=args.drop))


if __name__ == "__main__":
    main()
