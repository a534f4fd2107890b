#!/usr/bin/env python3
"""
Operator CLI for the transfer indexer.

Usage:
    python scripts/manage_indexer.py status                       # All pairs
    python scripts/manage_indexer.py status --chain 1 --contract 0x...
    python scripts/manage_indexer.py stop --chain 1 --contract 0x...
    python scripts/manage_indexer.py start --chain 1 --contract 0x...
    python scripts/manage_indexer.py resume --chain 1 --contract 0x...
    python scripts/manage_indexer.py reset --chain 1 --contract 0x... --block 19000000
    python scripts/manage_indexer.py reorgs [--chain 1 --contract 0x...] [--limit 20]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger

from app.config.database import async_engine, async_session_maker
from app.config.settings import normalize_address, settings
from app.models.pair import PairKey
from app.services.indexer.chain_oracle import ChainRegistry
from app.services.indexer.management import IndexerManagementService, IndexerStatusReport
from app.utils.exceptions import IndexerError

# Configure logger
logger.remove()
logger.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {level} | {message}")


def _print_report(report: IndexerStatusReport) -> None:
    logger.info(
        f"{report.key} [{report.status}] block {report.last_indexed_block} / "
        f"head {report.current_block} (lag {report.lag}, "
        f"{report.blocks_per_second} blocks/s), chunk {report.chunk_size}, "
        f"transfers {report.transfers_indexed}, errors {report.error_count}"
        + (" [catching up]" if report.is_catching_up else "")
    )
    if report.last_error:
        logger.info(f"    last error: {report.last_error}")


def _pair(args: argparse.Namespace, required: bool = True) -> PairKey | None:
    if args.chain is None or args.contract is None:
        if required:
            logger.error("--chain and --contract are required for this command")
            sys.exit(1)
        return None
    return PairKey.of(args.chain, normalize_address(args.contract))


async def run(args: argparse.Namespace) -> None:
    chains = ChainRegistry(settings)
    service = IndexerManagementService(
        async_session_maker, chains.get, settings.chunk_size_min, settings.chunk_size_max
    )

    try:
        if args.command == "status":
            key = _pair(args, required=False)
            reports = [await service.get_status(key)] if key else await service.list_statuses()
            if not reports:
                logger.info("No indexed pairs yet")
            for report in reports:
                _print_report(report)

        elif args.command == "stop":
            await service.stop(_pair(args))

        elif args.command == "start":
            await service.start(_pair(args))

        elif args.command == "resume":
            await service.resume(_pair(args))

        elif args.command == "reset":
            if args.block is None:
                logger.error("--block is required for reset")
                sys.exit(1)
            _print_report(await service.reset(_pair(args), args.block))

        elif args.command == "reorgs":
            records = await service.list_reorgs(_pair(args, required=False), args.limit)
            if not records:
                logger.info("No reorgs recorded")
            for record in records:
                logger.info(
                    f"{record.detected_at:%Y-%m-%d %H:%M:%S} "
                    f"{record.chain_id}:{record.contract_address} "
                    f"blocks {record.invalidated_from_block}-{record.invalidated_to_block} "
                    f"(depth {record.depth}, {record.events_deleted} transfers deleted)"
                )
    except IndexerError as e:
        logger.error(str(e))
        sys.exit(1)
    finally:
        await async_engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Manage the transfer indexer")
    parser.add_argument(
        "command",
        choices=["status", "stop", "start", "resume", "reset", "reorgs"],
        help="Operation to perform",
    )
    parser.add_argument("--chain", type=int, help="Chain id")
    parser.add_argument("--contract", help="Contract address")
    parser.add_argument("--block", type=int, help="New cursor block (reset)")
    parser.add_argument(
        "--limit", type=int, default=20, help="Max reorg records to show"
    )

    args = parser.parse_args()
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
