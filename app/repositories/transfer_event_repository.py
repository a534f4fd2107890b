"""
TransferEvent repository.

Idempotent writes and rollback deletes for indexed Transfer events.
"""

from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.pair import PairKey
from app.models.transfer_event import TransferEvent
from app.repositories.base import PairScopedRepository


if TYPE_CHECKING:
    from app.services.indexer.chain_oracle import TransferLog

# Rows per INSERT statement (keeps bind parameters well under driver limits)
UPSERT_BATCH_SIZE = 500

_CONFLICT_COLUMNS = ["chain_id", "contract_address", "block_number", "log_index"]
_UPDATE_COLUMNS = ["block_hash", "tx_hash", "from_address", "to_address", "amount"]


class TransferEventRepository(PairScopedRepository[TransferEvent]):
    """Repository for indexed Transfer events."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(TransferEvent, session)

    async def upsert_logs(self, key: PairKey, logs: list["TransferLog"]) -> int:
        """
        Persist Transfer logs for a pair.

        Re-running the same range overwrites rows in place instead of
        appending duplicates.

        Args:
            key: Pair key
            logs: Decoded logs

        Returns:
            Number of logs written
        """
        written = 0
        for start in range(0, len(logs), UPSERT_BATCH_SIZE):
            batch = logs[start:start + UPSERT_BATCH_SIZE]
            rows = [
                {
                    "chain_id": key.chain_id,
                    "contract_address": key.contract_address,
                    "block_number": log.block_number,
                    "block_hash": log.block_hash,
                    "log_index": log.log_index,
                    "tx_hash": log.tx_hash,
                    "from_address": log.from_address,
                    "to_address": log.to_address,
                    "amount": log.amount,
                }
                for log in batch
            ]
            written += await self.upsert_many(rows, _CONFLICT_COLUMNS, _UPDATE_COLUMNS)
        return written

    async def count_in_range(self, key: PairKey, from_block: int, to_block: int) -> int:
        """
        Count events of a pair in [from_block, to_block].

        Args:
            key: Pair key
            from_block: First block (inclusive)
            to_block: Last block (inclusive)

        Returns:
            Event count
        """
        stmt = (
            select(func.count())
            .select_from(TransferEvent)
            .where(
                *self._pair_clause(key),
                TransferEvent.block_number >= from_block,
                TransferEvent.block_number <= to_block,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0
