"""
ReorgRecord repository.

Append-only audit trail of reorg rollbacks.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.pair import PairKey
from app.models.reorg_record import ReorgRecord
from app.repositories.base import BaseRepository


class ReorgRecordRepository(BaseRepository[ReorgRecord]):
    """Repository for reorg records."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(ReorgRecord, session)

    async def append(
        self,
        key: PairKey,
        invalidated_from_block: int,
        invalidated_to_block: int,
        new_canonical_hash: str | None,
        old_block_hash: str | None,
        events_deleted: int,
    ) -> ReorgRecord:
        """
        Record one rollback.

        Args:
            key: Pair key
            invalidated_from_block: First invalidated block
            invalidated_to_block: Last invalidated block
            new_canonical_hash: Chain hash of the ancestor block
            old_block_hash: Stored hash of the previous cursor
            events_deleted: Events removed by the rollback

        Returns:
            Created record
        """
        return await self.create(
            chain_id=key.chain_id,
            contract_address=key.contract_address,
            invalidated_from_block=invalidated_from_block,
            invalidated_to_block=invalidated_to_block,
            new_canonical_hash=new_canonical_hash,
            old_block_hash=old_block_hash,
            depth=invalidated_to_block - invalidated_from_block + 1,
            events_deleted=events_deleted,
        )

    async def list_recent(
        self, key: PairKey | None = None, limit: int = 20
    ) -> list[ReorgRecord]:
        """
        Most recent reorg records, newest first.

        Args:
            key: Optional pair filter
            limit: Max results

        Returns:
            List of records
        """
        stmt = select(ReorgRecord).order_by(
            ReorgRecord.detected_at.desc(), ReorgRecord.id.desc()
        )
        if key is not None:
            stmt = stmt.where(
                ReorgRecord.chain_id == key.chain_id,
                ReorgRecord.contract_address == key.contract_address,
            )
        result = await self.session.execute(stmt.limit(limit))
        return list(result.scalars().all())
