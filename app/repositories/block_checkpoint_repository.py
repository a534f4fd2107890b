"""
BlockCheckpoint repository.

Stored block identities for reorg ancestor search.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.block_checkpoint import BlockCheckpoint
from app.models.pair import PairKey
from app.repositories.base import PairScopedRepository


class BlockCheckpointRepository(PairScopedRepository[BlockCheckpoint]):
    """Repository for block checkpoints."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(BlockCheckpoint, session)

    async def upsert_hashes(self, key: PairKey, hashes: dict[int, str]) -> int:
        """
        Store block hashes for a pair.

        Args:
            key: Pair key
            hashes: Mapping of block number to hash

        Returns:
            Number of checkpoints written
        """
        rows = [
            {
                "chain_id": key.chain_id,
                "contract_address": key.contract_address,
                "block_number": number,
                "block_hash": block_hash,
            }
            for number, block_hash in sorted(hashes.items())
        ]
        return await self.upsert_many(
            rows,
            ["chain_id", "contract_address", "block_number"],
            ["block_hash"],
        )

    async def get_hashes(
        self, key: PairKey, from_block: int, to_block: int
    ) -> list[tuple[int, str]]:
        """
        Stored hashes in [from_block, to_block], ascending by block.

        Args:
            key: Pair key
            from_block: Lowest block (inclusive)
            to_block: Highest block (inclusive)

        Returns:
            List of (block_number, block_hash)
        """
        stmt = (
            select(BlockCheckpoint.block_number, BlockCheckpoint.block_hash)
            .where(
                *self._pair_clause(key),
                BlockCheckpoint.block_number >= from_block,
                BlockCheckpoint.block_number <= to_block,
            )
            .order_by(BlockCheckpoint.block_number)
        )
        result = await self.session.execute(stmt)
        return [(int(number), block_hash) for number, block_hash in result.all()]
