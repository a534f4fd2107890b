"""
ReorgRecord model.

Append-only audit trail of reorg rollbacks.
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.types import AddressType, BlockNumberType, HashType


class ReorgRecord(Base):
    """
    One resolved chain reorganization.

    Attributes:
        id: Primary key
        chain_id: EVM chain id
        contract_address: Lower-cased contract address
        detected_at: When the rollback was applied
        invalidated_from_block: First rolled-back block (ancestor + 1)
        invalidated_to_block: Cursor before the rollback
        new_canonical_hash: Chain hash of the ancestor block
        old_block_hash: Stored hash of the previous cursor block
        depth: Number of invalidated blocks
        events_deleted: Transfer events removed by the rollback
    """

    __tablename__ = "reorg_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    chain_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    contract_address: Mapped[str] = mapped_column(AddressType, nullable=False)

    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )

    invalidated_from_block: Mapped[int] = mapped_column(
        BlockNumberType, nullable=False
    )
    invalidated_to_block: Mapped[int] = mapped_column(
        BlockNumberType, nullable=False
    )
    new_canonical_hash: Mapped[str | None] = mapped_column(HashType, nullable=True)
    old_block_hash: Mapped[str | None] = mapped_column(HashType, nullable=True)

    depth: Mapped[int] = mapped_column(BlockNumberType, nullable=False)
    events_deleted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<ReorgRecord(chain_id={self.chain_id}, "
            f"invalidated={self.invalidated_from_block}-"
            f"{self.invalidated_to_block}, depth={self.depth})>"
        )
