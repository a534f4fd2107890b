"""
BlockCheckpoint model.

Stored block identities used by the reorg ancestor search.
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.types import AddressType, BigIdType, BlockNumberType, HashType


class BlockCheckpoint(Base):
    """
    Hash of a block as seen when it was indexed.

    Written together with every cursor advance (the range end and each
    block that held an event). Rows above a rollback point are deleted.
    """

    __tablename__ = "block_checkpoints"
    __table_args__ = (
        UniqueConstraint(
            "chain_id",
            "contract_address",
            "block_number",
            name="uq_block_checkpoints_block",
        ),
    )

    id: Mapped[int] = mapped_column(BigIdType, primary_key=True, autoincrement=True)

    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    contract_address: Mapped[str] = mapped_column(AddressType, nullable=False)
    block_number: Mapped[int] = mapped_column(BlockNumberType, nullable=False)
    block_hash: Mapped[str] = mapped_column(HashType, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<BlockCheckpoint(chain_id={self.chain_id}, "
            f"block={self.block_number}, hash={self.block_hash})>"
        )
