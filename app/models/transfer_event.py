"""
TransferEvent model.

ERC-20 Transfer log persisted by the block range worker.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.types import (
    AddressType,
    BigIdType,
    BlockNumberType,
    HashType,
    TokenAmountType,
)


class TransferEvent(Base):
    """
    Indexed Transfer event.

    Keyed by (chain_id, contract_address, block_number, log_index) and
    written by upsert, so re-running a range never duplicates rows.
    Rows are only removed by reorg rollback.
    """

    __tablename__ = "transfer_events"
    __table_args__ = (
        UniqueConstraint(
            "chain_id",
            "contract_address",
            "block_number",
            "log_index",
            name="uq_transfer_events_log",
        ),
    )

    id: Mapped[int] = mapped_column(BigIdType, primary_key=True, autoincrement=True)

    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    contract_address: Mapped[str] = mapped_column(AddressType, nullable=False)

    # Position
    block_number: Mapped[int] = mapped_column(
        BlockNumberType, nullable=False, index=True
    )
    block_hash: Mapped[str] = mapped_column(HashType, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    tx_hash: Mapped[str] = mapped_column(HashType, nullable=False, index=True)

    # Transfer
    from_address: Mapped[str] = mapped_column(AddressType, nullable=False, index=True)
    to_address: Mapped[str] = mapped_column(AddressType, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(TokenAmountType, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<TransferEvent(chain_id={self.chain_id}, "
            f"block={self.block_number}, log_index={self.log_index}, "
            f"amount={self.amount})>"
        )
