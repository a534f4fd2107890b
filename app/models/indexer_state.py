"""
IndexerState model.

Persisted progress cursor for one (chain, contract) pair.
"""

from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.types import AddressType, BlockNumberType, HashType


class IndexerStatus(StrEnum):
    """Indexer status enumeration."""

    RUNNING = "running"
    STOPPED = "stopped"  # Paused by an operator
    HALTED = "halted"  # Fatal error, needs an operator to resume


class IndexerState(Base):
    """
    Indexing cursor for a (chain, contract) pair.

    The pair (last_indexed_block, last_block_hash) is the cursor: the
    highest block whose events are durably persisted and its hash, used as
    the anchor for reorg detection.

    Cursor and flag mutations go through compare-and-set on `version`
    (see IndexerStateRepository); never assign them on a loaded instance.

    Attributes:
        id: Primary key
        chain_id: EVM chain id
        contract_address: Lower-cased contract address
        status: running / stopped / halted
        start_block: First block the pair indexes
        last_indexed_block: Cursor block number
        last_block_hash: Hash of the cursor block (None before first range)
        current_block: Last chain head observed by the coordinator
        is_catching_up: True while a catch-up job owns the pair
        catchup_started_at: When the catch-up flag was taken
        catchup_target_block: Last block of the owning catch-up; reaching it
            releases the flag
        chunk_size: Adaptive block count for catch-up chunks
        transfers_indexed: Total events persisted
        error_count: Failures recorded since the cursor last advanced
        last_error: Summary of the last failure
        last_error_at: When the last failure was recorded
        last_indexed_at: When the cursor last advanced
        version: Optimistic-lock counter
    """

    __tablename__ = "indexer_state"
    __table_args__ = (
        UniqueConstraint(
            "chain_id", "contract_address", name="uq_indexer_state_pair"
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Pair identification
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    contract_address: Mapped[str] = mapped_column(AddressType, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=IndexerStatus.RUNNING.value
    )

    # Cursor
    start_block: Mapped[int] = mapped_column(
        BlockNumberType, nullable=False, default=0
    )
    last_indexed_block: Mapped[int] = mapped_column(
        BlockNumberType, nullable=False, default=0
    )
    last_block_hash: Mapped[str | None] = mapped_column(HashType, nullable=True)
    current_block: Mapped[int] = mapped_column(
        BlockNumberType, nullable=False, default=0
    )

    # Catch-up ownership
    is_catching_up: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    catchup_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    catchup_target_block: Mapped[int | None] = mapped_column(
        BlockNumberType, nullable=True
    )

    chunk_size: Mapped[int] = mapped_column(Integer, nullable=False)

    # Statistics
    transfers_indexed: Mapped[int] = mapped_column(
        BlockNumberType, nullable=False, default=0
    )

    # Error tracking
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    last_indexed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    @property
    def is_running(self) -> bool:
        """Check if the pair may be scheduled."""
        return self.status == IndexerStatus.RUNNING

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<IndexerState(chain_id={self.chain_id}, "
            f"contract={self.contract_address}, "
            f"last_indexed_block={self.last_indexed_block}, "
            f"catching_up={self.is_catching_up}, version={self.version})>"
        )
