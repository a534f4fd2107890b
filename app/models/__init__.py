"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from app.models.base import Base
from app.models.block_checkpoint import BlockCheckpoint
from app.models.indexer_state import IndexerState, IndexerStatus
from app.models.pair import PairKey
from app.models.reorg_record import ReorgRecord
from app.models.transfer_event import TransferEvent

__all__ = [
    "Base",
    "BlockCheckpoint",
    "IndexerState",
    "IndexerStatus",
    "PairKey",
    "ReorgRecord",
    "TransferEvent",
]
