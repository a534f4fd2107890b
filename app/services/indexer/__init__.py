"""
Transfer indexer.

Coordinates indexing of ERC20 Transfer events for many (chain, contract)
pairs on top of a job queue:

- Coordinator decides per tick between range jobs and catch-up jobs
- Catch-up splitter fans large gaps out into prioritized range jobs
- Block range worker persists events and advances the cursor atomically
- Reorg detector/resolver roll pairs back to their last canonical block
- Executor applies error classification and adaptive chunk sizing
"""

from .block_range_worker import BlockRangeWorker
from .catchup_splitter import CatchupSplitter, catchup_progress, plan_chunks
from .chain_oracle import (
    BlockHeader,
    BlockRef,
    ChainOracle,
    ChainRegistry,
    TransferLog,
    Web3ChainOracle,
)
from .chunk_size import ChunkOutcome, next_chunk_size, optimal_chunk_size
from .coordinator import Coordinator
from .error_classifier import (
    ErrorClassification,
    ErrorDisposition,
    classify_error,
    is_fatal,
)
from .executor import ExecutorConfig, JobExecutor
from .jobs import (
    CatchupJob,
    CatchupResult,
    Job,
    JobPriority,
    JobSubmitter,
    RangeJob,
    RangeResult,
    ReorgJob,
    ReorgResult,
    job_from_payload,
    job_to_payload,
)
from .management import IndexerManagementService, IndexerStatusReport
from .reorg_detector import ReorgDetector, ReorgMonitor
from .reorg_resolver import ReorgResolver

__all__ = [
    # Components
    "BlockRangeWorker",
    "CatchupSplitter",
    "Coordinator",
    "JobExecutor",
    "ExecutorConfig",
    "ReorgDetector",
    "ReorgMonitor",
    "ReorgResolver",
    "IndexerManagementService",
    "IndexerStatusReport",
    # Chain access
    "BlockHeader",
    "BlockRef",
    "ChainOracle",
    "ChainRegistry",
    "TransferLog",
    "Web3ChainOracle",
    # Jobs
    "CatchupJob",
    "CatchupResult",
    "Job",
    "JobPriority",
    "JobSubmitter",
    "RangeJob",
    "RangeResult",
    "ReorgJob",
    "ReorgResult",
    "job_from_payload",
    "job_to_payload",
    # Pure helpers
    "ChunkOutcome",
    "ErrorClassification",
    "ErrorDisposition",
    "catchup_progress",
    "classify_error",
    "is_fatal",
    "next_chunk_size",
    "optimal_chunk_size",
    "plan_chunks",
]
