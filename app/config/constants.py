"""
Operational constants for the transfer indexer.

Technical constants shared by the coordinator, workers and job queue.
Includes defaults for tunables, queue layout, priorities and time limits.
"""

# =============================================================================
# INDEXER DEFAULTS
# =============================================================================
# Overridable through Settings

DEFAULT_CATCHUP_THRESHOLD = 1000
DEFAULT_CHUNK_SIZE_INITIAL = 500
DEFAULT_CHUNK_SIZE_MIN = 10
DEFAULT_CHUNK_SIZE_MAX = 5000
DEFAULT_REORG_MAX_DEPTH = 100

# Adaptive chunk sizing policy
CHUNK_INCREASE_DIVISOR = 4  # +25% on fast success
CHUNK_DECREASE_DIVISOR = 2  # x0.5 on timeout or error

# Compare-and-set retries for the chunk_size field
CHUNK_SIZE_UPDATE_ATTEMPTS = 3


# =============================================================================
# QUEUES
# =============================================================================

QUEUE_BLOCK_RANGES = "block-ranges"
QUEUE_CATCHUP_CHUNKS = "catchup-chunks"
QUEUE_CATCHUP = "catchup"
QUEUE_REORGS = "reorgs"

# Dramatiq actor priorities (lower value runs first within a worker)
PRIORITY_REORG = 0
PRIORITY_CATCHUP = 5
PRIORITY_BLOCK_RANGE = 10


# =============================================================================
# TIME LIMITS (milliseconds)
# =============================================================================

RANGE_JOB_TIME_LIMIT = 300_000  # 5 minutes
CATCHUP_JOB_TIME_LIMIT = 120_000  # 2 minutes
REORG_JOB_TIME_LIMIT = 300_000  # 5 minutes


# =============================================================================
# ERROR REPORTING
# =============================================================================

# Stored error messages longer than this are truncated
ERROR_MESSAGE_MAX_LENGTH = 500
ERROR_MESSAGE_TRUNCATED_LENGTH = 200

# JSON-RPC error codes returned by providers when throttling
RPC_RATE_LIMIT_CODES = (-32005, -32029)
