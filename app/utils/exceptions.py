"""
Exception handling utilities.

Defines the indexer exception hierarchy. Each branch maps to one
disposition of the error classifier: transient, rate limited,
data inconsistency or fatal.
"""


class IndexerError(Exception):
    """Base class for indexer errors."""

    pass


# =============================================================================
# TRANSIENT - retried with exponential backoff
# =============================================================================


class TransientIndexerError(IndexerError):
    """Failure expected to clear on retry."""

    pass


class ChainUnavailableError(TransientIndexerError):
    """RPC endpoint unreachable or returned a server error."""

    pass


class ChainTimeoutError(ChainUnavailableError):
    """RPC call did not complete within the configured timeout."""

    pass


class BlockNotFoundError(TransientIndexerError):
    """Requested block is not (yet) known to the RPC node."""

    def __init__(self, block_number: int) -> None:
        super().__init__(f"Block {block_number} not found")
        self.block_number = block_number


class ContentionError(TransientIndexerError):
    """Job lost a race with another job of the same pair; not a sign of load."""

    pass


class RangeNotReadyError(ContentionError):
    """Range starts above the cursor: the preceding range is not persisted yet."""

    def __init__(self, from_block: int, cursor: int) -> None:
        super().__init__(
            f"Range starting at {from_block} is not contiguous with cursor {cursor}"
        )
        self.from_block = from_block
        self.cursor = cursor


class CursorConflictError(ContentionError):
    """Compare-and-set on the cursor lost against a concurrent writer."""

    pass


class ReorgDuringFetchError(TransientIndexerError):
    """Chain changed while a range was being fetched."""

    pass


# =============================================================================
# RATE LIMITED - retried after a cool-down, outside the retry budget
# =============================================================================


class RateLimitedError(IndexerError):
    """Provider throttled the request."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


# =============================================================================
# DATA INCONSISTENCY - escalated to a reorg job instead of a retry
# =============================================================================


class DataInconsistencyError(IndexerError):
    """Stored data disagrees with the chain."""

    pass


class AnchorMismatchError(DataInconsistencyError):
    """Block before a range does not match the stored cursor hash."""

    def __init__(self, suspect_block: int, expected_hash: str | None) -> None:
        super().__init__(
            f"Block {suspect_block} no longer has hash {expected_hash}"
        )
        self.suspect_block = suspect_block
        self.expected_hash = expected_hash


# =============================================================================
# FATAL - never retried, halts the pair
# =============================================================================


class FatalIndexerError(IndexerError):
    """Failure that needs an operator."""

    pass


class ReorgDepthExceededError(FatalIndexerError):
    """No common ancestor within the configured reorg window."""

    def __init__(self, cursor: int, max_depth: int) -> None:
        super().__init__(
            f"No common ancestor found within {max_depth} blocks below {cursor}"
        )
        self.cursor = cursor
        self.max_depth = max_depth


class ConfigurationError(FatalIndexerError):
    """Invalid or missing configuration."""

    pass


class UnknownChainError(ConfigurationError):
    """Job references a chain with no configured RPC endpoint."""

    def __init__(self, chain_id: int) -> None:
        super().__init__(f"Chain {chain_id} is not configured")
        self.chain_id = chain_id
