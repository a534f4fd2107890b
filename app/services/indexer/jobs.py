"""
Indexer jobs.

Closed set of job variants moved through the queue, their result
payloads, and the submission interface used by producers.

Block numbers travel as decimal strings in queue payloads so that no JSON
consumer on the way can round them.
"""

from dataclasses import asdict, dataclass, field
from enum import IntEnum
from typing import Any, Protocol

from app.config.constants import PRIORITY_BLOCK_RANGE, PRIORITY_CATCHUP, PRIORITY_REORG
from app.models.pair import PairKey


class JobPriority(IntEnum):
    """Scheduling priority; lower runs first."""

    HIGHEST = PRIORITY_REORG
    HIGH = PRIORITY_CATCHUP
    NORMAL = PRIORITY_BLOCK_RANGE


@dataclass(frozen=True)
class RangeJob:
    """Index blocks [from_block, to_block] inclusive."""

    key: PairKey
    from_block: int
    to_block: int
    # Rate-limit cool-downs already taken; not part of the job's identity
    requeues: int = field(default=0, compare=False)

    kind = "range"

    def __post_init__(self) -> None:
        if self.from_block < 0 or self.to_block < self.from_block:
            raise ValueError(
                f"Invalid range [{self.from_block}, {self.to_block}]"
            )


@dataclass(frozen=True)
class CatchupJob:
    """Split [from_block, to_block] into prioritized range jobs."""

    key: PairKey
    from_block: int
    to_block: int
    chunk_size: int

    kind = "catchup"

    def __post_init__(self) -> None:
        if self.from_block < 0 or self.to_block < self.from_block:
            raise ValueError(
                f"Invalid range [{self.from_block}, {self.to_block}]"
            )
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {self.chunk_size}")


@dataclass(frozen=True)
class ReorgJob:
    """Roll back to the last block that still matches the chain."""

    key: PairKey
    suspect_block: int
    suspect_hash: str | None

    kind = "reorg"

    def __post_init__(self) -> None:
        if self.suspect_block < 0:
            raise ValueError(f"Invalid suspect block {self.suspect_block}")


Job = RangeJob | CatchupJob | ReorgJob


def job_to_payload(job: Job) -> dict[str, Any]:
    """
    Serialize a job for the queue.

    Args:
        job: Job to serialize

    Returns:
        JSON-safe dict with a `kind` tag and string block numbers
    """
    payload: dict[str, Any] = {
        "kind": job.kind,
        "chain_id": job.key.chain_id,
        "contract_address": job.key.contract_address,
    }
    if isinstance(job, RangeJob):
        payload.update(
            from_block=str(job.from_block),
            to_block=str(job.to_block),
            requeues=job.requeues,
        )
    elif isinstance(job, CatchupJob):
        payload.update(
            from_block=str(job.from_block),
            to_block=str(job.to_block),
            chunk_size=str(job.chunk_size),
        )
    elif isinstance(job, ReorgJob):
        payload.update(
            suspect_block=str(job.suspect_block),
            suspect_hash=job.suspect_hash,
        )
    else:
        raise TypeError(f"Unsupported job type: {type(job).__name__}")
    return payload


def job_from_payload(payload: dict[str, Any]) -> Job:
    """
    Deserialize a queue payload.

    Raises:
        ValueError: Unknown kind or malformed fields
    """
    try:
        kind = payload["kind"]
        key = PairKey.of(int(payload["chain_id"]), str(payload["contract_address"]))
        if kind == RangeJob.kind:
            return RangeJob(
                key,
                int(payload["from_block"]),
                int(payload["to_block"]),
                requeues=int(payload.get("requeues", 0)),
            )
        if kind == CatchupJob.kind:
            return CatchupJob(
                key,
                int(payload["from_block"]),
                int(payload["to_block"]),
                int(payload["chunk_size"]),
            )
        if kind == ReorgJob.kind:
            return ReorgJob(
                key,
                int(payload["suspect_block"]),
                payload.get("suspect_hash"),
            )
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed job payload {payload!r}: {e}") from e
    raise ValueError(f"Unknown job kind: {kind!r}")


class JobSubmitter(Protocol):
    """Anything that can put a job on the queue."""

    async def submit(
        self,
        job: Job,
        priority: JobPriority = JobPriority.NORMAL,
        delay_ms: int | None = None,
    ) -> None:
        """Enqueue a job; the scheduling key is `job.key`."""
        ...


# =============================================================================
# RESULT PAYLOADS
# =============================================================================


@dataclass
class RangeResult:
    """Outcome of a range job."""

    key: PairKey
    from_block: int
    to_block: int
    events_indexed: int = 0
    skipped: bool = False
    reorg_suspected: bool = False

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["key"] = str(self.key)
        return data


@dataclass
class CatchupResult:
    """Outcome of a catch-up split."""

    key: PairKey
    from_block: int
    to_block: int
    chunks_created: int
    progress: float

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["key"] = str(self.key)
        return data


@dataclass
class ReorgResult:
    """Outcome of a reorg resolution."""

    key: PairKey
    rollback_to: int
    invalidated_from_block: int | None = None
    invalidated_to_block: int | None = None
    depth: int = 0
    events_deleted: int = 0
    noop: bool = False

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["key"] = str(self.key)
        return data
