"""Pytest configuration and shared fixtures for all tests."""

import json
import os
import sys
from pathlib import Path

# Minimal environment for Settings validation
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_indexer.db")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault(
    "CHAINS", json.dumps({"1": {"rpc_url": "http://localhost:8545", "start_block": 1}})
)
os.environ.setdefault(
    "INDEXED_CONTRACTS",
    json.dumps([{"chain_id": 1, "address": "0xdAC17F958D2ee523a2206206994597C13D831ec7"}]),
)

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import asyncio  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from app.models import Base, IndexerState, PairKey  # noqa: E402
from app.repositories.indexer_state_repository import IndexerStateRepository  # noqa: E402
from app.services.indexer.chain_oracle import BlockHeader, BlockRef, TransferLog  # noqa: E402
from app.services.indexer.executor import ExecutorConfig, JobExecutor  # noqa: E402
from app.services.indexer.jobs import Job, JobPriority  # noqa: E402
from app.utils.exceptions import BlockNotFoundError  # noqa: E402

CONTRACT = "0xdac17f958d2ee523a2206206994597c13d831ec7"
SENDER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"


class FakeChain:
    """
    In-memory chain oracle.

    Block hashes are derived from (fork id, number); a reorg bumps the fork
    id from a given block upward, which changes every hash above it and
    keeps parent links consistent.
    """

    def __init__(self, head: int = 0) -> None:
        self.head_number = head
        self._forks: list[tuple[int, int]] = [(0, 0)]
        self._next_fork = 1
        self.transfers: dict[int, list[tuple[int, int]]] = {}
        self.fail_next: BaseException | None = None
        self.logs_delay = 0.0
        self.on_logs = None
        self.calls: list[str] = []

    # Chain manipulation

    def fork_of(self, number: int) -> int:
        fork = 0
        for start, fork_id in self._forks:
            if start <= number:
                fork = fork_id
        return fork

    def hash_of(self, number: int) -> str:
        if number < 0:
            return "0x" + "0" * 64
        return "0x" + f"{self.fork_of(number):04x}" + f"{number:060x}"

    def extend(self, head: int) -> None:
        self.head_number = head

    def reorg(self, from_block: int, keep_transfers: bool = False) -> None:
        """Replace every block >= from_block."""
        self._forks = [(start, fork) for start, fork in self._forks if start < from_block]
        self._forks.append((from_block, self._next_fork))
        self._next_fork += 1
        if not keep_transfers:
            self.transfers = {
                block: entries for block, entries in self.transfers.items() if block < from_block
            }

    def add_transfer(self, block: int, amount: int = 1000, log_index: int | None = None) -> None:
        entries = self.transfers.setdefault(block, [])
        entries.append((len(entries) if log_index is None else log_index, amount))

    def transfer_count(self, from_block: int, to_block: int) -> int:
        return sum(
            len(entries)
            for block, entries in self.transfers.items()
            if from_block <= block <= to_block
        )

    def _maybe_fail(self) -> None:
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc

    # ChainOracle

    async def head(self) -> BlockRef:
        self.calls.append("head")
        return BlockRef(self.head_number, self.hash_of(self.head_number))

    async def block_at(self, number: int) -> BlockHeader:
        self.calls.append(f"block_at:{number}")
        if number > self.head_number or number < 0:
            raise BlockNotFoundError(number)
        return BlockHeader(number, self.hash_of(number), self.hash_of(number - 1))

    async def logs_in_range(
        self, contract_address: str, from_block: int, to_block: int
    ) -> list[TransferLog]:
        self.calls.append(f"logs:{from_block}-{to_block}")
        if self.logs_delay:
            await asyncio.sleep(self.logs_delay)
        self._maybe_fail()
        if self.on_logs is not None:
            await self.on_logs()
        return [
            TransferLog(
                block_number=block,
                block_hash=self.hash_of(block),
                tx_hash="0x" + f"{block:032x}{log_index:032x}",
                log_index=log_index,
                from_address=SENDER,
                to_address=RECIPIENT,
                amount=amount,
            )
            for block in sorted(self.transfers)
            if from_block <= block <= to_block
            for log_index, amount in self.transfers[block]
        ]


class RecordingQueue:
    """JobSubmitter that records submissions instead of sending them."""

    def __init__(self) -> None:
        self.submitted: list[tuple[Job, JobPriority, int | None]] = []
        self.fail_with: BaseException | None = None

    async def submit(
        self,
        job: Job,
        priority: JobPriority = JobPriority.NORMAL,
        delay_ms: int | None = None,
    ) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.submitted.append((job, priority, delay_ms))

    def jobs(self, job_type: type | None = None) -> list[Job]:
        return [
            job for job, _, _ in self.submitted
            if job_type is None or isinstance(job, job_type)
        ]

    def pop_next(self) -> tuple[Job, JobPriority, int | None] | None:
        """Highest priority first, FIFO within a priority."""
        if not self.submitted:
            return None
        index = min(range(len(self.submitted)), key=lambda i: (self.submitted[i][1], i))
        return self.submitted.pop(index)


@pytest.fixture
def pair() -> PairKey:
    """Indexed pair used across tests."""
    return PairKey.of(1, CONTRACT)


@pytest.fixture
def chain() -> FakeChain:
    """Fake chain with 200 blocks."""
    return FakeChain(head=200)


@pytest.fixture
def queue() -> RecordingQueue:
    """Recording job queue."""
    return RecordingQueue()


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'indexer.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
def executor_config() -> ExecutorConfig:
    """Executor tunables for tests."""
    return ExecutorConfig(
        chunk_size_min=10,
        chunk_size_max=5000,
        chunk_fast_threshold_seconds=10.0,
        range_job_timeout_seconds=30.0,
        reorg_max_depth=100,
        rate_limit_default_cooldown_seconds=30.0,
        rate_limit_max_requeues=3,
    )


@pytest.fixture
def executor(session_factory, chain, queue, executor_config) -> JobExecutor:
    """Executor wired to the fake chain and recording queue."""
    return JobExecutor(session_factory, lambda chain_id: chain, queue, executor_config)


@pytest_asyncio.fixture
async def state_factory(session_factory, pair):
    """Create the pair's state row at a given start block."""

    async def create(start_block: int = 1, chunk_size: int = 500) -> IndexerState:
        async with session_factory() as session:
            state = await IndexerStateRepository(session).get_or_create_state(
                pair, start_block, chunk_size
            )
            await session.commit()
            return state

    return create


@pytest_asyncio.fixture
async def load_state(session_factory, pair):
    """Read the pair's current state row."""

    async def load() -> IndexerState | None:
        async with session_factory() as session:
            return await IndexerStateRepository(session).get_state(pair)

    return load
