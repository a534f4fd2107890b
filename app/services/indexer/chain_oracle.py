"""
Chain oracle.

Read-only view of a chain: head, block headers and Transfer logs.
The web3 implementation runs synchronous web3 calls in a thread pool
with a timeout, mapping provider throttling and timeouts to indexer
exceptions.
"""

import asyncio
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

import requests
from loguru import logger
from web3 import Web3
from web3.exceptions import BlockNotFound

from app.config.settings import Settings
from app.utils.exceptions import (
    BlockNotFoundError,
    ChainTimeoutError,
    RateLimitedError,
    UnknownChainError,
)

T = TypeVar("T")

# Minimal ERC20 ABI for Transfer events
ERC20_TRANSFER_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
        ],
        "name": "Transfer",
        "type": "event",
    }
]


@dataclass(frozen=True)
class BlockRef:
    """Block number and hash."""

    number: int
    hash: str


@dataclass(frozen=True)
class BlockHeader:
    """Identity of one block."""

    number: int
    hash: str
    parent_hash: str


@dataclass(frozen=True)
class TransferLog:
    """Decoded Transfer log."""

    block_number: int
    block_hash: str
    tx_hash: str
    log_index: int
    from_address: str
    to_address: str
    amount: int


class ChainOracle(Protocol):
    """External source of truth for one chain."""

    async def head(self) -> BlockRef:
        ...

    async def block_at(self, number: int) -> BlockHeader:
        ...

    async def logs_in_range(
        self, contract_address: str, from_block: int, to_block: int
    ) -> list[TransferLog]:
        ...


def _to_hex(value: Any) -> str:
    """Normalize HexBytes/str hashes to lower-case 0x hex."""
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else f"0x{value.lower()}"
    return Web3.to_hex(value)


class Web3ChainOracle:
    """Chain oracle backed by a web3 HTTP provider."""

    def __init__(
        self,
        chain_id: int,
        w3: Web3,
        executor: ThreadPoolExecutor | None = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize oracle.

        Args:
            chain_id: Chain the provider serves
            w3: Web3 instance
            executor: Thread pool for blocking calls (default loop executor if None)
            timeout: Per-call timeout in seconds
        """
        self.chain_id = chain_id
        self.w3 = w3
        self._executor = executor
        self.timeout = timeout

    async def _call(self, operation: str, fn: Callable[[], T]) -> T:
        """Run a blocking web3 call in the executor with a timeout."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, fn),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            raise ChainTimeoutError(
                f"{operation} on chain {self.chain_id} timed out after {self.timeout}s"
            ) from e
        except requests.exceptions.HTTPError as e:
            response = e.response
            if response is not None and response.status_code == 429:
                retry_after = response.headers.get("Retry-After")
                raise RateLimitedError(
                    f"{operation} on chain {self.chain_id} rate limited",
                    retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                ) from e
            raise

    async def head(self) -> BlockRef:
        """Latest block number and hash."""
        block = await self._call("head", lambda: self.w3.eth.get_block("latest"))
        return BlockRef(number=int(block["number"]), hash=_to_hex(block["hash"]))

    async def block_at(self, number: int) -> BlockHeader:
        """Header of block `number`."""
        try:
            block = await self._call(
                f"block_at({number})", lambda: self.w3.eth.get_block(number)
            )
        except BlockNotFound as e:
            raise BlockNotFoundError(number) from e
        return BlockHeader(
            number=int(block["number"]),
            hash=_to_hex(block["hash"]),
            parent_hash=_to_hex(block["parentHash"]),
        )

    async def logs_in_range(
        self, contract_address: str, from_block: int, to_block: int
    ) -> list[TransferLog]:
        """Transfer logs emitted by a contract in [from_block, to_block]."""
        contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=ERC20_TRANSFER_ABI,
        )
        raw_logs = await self._call(
            f"logs_in_range({from_block}, {to_block})",
            lambda: contract.events.Transfer.get_logs(
                from_block=from_block, to_block=to_block
            ),
        )
        logs = [
            TransferLog(
                block_number=int(log["blockNumber"]),
                block_hash=_to_hex(log["blockHash"]),
                tx_hash=_to_hex(log["transactionHash"]),
                log_index=int(log["logIndex"]),
                from_address=log["args"]["from"].lower(),
                to_address=log["args"]["to"].lower(),
                amount=int(log["args"]["value"]),
            )
            for log in raw_logs
        ]
        logger.debug(
            f"[Chain {self.chain_id}] {len(logs)} Transfer logs for "
            f"{contract_address} in {from_block}-{to_block}"
        )
        return logs


class ChainRegistry:
    """Lazily built oracle per configured chain."""

    def __init__(self, settings: Settings, executor: ThreadPoolExecutor | None = None) -> None:
        self._settings = settings
        self._executor = executor
        self._oracles: dict[int, ChainOracle] = {}

    def get(self, chain_id: int) -> ChainOracle:
        """
        Get the oracle for a chain.

        Raises:
            UnknownChainError: Chain has no configured RPC endpoint
        """
        oracle = self._oracles.get(chain_id)
        if oracle is not None:
            return oracle

        chain = self._settings.chains.get(chain_id)
        if chain is None:
            raise UnknownChainError(chain_id)

        w3 = Web3(
            Web3.HTTPProvider(
                chain.rpc_url,
                request_kwargs={"timeout": self._settings.rpc_timeout_seconds},
            )
        )
        oracle = Web3ChainOracle(
            chain_id,
            w3,
            executor=self._executor,
            timeout=self._settings.rpc_timeout_seconds,
        )
        self._oracles[chain_id] = oracle
        logger.info(f"[Chain {chain_id}] RPC provider initialized")
        return oracle

    def register(self, chain_id: int, oracle: ChainOracle) -> None:
        """Use a prebuilt oracle for a chain."""
        self._oracles[chain_id] = oracle
