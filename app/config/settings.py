"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

import re

from loguru import logger
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.config.constants import (
    DEFAULT_CATCHUP_THRESHOLD,
    DEFAULT_CHUNK_SIZE_INITIAL,
    DEFAULT_CHUNK_SIZE_MAX,
    DEFAULT_CHUNK_SIZE_MIN,
    DEFAULT_REORG_MAX_DEPTH,
)

_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(value: str) -> str:
    """Validate an EVM address and return it lower-cased."""
    if not _ADDRESS_PATTERN.match(value):
        raise ValueError(
            f"Invalid contract address: {value}. "
            "Must start with 0x and be followed by 40 hex characters."
        )
    return value.lower()


class ChainConfig(BaseModel):
    """RPC endpoint and defaults for one chain."""

    rpc_url: str
    start_block: int = Field(default=0, ge=0)


class ContractConfig(BaseModel):
    """One indexed (chain, contract) pair."""

    chain_id: int = Field(..., gt=0)
    address: str
    start_block: int | None = Field(default=None, ge=0)

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate contract address format."""
        return normalize_address(v)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str
    database_echo: bool = False

    # Redis (Dramatiq broker)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0

    # Chains and contracts, JSON encoded in the environment:
    # CHAINS='{"1": {"rpc_url": "https://...", "start_block": 0}}'
    # INDEXED_CONTRACTS='[{"chain_id": 1, "address": "0x..."}]'
    chains: dict[int, ChainConfig] = Field(default_factory=dict)
    indexed_contracts: list[ContractConfig] = Field(default_factory=list)
    rpc_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Timeout for a single RPC call"
    )

    # Scheduling
    coordinator_interval_seconds: float = Field(
        default=5.0, gt=0, description="Coordinator tick interval"
    )
    reorg_check_interval_seconds: float = Field(
        default=30.0, gt=0, description="Reorg detector tick interval"
    )
    catchup_threshold: int = Field(
        default=DEFAULT_CATCHUP_THRESHOLD,
        ge=1,
        description="Gap (in blocks) above which a pair enters catch-up mode",
    )
    catchup_stale_after_seconds: int = Field(
        default=1800,
        ge=60,
        description="Release a catch-up flag held longer than this",
    )
    catchup_progress_log_every: int = Field(
        default=10, ge=1, description="Log catch-up progress every N chunks"
    )

    # Adaptive chunk sizing
    chunk_size_initial: int = Field(default=DEFAULT_CHUNK_SIZE_INITIAL, ge=1)
    chunk_size_min: int = Field(default=DEFAULT_CHUNK_SIZE_MIN, ge=1)
    chunk_size_max: int = Field(default=DEFAULT_CHUNK_SIZE_MAX, ge=1)
    chunk_fast_threshold_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Range jobs finishing faster than this grow the chunk size",
    )

    range_job_timeout_seconds: float = Field(
        default=240.0,
        gt=0,
        description="Soft timeout of a range job, below the actor's hard time limit",
    )

    # Reorg handling
    reorg_max_depth: int = Field(
        default=DEFAULT_REORG_MAX_DEPTH,
        ge=1,
        description="Maximum number of blocks the ancestor search walks back",
    )

    # Job retries
    job_max_retries: int = Field(default=5, ge=0)
    job_min_backoff_ms: int = Field(default=1000, ge=1)
    job_max_backoff_ms: int = Field(default=60000, ge=1)
    rate_limit_default_cooldown_seconds: float = Field(default=30.0, gt=0)
    rate_limit_max_requeues: int = Field(default=20, ge=0)

    # Application
    environment: str = "production"
    log_level: str = "INFO"
    health_check_port: int = Field(
        default=8081, ge=1, le=65535, description="Health check HTTP server port"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL."""
        if not v.startswith(
            ("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")
        ):
            raise ValueError(
                "DATABASE_URL must start with postgresql+asyncpg:// "
                "(or sqlite+aiosqlite:// for local testing)"
            )
        return v

    @model_validator(mode="after")
    def validate_chunk_bounds(self) -> "Settings":
        """Ensure min <= initial <= max for chunk sizing."""
        if not self.chunk_size_min <= self.chunk_size_initial <= self.chunk_size_max:
            raise ValueError(
                "Chunk sizes must satisfy "
                "CHUNK_SIZE_MIN <= CHUNK_SIZE_INITIAL <= CHUNK_SIZE_MAX "
                f"(got {self.chunk_size_min}, {self.chunk_size_initial}, "
                f"{self.chunk_size_max})"
            )
        if self.job_min_backoff_ms > self.job_max_backoff_ms:
            raise ValueError("JOB_MIN_BACKOFF_MS must not exceed JOB_MAX_BACKOFF_MS")
        return self

    @model_validator(mode="after")
    def validate_contracts(self) -> "Settings":
        """Every indexed contract must reference a configured chain."""
        seen: set[tuple[int, str]] = set()
        for contract in self.indexed_contracts:
            if contract.chain_id not in self.chains:
                raise ValueError(
                    f"Indexed contract {contract.address} references chain "
                    f"{contract.chain_id}, which is not configured in CHAINS"
                )
            key = (contract.chain_id, contract.address)
            if key in seen:
                logger.warning(
                    f"Duplicate indexed contract {contract.chain_id}:{contract.address} ignored"
                )
            seen.add(key)
        return self

    def start_block_for(self, chain_id: int, address: str) -> int:
        """Resolve the configured start block of a pair."""
        address = address.lower()
        for contract in self.indexed_contracts:
            if contract.chain_id == chain_id and contract.address == address:
                if contract.start_block is not None:
                    return contract.start_block
                break
        chain = self.chains.get(chain_id)
        return chain.start_block if chain else 0


# Global settings instance
settings = Settings()
