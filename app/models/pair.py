"""
Pair key.

Identifies one indexed (chain, contract) pair.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class PairKey:
    """A (chain, contract) pair; the unit of concurrency control."""

    chain_id: int
    contract_address: str

    @classmethod
    def of(cls, chain_id: int, contract_address: str) -> "PairKey":
        """Build a key with a normalized address."""
        return cls(int(chain_id), contract_address.lower())

    def __str__(self) -> str:
        return f"{self.chain_id}:{self.contract_address}"
