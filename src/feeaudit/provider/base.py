"""
Chain data provider contract.

The audit never talks to a node directly. It asks a provider for decoded
blocks and for point-in-time state values, identified by a block number or
hash. Retrying transient failures is the provider's job; anything it raises
is treated as fatal by the crawler.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from feeaudit.core.chain_types import BlockRef, ChainIdentity, DecodedBlock


class StateQueryKind(Enum):
    RUNTIME_UPGRADE = "runtime_upgrade"
    BASE_FEE_PER_GAS = "base_fee_per_gas"
    ACCOUNT_BALANCE = "account_balance"
    TOTAL_ISSUANCE = "total_issuance"
    COMMITTEE_VOTES = "committee_votes"
    PALLET_CONSTANT = "pallet_constant"


@dataclass(frozen=True)
class StateQuery:
    """A point-in-time state read.

    Result types by kind:
        RUNTIME_UPGRADE -> RuntimeUpgrade
        BASE_FEE_PER_GAS, ACCOUNT_BALANCE (free balance), TOTAL_ISSUANCE -> int
        COMMITTEE_VOTES -> CommitteeVotes or None when the proposal is unknown
        PALLET_CONSTANT -> the decoded constant (hex string for ids)
    """

    kind: StateQueryKind
    pallet: Optional[str] = None
    name: Optional[str] = None
    key: Optional[str] = None

    @classmethod
    def runtime_upgrade(cls) -> "StateQuery":
        return cls(StateQueryKind.RUNTIME_UPGRADE, "system", "lastRuntimeUpgrade")

    @classmethod
    def base_fee_per_gas(cls) -> "StateQuery":
        return cls(StateQueryKind.BASE_FEE_PER_GAS, "baseFee", "baseFeePerGas")

    @classmethod
    def account_balance(cls, account: str) -> "StateQuery":
        return cls(StateQueryKind.ACCOUNT_BALANCE, "system", "account", account)

    @classmethod
    def total_issuance(cls) -> "StateQuery":
        return cls(StateQueryKind.TOTAL_ISSUANCE, "balances", "totalIssuance")

    @classmethod
    def committee_votes(cls, collective: str, proposal_hash: str) -> "StateQuery":
        return cls(StateQueryKind.COMMITTEE_VOTES, collective, "voting", proposal_hash)

    @classmethod
    def pallet_constant(cls, pallet: str, name: str) -> "StateQuery":
        return cls(StateQueryKind.PALLET_CONSTANT, pallet, name)


class ChainDataProvider(ABC):
    """Source of decoded blocks and historical state."""

    @abstractmethod
    async def get_best_block_number(self) -> int:
        """Number of the current best block."""

    @abstractmethod
    async def get_block(self, ref: BlockRef) -> DecodedBlock:
        """Decoded block with per-extrinsic fee components and phase-tagged events."""

    @abstractmethod
    async def get_state_at(self, ref: BlockRef, query: StateQuery) -> Any:
        """Value of a state query as of the given block."""

    @abstractmethod
    async def get_chain_identity(self) -> ChainIdentity:
        """Runtime spec name and parachain id of the audited chain."""

    async def close(self) -> None:
        """Release transport resources."""
        return None

    async def __aenter__(self) -> "ChainDataProvider":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
