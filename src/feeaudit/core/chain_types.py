"""
Decoded chain data consumed by the fee audit.

These are the shapes the chain data provider hands to the auditor: blocks,
extrinsics with their fee components, events tagged with the extrinsic they
were emitted by, and the handful of state values the reconciliation needs.
All token quantities are Python ints (unbounded, no float rounding).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple, Union

from feeaudit.core.constants import AUTHOR_DIGEST_ENGINE, AUTHOR_INHERENT_SECTION

BlockRef = Union[int, str]


@dataclass(frozen=True)
class ChainEvent:
    """A runtime event. extrinsic_index is None outside the ApplyExtrinsic phase."""

    section: str
    method: str
    data: Tuple[Any, ...] = ()
    extrinsic_index: Optional[int] = None

    def matches(self, section: str, method: str) -> bool:
        return self.section == section and self.method == method


@dataclass(frozen=True)
class DispatchInfo:
    """Dispatch outcome attached to ExtrinsicSuccess/ExtrinsicFailed."""

    weight: int
    pays_fee: bool
    dispatch_class: str = "Normal"


@dataclass(frozen=True)
class FeeComponents:
    """The three additive parts of the chain-computed fee of one extrinsic."""

    base_fee: int = 0
    len_fee: int = 0
    weight_fee: int = 0

    @property
    def total_fees(self) -> int:
        return self.base_fee + self.len_fee + self.weight_fee

    def as_dict(self) -> dict[str, int]:
        return {
            "base_fee": self.base_fee,
            "len_fee": self.len_fee,
            "weight_fee": self.weight_fee,
            "total_fees": self.total_fees,
        }


class EthTransactionType(Enum):
    LEGACY = "legacy"
    EIP2930 = "eip2930"
    EIP1559 = "eip1559"


@dataclass(frozen=True)
class EthereumTransaction:
    """Ethereum-format transaction carried by an ethereum.transact extrinsic.

    Legacy and EIP-2930 transactions use gas_price; EIP-1559 transactions use
    max_fee_per_gas and max_priority_fee_per_gas.
    """

    tx_type: EthTransactionType
    gas_limit: int = 0
    gas_price: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0

    @property
    def is_eip1559(self) -> bool:
        return self.tx_type is EthTransactionType.EIP1559


@dataclass(frozen=True)
class DecodedExtrinsic:
    index: int
    section: str
    method: str
    args: Tuple[Any, ...] = ()
    signer: Optional[str] = None
    encoded_length: int = 0
    raw_hex: str = ""
    fees: FeeComponents = field(default_factory=FeeComponents)

    @property
    def is_signed(self) -> bool:
        return bool(self.signer)

    @property
    def call_name(self) -> str:
        return f"{self.section}.{self.method}"


@dataclass(frozen=True)
class DigestLog:
    """Header digest item. Only pre-runtime items are inspected."""

    kind: str
    engine: str = ""
    payload: str = ""

    @property
    def is_pre_runtime(self) -> bool:
        return self.kind == "preRuntime"


@dataclass(frozen=True)
class BlockHeader:
    number: int
    hash: str
    parent_hash: str
    digest_logs: Tuple[DigestLog, ...] = ()


@dataclass
class DecodedBlock:
    header: BlockHeader
    extrinsics: list[DecodedExtrinsic] = field(default_factory=list)
    events: list[ChainEvent] = field(default_factory=list)

    @property
    def number(self) -> int:
        return self.header.number

    def events_for(self, extrinsic_index: int) -> list[ChainEvent]:
        """Events emitted while applying the given extrinsic."""
        return [event for event in self.events if event.extrinsic_index == extrinsic_index]

    def find_author(self) -> Optional[str]:
        """Block author from authorInherent.setAuthor, else from the nmbs digest."""
        for extrinsic in self.extrinsics:
            if extrinsic.section == AUTHOR_INHERENT_SECTION and extrinsic.method == "setAuthor":
                if extrinsic.args and extrinsic.args[0]:
                    return str(extrinsic.args[0])
                break

        for log in self.header.digest_logs:
            if log.is_pre_runtime and log.engine == AUTHOR_DIGEST_ENGINE and log.payload:
                return log.payload
        return None


@dataclass(frozen=True)
class CommitteeVotes:
    """On-chain vote tally of a collective proposal."""

    ayes: Tuple[str, ...] = ()
    nays: Tuple[str, ...] = ()

    def has_voted(self, account: str) -> bool:
        account = account.lower()
        return any(member.lower() == account for member in (*self.ayes, *self.nays))


@dataclass(frozen=True)
class RuntimeUpgrade:
    spec_version: int
    spec_name: str = ""


@dataclass(frozen=True)
class ChainIdentity:
    """Used to name the checkpoint database per chain."""

    spec_name: str
    para_id: int
