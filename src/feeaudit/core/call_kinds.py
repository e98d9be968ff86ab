"""
Closed set of call kinds the fee policy distinguishes.

Extrinsics are classified once, by section/method name, into one of these
variants. Each variant carries only what its fee branch needs, so the policy
never inspects raw call names or argument positions itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from feeaudit.core.audit_exceptions import PolicySignalMissing
from feeaudit.core.chain_types import DecodedExtrinsic, EthereumTransaction
from feeaudit.core.constants import (
    ALWAYS_FEE_BEARING_SECTIONS,
    COMMITTEE_SECTIONS,
    ETHEREUM_SECTION,
    PARACHAIN_SYSTEM_SECTION,
    SUDO_SECTION,
)


@dataclass(frozen=True)
class _Call:
    section: str
    method: str

    @property
    def always_fee_bearing(self) -> bool:
        """Charged even without a signer."""
        return self.section in ALWAYS_FEE_BEARING_SECTIONS


@dataclass(frozen=True)
class EthereumCall(_Call):
    transaction: EthereumTransaction


@dataclass(frozen=True)
class ValidationDataInherent(_Call):
    pass


@dataclass(frozen=True)
class CommitteeVote(_Call):
    proposal_hash: str

    @property
    def proposal_key(self) -> str:
        # Hashes collide across collectives, so the key includes the collective
        return f"{self.section}_{self.proposal_hash}"


@dataclass(frozen=True)
class CommitteeClose(_Call):
    pass


@dataclass(frozen=True)
class SudoCall(_Call):
    pass


@dataclass(frozen=True)
class AuthorizedUpgradeEnactment(_Call):
    pass


@dataclass(frozen=True)
class CompatibilityFixup(_Call):
    pass


@dataclass(frozen=True)
class GenericCall(_Call):
    pass


CallKind = Union[
    EthereumCall,
    ValidationDataInherent,
    CommitteeVote,
    CommitteeClose,
    SudoCall,
    AuthorizedUpgradeEnactment,
    CompatibilityFixup,
    GenericCall,
]


def classify_call(extrinsic: DecodedExtrinsic) -> CallKind:
    """Map an extrinsic onto the call kind its fee branch is keyed on."""
    section, method = extrinsic.section, extrinsic.method

    if section == ETHEREUM_SECTION:
        transaction = extrinsic.args[0] if extrinsic.args else None
        if not isinstance(transaction, EthereumTransaction):
            raise PolicySignalMissing(
                f"{extrinsic.call_name} carries no decoded ethereum transaction",
                extrinsic_index=extrinsic.index,
                details={"call": extrinsic.call_name},
            )
        return EthereumCall(section, method, transaction)

    if section == PARACHAIN_SYSTEM_SECTION:
        if method == "setValidationData":
            return ValidationDataInherent(section, method)
        if method == "enactAuthorizedUpgrade":
            return AuthorizedUpgradeEnactment(section, method)
        return GenericCall(section, method)

    if section == SUDO_SECTION:
        return SudoCall(section, method)

    if section == "evm" and method == "hotfixIncAccountSufficients":
        return CompatibilityFixup(section, method)

    if section in COMMITTEE_SECTIONS:
        if method == "vote":
            proposal_hash = str(extrinsic.args[0]) if extrinsic.args else ""
            return CommitteeVote(section, method, proposal_hash)
        if method == "close":
            return CommitteeClose(section, method)

    return GenericCall(section, method)
