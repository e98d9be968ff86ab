"""
Fee policy resolver.

Maps (call kind, dispatch outcome, runtime version, same-block context) to
the fee the chain should have charged, the part of it that should have been
burnt, and the amount minted to the block author. Every historical rule
change and known runtime bug is expressed as an entry of RUNTIME_RULES so
that a new runtime threshold is a data change.

resolve_fee() is pure: chain state it needs (committee tallies, base fee)
arrives through PolicyContext, and the vote it attributes is returned in the
decision rather than written anywhere.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Mapping, Optional

from feeaudit.core.audit_exceptions import CollatorMintMismatch, PolicySignalMissing
from feeaudit.core.call_kinds import (
    AuthorizedUpgradeEnactment,
    CallKind,
    CommitteeClose,
    CommitteeVote,
    CompatibilityFixup,
    EthereumCall,
    SudoCall,
    ValidationDataInherent,
)
from feeaudit.core.chain_types import ChainEvent, CommitteeVotes, FeeComponents
from feeaudit.core.constants import (
    BURN_PERCENT,
    DEFAULT_GAS_LIMIT,
    PERCENT_DENOMINATOR,
    RUNTIME_BASE_FEE_PALLET,
    RUNTIME_ETHEREUM_TREASURY_SPLIT,
    RUNTIME_GAS_LIMIT_BUG_END,
    RUNTIME_GAS_LIMIT_BUG_START,
    RUNTIME_HOTFIX_FEE_FREE,
    RUNTIME_PRIORITY_TIP_CAPPED,
    RUNTIME_VALIDATION_DATA_NO_DEPOSIT,
    VALIDATION_DATA_BURN_RATIO,
    VALIDATION_DATA_FEE_RATIO,
    WEIGHT_PER_GAS,
)
from feeaudit.core.vote_ledger import VoteLedger

logger = logging.getLogger(__name__)


# ==================== Runtime rule table ====================


class RuleVariant(Enum):
    VALIDATION_DATA_DEPOSIT_INFERENCE = "validation_data_deposit_inference"
    ETHEREUM_TREASURY_SPLIT = "ethereum_treasury_split"
    ETHEREUM_GAS_LIMIT_BUG = "ethereum_gas_limit_bug"
    UNCAPPED_PRIORITY_TIP = "uncapped_priority_tip"
    BASE_FEE_PALLET = "base_fee_pallet"
    HOTFIX_PAYS_FEE = "hotfix_pays_fee"


@dataclass(frozen=True)
class RuntimeRule:
    """A rule active for runtime versions in [since, until)."""

    variant: RuleVariant
    since: Optional[int] = None
    until: Optional[int] = None
    description: str = ""

    def applies(self, runtime_version: int) -> bool:
        if self.since is not None and runtime_version < self.since:
            return False
        if self.until is not None and runtime_version >= self.until:
            return False
        return True


RUNTIME_RULES: tuple[RuntimeRule, ...] = (
    RuntimeRule(
        RuleVariant.VALIDATION_DATA_DEPOSIT_INFERENCE,
        until=RUNTIME_VALIDATION_DATA_NO_DEPOSIT,
        description="validation data inherent fees inferred from treasury deposits (5x fee, 4x burn)",
    ),
    RuntimeRule(
        RuleVariant.ETHEREUM_TREASURY_SPLIT,
        since=RUNTIME_ETHEREUM_TREASURY_SPLIT,
        description="20% of ethereum fees go to the treasury; before, all is burnt",
    ),
    RuntimeRule(
        RuleVariant.ETHEREUM_GAS_LIMIT_BUG,
        since=RUNTIME_GAS_LIMIT_BUG_START,
        until=RUNTIME_GAS_LIMIT_BUG_END,
        description="balance == gasLimit * fee charged the gas limit instead of gas used",
    ),
    RuntimeRule(
        RuleVariant.UNCAPPED_PRIORITY_TIP,
        until=RUNTIME_PRIORITY_TIP_CAPPED,
        description="full maxPriorityFeePerGas added to the base fee, even above maxFeePerGas",
    ),
    RuntimeRule(
        RuleVariant.BASE_FEE_PALLET,
        since=RUNTIME_BASE_FEE_PALLET,
        description="baseFee.baseFeePerGas storage is available",
    ),
    RuntimeRule(
        RuleVariant.HOTFIX_PAYS_FEE,
        until=RUNTIME_HOTFIX_FEE_FREE,
        description="evm.hotfixIncAccountSufficients pays fees",
    ),
)


@dataclass(frozen=True)
class RuleSet:
    runtime_version: int
    active: frozenset

    def __contains__(self, variant: RuleVariant) -> bool:
        return variant in self.active


@lru_cache(maxsize=None)
def rules_for(runtime_version: int) -> RuleSet:
    """Rules in force for a runtime version."""
    return RuleSet(
        runtime_version,
        frozenset(rule.variant for rule in RUNTIME_RULES if rule.applies(runtime_version)),
    )


# ==================== Inputs and decision ====================


@dataclass(frozen=True)
class DispatchOutcome:
    success: bool
    weight: int
    pays_fee: bool
    signed: bool


@dataclass(frozen=True)
class PolicyContext:
    """Same-block data a fee branch may consult.

    Attributes:
        events: Events emitted by this extrinsic only
        fees: Chain-computed fee components of this extrinsic
        base_fee_per_gas: Block base fee (0 before the base fee pallet)
        author: Block author account, if it could be determined
        committee_votes: Tally at the parent block for the voted proposal
        vote_ledger: Votes already attributed during this run (read only)
    """

    runtime_version: int
    events: tuple[ChainEvent, ...] = ()
    fees: FeeComponents = field(default_factory=FeeComponents)
    base_fee_per_gas: int = 0
    author: Optional[str] = None
    committee_votes: Optional[CommitteeVotes] = None
    vote_ledger: Optional[VoteLedger] = None
    block_number: Optional[int] = None
    extrinsic_index: Optional[int] = None


@dataclass(frozen=True)
class VoteCast:
    account: str
    proposal_key: str


@dataclass(frozen=True)
class FeeDecision:
    fee_paid: int
    amount_burnt: int
    minted_to_collator: int
    components: FeeComponents
    details: Mapping[str, int] = field(default_factory=dict)
    vote_cast: Optional[VoteCast] = None

    @property
    def treasury_share(self) -> int:
        return self.fee_paid - self.amount_burnt


def burn_share(fee: int) -> int:
    """Burnt part of a fee; the treasury keeps the remainder (rounding included)."""
    return fee * BURN_PERCENT // PERCENT_DENOMINATOR


def _find_event(events: tuple[ChainEvent, ...], section: str, method: str) -> Optional[ChainEvent]:
    return next((event for event in events if event.matches(section, method)), None)


def _find_method(events: tuple[ChainEvent, ...], method: str) -> Optional[ChainEvent]:
    return next((event for event in events if event.method == method), None)


def _treasury_deposits(events: tuple[ChainEvent, ...]) -> list[int]:
    return [int(event.data[0]) for event in events if event.matches("treasury", "Deposit")]


# ==================== Resolver ====================


def resolve_fee(call: CallKind, outcome: DispatchOutcome, context: PolicyContext) -> FeeDecision:
    """Fee, burn and collator mint the chain should have produced for one extrinsic."""
    rules = rules_for(context.runtime_version)

    if isinstance(call, ValidationDataInherent):
        return _resolve_validation_data(context, rules)

    charged = outcome.pays_fee and (outcome.signed or call.always_fee_bearing)
    if not charged:
        return FeeDecision(0, 0, 0, context.fees)

    if isinstance(call, EthereumCall):
        return _resolve_ethereum(call, outcome, context, rules)
    return _resolve_substrate(call, outcome, context, rules)


def _resolve_validation_data(context: PolicyContext, rules: RuleSet) -> FeeDecision:
    # XCM execution is paid through this inherent, but there is no precise
    # way to recover its fee: infer it from the deposits it caused
    fee = burnt = 0
    if RuleVariant.VALIDATION_DATA_DEPOSIT_INFERENCE in rules:
        for deposit in _treasury_deposits(context.events):
            fee += deposit * VALIDATION_DATA_FEE_RATIO
            burnt += deposit * VALIDATION_DATA_BURN_RATIO
    return FeeDecision(fee, burnt, 0, context.fees, details={"inferred_fee": fee})


def _resolve_ethereum(
    call: EthereumCall,
    outcome: DispatchOutcome,
    context: PolicyContext,
    rules: RuleSet,
) -> FeeDecision:
    tx = call.transaction
    base_fee_per_gas = context.base_fee_per_gas
    gas_used = outcome.weight // WEIGHT_PER_GAS

    if tx.is_eip1559:
        # Without a max fee the transaction pays the block base fee
        gas_price_param = tx.max_fee_per_gas or base_fee_per_gas
        gas_base_fee = base_fee_per_gas
        if tx.max_priority_fee_per_gas < tx.max_fee_per_gas - gas_base_fee:
            gas_tips = tx.max_priority_fee_per_gas
        else:
            gas_tips = tx.max_fee_per_gas - gas_base_fee
    else:
        gas_price_param = tx.gas_price
        gas_base_fee = gas_price_param
        gas_tips = 0
    gas_limit_param = tx.gas_limit or DEFAULT_GAS_LIMIT

    if outcome.success and RuleVariant.ETHEREUM_GAS_LIMIT_BUG in rules:
        deposit_event = _find_event(context.events, "treasury", "Deposit")
        if deposit_event is None:
            raise PolicySignalMissing(
                "Ethereum transaction without treasury deposit during gas-limit bug window",
                block_number=context.block_number,
                extrinsic_index=context.extrinsic_index,
                details={"runtime_version": context.runtime_version, "gas_used": gas_used},
            )
        expected_cost = gas_used * gas_price_param
        if int(deposit_event.data[0]) != expected_cost - burn_share(expected_cost):
            gas_used = gas_limit_param

    if tx.is_eip1559 and RuleVariant.UNCAPPED_PRIORITY_TIP in rules:
        gas_tips = tx.max_priority_fee_per_gas

    gas_fee = gas_base_fee + gas_tips

    details = {
        "gas_used": gas_used,
        "gas_limit": gas_limit_param,
        "gas_price_param": gas_price_param,
        "gas_base_fee": gas_base_fee,
        "gas_tips": gas_tips,
        "gas_fee": gas_fee,
        "max_fee_per_gas": tx.max_fee_per_gas,
        "max_priority_fee_per_gas": tx.max_priority_fee_per_gas,
    }

    minted = _check_collator_mint(tx.is_eip1559, gas_tips, gas_fee, gas_used, context, details)

    # Transactions with an invalid nonce could get included; they pay nothing
    fee = gas_used * gas_fee if outcome.success else 0
    if RuleVariant.ETHEREUM_TREASURY_SPLIT in rules:
        burnt = burn_share(fee)
    else:
        burnt = fee

    return FeeDecision(fee, burnt, minted, context.fees, details=details)


def _check_collator_mint(
    is_eip1559: bool,
    gas_tips: int,
    gas_fee: int,
    gas_used: int,
    context: PolicyContext,
    details: dict,
) -> int:
    """Amount credited to the block author, checked against the expected tip."""
    if not context.author:
        return 0
    author = context.author.lower()
    deposit = next(
        (
            event
            for event in context.events
            if event.matches("balances", "Deposit") and str(event.data[0]).lower() == author
        ),
        None,
    )
    if deposit is None:
        return 0

    minted = int(deposit.data[1])
    extra_fees = gas_tips if is_eip1559 else gas_fee - context.base_fee_per_gas
    expected = extra_fees * gas_used
    details["extra_fees"] = extra_fees
    details["expected_mint"] = expected
    details["collator_deposit"] = minted
    if minted != expected:
        raise CollatorMintMismatch(
            "Collator mint discrepancy",
            block_number=context.block_number,
            extrinsic_index=context.extrinsic_index,
            details={"runtime_version": context.runtime_version, **details},
        )
    return minted


def _resolve_substrate(
    call: CallKind,
    outcome: DispatchOutcome,
    context: PolicyContext,
    rules: RuleSet,
) -> FeeDecision:
    pays_fees = True
    vote_cast: Optional[VoteCast] = None

    if isinstance(call, AuthorizedUpgradeEnactment) and outcome.success:
        pays_fees = False
    elif isinstance(call, SudoCall):
        pays_fees = False
    elif isinstance(call, CompatibilityFixup):
        pays_fees = RuleVariant.HOTFIX_PAYS_FEE in rules
    elif isinstance(call, CommitteeClose) and outcome.success:
        # A disapproved proposal refunds the closer
        pays_fees = _find_method(context.events, "Disapproved") is None
    elif isinstance(call, CommitteeVote) and outcome.success:
        voted = _find_method(context.events, "Voted")
        if voted is None:
            raise PolicySignalMissing(
                "Committee vote without Voted event",
                block_number=context.block_number,
                extrinsic_index=context.extrinsic_index,
                details={"call": f"{call.section}.{call.method}", "proposal": call.proposal_hash},
            )
        account = str(voted.data[0])
        tally = context.committee_votes or CommitteeVotes()
        already_voted = tally.has_voted(account) or (
            context.vote_ledger is not None and context.vote_ledger.has_voted(account, call.proposal_key)
        )
        pays_fees = already_voted
        vote_cast = VoteCast(account, call.proposal_key)

    if not pays_fees:
        logger.debug(
            "Fee exempt call",
            extra={
                "event": "fee_policy.exempt",
                "call": f"{call.section}.{call.method}",
                "block_number": context.block_number,
                "extrinsic_index": context.extrinsic_index,
            },
        )
        return FeeDecision(0, 0, 0, context.fees, vote_cast=vote_cast)

    fee = context.fees.total_fees
    return FeeDecision(fee, burn_share(fee), 0, context.fees, vote_cast=vote_cast)
