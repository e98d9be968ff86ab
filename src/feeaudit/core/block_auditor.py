"""
Block auditor.

Reconciles one block: applies the fee policy to every extrinsic, checks each
extrinsic's non-burnt fee against the treasury deposits it produced, and
checks the treasury balance movement of the whole block.

Auditing is split in two stages:
- load_block_snapshot() performs all chain I/O for a block and may run
  concurrently for many blocks.
- BlockAuditor.audit() is synchronous and pure apart from the vote ledger it
  feeds; callers run it in increasing block order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from feeaudit.core.audit_exceptions import (
    PolicySignalMissing,
    PolicyViolation,
    ReconciliationDiscrepancy,
)
from feeaudit.core.call_kinds import CommitteeVote, classify_call
from feeaudit.core.chain_types import (
    BlockRef,
    ChainEvent,
    CommitteeVotes,
    DecodedBlock,
    DecodedExtrinsic,
    DispatchInfo,
)
from feeaudit.core.constants import MODULE_ACCOUNT_PADDING, MODULE_ACCOUNT_PREFIX
from feeaudit.core.fee_policy import (
    DispatchOutcome,
    FeeDecision,
    PolicyContext,
    RuleVariant,
    resolve_fee,
    rules_for,
)
from feeaudit.core.vote_ledger import VoteLedger
from feeaudit.provider.base import ChainDataProvider, StateQuery

logger = logging.getLogger(__name__)


# ==================== Records ====================


@dataclass(frozen=True)
class ExtrinsicRecord:
    block_number: int
    extrinsic_index: int
    byte_size: int
    section: str
    method: str
    success: bool
    pays_fee: bool
    weight: int
    partial_fee: int
    treasury_deposit: int
    fee: int
    burnt: int
    runtime_version: int
    collator_mint: int

    @property
    def extrinsic_id(self) -> str:
        return f"{self.block_number}-{self.extrinsic_index}"


@dataclass(frozen=True)
class BlockRecord:
    block_number: int
    weight: int
    treasury_deposit: int
    treasury_amount: int
    total_issuance: int
    fee: int
    runtime_version: int
    burnt: int = 0


@dataclass(frozen=True)
class TreasuryDiscrepancy:
    """previous_treasury + block_deposit != treasury for one block."""

    block_number: int
    runtime_version: int
    previous_treasury: int
    treasury: int
    block_deposit: int

    @property
    def expected_treasury(self) -> int:
        return self.previous_treasury + self.block_deposit

    @property
    def difference(self) -> int:
        return self.treasury - self.expected_treasury

    def as_details(self) -> Dict[str, int]:
        return {
            "runtime_version": self.runtime_version,
            "previous_treasury": self.previous_treasury,
            "treasury": self.treasury,
            "expected_treasury": self.expected_treasury,
            "block_deposit": self.block_deposit,
            "difference": self.difference,
        }

    def to_exception(self) -> ReconciliationDiscrepancy:
        return ReconciliationDiscrepancy(
            "Treasury amount discrepancy",
            block_number=self.block_number,
            details=self.as_details(),
        )


@dataclass
class BlockAudit:
    block: BlockRecord
    extrinsics: list[ExtrinsicRecord] = field(default_factory=list)
    discrepancies: list[TreasuryDiscrepancy] = field(default_factory=list)

    @property
    def block_number(self) -> int:
        return self.block.block_number


# ==================== Snapshot loading ====================


@dataclass(frozen=True)
class BlockSnapshot:
    """A decoded block plus every state value its audit reads.

    committee_votes maps CommitteeVote.proposal_key to the tally at the
    parent block (None when the proposal had no voting entry).
    """

    block: DecodedBlock
    runtime_version: int
    base_fee_per_gas: int
    previous_treasury: int
    treasury: int
    total_issuance: int
    committee_votes: Mapping[str, Optional[CommitteeVotes]] = field(default_factory=dict)

    @property
    def number(self) -> int:
        return self.block.number


def treasury_account_id(pallet_id: str) -> str:
    """Sovereign account of a pallet: b"modl" ++ pallet id ++ zero padding."""
    raw = pallet_id[2:] if pallet_id.startswith("0x") else pallet_id
    return f"{MODULE_ACCOUNT_PREFIX}{raw.lower()}{MODULE_ACCOUNT_PADDING}"


async def resolve_treasury_account(provider: ChainDataProvider, at: BlockRef) -> str:
    pallet_id = await provider.get_state_at(at, StateQuery.pallet_constant("treasury", "palletId"))
    return treasury_account_id(str(pallet_id))


async def load_block_snapshot(
    provider: ChainDataProvider,
    ref: BlockRef,
    treasury_account: str,
) -> BlockSnapshot:
    """Fetch a block and the state at it and its parent needed to audit it."""
    block = await provider.get_block(ref)
    at, parent = block.header.hash, block.header.parent_hash

    upgrade = await provider.get_state_at(at, StateQuery.runtime_upgrade())
    runtime_version = upgrade.spec_version
    base_fee_per_gas = 0
    if RuleVariant.BASE_FEE_PALLET in rules_for(runtime_version):
        base_fee_per_gas = int(await provider.get_state_at(at, StateQuery.base_fee_per_gas()))

    votes = [
        call
        for call in (classify_call(extrinsic) for extrinsic in block.extrinsics)
        if isinstance(call, CommitteeVote)
    ]
    tallies = await asyncio.gather(
        *(
            provider.get_state_at(parent, StateQuery.committee_votes(call.section, call.proposal_hash))
            for call in votes
        )
    )

    previous_treasury, treasury, total_issuance = await asyncio.gather(
        provider.get_state_at(parent, StateQuery.account_balance(treasury_account)),
        provider.get_state_at(at, StateQuery.account_balance(treasury_account)),
        provider.get_state_at(at, StateQuery.total_issuance()),
    )

    logger.debug(
        "Block snapshot loaded",
        extra={
            "event": "block_auditor.snapshot_loaded",
            "block_number": block.number,
            "block_hash": at,
            "runtime_version": runtime_version,
        },
    )
    return BlockSnapshot(
        block=block,
        runtime_version=runtime_version,
        base_fee_per_gas=base_fee_per_gas,
        previous_treasury=int(previous_treasury),
        treasury=int(treasury),
        total_issuance=int(total_issuance),
        committee_votes={call.proposal_key: tally for call, tally in zip(votes, tallies)},
    )


# ==================== Auditor ====================


def dispatch_result(events: tuple[ChainEvent, ...]) -> Optional[tuple[bool, DispatchInfo]]:
    """(success, dispatch info) from the extrinsic's system result event."""
    for event in events:
        if event.matches("system", "ExtrinsicSuccess"):
            return True, event.data[0]
        if event.matches("system", "ExtrinsicFailed"):
            return False, event.data[1]
    return None


def observed_treasury_deposit(events: tuple[ChainEvent, ...]) -> int:
    return sum(int(event.data[0]) for event in events if event.matches("treasury", "Deposit"))


class BlockAuditor:
    """Applies the fee policy to a block snapshot and checks its invariants.

    Per-extrinsic mismatches raise PolicyViolation. Treasury balance
    mismatches are returned as TreasuryDiscrepancy records, or raised as
    ReconciliationDiscrepancy when strict is set.
    """

    def __init__(self, strict: bool = False) -> None:
        self.strict = strict

    def audit(self, snapshot: BlockSnapshot, vote_ledger: VoteLedger) -> BlockAudit:
        block = snapshot.block
        author = block.find_author()
        records: list[ExtrinsicRecord] = []
        block_weight = block_fees = block_burnt = block_deposit = 0

        for extrinsic in block.extrinsics:
            try:
                record = self._audit_extrinsic(snapshot, extrinsic, author, vote_ledger)
            except PolicyViolation as exc:
                self._annotate(exc, snapshot, extrinsic)
                logger.error(
                    "Fee policy violation: %s",
                    exc.message,
                    extra={"event": "block_auditor.policy_violation", **self._context(exc)},
                )
                raise
            records.append(record)
            block_weight += record.weight
            block_fees += record.fee
            block_burnt += record.burnt
            block_deposit += record.treasury_deposit

        block_record = BlockRecord(
            block_number=block.number,
            weight=block_weight,
            treasury_deposit=block_deposit,
            treasury_amount=snapshot.treasury,
            total_issuance=snapshot.total_issuance,
            fee=block_fees,
            runtime_version=snapshot.runtime_version,
            burnt=block_burnt,
        )
        audit = BlockAudit(block=block_record, extrinsics=records)

        if snapshot.previous_treasury + block_deposit != snapshot.treasury:
            discrepancy = TreasuryDiscrepancy(
                block_number=block.number,
                runtime_version=snapshot.runtime_version,
                previous_treasury=snapshot.previous_treasury,
                treasury=snapshot.treasury,
                block_deposit=block_deposit,
            )
            logger.warning(
                "Treasury amount discrepancy at block %s",
                block.number,
                extra={
                    "event": "block_auditor.treasury_discrepancy",
                    "block_number": block.number,
                    **discrepancy.as_details(),
                },
            )
            if self.strict:
                raise discrepancy.to_exception()
            audit.discrepancies.append(discrepancy)

        logger.info(
            "Block %s (%s) fees: %s burnt: %s",
            block.number,
            snapshot.runtime_version,
            block_fees,
            block_burnt,
            extra={
                "event": "block_auditor.block_audited",
                "block_number": block.number,
                "extrinsics": len(records),
            },
        )
        return audit

    def _audit_extrinsic(
        self,
        snapshot: BlockSnapshot,
        extrinsic: DecodedExtrinsic,
        author: Optional[str],
        vote_ledger: VoteLedger,
    ) -> ExtrinsicRecord:
        block_number = snapshot.number
        events = tuple(snapshot.block.events_for(extrinsic.index))

        result = dispatch_result(events)
        if result is None:
            raise PolicySignalMissing("Extrinsic without ExtrinsicSuccess or ExtrinsicFailed event")
        success, info = result
        logger.debug("  - Extrinsic %s: %s", extrinsic.call_name, "Ok" if success else "Failed")

        call = classify_call(extrinsic)
        context = PolicyContext(
            runtime_version=snapshot.runtime_version,
            events=events,
            fees=extrinsic.fees,
            base_fee_per_gas=snapshot.base_fee_per_gas,
            author=author,
            committee_votes=(
                snapshot.committee_votes.get(call.proposal_key) if isinstance(call, CommitteeVote) else None
            ),
            vote_ledger=vote_ledger,
            block_number=block_number,
            extrinsic_index=extrinsic.index,
        )
        outcome = DispatchOutcome(
            success=success,
            weight=info.weight,
            pays_fee=info.pays_fee,
            signed=extrinsic.is_signed,
        )
        decision = resolve_fee(call, outcome, context)
        if decision.vote_cast is not None:
            vote_ledger.record(decision.vote_cast.account, decision.vote_cast.proposal_key, block_number)

        deposit = observed_treasury_deposit(events)
        if decision.treasury_share != deposit:
            raise PolicyViolation(
                "Deposit amount discrepancy",
                details=self._deposit_details(decision, deposit),
            )

        return ExtrinsicRecord(
            block_number=block_number,
            extrinsic_index=extrinsic.index,
            byte_size=extrinsic.encoded_length,
            section=extrinsic.section,
            method=extrinsic.method,
            success=success,
            pays_fee=info.pays_fee,
            weight=info.weight,
            partial_fee=extrinsic.fees.total_fees,
            treasury_deposit=deposit,
            fee=decision.fee_paid,
            burnt=decision.amount_burnt,
            runtime_version=snapshot.runtime_version,
            collator_mint=decision.minted_to_collator,
        )

    @staticmethod
    def _deposit_details(decision: FeeDecision, deposit: int) -> Dict[str, Any]:
        return {
            **decision.components.as_dict(),
            **decision.details,
            "fee_paid": decision.fee_paid,
            "amount_burnt": decision.amount_burnt,
            "fees_not_burnt": decision.treasury_share,
            "deposit": deposit,
        }

    @staticmethod
    def _annotate(exc: PolicyViolation, snapshot: BlockSnapshot, extrinsic: DecodedExtrinsic) -> None:
        """Attach block/extrinsic identity to a violation raised deeper down."""
        if exc.block_number is None:
            exc.block_number = snapshot.number
        if exc.extrinsic_index is None:
            exc.extrinsic_index = extrinsic.index
        exc.details.setdefault("call", extrinsic.call_name)
        exc.details.setdefault("runtime_version", snapshot.runtime_version)
        exc.details.setdefault("extrinsic_hex", extrinsic.raw_hex)

    @staticmethod
    def _context(exc: PolicyViolation) -> Dict[str, Any]:
        return {
            "block_number": exc.block_number,
            "extrinsic_index": exc.extrinsic_index,
            **{key: value for key, value in exc.details.items() if key != "extrinsic_hex"},
        }
