"""
Fee audit instrumentation.

Prometheus metrics tracking audit progress and the amounts reconciled, with
helper functions that are safe to call from the commit path. Token amounts
are exported in whole tokens (float) since Prometheus values are doubles.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

from feeaudit.core.block_auditor import BlockAudit, TreasuryDiscrepancy
from feeaudit.core.constants import WEI_PER_TOKEN

blocks_audited_counter = Counter("feeaudit_blocks_audited_total", "Total blocks audited and committed")

extrinsics_audited_counter = Counter(
    "feeaudit_extrinsics_audited_total", "Total extrinsics audited and committed"
)

fees_attributed_counter = Counter(
    "feeaudit_fees_attributed_tokens_total", "Fees attributed by the fee policy", ["runtime"]
)

fees_burnt_counter = Counter(
    "feeaudit_fees_burnt_tokens_total", "Fees attributed as burnt by the fee policy", ["runtime"]
)

treasury_discrepancy_counter = Counter(
    "feeaudit_treasury_discrepancies_total", "Blocks whose treasury balance did not reconcile", ["runtime"]
)

policy_violation_counter = Counter(
    "feeaudit_policy_violations_total", "Fatal fee policy violations", ["kind"]
)

last_committed_block_gauge = Gauge("feeaudit_last_committed_block", "Highest committed block number")


def _tokens(amount: int) -> float:
    return amount / WEI_PER_TOKEN


def record_block_audit(audit: BlockAudit) -> None:
    """Account for one committed block."""
    runtime = str(audit.block.runtime_version)
    blocks_audited_counter.inc()
    if audit.extrinsics:
        extrinsics_audited_counter.inc(len(audit.extrinsics))
    if audit.block.fee > 0:
        fees_attributed_counter.labels(runtime=runtime).inc(_tokens(audit.block.fee))
    if audit.block.burnt > 0:
        fees_burnt_counter.labels(runtime=runtime).inc(_tokens(audit.block.burnt))
    for discrepancy in audit.discrepancies:
        record_treasury_discrepancy(discrepancy)
    last_committed_block_gauge.set(audit.block_number)


def record_treasury_discrepancy(discrepancy: TreasuryDiscrepancy) -> None:
    treasury_discrepancy_counter.labels(runtime=str(discrepancy.runtime_version)).inc()


def record_policy_violation(kind: str) -> None:
    policy_violation_counter.labels(kind=kind).inc()
