"""
Rich rendering of audit progress and results.
"""

from __future__ import annotations

from typing import Any, Dict

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from feeaudit.core.audit_exceptions import FeeAuditError, get_error_context
from feeaudit.core.block_auditor import BlockAudit, TreasuryDiscrepancy
from feeaudit.core.range_crawler import CrawlSummary
from feeaudit.core.units import format_tokens


def _amount(value: int) -> str:
    return f"{value:>30}"


def print_block(console: Console, audit: BlockAudit) -> None:
    """One line per committed block: fees and burn of the block."""
    block = audit.block
    console.print(
        f"    - {block.block_number} ({block.runtime_version}) "
        f"Fees : {block.fee} - Burnt : {block.burnt} - Extrinsics : {len(audit.extrinsics)}"
    )


def print_discrepancy(console: Console, discrepancy: TreasuryDiscrepancy) -> None:
    table = Table(
        show_header=False,
        box=box.ROUNDED,
        title=f"Treasury Amount Discrepancy: {discrepancy.block_number} [{discrepancy.runtime_version}]",
        title_style="bold yellow",
    )
    table.add_row("previous treasury", _amount(discrepancy.previous_treasury))
    table.add_row("treasury", _amount(discrepancy.treasury))
    table.add_row("expected treasury", _amount(discrepancy.expected_treasury))
    table.add_row("block deposit", _amount(discrepancy.block_deposit))
    console.print(table)


def print_error_context(console: Console, exc: FeeAuditError) -> None:
    """Dump the diagnostic context carried by a fatal audit error."""
    context = get_error_context(exc)
    table = Table(show_header=False, box=box.ROUNDED, title=context["error_type"], title_style="bold red")
    for key, value in _flatten(context).items():
        if key in ("error_type", "error_message"):
            continue
        table.add_row(f"[bold cyan]{key}", escape(str(value)))
    console.print(table)


def _flatten(context: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in context.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{name}."))
        else:
            flat[name] = value
    return flat


def print_summary(console: Console, summary: CrawlSummary) -> None:
    bounds = summary.bounds
    if bounds.is_empty:
        console.print("[yellow]No block to audit.[/]")
        return

    table = Table(show_header=False, box=box.ROUNDED, title=f"Blocks {bounds.first}-{bounds.last}")
    table.add_row("[bold cyan]Total blocks", str(summary.blocks_audited))
    table.add_row("[bold cyan]Extrinsics", str(summary.extrinsics_audited))
    table.add_row("[bold cyan]Fees / block", format_tokens(summary.average_fees_per_block))
    table.add_row("[bold cyan]Total fees", format_tokens(summary.total_fees))
    supply_diff = summary.supply_diff
    table.add_row("[bold cyan]supply diff", _amount(supply_diff) if supply_diff is not None else "-")
    table.add_row("[bold cyan]burnt fees", _amount(summary.total_burnt))
    table.add_row("[bold cyan]total fees", _amount(summary.total_fees))
    table.add_row("[bold cyan]Discrepancies", str(len(summary.discrepancies)))
    console.print(table)


def print_status(console: Console, stats: Dict[str, Any]) -> None:
    table = Table(show_header=False, box=box.ROUNDED, title="Checkpoint Store")
    table.add_row("[bold cyan]Database", str(stats["db_path"]))
    latest = stats["latest_block"]
    table.add_row("[bold cyan]Last audited block", "-" if latest is None else str(latest))
    table.add_row("[bold cyan]Next block", "-" if latest is None else str(latest + 1))
    table.add_row("[bold cyan]Blocks", str(stats["blocks"]))
    table.add_row("[bold cyan]Extrinsics", str(stats["extrinsics"]))
    console.print(table)
