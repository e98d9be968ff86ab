#!/usr/bin/env python3
"""
feeaudit command-line interface.

    feeaudit audit --url http://127.0.0.1:8080 --first 1 --blocks 2000
    feeaudit status --db ./db-fee.moonriver.2023.db
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from feeaudit.cli import report
from feeaudit.config_manager import ConfigManager
from feeaudit.core.audit_exceptions import ConfigurationError, FeeAuditError
from feeaudit.core.block_auditor import BlockAuditor
from feeaudit.core.checkpoint_store import CheckpointStore, default_db_filename
from feeaudit.core.logging_config import setup_logging
from feeaudit.core.range_crawler import CrawlSummary, RangeCrawler
from feeaudit.provider.base import ChainDataProvider
from feeaudit.provider.http_provider import HttpChainProvider

logger = logging.getLogger(__name__)

console = Console()

EXIT_FATAL = 1
EXIT_CONFIG = 2


def _cli_fail(exc: Exception, exit_code: int = EXIT_FATAL) -> None:
    """Centralized CLI error handler for consistent messaging."""
    logger.error("CLI error: %s", exc, exc_info=exit_code == EXIT_FATAL)
    console.print(f"[bold red]Error:[/] {exc}")
    if isinstance(exc, FeeAuditError) and exit_code == EXIT_FATAL:
        report.print_error_context(console, exc)
    sys.exit(exit_code)


def build_provider(config: ConfigManager) -> ChainDataProvider:
    return HttpChainProvider(
        config.endpoint_url,
        timeout=config.provider.timeout,
        max_retries=config.provider.max_retries,
    )


async def _resolve_db_path(config: ConfigManager, provider: ChainDataProvider) -> str:
    if config.storage.db_path:
        return config.storage.db_path
    identity = await provider.get_chain_identity()
    return str(Path(config.storage.data_dir) / default_db_filename(identity))


async def run_audit(config: ConfigManager, verbose: bool = False) -> CrawlSummary:
    """Run one crawl with the given configuration."""
    on_block = (lambda audit: report.print_block(console, audit)) if verbose else None

    async with build_provider(config) as provider:
        db_path = await _resolve_db_path(config, provider)
        store = CheckpointStore(db_path)
        try:
            crawler = RangeCrawler(
                provider,
                store,
                auditor=BlockAuditor(strict=config.crawl.strict),
                concurrency=config.crawl.concurrency,
                timeout_seconds=config.crawl.timeout_seconds,
                on_block_committed=on_block,
            )
            return await crawler.run(first=config.crawl.first, count=config.crawl.blocks)
        finally:
            store.close()


@click.group()
@click.version_option(package_name="feeaudit")
def cli():
    """Fee audit: reconcile transaction fees, burns and treasury deposits."""


@cli.command("audit")
@click.option("--network", help="Named network to audit (see the `networks` config section).")
@click.option("--url", help="Chain data service URL; overrides --network.")
@click.option("--first", type=click.IntRange(min=1), help="First block to audit when the store is empty.")
@click.option("--blocks", type=click.IntRange(min=1), help="Maximum number of blocks to audit.")
@click.option("--concurrency", type=click.IntRange(min=1), help="Block fetches in flight.")
@click.option("--verbose", is_flag=True, help="Print every block and log each extrinsic.")
@click.option("--db", "db_path", type=click.Path(dir_okay=False), help="Checkpoint database file.")
@click.option("--timeout", type=click.FloatRange(min=0), help="Abort the crawl after this many seconds (0 disables).")
@click.option("--strict/--no-strict", default=None, help="Abort on treasury balance discrepancies.")
@click.option("--config-dir", type=click.Path(file_okay=False), help="Directory with default/<environment> config files.")
@click.option("--environment", help="Configuration environment (development/production).")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Rotating JSON log file.")
@click.option("--json-logs/--text-logs", default=None, help="Console log format.")
def audit_command(
    network: Optional[str],
    url: Optional[str],
    first: Optional[int],
    blocks: Optional[int],
    concurrency: Optional[int],
    verbose: bool,
    db_path: Optional[str],
    timeout: Optional[float],
    strict: Optional[bool],
    config_dir: Optional[str],
    environment: Optional[str],
    log_file: Optional[str],
    json_logs: Optional[bool],
):
    """Audit fees over a block range, resuming after the last audited block."""
    try:
        config = ConfigManager(
            environment=environment,
            config_dir=config_dir,
            cli_overrides={
                "provider.network": network,
                "provider.url": url,
                "crawl.first": first,
                "crawl.blocks": blocks,
                "crawl.concurrency": concurrency,
                "crawl.timeout_seconds": timeout,
                "crawl.strict": strict,
                "storage.db_path": db_path,
                "logging.log_file": log_file,
                "logging.json": json_logs,
                "logging.level": "DEBUG" if verbose else None,
            },
        )
        setup_logging(
            level=config.logging.level,
            log_file=config.logging.log_file,
            json_console=config.logging.json,
            environment=config.environment.value,
        )
    except (ConfigurationError, ValueError) as exc:
        _cli_fail(exc, exit_code=EXIT_CONFIG)

    try:
        summary = asyncio.run(run_audit(config, verbose=verbose))
    except FeeAuditError as exc:
        _cli_fail(exc)
    except ValueError as exc:
        _cli_fail(exc, exit_code=EXIT_CONFIG)

    for discrepancy in summary.discrepancies:
        report.print_discrepancy(console, discrepancy)
    report.print_summary(console, summary)


@cli.command("status")
@click.option("--db", "db_path", required=True, type=click.Path(exists=True, dir_okay=False),
              help="Checkpoint database file.")
def status_command(db_path: str):
    """Show the resumption cursor and row counts of a checkpoint database."""
    try:
        store = CheckpointStore(db_path)
        stats = store.get_stats()
    except FeeAuditError as exc:
        _cli_fail(exc)
    report.print_status(console, stats)


def main():
    """Main CLI entry point"""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)


if __name__ == "__main__":
    main()
