"""
Range crawler.

Drives the audit across a block range: resolves the range from the
checkpoint cursor and the chain head, keeps a sliding window of snapshot
fetches in flight, and audits and commits each block strictly in increasing
block order. The run's vote ledger lives here, so first-vote attribution
always sees earlier blocks before later ones.

Any fatal error stops the run with CrawlAborted; blocks committed before the
failing one stay committed and the next run resumes after them.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Optional, Tuple

from feeaudit.core import audit_metrics
from feeaudit.core.audit_exceptions import CrawlAborted, PolicyViolation
from feeaudit.core.block_auditor import (
    BlockAudit,
    BlockAuditor,
    BlockSnapshot,
    TreasuryDiscrepancy,
    load_block_snapshot,
    resolve_treasury_account,
)
from feeaudit.core.checkpoint_store import CheckpointStore
from feeaudit.core.constants import DEFAULT_CONCURRENCY, DEFAULT_CRAWL_TIMEOUT_SECONDS
from feeaudit.core.vote_ledger import VoteLedger
from feeaudit.provider.base import ChainDataProvider, StateQuery

logger = logging.getLogger(__name__)


class CrawlState(Enum):
    IDLE = "idle"
    RESOLVING_BOUNDS = "resolving_bounds"
    STREAMING = "streaming"
    DRAINING = "draining"
    DONE = "done"
    ABORTED = "aborted"


@dataclass(frozen=True)
class CrawlBounds:
    """Inclusive block range; empty when first > last."""

    first: int
    last: int

    @property
    def is_empty(self) -> bool:
        return self.first > self.last

    def __len__(self) -> int:
        return max(self.last - self.first + 1, 0)


def resolve_bounds(
    cursor: Optional[int],
    best_block: int,
    first: Optional[int] = None,
    count: Optional[int] = None,
) -> CrawlBounds:
    """Range to audit.

    Starts after the cursor when there is one, else at `first`, else at 1.
    Ends one block below the head, and after `count` blocks when given.
    """
    if cursor is not None:
        start = cursor + 1
    else:
        start = first if first is not None else 1
    end = best_block - 1
    if count is not None:
        end = min(end, start + count - 1)
    return CrawlBounds(start, end)


@dataclass
class CrawlSummary:
    bounds: CrawlBounds
    blocks_audited: int = 0
    extrinsics_audited: int = 0
    total_fees: int = 0
    total_burnt: int = 0
    issuance_before: Optional[int] = None
    issuance_after: Optional[int] = None
    discrepancies: list[TreasuryDiscrepancy] = field(default_factory=list)

    def add(self, audit: BlockAudit) -> None:
        self.blocks_audited += 1
        self.extrinsics_audited += len(audit.extrinsics)
        self.total_fees += audit.block.fee
        self.total_burnt += audit.block.burnt
        self.issuance_after = audit.block.total_issuance
        self.discrepancies.extend(audit.discrepancies)

    @property
    def average_fees_per_block(self) -> int:
        if not self.blocks_audited:
            return 0
        return self.total_fees // self.blocks_audited

    @property
    def supply_diff(self) -> Optional[int]:
        """Issuance decrease over the range; comparable to total_burnt."""
        if self.issuance_before is None or self.issuance_after is None:
            return None
        return self.issuance_before - self.issuance_after


class RangeCrawler:
    """
    Audits a block range with bounded fetch concurrency and ordered commits.

    Args:
        provider: Chain data source
        store: Checkpoint store receiving committed audits
        auditor: Block auditor (defaults to a non-strict one)
        concurrency: Maximum snapshot fetches in flight
        timeout_seconds: Abort the whole run after this long; 0 disables
        on_block_committed: Called with each BlockAudit after it is committed
    """

    def __init__(
        self,
        provider: ChainDataProvider,
        store: CheckpointStore,
        auditor: Optional[BlockAuditor] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout_seconds: float = DEFAULT_CRAWL_TIMEOUT_SECONDS,
        on_block_committed: Optional[Callable[[BlockAudit], None]] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.provider = provider
        self.store = store
        self.auditor = auditor or BlockAuditor()
        self.concurrency = concurrency
        self.timeout_seconds = timeout_seconds
        self.on_block_committed = on_block_committed

        self.state = CrawlState.IDLE
        self.vote_ledger = VoteLedger()
        self._current_block: Optional[int] = None

    async def run(self, first: Optional[int] = None, count: Optional[int] = None) -> CrawlSummary:
        """Audit from the resolved start through the resolved end."""
        self.vote_ledger = VoteLedger()
        if not self.timeout_seconds:
            return await self._crawl(first, count)
        try:
            return await asyncio.wait_for(self._crawl(first, count), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            self.state = CrawlState.ABORTED
            logger.error(
                "Crawl timed out after %ss",
                self.timeout_seconds,
                extra={"event": "range_crawler.timeout", "block_number": self._current_block},
            )
            raise CrawlAborted(
                f"Crawl timed out after {self.timeout_seconds}s",
                block_number=self._current_block,
                details={"timeout_seconds": self.timeout_seconds},
            ) from exc

    async def _crawl(self, first: Optional[int], count: Optional[int]) -> CrawlSummary:
        self.state = CrawlState.RESOLVING_BOUNDS
        cursor = self.store.latest_block_number()
        best_block = await self.provider.get_best_block_number()
        bounds = resolve_bounds(cursor, best_block, first, count)
        summary = CrawlSummary(bounds=bounds)

        if bounds.is_empty:
            self.state = CrawlState.DONE
            logger.info(
                "Nothing to audit (cursor %s, best block %s)",
                cursor,
                best_block,
                extra={"event": "range_crawler.empty_range"},
            )
            return summary

        logger.info(
            "Processing blocks %s-%s",
            bounds.first,
            bounds.last,
            extra={
                "event": "range_crawler.started",
                "first": bounds.first,
                "last": bounds.last,
                "cursor": cursor,
                "concurrency": self.concurrency,
            },
        )
        treasury_account, issuance_before = await asyncio.gather(
            resolve_treasury_account(self.provider, bounds.first),
            self.provider.get_state_at(bounds.first - 1, StateQuery.total_issuance()),
        )
        summary.issuance_before = int(issuance_before)

        self.state = CrawlState.STREAMING
        await self._stream(bounds, treasury_account, summary)

        self.state = CrawlState.DONE
        logger.info(
            "Audited %s blocks, fees %s, burnt %s",
            summary.blocks_audited,
            summary.total_fees,
            summary.total_burnt,
            extra={
                "event": "range_crawler.finished",
                "first": bounds.first,
                "last": bounds.last,
                "discrepancies": len(summary.discrepancies),
            },
        )
        return summary

    async def _stream(self, bounds: CrawlBounds, treasury_account: str, summary: CrawlSummary) -> None:
        window: Deque[Tuple[int, asyncio.Task]] = deque()
        next_block = bounds.first
        try:
            while window or next_block <= bounds.last:
                while len(window) < self.concurrency and next_block <= bounds.last:
                    task = asyncio.create_task(load_block_snapshot(self.provider, next_block, treasury_account))
                    window.append((next_block, task))
                    next_block += 1
                if next_block > bounds.last:
                    self.state = CrawlState.DRAINING

                number, task = window.popleft()
                self._current_block = number
                try:
                    snapshot = await task
                    audit = await self._audit_and_commit(snapshot)
                    summary.add(audit)
                    if self.on_block_committed is not None:
                        self.on_block_committed(audit)
                except Exception as exc:
                    self._abort(number, exc)
                    raise CrawlAborted(
                        f"Audit aborted at block {number}: {exc}",
                        block_number=number,
                        details={"cause": type(exc).__name__},
                    ) from exc
        finally:
            for _, task in window:
                task.cancel()
            if window:
                await asyncio.gather(*(task for _, task in window), return_exceptions=True)

    async def _audit_and_commit(self, snapshot: BlockSnapshot) -> BlockAudit:
        audit = self.auditor.audit(snapshot, self.vote_ledger)
        # Awaited before the next block is audited, so commits stay in order
        await asyncio.to_thread(self.store.commit_block_audit, audit)
        audit_metrics.record_block_audit(audit)
        return audit

    def _abort(self, block_number: int, exc: Exception) -> None:
        self.state = CrawlState.ABORTED
        if isinstance(exc, PolicyViolation):
            audit_metrics.record_policy_violation(type(exc).__name__)
        logger.error(
            "Crawl aborted at block %s: %s",
            block_number,
            exc,
            extra={
                "event": "range_crawler.aborted",
                "block_number": block_number,
                "cause": type(exc).__name__,
            },
        )
