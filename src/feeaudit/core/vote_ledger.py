"""
Per-run record of committee votes already seen.

A member's first vote on a proposal is fee-free. The on-chain tally at the
parent block covers votes from earlier blocks, but not votes earlier in the
same block, nor votes the tally lost when the member changed sides. The
ledger remembers every vote the audit has attributed for the lifetime of a
run.

The ledger is only sound when blocks are fed to it in increasing block
order; the range crawler guarantees this by auditing in commit order.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Set

logger = logging.getLogger(__name__)


class VoteLedger:
    """Accumulates (account, proposal key) pairs in block order."""

    def __init__(self) -> None:
        self._votes: Dict[str, Set[str]] = {}
        self._last_block: Optional[int] = None

    def has_voted(self, account: str, proposal_key: str) -> bool:
        return proposal_key in self._votes.get(account.lower(), ())

    def record(self, account: str, proposal_key: str, block_number: int) -> None:
        if self._last_block is not None and block_number < self._last_block:
            # Out-of-order feeding would make first-vote exemptions wrong
            raise ValueError(
                f"Vote ledger fed block {block_number} after block {self._last_block}"
            )
        self._last_block = block_number
        self._votes.setdefault(account.lower(), set()).add(proposal_key)
        logger.debug(
            "Committee vote recorded",
            extra={
                "event": "vote_ledger.recorded",
                "account": account,
                "proposal_key": proposal_key,
                "block_number": block_number,
            },
        )

    @property
    def last_block(self) -> Optional[int]:
        return self._last_block

    def __len__(self) -> int:
        return sum(len(keys) for keys in self._votes.values())
