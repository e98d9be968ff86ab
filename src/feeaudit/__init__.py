"""
feeaudit - Parachain fee economics auditor

Recomputes expected fees, burn amounts and treasury deposits for every block
in a range, cross-checks them against what the chain recorded, and stores the
results in a resumable checkpoint database.

Main Components:
- Fee policy: version-gated fee/burn rules for every call kind
- Block auditor: per-block aggregation and treasury reconciliation
- Range crawler: bounded-concurrency traversal with ordered commits
- Checkpoint store: idempotent SQLite record of audited extrinsics and blocks
"""

__version__ = "0.1.0"
__author__ = "feeaudit developers"

__all__ = []
