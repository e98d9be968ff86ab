"""
SQLite checkpoint store for audited blocks and extrinsics.

The presence of a row in `blocks` marks a block as processed; the highest
such block is the resumption cursor. A block's extrinsic rows and its block
row are committed in one transaction, and every write is INSERT OR IGNORE so
re-auditing a block after a crash leaves existing rows untouched.

Token quantities exceed SQLite's 64-bit integers and are stored as decimal
strings.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from typing import Any, Dict, Iterable, Optional

from feeaudit.core.audit_exceptions import SchemaFailure, StoreWriteError
from feeaudit.core.block_auditor import BlockAudit, BlockRecord, ExtrinsicRecord
from feeaudit.core.chain_types import ChainIdentity

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS extrinsics (
        extrinsic_id TEXT PRIMARY KEY,
        block_number INTEGER NOT NULL,
        bytes INTEGER NOT NULL,
        section TEXT NOT NULL,
        method TEXT NOT NULL,
        success BOOLEAN NOT NULL,
        pay_fee BOOLEAN NOT NULL,
        weight TEXT NOT NULL,
        partial_fee TEXT NOT NULL,
        treasury_deposit TEXT NOT NULL,
        fee TEXT NOT NULL,
        runtime INTEGER NOT NULL,
        collator_mint TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_extrinsics_block
    ON extrinsics(block_number)
    """,
    """
    CREATE TABLE IF NOT EXISTS blocks (
        block_number INTEGER PRIMARY KEY,
        weight TEXT NOT NULL,
        treasury_deposit TEXT NOT NULL,
        treasury_amount TEXT NOT NULL,
        total_issuance TEXT NOT NULL,
        fee TEXT NOT NULL,
        runtime INTEGER NOT NULL
    )
    """,
)

_INSERT_EXTRINSIC = """
    INSERT OR IGNORE INTO extrinsics
    (extrinsic_id, block_number, bytes, section, method, success, pay_fee, weight,
     partial_fee, treasury_deposit, fee, runtime, collator_mint)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_INSERT_BLOCK = """
    INSERT OR IGNORE INTO blocks
    (block_number, weight, treasury_deposit, treasury_amount, total_issuance, fee, runtime)
    VALUES (?, ?, ?, ?, ?, ?, ?)
"""


def default_db_filename(identity: ChainIdentity) -> str:
    return f"db-fee.{identity.spec_name}.{identity.para_id}.db"


def _extrinsic_row(record: ExtrinsicRecord) -> tuple:
    return (
        record.extrinsic_id,
        record.block_number,
        record.byte_size,
        record.section,
        record.method,
        record.success,
        record.pays_fee,
        str(record.weight),
        str(record.partial_fee),
        str(record.treasury_deposit),
        str(record.fee),
        record.runtime_version,
        str(record.collator_mint),
    )


def _block_row(record: BlockRecord) -> tuple:
    return (
        record.block_number,
        str(record.weight),
        str(record.treasury_deposit),
        str(record.treasury_amount),
        str(record.total_issuance),
        str(record.fee),
        record.runtime_version,
    )


class CheckpointStore:
    """
    Durable record of audit results, keyed by block and extrinsic.

    Each operation opens its own connection under a lock; a single crawler
    is the only writer.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.lock = threading.RLock()
        self._init_database()

        logger.info(
            "Checkpoint store initialized",
            extra={"event": "checkpoint_store.initialized", "db_path": db_path},
        )

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, check_same_thread=False)

    def _init_database(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
            conn = self._connect()
        except (OSError, sqlite3.Error) as exc:
            raise SchemaFailure(
                f"Cannot open checkpoint database {self.db_path}: {exc}",
                details={"db_path": self.db_path},
            ) from exc
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            for statement in _SCHEMA:
                conn.execute(statement)
            conn.commit()
        except sqlite3.Error as exc:
            raise SchemaFailure(
                f"Cannot create checkpoint schema in {self.db_path}: {exc}",
                details={"db_path": self.db_path},
            ) from exc
        finally:
            conn.close()

    def _write(self, rows: Iterable[tuple[str, tuple]], block_number: Optional[int] = None) -> None:
        with self.lock:
            conn = self._connect()
            try:
                with conn:
                    for statement, params in rows:
                        conn.execute(statement, params)
            except sqlite3.Error as exc:
                raise StoreWriteError(
                    f"Failed to write audit rows: {exc}",
                    details={"db_path": self.db_path, "block_number": block_number},
                ) from exc
            finally:
                conn.close()

    def write_extrinsic(self, record: ExtrinsicRecord) -> None:
        self._write([(_INSERT_EXTRINSIC, _extrinsic_row(record))], record.block_number)

    def write_block(self, record: BlockRecord) -> None:
        self._write([(_INSERT_BLOCK, _block_row(record))], record.block_number)

    def commit_block_audit(self, audit: BlockAudit) -> None:
        """Write a block's extrinsics and then its block row atomically."""
        rows = [(_INSERT_EXTRINSIC, _extrinsic_row(record)) for record in audit.extrinsics]
        rows.append((_INSERT_BLOCK, _block_row(audit.block)))
        self._write(rows, audit.block_number)
        logger.debug(
            "Committed block %s",
            audit.block_number,
            extra={
                "event": "checkpoint_store.block_committed",
                "block_number": audit.block_number,
                "extrinsics": len(audit.extrinsics),
            },
        )

    def _fetch(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self.lock:
            conn = self._connect()
            conn.row_factory = sqlite3.Row
            try:
                return conn.execute(query, params).fetchall()
            finally:
                conn.close()

    def latest_block_number(self) -> Optional[int]:
        """Highest fully processed block, or None for an empty store."""
        rows = self._fetch("SELECT MAX(block_number) FROM blocks")
        return rows[0][0] if rows else None

    def get_block(self, block_number: int) -> Optional[Dict[str, Any]]:
        rows = self._fetch("SELECT * FROM blocks WHERE block_number = ?", (block_number,))
        if not rows:
            return None
        row = dict(rows[0])
        for column in ("weight", "treasury_deposit", "treasury_amount", "total_issuance", "fee"):
            row[column] = int(row[column])
        return row

    def get_extrinsics(self, block_number: int) -> list[Dict[str, Any]]:
        rows = self._fetch(
            "SELECT * FROM extrinsics WHERE block_number = ? ORDER BY CAST(substr(extrinsic_id, instr(extrinsic_id, '-') + 1) AS INTEGER)",
            (block_number,),
        )
        result = []
        for raw in rows:
            row = dict(raw)
            row["success"] = bool(row["success"])
            row["pay_fee"] = bool(row["pay_fee"])
            for column in ("weight", "partial_fee", "treasury_deposit", "fee", "collator_mint"):
                row[column] = int(row[column])
            result.append(row)
        return result

    def count_blocks(self) -> int:
        return self._fetch("SELECT COUNT(*) FROM blocks")[0][0]

    def count_extrinsics(self) -> int:
        return self._fetch("SELECT COUNT(*) FROM extrinsics")[0][0]

    def get_stats(self) -> Dict[str, Any]:
        return {
            "db_path": self.db_path,
            "blocks": self.count_blocks(),
            "extrinsics": self.count_extrinsics(),
            "latest_block": self.latest_block_number(),
        }

    def close(self) -> None:
        """Checkpoint the WAL into the main database file."""
        with self.lock:
            conn = self._connect()
            try:
                conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            except sqlite3.Error as exc:
                logger.warning(
                    "Failed to checkpoint WAL on close",
                    extra={"event": "checkpoint_store.close_error", "error": str(exc)},
                )
            finally:
                conn.close()
