"""
Checkpoint store: schema, idempotent commits and the resumption cursor.
"""
import sqlite3

import pytest

from feeaudit.core.audit_exceptions import SchemaFailure
from feeaudit.core.block_auditor import BlockAudit, BlockRecord, ExtrinsicRecord
from feeaudit.core.chain_types import ChainIdentity
from feeaudit.core.checkpoint_store import CheckpointStore, default_db_filename

BIG = 123_456_789_012_345_678_901_234_567


def extrinsic_record(block_number, index, fee=1000):
    return ExtrinsicRecord(
        block_number=block_number,
        extrinsic_index=index,
        byte_size=144,
        section="balances",
        method="transfer",
        success=True,
        pays_fee=True,
        weight=200_000,
        partial_fee=fee,
        treasury_deposit=fee - fee * 80 // 100,
        fee=fee,
        burnt=fee * 80 // 100,
        runtime_version=1500,
        collator_mint=0,
    )


def block_audit(block_number, extrinsics=2, treasury_amount=BIG):
    records = [extrinsic_record(block_number, index) for index in range(extrinsics)]
    block = BlockRecord(
        block_number=block_number,
        weight=sum(r.weight for r in records),
        treasury_deposit=sum(r.treasury_deposit for r in records),
        treasury_amount=treasury_amount,
        total_issuance=BIG * 10,
        fee=sum(r.fee for r in records),
        runtime_version=1500,
        burnt=sum(r.burnt for r in records),
    )
    return BlockAudit(block=block, extrinsics=records)


def test_empty_store_has_no_cursor(store):
    assert store.latest_block_number() is None
    assert store.count_blocks() == 0
    assert store.count_extrinsics() == 0


def test_commit_writes_block_and_extrinsics(store):
    store.commit_block_audit(block_audit(7, extrinsics=3))

    assert store.latest_block_number() == 7
    assert store.count_extrinsics() == 3
    row = store.get_block(7)
    assert row["treasury_amount"] == BIG
    assert row["total_issuance"] == BIG * 10
    assert row["fee"] == 3000
    extrinsics = store.get_extrinsics(7)
    assert [e["extrinsic_id"] for e in extrinsics] == ["7-0", "7-1", "7-2"]
    assert extrinsics[0]["success"] is True
    assert extrinsics[0]["partial_fee"] == 1000


def test_big_integers_stored_as_decimal_text(store):
    store.commit_block_audit(block_audit(7))

    conn = sqlite3.connect(store.db_path)
    try:
        value, kind = conn.execute(
            "SELECT treasury_amount, typeof(treasury_amount) FROM blocks WHERE block_number = 7"
        ).fetchone()
    finally:
        conn.close()
    assert kind == "text"
    assert value == str(BIG)


def test_recommit_is_idempotent(store):
    store.commit_block_audit(block_audit(7))
    store.commit_block_audit(block_audit(7, treasury_amount=1))

    assert store.count_blocks() == 1
    assert store.count_extrinsics() == 2
    assert store.get_block(7)["treasury_amount"] == BIG


def test_partially_written_block_is_completed(store):
    audit = block_audit(8, extrinsics=2)
    store.write_extrinsic(audit.extrinsics[0])
    assert store.latest_block_number() is None

    store.commit_block_audit(audit)

    assert store.latest_block_number() == 8
    assert store.count_extrinsics() == 2


def test_cursor_is_highest_block(store):
    for number in (3, 4, 5):
        store.commit_block_audit(block_audit(number))
    store.write_block(block_audit(2).block)

    assert store.latest_block_number() == 5
    assert store.get_block(42) is None


def test_schema_creation_is_repeatable(tmp_path):
    path = str(tmp_path / "audit.db")
    CheckpointStore(path).commit_block_audit(block_audit(1))

    reopened = CheckpointStore(path)

    assert reopened.latest_block_number() == 1
    assert reopened.get_stats()["extrinsics"] == 2


def test_unusable_path_raises_schema_failure(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")

    with pytest.raises(SchemaFailure):
        CheckpointStore(str(blocker / "audit.db"))


def test_default_filename_names_chain():
    assert default_db_filename(ChainIdentity("moonriver", 2023)) == "db-fee.moonriver.2023.db"
