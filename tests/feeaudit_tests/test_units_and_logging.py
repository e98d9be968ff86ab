import json
import logging
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY

from feeaudit.core import audit_metrics
from feeaudit.core.block_auditor import BlockAudit, BlockRecord, TreasuryDiscrepancy
from feeaudit.core.constants import WEI_PER_TOKEN
from feeaudit.core.logging_config import setup_logging
from feeaudit.core.units import format_tokens, from_base_units


class TestUnits:
    def test_from_base_units(self):
        assert from_base_units(WEI_PER_TOKEN * 3 // 2) == Decimal("1.5")
        assert from_base_units(1) == Decimal("0.000000000000000001")

    def test_format_truncates(self):
        assert format_tokens(WEI_PER_TOKEN * 123_456 // 100_000) == "1.2345"
        assert format_tokens(WEI_PER_TOKEN, decimals=2, symbol="MOVR") == "1.00 MOVR"
        assert format_tokens(0) == "0.0000"

    def test_rejects_non_int(self):
        with pytest.raises(ValueError):
            from_base_units(1.5)


class TestLogging:
    def test_json_file_records(self, tmp_path):
        log_file = tmp_path / "logs" / "audit.json"
        logger = setup_logging(name="feeaudit.logtest", level="DEBUG", log_file=str(log_file), environment="test")
        try:
            logger.info("Committed block %s", 42, extra={"event": "crawl.block_committed", "block_number": 42})
            for handler in logger.handlers:
                handler.flush()

            record = json.loads(log_file.read_text().splitlines()[-1])
        finally:
            for handler in logger.handlers:
                handler.close()
            logger.handlers = []

        assert record["message"] == "Committed block 42"
        assert record["event"] == "crawl.block_committed"
        assert record["block_number"] == 42
        assert record["level"] == "info"
        assert record["environment"] == "test"
        assert record["service"] == "feeaudit"
        assert record["source"]["function"] == "test_json_file_records"

    def test_invalid_level(self):
        with pytest.raises(ValueError):
            setup_logging(name="feeaudit.logtest", level="LOUD")

    def test_replaces_handlers_on_reconfigure(self):
        logger = setup_logging(name="feeaudit.logtest")
        logger = setup_logging(name="feeaudit.logtest", level="WARNING")
        try:
            assert len(logger.handlers) == 1
            assert logger.level == logging.WARNING
        finally:
            logger.handlers = []


def _sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0


def test_block_metrics():
    block = BlockRecord(
        block_number=77,
        weight=1,
        treasury_deposit=WEI_PER_TOKEN // 5,
        treasury_amount=0,
        total_issuance=0,
        fee=WEI_PER_TOKEN,
        runtime_version=4242,
        burnt=WEI_PER_TOKEN * 4 // 5,
    )
    discrepancy = TreasuryDiscrepancy(
        block_number=77, runtime_version=4242, previous_treasury=0, treasury=0, block_deposit=1
    )
    before_blocks = _sample("feeaudit_blocks_audited_total")
    before_fees = _sample("feeaudit_fees_attributed_tokens_total", {"runtime": "4242"})

    audit_metrics.record_block_audit(BlockAudit(block=block, extrinsics=[], discrepancies=[discrepancy]))

    assert _sample("feeaudit_blocks_audited_total") == before_blocks + 1
    assert _sample("feeaudit_fees_attributed_tokens_total", {"runtime": "4242"}) == pytest.approx(before_fees + 1.0)
    assert _sample("feeaudit_treasury_discrepancies_total", {"runtime": "4242"}) >= 1
    assert _sample("feeaudit_last_committed_block") == 77
