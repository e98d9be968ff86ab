"""
Fixtures shared by the fee audit tests.
"""
import sys
from pathlib import Path

import pytest

# Make the chain fakes importable from every test module
sys.path.insert(0, str(Path(__file__).parent))

from chain_fakes import DummyChainProvider, simple_chain  # noqa: E402

from feeaudit.core.checkpoint_store import CheckpointStore  # noqa: E402


@pytest.fixture
def store(tmp_path):
    store = CheckpointStore(str(tmp_path / "audit.db"))
    yield store
    store.close()


@pytest.fixture
def provider():
    return DummyChainProvider(simple_chain(1, 6), best_block=7)
