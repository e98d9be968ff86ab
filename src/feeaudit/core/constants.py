"""
Fee audit constants

Protocol ratios, runtime-version thresholds and storage identifiers used by
the fee policy and the block auditor.

NOTE: Thresholds marked [RUNTIME] mirror historical runtime upgrades of the
audited chain. They describe past chain behavior and must never be "fixed";
a new upgrade gets a new entry in fee_policy.RUNTIME_RULES instead.
"""

from typing import Final

# =============================================================================
# TOKEN UNITS
# =============================================================================

TOKEN_DECIMALS: Final[int] = 18
WEI_PER_TOKEN: Final[int] = 10**TOKEN_DECIMALS

# Fixed-point denominator used by the fee multiplier (FixedU128)
FEE_MULTIPLIER_ONE: Final[int] = 10**18

# Perbill denominator for weight-to-fee fractional coefficients
PERBILL: Final[int] = 1_000_000_000

# =============================================================================
# FEE SPLIT
# =============================================================================

# Share of every fee that is burnt; the remainder is deposited to the treasury
BURN_PERCENT: Final[int] = 80
PERCENT_DENOMINATOR: Final[int] = 100

# Validation-data inherent approximation (imprecise by construction)
VALIDATION_DATA_FEE_RATIO: Final[int] = 5
VALIDATION_DATA_BURN_RATIO: Final[int] = 4

# =============================================================================
# ETHEREUM EXECUTION
# =============================================================================

# 1 second of weight (10^12) buys 40M gas
WEIGHT_PER_SECOND: Final[int] = 1_000_000_000_000
GAS_PER_SECOND: Final[int] = 40_000_000
WEIGHT_PER_GAS: Final[int] = WEIGHT_PER_SECOND // GAS_PER_SECOND

# Used when a transaction reports a zero gas limit
DEFAULT_GAS_LIMIT: Final[int] = 15_000_000

# =============================================================================
# RUNTIME THRESHOLDS [RUNTIME]
# =============================================================================

# 20% of ethereum fees start going to the treasury
RUNTIME_ETHEREUM_TREASURY_SPLIT: Final[int] = 800
# Gas limit charged instead of gas used for a specific balance/fee coincidence
RUNTIME_GAS_LIMIT_BUG_START: Final[int] = 800
RUNTIME_GAS_LIMIT_BUG_END: Final[int] = 1000
# baseFee pallet storage becomes available
RUNTIME_BASE_FEE_PALLET: Final[int] = 1200
# Priority fee no longer exceeds maxFeePerGas - baseFee
RUNTIME_PRIORITY_TIP_CAPPED: Final[int] = 1400
# evm.hotfixIncAccountSufficients becomes fee-free
RUNTIME_HOTFIX_FEE_FREE: Final[int] = 1500
# Validation data inherent stops causing treasury deposits
RUNTIME_VALIDATION_DATA_NO_DEPOSIT: Final[int] = 1700

# =============================================================================
# CHAIN IDENTIFIERS
# =============================================================================

ETHEREUM_SECTION: Final[str] = "ethereum"
PARACHAIN_SYSTEM_SECTION: Final[str] = "parachainSystem"
SUDO_SECTION: Final[str] = "sudo"
AUTHOR_INHERENT_SECTION: Final[str] = "authorInherent"

# Sections whose calls pay fees even when unsigned
ALWAYS_FEE_BEARING_SECTIONS: Final[frozenset] = frozenset({ETHEREUM_SECTION, PARACHAIN_SYSTEM_SECTION})

# Both spellings exist on chain
COMMITTEE_SECTIONS: Final[frozenset] = frozenset(
    {"councilCollective", "techCommitteeCollective", "techComitteeCollective"}
)

# Pre-runtime digest engine id carrying the block author
AUTHOR_DIGEST_ENGINE: Final[str] = "nmbs"

# Treasury sovereign account: b"modl" + pallet id + zero padding to 20 bytes
MODULE_ACCOUNT_PREFIX: Final[str] = "0x6d6f646c"
MODULE_ACCOUNT_PADDING: Final[str] = "0000000000000000"

# =============================================================================
# CRAWLER DEFAULTS
# =============================================================================

DEFAULT_CONCURRENCY: Final[int] = 10
DEFAULT_BLOCK_COUNT: Final[int] = 2000
# Hard ceiling on one crawl run; progress is checkpointed so a rerun resumes
DEFAULT_CRAWL_TIMEOUT_SECONDS: Final[int] = 300
