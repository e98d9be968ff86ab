"""
Fee-audit exception hierarchy.

Provides typed exceptions for the reconciliation engine so the crawler and
the CLI can tell fatal policy drift apart from tolerable discrepancies and
from transport failures.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class FeeAuditError(Exception):
    """Base exception for all fee-audit errors.

    Attributes:
        message: Human-readable error description
        details: Numeric quantities and identifiers involved in the failure
        recoverable: Whether the operation can be retried
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable


# ==================== Policy Errors ====================


class PolicyViolation(FeeAuditError):
    """Raised when a per-extrinsic fee/burn/mint invariant fails.

    Means the policy table is stale for a protocol change it has not seen.
    Always fatal: reconciliation is deterministic and a retry reproduces it.
    """

    def __init__(
        self,
        message: str,
        block_number: Optional[int] = None,
        extrinsic_index: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.block_number = block_number
        self.extrinsic_index = extrinsic_index


class PolicySignalMissing(PolicyViolation):
    """Raised when an event the policy depends on is absent.

    Examples: a committee vote without a Voted event, an extrinsic without
    ExtrinsicSuccess/ExtrinsicFailed.
    """
    pass


class CollatorMintMismatch(PolicyViolation):
    """Raised when the amount credited to the block author differs from the
    priority fee the policy expects to be minted."""
    pass


# ==================== Reconciliation ====================


class ReconciliationDiscrepancy(FeeAuditError):
    """Block-level treasury mismatch.

    Non-fatal: transfers into the treasury outside the fee path produce it
    legitimately. Only raised when a caller opts into strict reconciliation.
    """

    def __init__(self, message: str, block_number: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.block_number = block_number


# ==================== Provider & Storage ====================


class ProviderFailure(FeeAuditError):
    """Raised when the chain data provider cannot answer after its own retries."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)
        self.status_code = status_code


class SchemaFailure(FeeAuditError):
    """Raised when the checkpoint store cannot be initialized."""
    pass


class StoreWriteError(FeeAuditError):
    """Raised when a checkpoint commit fails."""
    pass


# ==================== Crawl & Configuration ====================


class CrawlAborted(FeeAuditError):
    """Raised when a crawl stops on a fatal condition.

    The failing block number is surfaced; commits made before it remain the
    valid resumption point.
    """

    def __init__(self, message: str, block_number: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.block_number = block_number


class ConfigurationError(FeeAuditError):
    """Raised when audit configuration is invalid."""
    pass


# ==================== Utility Functions ====================


def get_error_context(exc: BaseException) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, FeeAuditError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    if isinstance(exc, (PolicyViolation, ReconciliationDiscrepancy, CrawlAborted)):
        if exc.block_number is not None:
            context["block_number"] = exc.block_number

    if isinstance(exc, PolicyViolation) and exc.extrinsic_index is not None:
        context["extrinsic_index"] = exc.extrinsic_index

    if isinstance(exc, ProviderFailure) and exc.status_code is not None:
        context["status_code"] = exc.status_code

    if isinstance(exc, CrawlAborted) and exc.__cause__ is not None:
        context["cause"] = get_error_context(exc.__cause__)

    return context
