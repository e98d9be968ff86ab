"""Chain data providers for the fee audit."""

from feeaudit.provider.base import ChainDataProvider, StateQuery, StateQueryKind
from feeaudit.provider.http_provider import HttpChainProvider

__all__ = ["ChainDataProvider", "StateQuery", "StateQueryKind", "HttpChainProvider"]
