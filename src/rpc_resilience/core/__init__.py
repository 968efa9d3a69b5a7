"""Core models and the client facade."""

from rpc_resilience.core.models import (
    CacheEntry,
    ErrorKind,
    GasPricePlan,
    GasPriceSource,
    RetryPolicy,
    TransactionCall,
    TransactionResult,
    TransactionState,
)

__all__ = [
    "CacheEntry",
    "ErrorKind",
    "GasPricePlan",
    "GasPriceSource",
    "RetryPolicy",
    "TransactionCall",
    "TransactionResult",
    "TransactionState",
]
