"""RPC layer with error classification, retries, caching, batching, and transaction submission."""

from rpc_resilience.rpc.batch import BatchQueue
from rpc_resilience.rpc.cache import TTLCache, make_cache_key
from rpc_resilience.rpc.errors import (
    ContractError,
    ErrorClassifier,
    RateLimitedError,
    ResilienceError,
    RPCConnectionError,
    RPCTimeoutError,
    RPCTransportError,
    TransientRPCError,
    UnknownRPCError,
    UserRejectedError,
    classify,
    decode_revert_reason,
    describe_error,
)
from rpc_resilience.rpc.provider import BaseRPCProvider, HttpRPCProvider, MultiEndpointProvider
from rpc_resilience.rpc.retry import RetryExecutor, compute_delay, with_retry
from rpc_resilience.rpc.storage import FileSharedStore, MemorySharedStore, SharedStore
from rpc_resilience.rpc.timeout import load_with_timeout, with_timeout
from rpc_resilience.rpc.transaction import TransactionSubmitter, submit_transaction

__all__ = [
    "BaseRPCProvider",
    "BatchQueue",
    "ContractError",
    "ErrorClassifier",
    "FileSharedStore",
    "HttpRPCProvider",
    "MemorySharedStore",
    "MultiEndpointProvider",
    "RPCConnectionError",
    "RPCTimeoutError",
    "RPCTransportError",
    "RateLimitedError",
    "ResilienceError",
    "RetryExecutor",
    "SharedStore",
    "TTLCache",
    "TransactionSubmitter",
    "TransientRPCError",
    "UnknownRPCError",
    "UserRejectedError",
    "classify",
    "compute_delay",
    "decode_revert_reason",
    "describe_error",
    "load_with_timeout",
    "make_cache_key",
    "submit_transaction",
    "with_retry",
    "with_timeout",
]
