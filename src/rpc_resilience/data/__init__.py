"""Data loading and configuration management."""

from rpc_resilience.data.loader import (
    BatchSettings,
    CacheSettings,
    ChainConfig,
    ResilienceConfig,
    TransactionSettings,
    get_all_supported_chains,
    get_batch_settings,
    get_cache_settings,
    get_chain_config,
    get_chain_id,
    get_retry_policy,
    get_rpc_endpoints,
    get_transaction_settings,
    load_config,
)

__all__ = [
    "BatchSettings",
    "CacheSettings",
    "ChainConfig",
    "ResilienceConfig",
    "TransactionSettings",
    "get_all_supported_chains",
    "get_batch_settings",
    "get_cache_settings",
    "get_chain_config",
    "get_chain_id",
    "get_retry_policy",
    "get_rpc_endpoints",
    "get_transaction_settings",
    "load_config",
]
