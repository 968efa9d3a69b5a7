"""Chain, retry, cache and batching configuration loader."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from rpc_resilience.core.models import RetryPolicy

CONFIG_PATH = Path(__file__).parent / "config.yaml"

RPC_URL_ENV = "RPC_RESILIENCE_RPC_URL"
CACHE_DIR_ENV = "RPC_RESILIENCE_CACHE_DIR"


class ChainConfig(BaseModel):
    """
    Network settings for one chain.

    Attributes
    ----------
    chain_id : int
        Numeric chain ID
    network : str
        Network name understood by Ape (e.g., 'mainnet')
    rpc_endpoints : list[str]
        Endpoint URLs in priority order
    request_timeout : float
        HTTP request timeout in seconds

    """

    chain_id: int
    network: str = "mainnet"
    rpc_endpoints: list[str] = Field(min_length=1)
    request_timeout: float = Field(default=30.0, gt=0)


class CacheSettings(BaseModel):
    """Cache TTL, shared-tier namespace and location."""

    default_ttl: float = Field(default=3600.0, gt=0)
    namespace: str = "pusd_cache_"
    shared_prefixes: list[str] = Field(default_factory=lambda: ["lottery-", "tvl-", "project-"])
    directory: Path | None = None


class BatchSettings(BaseModel):
    """Batching throttle queue settings."""

    batch_size: int = Field(default=5, ge=1)
    inter_batch_delay: float = Field(default=0.5, ge=0)


class TransactionSettings(BaseModel):
    """Gas multipliers and deadlines for transaction submission."""

    gas_price_multiplier: float = Field(default=1.2, ge=1)
    gas_limit_buffer: float = Field(default=1.2, ge=1)
    health_probe_timeout: float = Field(default=5.0, gt=0)
    confirmation_timeout: float = Field(default=120.0, gt=0)


class ResilienceConfig(BaseModel):
    """Validated contents of ``config.yaml``."""

    default_chain: str = "polygon"
    chains: dict[str, ChainConfig]
    retry_policies: dict[str, RetryPolicy] = Field(default_factory=dict)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    transaction: TransactionSettings = Field(default_factory=TransactionSettings)


def load_raw_config(path: Path | None = None) -> dict[str, Any]:
    """
    Load the YAML configuration file without validation.

    Parameters
    ----------
    path : Path | None
        Configuration file. Uses the packaged ``config.yaml`` if None.

    Returns
    -------
    dict[str, Any]
        Parsed YAML document

    """
    with open(path or CONFIG_PATH, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(path: Path | None = None) -> ResilienceConfig:
    """
    Load and validate the configuration.

    Parameters
    ----------
    path : Path | None
        Configuration file. Uses the packaged ``config.yaml`` if None.

    Returns
    -------
    ResilienceConfig
        Validated configuration

    Raises
    ------
    pydantic.ValidationError
        If the file does not match the expected schema

    """
    return ResilienceConfig.model_validate(load_raw_config(path))


def get_chain_config(chain: str, path: Path | None = None) -> ChainConfig:
    """
    Get configuration for a specific chain.

    Parameters
    ----------
    chain : str
        Chain name (e.g., 'polygon', 'ethereum')
    path : Path | None
        Configuration file override

    Returns
    -------
    ChainConfig
        Chain configuration including RPC endpoints

    Raises
    ------
    KeyError
        If chain is not found in configuration

    """
    return load_config(path).chains[chain]


def get_rpc_endpoints(chain: str, path: Path | None = None) -> list[str]:
    """
    Get list of RPC endpoints for a chain.

    An endpoint set in ``RPC_RESILIENCE_RPC_URL`` is tried first.

    Parameters
    ----------
    chain : str
        Chain name
    path : Path | None
        Configuration file override

    Returns
    -------
    list[str]
        List of RPC endpoint URLs in priority order

    """
    endpoints = list(get_chain_config(chain, path).rpc_endpoints)
    override = os.environ.get(RPC_URL_ENV)
    if override:
        endpoints = [override] + [url for url in endpoints if url != override]
    return endpoints


def get_chain_id(chain: str, path: Path | None = None) -> int:
    """Get numeric chain ID."""
    return get_chain_config(chain, path).chain_id


def get_all_supported_chains(path: Path | None = None) -> list[str]:
    """Get list of all configured chain names."""
    return list(load_config(path).chains)


def get_retry_policy(name: str, path: Path | None = None) -> RetryPolicy:
    """
    Get a named retry policy.

    Parameters
    ----------
    name : str
        Policy name ('read' or 'transaction', or a custom one from the file)
    path : Path | None
        Configuration file override

    Returns
    -------
    RetryPolicy
        Configured policy, or the built-in preset when the file omits it

    Raises
    ------
    KeyError
        If the name is neither configured nor a built-in preset

    """
    policies = load_config(path).retry_policies
    if name in policies:
        return policies[name]
    if name == "read":
        return RetryPolicy.read()
    if name == "transaction":
        return RetryPolicy.transaction()
    raise KeyError(name)


def get_cache_settings(path: Path | None = None) -> CacheSettings:
    """Cache settings, with ``RPC_RESILIENCE_CACHE_DIR`` overriding the directory."""
    settings = load_config(path).cache
    cache_dir = os.environ.get(CACHE_DIR_ENV)
    if cache_dir:
        settings = settings.model_copy(update={"directory": Path(cache_dir)})
    return settings


def get_batch_settings(path: Path | None = None) -> BatchSettings:
    """Batching throttle queue settings."""
    return load_config(path).batch


def get_transaction_settings(path: Path | None = None) -> TransactionSettings:
    """Transaction submission settings."""
    return load_config(path).transaction
