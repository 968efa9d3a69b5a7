"""Tests for the ResilientRPCClient facade."""

import asyncio

import pytest

from rpc_resilience.core.client import ResilientRPCClient
from rpc_resilience.core.models import RetryPolicy, TransactionCall, TransactionState
from rpc_resilience.rpc.batch import BatchQueue
from rpc_resilience.rpc.cache import TTLCache, make_cache_key
from rpc_resilience.rpc.errors import ContractError, RPCTransportError
from rpc_resilience.rpc.provider import HttpRPCProvider, MultiEndpointProvider
from rpc_resilience.rpc.retry import RetryExecutor
from rpc_resilience.rpc.storage import FileSharedStore

BALANCE_CALL = [{"to": "0x1111111111111111111111111111111111111111", "data": "0x70a08231"}, "latest"]


@pytest.mark.asyncio
async def test_rate_limited_read_end_to_end(transport):
    """Test a read throttled twice, then answered, then served from the cache."""
    transport.script(
        "eth_call",
        RPCTransportError("Too many requests", code=-32005),
        RPCTransportError("Too many requests", code=-32005),
        "0x2a",
    )
    policy = RetryPolicy.read(base_delay=0.1, rate_limit_multiplier=1.0, jitter=(0.0, 0.0))
    client = ResilientRPCClient(transport, read_policy=policy)
    loop = asyncio.get_running_loop()

    start = loop.time()
    result = await client.read("eth_call", BALANCE_CALL)
    elapsed = loop.time() - start

    assert result == "0x2a"
    # 0.1s then 0.2s of backoff, minus timer resolution
    assert elapsed >= 0.29
    assert transport.count("eth_call") == 3
    assert client.cache.get(make_cache_key("eth_call", BALANCE_CALL)) == "0x2a"

    assert await client.read("eth_call", BALANCE_CALL) == "0x2a"
    assert transport.count("eth_call") == 3


@pytest.mark.asyncio
async def test_read_without_cache(transport, executor):
    """Test that use_cache=False always hits the transport and stores nothing."""
    transport.default("eth_blockNumber", "0x10")
    client = ResilientRPCClient(transport, executor=executor)

    await client.read("eth_blockNumber", use_cache=False)
    await client.read("eth_blockNumber", use_cache=False)

    assert transport.count("eth_blockNumber") == 2
    assert len(client.cache) == 0


@pytest.mark.asyncio
async def test_read_error_is_classified(transport, executor):
    """Test that failures reach the caller as classified errors and are not cached."""
    transport.default("eth_call", RPCTransportError("execution reverted: Sold out", code=3))
    client = ResilientRPCClient(transport, executor=executor)

    with pytest.raises(ContractError) as exc_info:
        await client.read("eth_call", BALANCE_CALL)

    assert exc_info.value.revert_reason == "Sold out"
    assert len(client.cache) == 0


@pytest.mark.asyncio
async def test_shared_cache_key_reused_across_clients(tmp_path, make_transport, executor):
    """Test that a shared-prefix read is served to a second client from the shared tier."""
    first = make_transport("first").default("eth_call", "0x64")
    second = make_transport("second").default("eth_call", "0x00")

    client_a = ResilientRPCClient(first, cache=TTLCache(shared_store=FileSharedStore(tmp_path)), executor=executor)
    client_b = ResilientRPCClient(second, cache=TTLCache(shared_store=FileSharedStore(tmp_path)), executor=executor)

    assert await client_a.read("eth_call", BALANCE_CALL, cache_key="tvl-total", ttl=60) == "0x64"
    assert await client_b.read("eth_call", BALANCE_CALL, cache_key="tvl-total") == "0x64"
    assert second.count("eth_call") == 0


@pytest.mark.asyncio
async def test_fetch_arbitrary_operation(transport, executor):
    """Test caching and queueing of a non JSON-RPC read."""
    calls = []

    async def lottery_stats():
        calls.append(1)
        return {"round": 3, "pot": "120.5"}

    client = ResilientRPCClient(transport, executor=executor)

    first = await client.fetch("lottery-stats", lottery_stats)
    second = await client.fetch("lottery-stats", lottery_stats)

    assert first == second == {"round": 3, "pot": "120.5"}
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_submit_bypasses_cache(transport, sleeper):
    """Test transaction submission through the client."""
    transport.default("eth_getBlockByNumber", {"baseFeePerGas": hex(10**9)})
    transport.default("eth_estimateGas", hex(21_000))
    transport.default("eth_sendTransaction", "0xfeed")
    transport.default("eth_blockNumber", "0x1")
    transport.default("eth_getTransactionReceipt", {"status": "0x1"})
    states = []
    client = ResilientRPCClient(
        transport,
        executor=RetryExecutor(sleep=sleeper),
        poll_interval=0.01,
    )

    result = await client.submit(
        TransactionCall(to="0x1111111111111111111111111111111111111111"),
        on_state=states.append,
    )

    assert result.tx_hash == "0xfeed"
    assert states[-1] == TransactionState.CONFIRMED
    assert len(client.cache) == 0
    # transaction policy warm-up
    assert sleeper.delays == [0.5]


@pytest.mark.asyncio
async def test_gas_price_plan(transport, executor):
    """Test the gas price preview."""
    transport.default("eth_getBlockByNumber", {"baseFeePerGas": hex(100)})
    transport.default("eth_maxPriorityFeePerGas", hex(20))
    client = ResilientRPCClient(transport, executor=executor)

    plan = await client.gas_price_plan()

    assert plan.gas_price == 144


@pytest.mark.asyncio
async def test_context_manager_closes_transport(transport):
    """Test that leaving the context closes the transport."""
    async with ResilientRPCClient(transport) as client:
        assert client.transport is transport

    assert transport.closed


@pytest.mark.asyncio
async def test_from_config(tmp_path, monkeypatch):
    """Test building the full stack from the packaged configuration."""
    monkeypatch.delenv("RPC_RESILIENCE_RPC_URL", raising=False)
    client = ResilientRPCClient.from_config("polygon", cache_dir=tmp_path)

    assert isinstance(client.transport, MultiEndpointProvider)
    assert [p.url for p in client.transport.providers][0] == "https://polygon-rpc.com"
    assert all(isinstance(p, HttpRPCProvider) for p in client.transport.providers)
    assert isinstance(client.cache.shared_store, FileSharedStore)
    assert isinstance(client.queue, BatchQueue)
    assert client.queue.batch_size == 5
    assert client.transaction_policy.warmup_delay == 0.5
    assert client.submitter().gas_price_multiplier == 1.2
    await client.close()


@pytest.mark.asyncio
async def test_from_config_env_endpoint(monkeypatch):
    """Test that RPC_RESILIENCE_RPC_URL is tried first."""
    monkeypatch.setenv("RPC_RESILIENCE_RPC_URL", "https://private.rpc.test")
    monkeypatch.delenv("RPC_RESILIENCE_CACHE_DIR", raising=False)

    client = ResilientRPCClient.from_config("polygon")

    assert client.transport.current.url == "https://private.rpc.test"
    assert client.cache.shared_store is None
    await client.close()


def test_from_config_unknown_chain():
    """Test that an unknown chain raises KeyError."""
    with pytest.raises(KeyError):
        ResilientRPCClient.from_config("nonexistent")
