"""Tests for the Ape-backed transport."""

import pytest

pytest.importorskip("ape")

from rpc_resilience.rpc.ape_provider import ApeRPCProvider  # noqa: E402


class StubApeProvider:
    """Synchronous provider recording requests."""

    def __init__(self):
        self.requests = []

    def make_request(self, method, params):
        self.requests.append((method, params))
        return "0x89"


@pytest.mark.asyncio
async def test_requires_connection():
    """Test that requests before connect() fail clearly."""
    provider = ApeRPCProvider(chain="polygon")

    assert not provider.is_connected
    with pytest.raises(RuntimeError, match="not connected"):
        await provider.call_method("eth_chainId")


@pytest.mark.asyncio
async def test_requests_run_through_ape_provider():
    """Test that JSON-RPC calls are delegated to Ape's provider."""
    provider = ApeRPCProvider(chain="polygon")
    stub = StubApeProvider()
    provider._provider = stub

    assert await provider.get_block_number() == 0x89
    assert stub.requests == [("eth_blockNumber", [])]

    await provider.close()
    assert not provider.is_connected
