"""Transport using Ape's network management (requires the ``ape`` extra)."""

import asyncio
import logging
from typing import Any

from ape import networks

from rpc_resilience.rpc.provider import BaseRPCProvider

logger = logging.getLogger(__name__)


class ApeRPCProvider(BaseRPCProvider):
    """
    RPC transport backed by Ape's provider system.

    Ape resolves the node from its own configuration (Infura, Alchemy or a
    custom URL via environment variables). Ape's provider is synchronous, so
    each request runs in a worker thread.

    Parameters
    ----------
    chain : str
        Ecosystem name (e.g., 'polygon', 'ethereum')
    network : str
        Network name (default: 'mainnet')

    """

    name = "ape"

    def __init__(self, chain: str, network: str = "mainnet") -> None:
        self.chain = chain
        self.network = network
        self._network_context = None
        self._provider = None

    @property
    def is_connected(self) -> bool:
        """Whether a network context is active."""
        return self._provider is not None

    def connect(self) -> None:
        """Connect to the network using Ape's network management."""
        network_choice = f"{self.chain}:{self.network}"
        try:
            self._network_context = networks.parse_network_choice(network_choice)
            self._network_context.__enter__()
            self._provider = networks.provider
        except Exception as e:
            error_msg = f"Failed to connect to {network_choice}: {e}"
            raise RuntimeError(error_msg) from e
        logger.debug("Connected to %s", network_choice)

    def disconnect(self) -> None:
        """Disconnect from the network."""
        if self._network_context:
            try:
                self._network_context.__exit__(None, None, None)
            except Exception as e:
                logger.debug("Error during network context cleanup: %s", e)
            self._network_context = None
        self._provider = None

    async def call_method(self, method: str, params: list[Any] | None = None) -> Any:
        if self._provider is None:
            error_msg = "Provider not connected. Call connect() first."
            raise RuntimeError(error_msg)
        return await asyncio.to_thread(self._provider.make_request, method, params or [])

    async def close(self) -> None:
        self.disconnect()

    async def __aenter__(self) -> "ApeRPCProvider":
        self.connect()
        return self
