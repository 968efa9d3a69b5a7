"""JSON-RPC transports: the raw boundary the resilience layer drives."""

import asyncio
import inspect
import itertools
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import httpx

from rpc_resilience.core.models import ErrorKind
from rpc_resilience.rpc.errors import (
    ErrorClassifier,
    RPCConnectionError,
    RPCTimeoutError,
    RPCTransportError,
    default_classifier,
    describe_kind,
)
from rpc_resilience.rpc.timeout import with_timeout

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_RECEIPT_TIMEOUT = 120.0
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_POLL_TIMEOUT = 10.0

Signer = Callable[[dict[str, Any]], str | Awaitable[str]]


def to_int(value: Any) -> int:
    """Convert a JSON-RPC quantity (hex string or int) to ``int``."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    msg = f"Not a JSON-RPC quantity: {value!r}"
    raise ValueError(msg)


class BaseRPCProvider(ABC):
    """
    Async JSON-RPC transport.

    Subclasses implement :meth:`call_method`; every other query is built on
    top of it. Errors are raised in the transport shape
    (:class:`RPCTransportError` and subclasses, or whatever the underlying
    client raises) and left for the classifier to interpret.

    """

    name: str = "rpc"

    @abstractmethod
    async def call_method(self, method: str, params: list[Any] | None = None) -> Any:
        """
        Send one JSON-RPC request.

        Parameters
        ----------
        method : str
            RPC method name (e.g., 'eth_call', 'eth_getLogs')
        params : list[Any] | None
            Method parameters

        Returns
        -------
        Any
            The ``result`` field of the response

        """

    async def get_block_number(self) -> int:
        """Latest block number."""
        return to_int(await self.call_method("eth_blockNumber", []))

    async def get_block(self, tag: str | int = "latest", full_transactions: bool = False) -> dict | None:
        """
        Fetch a block header.

        Parameters
        ----------
        tag : str | int
            Block tag ('latest', 'pending'...) or number
        full_transactions : bool
            Include full transaction objects

        Returns
        -------
        dict | None
            Block object, or None if unknown

        """
        block_id = hex(tag) if isinstance(tag, int) else tag
        return await self.call_method("eth_getBlockByNumber", [block_id, full_transactions])

    async def get_gas_price(self) -> int:
        """Node fee estimation (``eth_gasPrice``) in wei."""
        return to_int(await self.call_method("eth_gasPrice", []))

    async def get_max_priority_fee(self) -> int:
        """Suggested EIP-1559 tip (``eth_maxPriorityFeePerGas``) in wei."""
        return to_int(await self.call_method("eth_maxPriorityFeePerGas", []))

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        """Gas estimation for a call; raises with revert data if the call would revert."""
        return to_int(await self.call_method("eth_estimateGas", [tx]))

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        """Submit a transaction signed by the node or wallet; returns its hash."""
        return await self.call_method("eth_sendTransaction", [tx])

    async def get_transaction_receipt(self, tx_hash: str) -> dict | None:
        """Receipt of an included transaction, or None while pending."""
        return await self.call_method("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
    ) -> dict:
        """
        Wait for a transaction receipt.

        Each poll is bounded by ``poll_timeout`` so that a single stalled
        request cannot hold the wait beyond the overall deadline.

        Parameters
        ----------
        tx_hash : str
            Transaction hash
        timeout : float
            Maximum wait time in seconds
        poll_interval : float
            Polling interval in seconds
        poll_timeout : float
            Deadline for each receipt request

        Returns
        -------
        dict
            Transaction receipt

        Raises
        ------
        RPCTimeoutError
            If the receipt is not found within ``timeout``

        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            try:
                receipt = await with_timeout(
                    self.get_transaction_receipt(tx_hash),
                    min(poll_timeout, max(deadline - loop.time(), 0.0)),
                    label="eth_getTransactionReceipt",
                )
            except RPCTimeoutError:
                receipt = None
            if receipt is not None:
                return receipt
            await asyncio.sleep(min(poll_interval, max(deadline - loop.time(), 0.0)))

        raise RPCTimeoutError(
            describe_kind(ErrorKind.TIMEOUT),
            detail=f"Transaction {tx_hash} not confirmed within {timeout}s",
        )

    async def close(self) -> None:
        """Release transport resources."""

    async def __aenter__(self) -> "BaseRPCProvider":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Async context manager exit."""
        await self.close()


class HttpRPCProvider(BaseRPCProvider):
    """
    JSON-RPC 2.0 over HTTP using ``httpx``.

    Parameters
    ----------
    url : str
        RPC endpoint URL
    timeout : float
        Request timeout in seconds
    signer : Signer | None
        Callable turning a transaction dict into a signed raw transaction
        (0x-prefixed hex). When set, transactions go through
        ``eth_sendRawTransaction``; otherwise ``eth_sendTransaction`` lets
        the node or wallet sign. Key handling stays with the caller.
    client : httpx.AsyncClient | None
        HTTP client to use. A client owned by the provider is created if None.

    """

    name = "http"

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        signer: Signer | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.signer = signer
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def call_method(self, method: str, params: list[Any] | None = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(self._ids),
        }

        try:
            response = await self._client.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            msg = f"Request timeout calling {method} on {self.url}: {e}"
            raise RPCConnectionError(msg) from e
        except httpx.TransportError as e:
            msg = f"HTTP request failed calling {method} on {self.url}: {e}"
            raise RPCConnectionError(msg) from e

        data = _json_or_none(response)
        error = data.get("error") if isinstance(data, dict) else None

        if error:
            if not isinstance(error, dict):
                error = {"message": str(error)}
            raise RPCTransportError(
                error.get("message") or "RPC error",
                code=error.get("code"),
                data=error.get("data"),
                http_status=response.status_code if response.is_error else None,
                retry_after=_parse_retry_after(response),
            )

        if response.is_error:
            msg = f"RPC endpoint returned HTTP {response.status_code} for {method}"
            raise RPCTransportError(
                msg,
                http_status=response.status_code,
                retry_after=_parse_retry_after(response),
            )

        if not isinstance(data, dict) or "result" not in data:
            msg = f"Malformed JSON-RPC response for {method}"
            raise RPCTransportError(msg, code=-32700)

        return data["result"]

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        if self.signer is None:
            return await super().send_transaction(tx)

        raw_tx = self.signer(tx)
        if inspect.isawaitable(raw_tx):
            raw_tx = await raw_tx
        return await self.call_method("eth_sendRawTransaction", [raw_tx])

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def __repr__(self) -> str:
        return f"HttpRPCProvider({self.url!r})"


class MultiEndpointProvider(BaseRPCProvider):
    """
    Ordered list of endpoints with rotation on recoverable failures.

    Requests go to the current endpoint. When it fails with a rate-limit,
    timeout or transient error the provider rotates to the next endpoint
    and re-raises, so the retry executor's next attempt hits a different
    node. Contract reverts and user rejections do not rotate.

    Parameters
    ----------
    providers : Sequence[BaseRPCProvider]
        Endpoints in priority order
    classifier : ErrorClassifier | None
        Classifier deciding when to rotate

    """

    name = "multi"

    _rotate_on = (ErrorKind.RATE_LIMITED, ErrorKind.TIMEOUT, ErrorKind.TRANSIENT_RPC)

    def __init__(
        self,
        providers: Sequence[BaseRPCProvider],
        classifier: ErrorClassifier | None = None,
    ) -> None:
        if not providers:
            msg = "MultiEndpointProvider needs at least one provider"
            raise ValueError(msg)
        self.providers = list(providers)
        self.classifier = classifier or default_classifier
        self._index = 0

    @classmethod
    def from_urls(
        cls,
        urls: Sequence[str],
        timeout: float = DEFAULT_TIMEOUT,
        signer: Signer | None = None,
    ) -> "MultiEndpointProvider":
        """Build one :class:`HttpRPCProvider` per URL."""
        return cls([HttpRPCProvider(url, timeout=timeout, signer=signer) for url in urls])

    @property
    def current(self) -> BaseRPCProvider:
        """Endpoint receiving requests."""
        return self.providers[self._index]

    def rotate_endpoint(self) -> BaseRPCProvider:
        """Switch to the next endpoint (wrapping around) and return it."""
        self._index = (self._index + 1) % len(self.providers)
        logger.info("Switching RPC endpoint to %r", self.current)
        return self.current

    async def call_method(self, method: str, params: list[Any] | None = None) -> Any:
        provider = self.current
        try:
            return await provider.call_method(method, params)
        except Exception as e:
            self._maybe_rotate(provider, e)
            raise

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        provider = self.current
        try:
            return await provider.send_transaction(tx)
        except Exception as e:
            self._maybe_rotate(provider, e)
            raise

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()

    def _maybe_rotate(self, provider: BaseRPCProvider, error: Exception) -> None:
        # Only rotate if no concurrent failure already moved us off this endpoint
        if provider is self.current and self.classifier.classify(error) in self._rotate_on:
            self.rotate_endpoint()


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        # HTTP-date form is not used by RPC providers
        return None
