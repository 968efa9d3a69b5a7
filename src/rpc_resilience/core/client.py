"""Client facade wiring cache, batch queue, retries and transaction submission."""

import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

from rpc_resilience.core.models import GasPricePlan, RetryPolicy, TransactionCall, TransactionResult
from rpc_resilience.data.loader import (
    get_batch_settings,
    get_cache_settings,
    get_chain_config,
    get_retry_policy,
    get_rpc_endpoints,
    get_transaction_settings,
)
from rpc_resilience.rpc.batch import BatchQueue
from rpc_resilience.rpc.cache import TTLCache, make_cache_key
from rpc_resilience.rpc.errors import ErrorClassifier, default_classifier
from rpc_resilience.rpc.provider import BaseRPCProvider, MultiEndpointProvider
from rpc_resilience.rpc.retry import RetryExecutor
from rpc_resilience.rpc.storage import FileSharedStore
from rpc_resilience.rpc.transaction import TransactionSubmitter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResilientRPCClient:
    """
    Dependable RPC client over an unreliable JSON-RPC transport.

    Reads flow through the cache, then the batching throttle queue, then the
    retry executor, then the transport; successful results are stored back
    in the cache. Transactions bypass the cache and go through the
    transaction submitter with the transaction policy.

    Construct one instance and pass it to whatever needs RPC access.

    Parameters
    ----------
    transport : BaseRPCProvider
        JSON-RPC transport
    cache : TTLCache | None
        Read cache. A process-local cache is created if None.
    queue : BatchQueue | None
        Batching throttle queue for reads. Created from ``executor`` and
        ``read_policy`` if None.
    executor : RetryExecutor | None
        Retry executor shared by reads and transactions
    read_policy : RetryPolicy | None
        Retry policy for reads
    transaction_policy : RetryPolicy | None
        Retry policy for transactions
    classifier : ErrorClassifier | None
        Error classifier
    **submitter_options : Any
        Extra ``TransactionSubmitter`` options (gas multipliers, deadlines...)

    """

    def __init__(
        self,
        transport: BaseRPCProvider,
        cache: TTLCache | None = None,
        queue: BatchQueue | None = None,
        executor: RetryExecutor | None = None,
        read_policy: RetryPolicy | None = None,
        transaction_policy: RetryPolicy | None = None,
        classifier: ErrorClassifier | None = None,
        **submitter_options: Any,
    ) -> None:
        self.transport = transport
        self.classifier = classifier or default_classifier
        self.read_policy = read_policy or RetryPolicy.read()
        self.transaction_policy = transaction_policy or RetryPolicy.transaction()
        self.executor = executor or RetryExecutor(self.read_policy, classifier=self.classifier)
        self.cache = cache if cache is not None else TTLCache()
        self.queue = queue if queue is not None else BatchQueue(self.executor, policy=self.read_policy)
        self.submitter_options = submitter_options

    @classmethod
    def from_config(
        cls,
        chain: str,
        cache_dir: Path | str | None = None,
        config_path: Path | None = None,
    ) -> "ResilientRPCClient":
        """
        Build a client from the YAML configuration.

        Parameters
        ----------
        chain : str
            Chain name (e.g., 'polygon')
        cache_dir : Path | str | None
            Directory of the shared cache tier. Falls back to the configured
            directory; shared keys stay process-local when neither is set.
        config_path : Path | None
            Configuration file override

        Returns
        -------
        ResilientRPCClient
            Client over a multi-endpoint transport for the chain

        Raises
        ------
        KeyError
            If chain is not found in configuration

        """
        chain_config = get_chain_config(chain, config_path)
        transport = MultiEndpointProvider.from_urls(
            get_rpc_endpoints(chain, config_path),
            timeout=chain_config.request_timeout,
        )

        cache_settings = get_cache_settings(config_path)
        directory = cache_dir or cache_settings.directory
        cache = TTLCache(
            default_ttl=cache_settings.default_ttl,
            shared_store=FileSharedStore(directory) if directory else None,
            shared_prefixes=cache_settings.shared_prefixes,
            namespace=cache_settings.namespace,
        )

        read_policy = get_retry_policy("read", config_path)
        executor = RetryExecutor(read_policy)
        batch_settings = get_batch_settings(config_path)
        queue = BatchQueue(
            executor,
            policy=read_policy,
            batch_size=batch_settings.batch_size,
            inter_batch_delay=batch_settings.inter_batch_delay,
        )

        logger.debug("Configured client for %s (chain id %d)", chain, chain_config.chain_id)
        return cls(
            transport,
            cache=cache,
            queue=queue,
            executor=executor,
            read_policy=read_policy,
            transaction_policy=get_retry_policy("transaction", config_path),
            **get_transaction_settings(config_path).model_dump(),
        )

    async def fetch(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        ttl: float | None = None,
        use_cache: bool = True,
        label: str | None = None,
    ) -> T:
        """
        Cached, queued and retried execution of an arbitrary read.

        Parameters
        ----------
        key : str
            Cache key
        operation : Callable[[], Awaitable[T]]
            Zero-argument function returning a fresh awaitable per attempt
        ttl : float | None
            Time-to-live in seconds. Uses the cache default if None.
        use_cache : bool
            Look up and store the result in the cache
        label : str | None
            Operation name for logs

        Returns
        -------
        T
            Cached or freshly fetched value

        """
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit for %s", label or key)
                return cached

        result = await self.queue.add(operation, label=label)
        if use_cache and result is not None:
            self.cache.set(key, result, ttl)
        return result

    async def read(
        self,
        method: str,
        params: list[Any] | None = None,
        *,
        cache_key: str | None = None,
        ttl: float | None = None,
        use_cache: bool = True,
    ) -> Any:
        """
        Perform a JSON-RPC read.

        Parameters
        ----------
        method : str
            RPC method name (e.g., 'eth_call')
        params : list[Any] | None
            Method parameters
        cache_key : str | None
            Cache key. Derived from method and params if None; pass a shared
            prefix (e.g. 'tvl-...') to persist the value across processes.
        ttl : float | None
            Time-to-live in seconds
        use_cache : bool
            Bypass the cache entirely when False

        Returns
        -------
        Any
            The ``result`` field of the response

        Raises
        ------
        ResilienceError
            Classified failure once retries are exhausted

        """
        params = params or []
        key = cache_key or make_cache_key(method, params)
        return await self.fetch(
            key,
            lambda: self.transport.call_method(method, params),
            ttl=ttl,
            use_cache=use_cache,
            label=method,
        )

    def submitter(self, policy: RetryPolicy | None = None, **options: Any) -> TransactionSubmitter:
        """Transaction submitter over this client's transport and executor."""
        return TransactionSubmitter(
            self.transport,
            policy or self.transaction_policy,
            executor=self.executor,
            classifier=self.classifier,
            **{**self.submitter_options, **options},
        )

    async def submit(self, call: TransactionCall, policy: RetryPolicy | None = None, **options: Any) -> TransactionResult:
        """
        Submit a state-changing transaction; never cached.

        Parameters
        ----------
        call : TransactionCall
            ABI-encoded contract call
        policy : RetryPolicy | None
            Retry policy. Uses the transaction policy if None.
        **options : Any
            ``TransactionSubmitter`` options for this call only (e.g. ``on_state``)

        Returns
        -------
        TransactionResult
            Confirmed transaction

        """
        return await self.submitter(policy, **options).submit(call)

    async def gas_price_plan(self) -> GasPricePlan:
        """Gas price a transaction sent now would use."""
        return await self.submitter().resolve_gas_price()

    async def close(self) -> None:
        """Close the transport."""
        await self.transport.close()

    async def __aenter__(self) -> "ResilientRPCClient":
        return self

    async def __aexit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        await self.close()
