"""Multi-step transaction submission: gas pricing, estimation, broadcast, confirmation."""

import logging
from collections.abc import Callable
from typing import Any

from rpc_resilience.core.models import (
    ErrorKind,
    GasPricePlan,
    GasPriceSource,
    RetryPolicy,
    TransactionCall,
    TransactionResult,
    TransactionState,
)
from rpc_resilience.rpc.errors import (
    ContractError,
    ErrorClassifier,
    ResilienceError,
    TransientRPCError,
    default_classifier,
    describe_kind,
)
from rpc_resilience.rpc.provider import DEFAULT_POLL_INTERVAL, BaseRPCProvider, to_int
from rpc_resilience.rpc.retry import RetryExecutor
from rpc_resilience.rpc.timeout import with_timeout

logger = logging.getLogger(__name__)

DEFAULT_GAS_PRICE_MULTIPLIER = 1.2
DEFAULT_GAS_LIMIT_BUFFER = 1.2
DEFAULT_HEALTH_PROBE_TIMEOUT = 5.0
DEFAULT_CONFIRMATION_TIMEOUT = 120.0

StateCallback = Callable[[TransactionState], None]


def apply_multiplier(value: int, multiplier: float) -> int:
    """Scale a wei/gas quantity using integer percent math (``value * 120 // 100``)."""
    return value * round(multiplier * 100) // 100


class TransactionSubmitter:
    """
    Drives one logical transaction through its states.

    ``pricing_gas -> estimating_gas -> submitting -> waiting_confirmation ->
    confirmed | reverted | network_failed``

    The whole sequence runs inside the retry executor with the transaction
    policy. Once a transaction has been broadcast, later attempts do not send
    it again: they resume waiting for the receipt of the same hash.

    Parameters
    ----------
    transport : BaseRPCProvider
        JSON-RPC transport
    policy : RetryPolicy | None
        Retry policy. Uses ``RetryPolicy.transaction()`` if None.
    gas_price_multiplier : float
        Factor applied to the block or node gas price
    gas_limit_buffer : float
        Factor applied to the gas estimate
    estimate_gas : bool
        Run ``eth_estimateGas`` before submitting to catch reverts early
    health_probe : bool
        Probe the node with ``eth_blockNumber`` before waiting for the receipt
    health_probe_timeout : float
        Deadline in seconds for the health probe
    confirmation_timeout : float
        Deadline in seconds for the receipt on each attempt
    poll_interval : float
        Receipt polling interval in seconds
    executor : RetryExecutor | None
        Retry executor. A default one is created if None.
    classifier : ErrorClassifier | None
        Error classifier used for estimation failures
    on_state : StateCallback | None
        Called with every state the transaction enters

    """

    def __init__(
        self,
        transport: BaseRPCProvider,
        policy: RetryPolicy | None = None,
        *,
        gas_price_multiplier: float = DEFAULT_GAS_PRICE_MULTIPLIER,
        gas_limit_buffer: float = DEFAULT_GAS_LIMIT_BUFFER,
        estimate_gas: bool = True,
        health_probe: bool = True,
        health_probe_timeout: float = DEFAULT_HEALTH_PROBE_TIMEOUT,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        executor: RetryExecutor | None = None,
        classifier: ErrorClassifier | None = None,
        on_state: StateCallback | None = None,
    ) -> None:
        self.transport = transport
        self.policy = policy or RetryPolicy.transaction()
        self.gas_price_multiplier = gas_price_multiplier
        self.gas_limit_buffer = gas_limit_buffer
        self.estimate_gas = estimate_gas
        self.health_probe = health_probe
        self.health_probe_timeout = health_probe_timeout
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.classifier = classifier or default_classifier
        self.executor = executor or RetryExecutor(classifier=self.classifier)
        self.on_state = on_state

    async def resolve_gas_price(self, call: TransactionCall | None = None) -> GasPricePlan:
        """
        Pick a gas price for one attempt. Never raises.

        Parameters
        ----------
        call : TransactionCall | None
            Transaction being priced; its ``gas_price`` wins when set

        Returns
        -------
        GasPricePlan
            Override, latest block price (its ``gasPrice``, or base fee plus
            the node's suggested tip) or node estimate, both scaled by the
            multiplier, or an empty plan letting the signer choose

        """
        if call is not None and call.gas_price is not None:
            return GasPricePlan(gas_price=call.gas_price, source=GasPriceSource.OVERRIDE)

        try:
            block = await self.transport.get_block("latest") or {}
            price = None
            if block.get("gasPrice"):
                price = to_int(block["gasPrice"])
            elif block.get("baseFeePerGas"):
                # The base fee alone leaves out the tip validators require
                price = to_int(block["baseFeePerGas"]) + await self.transport.get_max_priority_fee()
            if price:
                return GasPricePlan(
                    gas_price=apply_multiplier(price, self.gas_price_multiplier),
                    source=GasPriceSource.LATEST_BLOCK,
                )
        except Exception as e:
            logger.debug("Could not read gas price from latest block: %s", e)

        try:
            price = await self.transport.get_gas_price()
            if price:
                return GasPricePlan(
                    gas_price=apply_multiplier(price, self.gas_price_multiplier),
                    source=GasPriceSource.FEE_ESTIMATE,
                )
        except Exception as e:
            logger.debug("Node gas price estimation failed: %s", e)

        logger.debug("No gas price available, leaving it to the signer")
        return GasPricePlan()

    async def submit(self, call: TransactionCall) -> TransactionResult:
        """
        Price, estimate, broadcast and confirm a transaction.

        Parameters
        ----------
        call : TransactionCall
            ABI-encoded contract call

        Returns
        -------
        TransactionResult
            Confirmed transaction with its receipt

        Raises
        ------
        UserRejectedError
            The wallet declined the transaction
        ContractError
            Gas estimation predicted a revert, or the receipt status is not 1
        ResilienceError
            Network failure that outlasted the retry policy

        """
        label = call.label or f"transaction to {call.to}"
        broadcast: dict[str, Any] = {}
        attempts = 0
        state: TransactionState | None = None

        def transition(new_state: TransactionState) -> None:
            nonlocal state
            state = new_state
            logger.debug("%s -> %s", label, new_state, extra={"state": str(new_state), "operation": label})
            if self.on_state is not None:
                self.on_state(new_state)

        async def attempt() -> TransactionResult:
            nonlocal attempts
            attempts += 1

            if "tx_hash" not in broadcast:
                transition(TransactionState.PRICING_GAS)
                gas_plan = await self.resolve_gas_price(call)
                tx = call.to_tx_params()
                if gas_plan.gas_price is not None:
                    tx["gasPrice"] = hex(gas_plan.gas_price)

                transition(TransactionState.ESTIMATING_GAS)
                gas_limit = await self._estimate_gas_limit(call, tx)
                if gas_limit is not None:
                    tx["gas"] = hex(gas_limit)

                transition(TransactionState.SUBMITTING)
                tx_hash = await self.transport.send_transaction(tx)
                broadcast.update(tx_hash=tx_hash, gas_plan=gas_plan, gas_limit=gas_limit)
                logger.info("%s broadcast: %s", label, tx_hash)

            tx_hash = broadcast["tx_hash"]
            transition(TransactionState.WAITING_CONFIRMATION)
            if self.health_probe:
                await self._probe_network()

            receipt = await self.transport.wait_for_receipt(
                tx_hash,
                timeout=self.confirmation_timeout,
                poll_interval=self.poll_interval,
            )
            status = to_int(receipt["status"]) if receipt.get("status") is not None else 0
            if status != 1:
                transition(TransactionState.REVERTED)
                raise ContractError(
                    describe_kind(ErrorKind.CONTRACT_ERROR, "reverted on-chain"),
                    revert_reason="reverted on-chain",
                    detail=f"Transaction {tx_hash} reverted on-chain (status {status})",
                )

            transition(TransactionState.CONFIRMED)
            return TransactionResult(
                tx_hash=tx_hash,
                status=status,
                receipt=receipt,
                gas_plan=broadcast["gas_plan"],
                gas_limit=broadcast["gas_limit"],
                state=TransactionState.CONFIRMED,
                attempts=attempts,
            )

        try:
            return await self.executor.execute(attempt, self.policy, label=label)
        except ResilienceError as e:
            if e.kind == ErrorKind.CONTRACT_ERROR:
                if state != TransactionState.REVERTED:
                    transition(TransactionState.REVERTED)
            elif e.kind != ErrorKind.USER_REJECTED:
                transition(TransactionState.NETWORK_FAILED)
            raise

    async def _estimate_gas_limit(self, call: TransactionCall, tx: dict[str, Any]) -> int | None:
        """Gas limit to send, failing fast on a predicted revert."""
        if not self.estimate_gas:
            return call.gas_limit

        try:
            estimate = await self.transport.estimate_gas(tx)
        except Exception as e:
            if self.classifier.classify(e) == ErrorKind.CONTRACT_ERROR:
                error = ResilienceError.from_error(e, self.classifier)
                logger.info("Gas estimation predicts a revert: %s", error.revert_reason or error.detail)
                raise error from e
            # Estimation is best-effort; the wallet or node estimates instead
            logger.debug("Gas estimation failed, continuing without it: %s", e)
            return call.gas_limit

        if call.gas_limit is not None:
            return call.gas_limit
        return apply_multiplier(estimate, self.gas_limit_buffer)

    async def _probe_network(self) -> None:
        try:
            await with_timeout(
                self.transport.get_block_number(),
                self.health_probe_timeout,
                label="network health check",
            )
        except Exception as e:
            raise TransientRPCError(
                describe_kind(ErrorKind.TRANSIENT_RPC),
                detail=f"Network health check failed: {e}",
            ) from e


async def submit_transaction(
    transport: BaseRPCProvider,
    call: TransactionCall,
    policy: RetryPolicy | None = None,
    **kwargs: Any,
) -> TransactionResult:
    """
    Submit a transaction with the transaction retry policy.

    Parameters
    ----------
    transport : BaseRPCProvider
        JSON-RPC transport
    call : TransactionCall
        ABI-encoded contract call
    policy : RetryPolicy | None
        Retry policy. Uses ``RetryPolicy.transaction()`` if None.
    **kwargs : Any
        Extra ``TransactionSubmitter`` options

    Returns
    -------
    TransactionResult
        Confirmed transaction

    """
    return await TransactionSubmitter(transport, policy, **kwargs).submit(call)
