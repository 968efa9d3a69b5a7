"""Data models for cache entries, retry policies, gas plans, and transactions."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ErrorKind(StrEnum):
    """Classification of every failure crossing the RPC layer."""

    USER_REJECTED = "user_rejected"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_RPC = "transient_rpc"
    TIMEOUT = "timeout"
    CONTRACT_ERROR = "contract_error"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        """Whether a failure of this kind must never be retried."""
        return self in (ErrorKind.USER_REJECTED, ErrorKind.CONTRACT_ERROR)


class CacheEntry(BaseModel):
    """
    Cached value with its expiry.

    Attributes
    ----------
    data : Any
        Cached value (must be JSON-serializable for shared keys)
    expires_at : float
        Unix timestamp after which the entry is treated as absent
    created_at : float
        Unix timestamp when the entry was stored

    """

    model_config = ConfigDict(frozen=True)

    data: Any
    expires_at: float
    created_at: float

    def is_expired(self, now: float) -> bool:
        """
        Check if cache entry has expired.

        Parameters
        ----------
        now : float
            Current unix timestamp

        Returns
        -------
        bool
            True if expired, False otherwise

        """
        return now >= self.expires_at


class RetryPolicy(BaseModel):
    """
    Backoff configuration for one call-site category.

    Attributes
    ----------
    max_attempts : int
        Total number of invocations, including the first one
    base_delay : float
        Delay in seconds before the first retry
    attempt_multiplier : float
        Growth factor applied per attempt
    max_delay : float
        Cap for the exponential part of the delay
    jitter : tuple[float, float]
        Range in seconds of the random delay added to every retry
    rate_limit_multiplier : float
        Extra factor applied to the delay when the provider throttles us
    rate_limit_max_delay : float
        Cap used instead of ``max_delay`` for rate-limit failures
    warmup_delay : float
        Fixed wait before the first attempt (0 for reads)
    unknown_max_retries : int
        How many times an unclassified failure may be retried

    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    attempt_multiplier: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=30.0, ge=0)
    jitter: tuple[float, float] = (0.0, 1.0)
    rate_limit_multiplier: float = Field(default=2.0, ge=1)
    rate_limit_max_delay: float = Field(default=60.0, ge=0)
    warmup_delay: float = Field(default=0.0, ge=0)
    unknown_max_retries: int = Field(default=1, ge=0)

    @field_validator("jitter")
    @classmethod
    def _check_jitter(cls, value: tuple[float, float]) -> tuple[float, float]:
        low, high = value
        if low < 0 or high < low:
            msg = f"Invalid jitter range: {value}"
            raise ValueError(msg)
        return value

    @classmethod
    def read(cls, **overrides: Any) -> "RetryPolicy":
        """Policy for plain contract reads queued through the batch queue."""
        return cls(**{"max_attempts": 3, "base_delay": 1.0, **overrides})

    @classmethod
    def transaction(cls, **overrides: Any) -> "RetryPolicy":
        """Policy for state-changing calls: longer delays and a warm-up pause."""
        defaults = {
            "max_attempts": 3,
            "base_delay": 2.0,
            "max_delay": 30.0,
            "rate_limit_multiplier": 3.0,
            "rate_limit_max_delay": 120.0,
            "warmup_delay": 0.5,
        }
        return cls(**{**defaults, **overrides})


class GasPriceSource(StrEnum):
    """Where the gas price of a transaction attempt came from."""

    OVERRIDE = "override"
    LATEST_BLOCK = "latest_block"
    FEE_ESTIMATE = "fee_estimate"
    WALLET = "wallet"


class GasPricePlan(BaseModel):
    """
    Gas price chosen for a single transaction attempt.

    Attributes
    ----------
    gas_price : int | None
        Gas price in wei, or None to let the signing agent choose
    source : GasPriceSource
        Step of the fallback chain that produced the price

    """

    model_config = ConfigDict(frozen=True)

    gas_price: int | None = None
    source: GasPriceSource = GasPriceSource.WALLET

    @model_validator(mode="after")
    def _check_source(self) -> "GasPricePlan":
        if self.gas_price is None and self.source != GasPriceSource.WALLET:
            msg = f"Gas price source {self.source} requires a gas price"
            raise ValueError(msg)
        return self


class TransactionCall(BaseModel):
    """
    A state-changing contract call, already ABI-encoded by the caller.

    Attributes
    ----------
    to : str
        Target contract address
    data : str
        0x-prefixed calldata
    value : int
        Native value in wei
    from_address : str | None
        Sender address (required by nodes for eth_estimateGas/eth_sendTransaction)
    gas_limit : int | None
        Fixed gas limit; estimated when None
    gas_price : int | None
        Explicit gas price override in wei
    label : str | None
        Human-readable name for logs (e.g. 'buyTokens')

    """

    to: str
    data: str = "0x"
    value: int = 0
    from_address: str | None = None
    gas_limit: int | None = None
    gas_price: int | None = None
    label: str | None = None

    def to_tx_params(self) -> dict[str, Any]:
        """
        Build JSON-RPC transaction parameters (hex quantities).

        Returns
        -------
        dict[str, Any]
            Transaction object for eth_estimateGas / eth_sendTransaction

        """
        tx: dict[str, Any] = {"to": self.to, "data": self.data}
        if self.value:
            tx["value"] = hex(self.value)
        if self.from_address:
            tx["from"] = self.from_address
        return tx


class TransactionState(StrEnum):
    """Stages of one logical transaction."""

    PRICING_GAS = "pricing_gas"
    ESTIMATING_GAS = "estimating_gas"
    SUBMITTING = "submitting"
    WAITING_CONFIRMATION = "waiting_confirmation"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    NETWORK_FAILED = "network_failed"


class TransactionResult(BaseModel):
    """
    Outcome of a confirmed transaction.

    Attributes
    ----------
    tx_hash : str
        Transaction hash
    status : int
        Receipt status (1 on success)
    receipt : dict
        Raw receipt returned by the node
    gas_plan : GasPricePlan
        Gas price used for the broadcast
    gas_limit : int | None
        Gas limit sent with the transaction, if any
    state : TransactionState
        Final state of the state machine
    attempts : int
        Number of attempts the retry executor needed

    """

    tx_hash: str
    status: int
    receipt: dict = Field(default_factory=dict)
    gas_plan: GasPricePlan = Field(default_factory=GasPricePlan)
    gas_limit: int | None = None
    state: TransactionState = TransactionState.CONFIRMED
    attempts: int = 1
