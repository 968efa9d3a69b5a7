"""Tests for error classification and revert decoding."""

import httpx
import pytest
from eth_abi import encode

from rpc_resilience.core.models import ErrorKind
from rpc_resilience.rpc.errors import (
    ERROR_STRING_SELECTOR,
    PANIC_SELECTOR,
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
    extract_revert_reason,
)


def revert_data(reason: str) -> str:
    return ERROR_STRING_SELECTOR + encode(["string"], [reason]).hex()


def http_status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://rpc.test")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.mark.parametrize(
    "error",
    [
        {"code": 4001, "message": "User rejected the request."},
        RPCTransportError("MetaMask Tx Signature: User denied transaction signature.", code=4001),
        {"code": "ACTION_REJECTED", "message": "user rejected transaction"},
        {"error": {"code": 4001, "message": "rejected"}},
    ],
)
def test_classify_user_rejected(error):
    """Test wallet rejection shapes."""
    assert classify(error) == ErrorKind.USER_REJECTED


@pytest.mark.parametrize(
    "error",
    [
        RPCTransportError("limit exceeded", code=-32005),
        RPCTransportError("Too many requests", code=-32090),
        RPCTransportError("RPC endpoint returned HTTP 429", http_status=429),
        "Too many requests, retry in 30s",
        {"error": {"code": -32005, "message": "rate limit"}},
        http_status_error(429),
    ],
)
def test_classify_rate_limited(error):
    """Test provider throttling shapes."""
    assert classify(error) == ErrorKind.RATE_LIMITED


@pytest.mark.parametrize(
    "error",
    [
        RPCConnectionError("connection refused"),
        httpx.ConnectError("connection refused"),
        RPCTransportError("Internal JSON-RPC error.", code=-32603),
        RPCTransportError("the method eth_maxPriorityFeePerGas does not exist", code=-32601),
        RPCTransportError("RPC endpoint returned HTTP 502", http_status=502),
        http_status_error(503),
        {"code": "NETWORK_ERROR", "message": "could not detect network"},
    ],
)
def test_classify_transient(error):
    """Test network and node failure shapes."""
    assert classify(error) == ErrorKind.TRANSIENT_RPC


def test_classify_timeout():
    """Test deadline failures."""
    assert classify(TimeoutError()) == ErrorKind.TIMEOUT
    assert classify(RPCTimeoutError("deadline elapsed")) == ErrorKind.TIMEOUT


@pytest.mark.parametrize(
    "error",
    [
        RPCTransportError("execution reverted", code=3, data=revert_data("Lottery closed")),
        RPCTransportError("Internal JSON-RPC error.", code=-32603, data=revert_data("Insufficient reserves")),
        {"message": "execution reverted: Insufficient allowance"},
        {"code": "CALL_EXCEPTION", "reason": "Pool paused"},
        RPCTransportError("execution reverted", http_status=500, data=revert_data("Paused")),
        "VM Exception while processing transaction: revert",
    ],
)
def test_classify_contract_error(error):
    """Test contract revert shapes, including revert data inside an internal error."""
    assert classify(error) == ErrorKind.CONTRACT_ERROR


@pytest.mark.parametrize("error", [None, 42, "", {}, [], object(), ValueError("boom"), b"\x00\x01"])
def test_classify_unknown(error):
    """Test that unrecognized values classify as unknown."""
    assert classify(error) == ErrorKind.UNKNOWN


class ExplodingError(Exception):
    """Error whose attributes and string form raise."""

    def __getattr__(self, name):
        if name.startswith("__"):
            raise AttributeError(name)
        raise RuntimeError(name)

    def __str__(self):
        raise RuntimeError("no str")


@pytest.mark.parametrize(
    "error",
    [
        ExplodingError(),
        {"error": {"error": {"error": {"error": {"code": 4001}}}}},
        {"code": None, "message": None, "data": None},
        {"data": {"data": 12}},
        {"code": [1, 2], "message": 3},
    ],
    ids=["exploding", "deeply-nested", "all-none", "non-string-data", "wrong-types"],
)
def test_classify_is_total(error):
    """Test that classification never raises and returns exactly one kind."""
    assert classify(error) in set(ErrorKind)


def test_user_rejection_wins_over_other_signals():
    """Test that a cancelled request is never reported as a network problem."""
    error = RPCTransportError("User rejected the request (rate limit)", code=4001)

    assert classify(error) == ErrorKind.USER_REJECTED


def test_classified_errors_keep_their_kind():
    """Test that already classified errors pass through."""
    assert classify(ContractError("reverted")) == ErrorKind.CONTRACT_ERROR
    assert classify(RateLimitedError("busy")) == ErrorKind.RATE_LIMITED


def test_classifier_subclass_extends_tables():
    """Test adding a provider specific rate-limit code by subclassing."""

    class AlchemyClassifier(ErrorClassifier):
        rate_limit_codes = ErrorClassifier.rate_limit_codes | {-32007}

    error = RPCTransportError("compute units exceeded", code=-32007)

    assert ErrorClassifier().classify(error) == ErrorKind.UNKNOWN
    assert AlchemyClassifier().classify(error) == ErrorKind.RATE_LIMITED


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("rate limited, retry in 10s", 10.0),
        ("rate limited, retry in 2m", 120.0),
        ("rate limited, retry in 500ms", 0.5),
        ("rate limited, retry in 30m", 600.0),
        ("rate limited", None),
    ],
)
def test_retry_after_from_message(message, expected):
    """Test server backoff hints parsed from messages and capped at ten minutes."""
    assert ErrorClassifier().retry_after(RPCTransportError(message, code=-32005)) == expected


def test_retry_after_from_attribute():
    """Test Retry-After hints carried by transport errors."""
    error = RPCTransportError("HTTP 429", http_status=429, retry_after=7)

    assert ErrorClassifier().retry_after(error) == 7.0


def test_decode_error_string():
    """Test decoding an Error(string) revert payload."""
    assert decode_revert_reason(revert_data("Insufficient pool reserves")) == "Insufficient pool reserves"
    assert decode_revert_reason(bytes.fromhex(revert_data("Paused")[2:])) == "Paused"


def test_decode_panic():
    """Test decoding a Panic(uint256) payload."""
    data = PANIC_SELECTOR + encode(["uint256"], [0x11]).hex()

    assert decode_revert_reason(data) == "panic: arithmetic overflow or underflow"


def test_decode_known_custom_errors():
    """Test ERC20 custom error selectors."""
    allowance = "0xfb8f41b2" + "00" * 96
    balance = "0xe450d38c" + "00" * 96

    assert "allowance" in decode_revert_reason(allowance).lower()
    assert "balance" in decode_revert_reason(balance).lower()


@pytest.mark.parametrize("data", [None, "", "0x", "0x1234", "not hex", ERROR_STRING_SELECTOR + "zz", "0xdeadbeef"])
def test_decode_uninterpretable_payloads(data):
    """Test that unknown or broken payloads decode to None."""
    assert decode_revert_reason(data) is None


def test_extract_revert_reason_sources():
    """Test revert reason lookup order."""
    nested = {"error": {"code": 3, "data": revert_data("Lottery closed")}}

    assert extract_revert_reason(nested) == "Lottery closed"
    assert extract_revert_reason({"reason": "Pool paused"}) == "Pool paused"
    assert extract_revert_reason({"message": "execution reverted: Sold out"}) == "Sold out"
    assert extract_revert_reason(RPCConnectionError("down")) is None


def test_from_error_builds_matching_subclass():
    """Test wrapping raw errors into classified exceptions."""
    revert = ResilienceError.from_error(
        RPCTransportError("execution reverted", code=3, data=revert_data("Insufficient reserves")),
        attempts=1,
    )
    throttled = ResilienceError.from_error(RPCTransportError("retry in 5s", code=-32005))

    assert isinstance(revert, ContractError)
    assert revert.revert_reason == "Insufficient reserves"
    assert revert.message == "Transaction failed: Insufficient reserves"
    assert revert.attempts == 1
    assert isinstance(throttled, RateLimitedError)
    assert throttled.retry_after == 5.0
    assert isinstance(ResilienceError.from_error(RPCConnectionError("x")), TransientRPCError)
    assert isinstance(ResilienceError.from_error({"code": 4001}), UserRejectedError)
    assert isinstance(ResilienceError.from_error(ValueError("?")), UnknownRPCError)


def test_from_error_passes_classified_errors_through():
    """Test that a ResilienceError is not wrapped twice."""
    original = TransientRPCError("Network error.")

    wrapped = ResilienceError.from_error(original, attempts=3)

    assert wrapped is original
    assert wrapped.attempts == 3


def test_describe_error_messages():
    """Test human-readable messages never expose raw error text."""
    assert "rejected" in describe_error({"code": 4001}).lower()
    assert describe_error(RPCConnectionError("ECONNRESET 10.0.0.1")) == "Network error. Please try again in a moment."
    assert describe_error({"code": 3, "message": "execution reverted"}) == (
        "Transaction failed. Please check your balance, allowance, and pool reserves."
    )
    assert describe_error(ContractError("Transaction failed: Sold out")) == "Transaction failed: Sold out"
