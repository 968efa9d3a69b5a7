"""Error taxonomy and classification for RPC and contract failures.

Every failure that crosses the RPC layer is reduced to exactly one
:class:`~rpc_resilience.core.models.ErrorKind` here. Retry, backoff and
display decisions consume the kind, never the raw error shape.
"""

import re
from dataclasses import dataclass, field
from typing import Any, ClassVar

import httpx
from eth_abi import decode
from eth_abi.exceptions import DecodingError

from rpc_resilience.core.models import ErrorKind

ERROR_STRING_SELECTOR = "0x08c379a0"  # Error(string)
PANIC_SELECTOR = "0x4e487b71"  # Panic(uint256)

# OpenZeppelin ERC20 custom errors seen from the token contracts
KNOWN_ERROR_SELECTORS = {
    "0xfb8f41b2": "Insufficient allowance. Please approve the token first.",
    "0xe450d38c": "Insufficient token balance.",
}

PANIC_CODES = {
    0x01: "assertion failed",
    0x11: "arithmetic overflow or underflow",
    0x12: "division by zero",
    0x21: "invalid enum value",
    0x31: "pop on empty array",
    0x32: "array index out of bounds",
    0x41: "out of memory",
    0x51: "call to uninitialized function",
}

MAX_RETRY_AFTER = 600.0

_REVERT_HEX = re.compile(r"^0x(?:[0-9a-fA-F]{2}){4,}$")
_REVERTED_WITH = re.compile(r"revert(?:ed)?:?\s+(0x(?:[0-9a-fA-F]{2}){4,})", re.IGNORECASE)
_RETRY_IN = re.compile(r"retry in (\d+(?:\.\d+)?)\s*(ms|s|m)\b", re.IGNORECASE)


class RPCTransportError(Exception):
    """
    Error raised by a transport for JSON-RPC or HTTP level failures.

    Parameters
    ----------
    message : str
        Error message from the node or HTTP layer
    code : int | str | None
        JSON-RPC error code
    data : Any
        JSON-RPC error data (revert payload for contract errors)
    http_status : int | None
        HTTP status code, when the failure happened at the HTTP layer
    retry_after : float | None
        Server supplied backoff hint in seconds

    """

    def __init__(
        self,
        message: str,
        *,
        code: int | str | None = None,
        data: Any = None,
        http_status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data
        self.http_status = http_status
        self.retry_after = retry_after


class RPCConnectionError(RPCTransportError):
    """The node could not be reached or did not answer in time."""


class ResilienceError(Exception):
    """
    Classified failure surfaced to callers of the RPC layer.

    Parameters
    ----------
    message : str
        Human-readable message derived from the kind
    revert_reason : str | None
        Decoded revert reason for contract errors
    attempts : int
        Number of attempts made before giving up
    detail : str | None
        Original error text, kept for logs

    """

    kind: ClassVar[ErrorKind] = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        revert_reason: str | None = None,
        attempts: int = 0,
        detail: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.revert_reason = revert_reason
        self.attempts = attempts
        self.detail = detail
        self.retry_after = retry_after

    @classmethod
    def for_kind(cls, kind: ErrorKind) -> type["ResilienceError"]:
        """Return the exception class matching an error kind."""
        return _KIND_TO_ERROR[kind]

    @classmethod
    def from_error(
        cls,
        error: Any,
        classifier: "ErrorClassifier | None" = None,
        attempts: int = 0,
    ) -> "ResilienceError":
        """
        Classify an arbitrary error and wrap it.

        Parameters
        ----------
        error : Any
            Raw error (exception, JSON-RPC error object, string...)
        classifier : ErrorClassifier | None
            Classifier to use. Uses the default classifier if None.
        attempts : int
            Number of attempts made so far

        Returns
        -------
        ResilienceError
            Instance of the subclass matching the classified kind

        """
        classifier = classifier or default_classifier
        if isinstance(error, ResilienceError):
            error.attempts = attempts or error.attempts
            return error

        kind = classifier.classify(error)
        revert_reason = extract_revert_reason(error) if kind == ErrorKind.CONTRACT_ERROR else None
        return cls.for_kind(kind)(
            describe_kind(kind, revert_reason),
            revert_reason=revert_reason,
            attempts=attempts,
            detail=_safe_str(error),
            retry_after=classifier.retry_after(error),
        )


class UserRejectedError(ResilienceError):
    """The operator declined the request in the wallet."""

    kind = ErrorKind.USER_REJECTED


class RateLimitedError(ResilienceError):
    """The provider throttled the request."""

    kind = ErrorKind.RATE_LIMITED


class TransientRPCError(ResilienceError):
    """Malformed, unavailable or unreachable RPC node."""

    kind = ErrorKind.TRANSIENT_RPC


class RPCTimeoutError(ResilienceError):
    """A deadline elapsed while waiting; the outcome is unknown."""

    kind = ErrorKind.TIMEOUT


class ContractError(ResilienceError):
    """Definite contract revert, on-chain or during gas estimation."""

    kind = ErrorKind.CONTRACT_ERROR


class UnknownRPCError(ResilienceError):
    """Failure that matched none of the known signals."""

    kind = ErrorKind.UNKNOWN


_KIND_TO_ERROR: dict[ErrorKind, type[ResilienceError]] = {
    ErrorKind.USER_REJECTED: UserRejectedError,
    ErrorKind.RATE_LIMITED: RateLimitedError,
    ErrorKind.TRANSIENT_RPC: TransientRPCError,
    ErrorKind.TIMEOUT: RPCTimeoutError,
    ErrorKind.CONTRACT_ERROR: ContractError,
    ErrorKind.UNKNOWN: UnknownRPCError,
}


@dataclass
class _ErrorFields:
    codes: list[Any] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    http_status: int | None = None
    revert_data: str | None = None
    has_reason: bool = False

    @property
    def text(self) -> str:
        return " | ".join(self.messages).lower()


class ErrorClassifier:
    """
    Maps heterogeneous RPC/contract error shapes to an ``ErrorKind``.

    Classification only looks at structured fields (numeric codes, typed
    exceptions, HTTP status, revert payloads) and well-known message
    substrings. The tables are class attributes so that a provider with its
    own error dialect can be supported by subclassing.

    Notes
    -----
    A ``-32603`` (internal JSON-RPC error) without revert data is treated as
    a transient node failure, and with revert data as a contract revert.
    This is a best-effort heuristic: some providers wrap reverts without
    data, and those are retried as transient failures.

    """

    user_rejected_codes: ClassVar[frozenset] = frozenset({4001, "4001", "ACTION_REJECTED"})
    user_rejected_messages: ClassVar[tuple[str, ...]] = (
        "user rejected",
        "user denied",
        "action_rejected",
    )

    rate_limit_codes: ClassVar[frozenset] = frozenset({-32005, -32090, 429})
    rate_limit_messages: ClassVar[tuple[str, ...]] = (
        "rate limit",
        "too many requests",
        "retry in",
        "call rate limit exhausted",
    )

    transient_codes: ClassVar[frozenset] = frozenset(
        {-32601, -32602, -32700, -32600, -32080, "NETWORK_ERROR", "SERVER_ERROR", "TIMEOUT"}
    )
    internal_error_code: ClassVar[int] = -32603
    transient_messages: ClassVar[tuple[str, ...]] = (
        "internal json-rpc error",
        "rpc endpoint returned http client error",
        "network",
        "connection",
        "timed out",
        "timeout",
        "method not found",
        "eth_maxpriorityfeepergas",
        "is not available",
        "bad gateway",
        "service unavailable",
    )
    transient_exceptions: ClassVar[tuple[type[BaseException], ...]] = (
        RPCConnectionError,
        httpx.TransportError,
        ConnectionError,
    )

    revert_codes: ClassVar[frozenset] = frozenset({3, "CALL_EXCEPTION"})
    revert_messages: ClassVar[tuple[str, ...]] = (
        "execution reverted",
        "revert",
        "vm exception",
    )

    def classify(self, error: Any) -> ErrorKind:
        """
        Classify any error-shaped value.

        Parameters
        ----------
        error : Any
            Exception, JSON-RPC error dict, string, None...

        Returns
        -------
        ErrorKind
            Exactly one kind; ``ErrorKind.UNKNOWN`` when nothing matches

        """
        if error is None:
            return ErrorKind.UNKNOWN
        if isinstance(error, ResilienceError):
            return error.kind

        fields = self._extract(error)
        text = fields.text

        # Cancellation wins over every co-occurring signal
        if self._matches(fields.codes, self.user_rejected_codes) or _contains(text, self.user_rejected_messages):
            return ErrorKind.USER_REJECTED

        if (
            self._matches(fields.codes, self.rate_limit_codes)
            or fields.http_status == 429
            or _contains(text, self.rate_limit_messages)
        ):
            return ErrorKind.RATE_LIMITED

        if isinstance(error, TimeoutError):
            return ErrorKind.TIMEOUT

        if self._is_transient(error, fields, text):
            return ErrorKind.TRANSIENT_RPC

        if (
            fields.revert_data
            or fields.has_reason
            or self._matches(fields.codes, self.revert_codes)
            or _contains(text, self.revert_messages)
        ):
            return ErrorKind.CONTRACT_ERROR

        return ErrorKind.UNKNOWN

    def retry_after(self, error: Any) -> float | None:
        """
        Extract a server backoff hint from an error.

        Parameters
        ----------
        error : Any
            Raw error

        Returns
        -------
        float | None
            Seconds to wait (capped at 600), or None if no hint is present

        """
        hint = _get(error, "retry_after")
        if isinstance(hint, (int, float)) and hint >= 0:
            return min(float(hint), MAX_RETRY_AFTER)

        match = _RETRY_IN.search(self._extract(error).text) if error is not None else None
        if match is None:
            return None
        amount, unit = float(match.group(1)), match.group(2).lower()
        seconds = {"ms": amount / 1000, "s": amount, "m": amount * 60}[unit]
        return min(seconds, MAX_RETRY_AFTER)

    def _is_transient(self, error: Any, fields: _ErrorFields, text: str) -> bool:
        if isinstance(error, self.transient_exceptions):
            return True
        if fields.revert_data or fields.has_reason or "execution reverted" in text:
            return False
        if fields.http_status is not None and fields.http_status >= 500:
            return True
        if self._matches(fields.codes, self.transient_codes):
            return True
        if self.internal_error_code in fields.codes:
            return True
        return _contains(text, self.transient_messages)

    @staticmethod
    def _matches(codes: list[Any], table: frozenset) -> bool:
        return any(code in table for code in codes if isinstance(code, (int, str)))

    def _extract(self, error: Any, depth: int = 0) -> _ErrorFields:
        """Collect codes, messages, HTTP status and revert data from nested error shapes."""
        fields = _ErrorFields()
        if isinstance(error, str):
            fields.messages.append(error)
            fields.revert_data = _find_revert_data(error)
            return fields

        code = _get(error, "code")
        if code is not None:
            fields.codes.append(code)

        message = _get(error, "message")
        if isinstance(message, str):
            fields.messages.append(message)
        elif isinstance(error, BaseException):
            fields.messages.append(_safe_str(error))

        status = _get(error, "http_status") or _get(error, "status")
        if status is None and isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
        if isinstance(status, int):
            fields.http_status = status

        fields.revert_data = _find_revert_data(_get(error, "data"))
        if _get(error, "reason") or _get(error, "revert_message"):
            fields.has_reason = True

        # Wallets and ethers-style errors nest the node error one level down
        if depth < 3:
            for nested_name in ("error", "original_error", "originalError", "info"):
                nested = _get(error, nested_name)
                if nested is not None and nested is not error:
                    inner = self._extract(nested, depth + 1)
                    fields.codes.extend(inner.codes)
                    fields.messages.extend(inner.messages)
                    fields.http_status = fields.http_status or inner.http_status
                    fields.revert_data = fields.revert_data or inner.revert_data
                    fields.has_reason = fields.has_reason or inner.has_reason
        return fields


default_classifier = ErrorClassifier()


def classify(error: Any) -> ErrorKind:
    """Classify an error with the default classifier."""
    return default_classifier.classify(error)


def decode_revert_reason(data: str | bytes | None) -> str | None:
    """
    Decode ABI-encoded revert data into a readable reason.

    Parameters
    ----------
    data : str | bytes | None
        Revert payload (0x-prefixed hex or raw bytes)

    Returns
    -------
    str | None
        ``Error(string)`` message, panic description, known custom error
        text, or None if the payload cannot be interpreted

    """
    if data is None:
        return None
    if isinstance(data, bytes):
        data = "0x" + data.hex()
    hex_data = _find_revert_data(data)
    if hex_data is None:
        return None

    selector = hex_data[:10].lower()
    try:
        payload = bytes.fromhex(hex_data[10:])
        if selector == ERROR_STRING_SELECTOR:
            (reason,) = decode(["string"], payload)
            return reason
        if selector == PANIC_SELECTOR:
            (code,) = decode(["uint256"], payload)
            return f"panic: {PANIC_CODES.get(code, hex(code))}"
    except (DecodingError, ValueError, OverflowError):
        return None

    return KNOWN_ERROR_SELECTORS.get(selector)


def extract_revert_reason(error: Any) -> str | None:
    """
    Find the most specific revert reason carried by an error.

    Decoded revert data wins over a reason attribute, which wins over the
    text following ``execution reverted:`` in the message.

    """
    if error is None:
        return None

    for candidate in _walk(error):
        data = candidate if isinstance(candidate, str) else _get(candidate, "data")
        reason = decode_revert_reason(_find_revert_data(data))
        if reason:
            return reason

    for candidate in _walk(error):
        for name in ("reason", "revert_message"):
            value = _get(candidate, name)
            if isinstance(value, str) and value:
                return value

    for candidate in _walk(error):
        message = candidate if isinstance(candidate, str) else _get(candidate, "message")
        if isinstance(message, str) and "execution reverted:" in message:
            return message.split("execution reverted:", 1)[1].strip() or None
    return None


def describe_kind(kind: ErrorKind, revert_reason: str | None = None) -> str:
    """Human-readable message for an error kind."""
    if kind == ErrorKind.CONTRACT_ERROR:
        if revert_reason:
            return f"Transaction failed: {revert_reason}"
        return "Transaction failed. Please check your balance, allowance, and pool reserves."
    return _KIND_MESSAGES[kind]


def describe_error(error: Any, classifier: ErrorClassifier | None = None) -> str:
    """
    User-facing message for an arbitrary error.

    Parameters
    ----------
    error : Any
        Raw or classified error
    classifier : ErrorClassifier | None
        Classifier to use. Uses the default classifier if None.

    Returns
    -------
    str
        Message derived from the error kind, never a stack trace

    """
    if isinstance(error, ResilienceError):
        return error.message
    kind = (classifier or default_classifier).classify(error)
    reason = extract_revert_reason(error) if kind == ErrorKind.CONTRACT_ERROR else None
    return describe_kind(kind, reason)


_KIND_MESSAGES = {
    ErrorKind.USER_REJECTED: "Request was rejected in the wallet.",
    ErrorKind.RATE_LIMITED: "The network is busy (rate limited). Please try again in a moment.",
    ErrorKind.TRANSIENT_RPC: "Network error. Please try again in a moment.",
    ErrorKind.TIMEOUT: "The network did not respond in time. The operation may still complete.",
    ErrorKind.UNKNOWN: "Something went wrong. Please try again.",
}


def _get(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    if isinstance(obj, (str, bytes, int, float)):
        return None
    try:
        return getattr(obj, name, None)
    except Exception:  # noqa: BLE001 - properties on foreign error objects may raise
        return None


def _walk(error: Any, depth: int = 0):
    yield error
    if depth >= 3:
        return
    for name in ("error", "original_error", "originalError", "info"):
        nested = _get(error, name)
        if nested is not None and nested is not error:
            yield from _walk(nested, depth + 1)


def _find_revert_data(data: Any) -> str | None:
    """Return an ABI-encoded revert payload (selector + args) carried by ``data``."""
    if isinstance(data, dict):
        return _find_revert_data(data.get("data"))
    if isinstance(data, bytes):
        return "0x" + data.hex() if len(data) >= 4 else None
    if not isinstance(data, str):
        return None
    candidate = data.strip()
    if _REVERT_HEX.match(candidate):
        return candidate
    match = _REVERTED_WITH.search(candidate)
    return match.group(1) if match else None


def _contains(text: str, needles: tuple[str, ...]) -> bool:
    return any(needle in text for needle in needles)


def _safe_str(error: Any) -> str:
    try:
        return str(error)
    except Exception:  # noqa: BLE001 - __str__ of foreign objects may raise
        return repr(type(error))
