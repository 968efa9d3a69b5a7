"""Retry logic with classified, jittered exponential backoff for RPC calls."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

from rpc_resilience.core.models import ErrorKind, RetryPolicy
from rpc_resilience.rpc.errors import ErrorClassifier, ResilienceError, default_classifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
RetryCallback = Callable[[int, ResilienceError, float], None]


def compute_delay(
    policy: RetryPolicy,
    attempt: int,
    kind: ErrorKind,
    retry_after: float | None = None,
    rng: random.Random | None = None,
) -> float:
    """
    Calculate the wait before the next attempt.

    Parameters
    ----------
    policy : RetryPolicy
        Backoff configuration
    attempt : int
        Attempt that just failed (1-indexed)
    kind : ErrorKind
        Classified kind of the failure
    retry_after : float | None
        Server supplied backoff hint in seconds
    rng : random.Random | None
        Random source for jitter. Uses the module generator if None.

    Returns
    -------
    float
        Delay in seconds

    """
    growth = policy.attempt_multiplier ** (attempt - 1)
    if kind == ErrorKind.RATE_LIMITED:
        delay = min(policy.base_delay * growth * policy.rate_limit_multiplier, policy.rate_limit_max_delay)
        if retry_after is not None:
            delay = max(delay, min(retry_after, policy.rate_limit_max_delay))
    else:
        delay = min(policy.base_delay * growth, policy.max_delay)

    low, high = policy.jitter
    return delay + (rng or random).uniform(low, high)


class RetryExecutor:
    """
    Runs zero-argument async operations with classified retries.

    The executor is the only place where retry decisions are made. It keeps
    no state between calls, so one instance can serve any number of
    concurrent callers.

    Parameters
    ----------
    policy : RetryPolicy | None
        Default policy when ``execute`` is called without one
    classifier : ErrorClassifier | None
        Error classifier. Uses the default classifier if None.
    on_retry : RetryCallback | None
        Called with ``(attempt, error, delay)`` before each backoff sleep
    sleep : Callable[[float], Awaitable[Any]]
        Sleep function (``asyncio.sleep``)
    rng : random.Random | None
        Random source for jitter

    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        classifier: ErrorClassifier | None = None,
        on_retry: RetryCallback | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy.read()
        self.classifier = classifier or default_classifier
        self.on_retry = on_retry
        self._sleep = sleep
        self._rng = rng

    async def execute(
        self,
        operation: Operation[T],
        policy: RetryPolicy | None = None,
        label: str | None = None,
    ) -> T:
        """
        Execute an operation, retrying classified recoverable failures.

        Parameters
        ----------
        operation : Operation[T]
            Zero-argument function returning a fresh awaitable per attempt
        policy : RetryPolicy | None
            Backoff configuration. Uses the executor default if None.
        label : str | None
            Operation name for logs

        Returns
        -------
        T
            Result of the first successful attempt

        Raises
        ------
        ResilienceError
            Subclass matching the kind of the last failure, chained to it

        """
        policy = policy or self.policy
        label = label or getattr(operation, "__name__", "rpc call")

        if policy.warmup_delay > 0:
            await self._sleep(policy.warmup_delay)

        unknown_failures = 0
        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                error = ResilienceError.from_error(e, self.classifier, attempts=attempt)
                kind = error.kind
                extra = {"kind": str(kind), "attempt": attempt, "operation": label}

                if kind.is_terminal:
                    if kind == ErrorKind.USER_REJECTED:
                        logger.debug("%s rejected by user", label, extra=extra)
                    else:
                        logger.info("%s failed permanently: %s", label, error.message, extra=extra)
                    _raise_from(error, e)

                if kind == ErrorKind.UNKNOWN:
                    unknown_failures += 1
                    if unknown_failures > policy.unknown_max_retries:
                        logger.warning("%s failed with unclassified error: %s", label, e, extra=extra)
                        _raise_from(error, e)

                if attempt == policy.max_attempts:
                    logger.warning(
                        "%s failed after %d attempts (%s)", label, attempt, kind, extra=extra
                    )
                    _raise_from(error, e)

                delay = compute_delay(policy, attempt, kind, error.retry_after, self._rng)
                logger.warning(
                    "%s attempt %d/%d failed (%s), retrying in %.2fs",
                    label,
                    attempt,
                    policy.max_attempts,
                    kind,
                    delay,
                    extra=extra,
                )
                if self.on_retry is not None:
                    self.on_retry(attempt, error, delay)
                await self._sleep(delay)

        # max_attempts >= 1 guarantees the loop returned or raised
        raise AssertionError("retry loop exited without an outcome")


def with_retry(
    policy: RetryPolicy | None = None,
    executor: RetryExecutor | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator to add classified retries to an async function.

    Parameters
    ----------
    policy : RetryPolicy | None
        Retry policy. Uses the read policy if None.
    executor : RetryExecutor | None
        Executor to run the calls. A default executor is created if None.

    Returns
    -------
    Callable
        Decorated function with retry logic

    """
    executor = executor or RetryExecutor()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await executor.execute(lambda: func(*args, **kwargs), policy, label=func.__name__)

        return wrapper

    return decorator


def _raise_from(error: ResilienceError, cause: Exception) -> None:
    if error is cause:
        raise error
    raise error from cause
