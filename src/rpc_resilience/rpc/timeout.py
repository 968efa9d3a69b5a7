"""Deadline race for awaitables that cannot be reliably cancelled."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from rpc_resilience.core.models import ErrorKind
from rpc_resilience.rpc.errors import RPCTimeoutError, classify, describe_kind

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], timeout: float, label: str | None = None) -> T:
    """
    Race an awaitable against a deadline.

    The awaitable keeps running after the deadline: an HTTP or WebSocket
    call already sent to the node cannot be taken back, so a timeout only
    means the result is no longer awaited. Callers must treat a timed-out
    operation as having an unknown outcome.

    Parameters
    ----------
    awaitable : Awaitable[T]
        Coroutine, task or future to wait for
    timeout : float
        Deadline in seconds
    label : str | None
        Operation name used in the error detail and logs

    Returns
    -------
    T
        Result of the awaitable if it settles first

    Raises
    ------
    RPCTimeoutError
        If the deadline elapses first

    """
    task = asyncio.ensure_future(awaitable)
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        return task.result()

    task.add_done_callback(_log_late_outcome)
    detail = f"{label or 'operation'} did not settle within {timeout}s"
    logger.debug("Timeout: %s", detail)
    raise RPCTimeoutError(describe_kind(ErrorKind.TIMEOUT), detail=detail)


async def load_with_timeout(
    factory: Callable[[], Awaitable[T]],
    timeout: float,
    retries: int = 0,
    retry_delay: float = 1.0,
) -> T:
    """
    Invoke ``factory`` under a deadline, re-invoking it on failure.

    Parameters
    ----------
    factory : Callable[[], Awaitable[T]]
        Zero-argument function producing a fresh awaitable per attempt
    timeout : float
        Deadline in seconds for each attempt
    retries : int
        Additional attempts after the first failure
    retry_delay : float
        Fixed wait in seconds between attempts

    Returns
    -------
    T
        Result of the first successful attempt

    Raises
    ------
    Exception
        The last failure, or the first one classified as terminal (user
        rejection, contract revert), which is never retried

    """
    attempt = 0
    while True:
        try:
            return await with_timeout(factory(), timeout)
        except Exception as e:
            if attempt >= retries or classify(e).is_terminal:
                raise
            attempt += 1
            await asyncio.sleep(retry_delay)


def _log_late_outcome(task: asyncio.Future) -> None:
    """Retrieve the outcome of an abandoned task so it is never reported as unhandled."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug("Abandoned operation failed after its deadline: %s", error)
