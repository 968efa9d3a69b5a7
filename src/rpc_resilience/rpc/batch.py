"""Batching throttle queue that spreads bursts of reads under the provider rate limit."""

import asyncio
import logging
from collections import deque
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict

from rpc_resilience.core.models import RetryPolicy
from rpc_resilience.rpc.retry import Operation, RetryExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 5
DEFAULT_INTER_BATCH_DELAY = 0.5


class QueuedRequest(BaseModel):
    """
    A single operation waiting in the queue.

    Attributes
    ----------
    operation : Operation
        Zero-argument function producing the awaitable to run
    future : asyncio.Future
        Settled with the outcome once the operation finishes or gives up
    label : str | None
        Operation name for logs

    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    operation: Any
    future: asyncio.Future
    label: str | None = None


class BatchQueue:
    """
    FIFO queue of read operations drained in fixed-size concurrent batches.

    Each queued operation runs inside the retry executor. A single drain
    task, started lazily by :meth:`add`, pops up to ``batch_size`` items,
    runs them concurrently, waits for all of them, then pauses
    ``inter_batch_delay`` seconds before the next batch. The task exits when
    the queue is empty and is restarted by the next ``add``.

    Parameters
    ----------
    executor : RetryExecutor | None
        Retry executor wrapping every operation
    policy : RetryPolicy | None
        Retry policy for queued operations (3 attempts by default)
    batch_size : int
        Maximum number of operations in flight at once
    inter_batch_delay : float
        Pause in seconds between consecutive batches

    """

    def __init__(
        self,
        executor: RetryExecutor | None = None,
        policy: RetryPolicy | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        inter_batch_delay: float = DEFAULT_INTER_BATCH_DELAY,
    ) -> None:
        if batch_size < 1:
            msg = f"batch_size must be >= 1, got {batch_size}"
            raise ValueError(msg)
        self.executor = executor or RetryExecutor()
        self.policy = policy or RetryPolicy.read()
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self._queue: deque[QueuedRequest] = deque()
        self._drain_task: asyncio.Task | None = None
        self._in_flight = 0

    def add(self, operation: Operation[T], label: str | None = None) -> "asyncio.Future[T]":
        """
        Enqueue an operation.

        Parameters
        ----------
        operation : Operation[T]
            Zero-argument function returning a fresh awaitable per attempt
        label : str | None
            Operation name for logs

        Returns
        -------
        asyncio.Future[T]
            Settled with the operation result, or with the classified
            ``ResilienceError`` once retries are exhausted

        """
        loop = asyncio.get_running_loop()
        request = QueuedRequest(operation=operation, future=loop.create_future(), label=label)
        self._queue.append(request)

        if self._drain_task is None:
            self._drain_task = loop.create_task(self._drain())
        return request.future

    @property
    def pending(self) -> int:
        """Number of operations waiting for a batch slot."""
        return len(self._queue)

    @property
    def in_flight(self) -> int:
        """Number of operations currently running."""
        return self._in_flight

    @property
    def is_draining(self) -> bool:
        """Whether the drain task is running."""
        return self._drain_task is not None

    async def join(self) -> None:
        """Wait until the queue is empty and the drain task has exited."""
        while self._drain_task is not None:
            await asyncio.shield(self._drain_task)

    async def _drain(self) -> None:
        try:
            while self._queue:
                batch = [self._queue.popleft() for _ in range(min(self.batch_size, len(self._queue)))]
                logger.debug(
                    "Processing batch",
                    extra={"batch_size": len(batch), "remaining": len(self._queue)},
                )
                await asyncio.gather(*(self._run(request) for request in batch), return_exceptions=True)

                # Delay between batches to avoid rate limiting
                if self._queue:
                    await asyncio.sleep(self.inter_batch_delay)
        finally:
            self._drain_task = None

    async def _run(self, request: QueuedRequest) -> None:
        if request.future.done():
            # Caller stopped waiting before the operation started
            return

        self._in_flight += 1
        try:
            result = await self.executor.execute(request.operation, self.policy, label=request.label)
        except Exception as e:
            if not request.future.done():
                request.future.set_exception(e)
        else:
            if not request.future.done():
                request.future.set_result(result)
        finally:
            self._in_flight -= 1
