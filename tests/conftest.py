"""Pytest configuration and shared fixtures for rpc-resilience tests."""

import asyncio
import inspect
from collections import defaultdict, deque
from typing import Any

import pytest

from rpc_resilience.core.models import RetryPolicy
from rpc_resilience.rpc.errors import RPCTransportError
from rpc_resilience.rpc.provider import BaseRPCProvider
from rpc_resilience.rpc.retry import RetryExecutor


def pytest_configure(config):
    """Disable ape plugin during tests."""
    # Unregister ape pytest plugin to avoid network connection issues
    config.pluginmanager.set_blocked("ape_test")


class FakeTransport(BaseRPCProvider):
    """
    Scripted in-memory transport.

    ``script(method, *outcomes)`` queues outcomes consumed one per call;
    ``default(method, outcome)`` answers once the queue is empty. An outcome
    that is an exception is raised, a callable is invoked.
    """

    name = "fake"

    def __init__(self, label: str = "fake") -> None:
        self.label = label
        self.calls: list[tuple[str, list[Any]]] = []
        self.closed = False
        self._scripts: dict[str, deque] = defaultdict(deque)
        self._defaults: dict[str, Any] = {}

    def script(self, method: str, *outcomes: Any) -> "FakeTransport":
        self._scripts[method].extend(outcomes)
        return self

    def default(self, method: str, outcome: Any) -> "FakeTransport":
        self._defaults[method] = outcome
        return self

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def params_of(self, method: str) -> list[list[Any]]:
        return [params for name, params in self.calls if name == method]

    async def call_method(self, method: str, params: list[Any] | None = None) -> Any:
        self.calls.append((method, params or []))
        if self._scripts[method]:
            outcome = self._scripts[method].popleft()
        elif method in self._defaults:
            outcome = self._defaults[method]
        else:
            raise RPCTransportError(f"the method {method} does not exist/is not available", code=-32601)

        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            outcome = outcome()
            if inspect.isawaitable(outcome):
                outcome = await outcome
        return outcome

    async def close(self) -> None:
        self.closed = True

    def __repr__(self) -> str:
        return f"FakeTransport({self.label!r})"


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records delays and only yields."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def transport():
    """Fresh scripted transport."""
    return FakeTransport()


@pytest.fixture
def make_transport():
    """Factory for several independent scripted transports."""
    return FakeTransport


@pytest.fixture
def sleeper():
    """Recorded no-wait sleep."""
    return SleepRecorder()


@pytest.fixture
def executor(sleeper):
    """Retry executor that never actually waits."""
    return RetryExecutor(RetryPolicy.read(jitter=(0.0, 0.0)), sleep=sleeper)


@pytest.fixture
def no_jitter_policy():
    """Read policy with deterministic delays."""
    return RetryPolicy.read(jitter=(0.0, 0.0))
