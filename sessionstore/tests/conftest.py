"""
Shared fixtures for the session store test suite.

Run: python -m pytest sessionstore/tests -v
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Type

import pytest

from sessionstore.core.config import SessionConfig
from sessionstore.core.types import Result
from sessionstore.observability.metrics import MetricsCollector, SessionMetrics
from sessionstore.reliability.circuit_breaker import CircuitBreaker
from sessionstore.session.index import GlobalIdentityIndex, NullIdentityIndex
from sessionstore.session.repository import SessionRepository
from sessionstore.session.service import SessionService
from sessionstore.storage.backends import InMemoryDocumentStore, InMemoryIndexBackend

T0 = 1_700_000_000_000


# =============================================================================
# HELPERS
# =============================================================================
class FakeClock:
    """Settable millisecond clock."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> int:
        self.now += millis
        return self.now

    def set(self, millis: int) -> None:
        self.now = millis


class TickingClock(FakeClock):
    """Advances by `step` on every read, so no two reads are equal."""

    def __init__(self, now: int = T0, step: int = 1) -> None:
        super().__init__(now)
        self.step = step

    def __call__(self) -> int:
        self.now += self.step
        return self.now


class FakeMonotonic:
    """Settable seconds clock for circuit breakers."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def assert_ok(result: Result[Any, Any]) -> Any:
    assert result.is_ok(), f"expected Ok, got {result!r}"
    return result.unwrap()


def assert_err(result: Result[Any, Any], kind: Optional[Type[BaseException]] = None) -> Any:
    assert result.is_err(), f"expected Err, got {result!r}"
    if kind is not None:
        assert isinstance(result.error, kind), f"expected {kind.__name__}, got {result.error!r}"
    return result.error


# =============================================================================
# FIXTURES
# =============================================================================
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def repository(store: InMemoryDocumentStore) -> SessionRepository:
    return SessionRepository(store, "sessions")


@pytest.fixture
def collector() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def metrics(collector: MetricsCollector) -> SessionMetrics:
    return SessionMetrics(collector)


@pytest.fixture
def index_backend() -> InMemoryIndexBackend:
    return InMemoryIndexBackend()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def make_service(
    repository: SessionRepository,
    clock: FakeClock,
    metrics: SessionMetrics,
    index_backend: InMemoryIndexBackend,
    monotonic: FakeMonotonic,
) -> Callable[..., SessionService]:
    """Factory for services sharing the test's store, clock and metrics."""

    def _make(privileged: bool = False, clock_override: Optional[Callable[[], int]] = None, **session: Any) -> SessionService:
        use_clock = clock_override or clock
        index = (
            GlobalIdentityIndex(
                index_backend,
                breaker=CircuitBreaker("test-index", failure_threshold=3, reset_seconds=30.0, monotonic=monotonic),
                metrics=metrics,
                clock=use_clock,
            )
            if privileged
            else NullIdentityIndex()
        )
        return SessionService(
            repository,
            config=SessionConfig(**session),
            index=index,
            clock=use_clock,
            metrics=metrics,
        )

    return _make
