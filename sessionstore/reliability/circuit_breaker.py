"""
Circuit Breaker for the Identity Index

The identity index is best-effort: session reads must not wait on a dead
index backend's connect timeout every time. After `failure_threshold`
consecutive failures the breaker opens and calls fail immediately. Once
`reset_seconds` have passed, one trial call is let through; its outcome
closes or reopens the circuit.

    CLOSED --(threshold failures)--> OPEN --(reset elapsed)--> HALF_OPEN
    HALF_OPEN --(trial ok)--> CLOSED
    HALF_OPEN --(trial fails)--> OPEN
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Awaitable, Callable, TypeVar, Union

from sessionstore.core.types import Result, Ok, Err
from sessionstore.core.errors import ReliabilityError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = auto()
    OPEN = auto()
    HALF_OPEN = auto()


@dataclass(frozen=True)
class CircuitStats:
    state: CircuitState
    consecutive_failures: int
    total_requests: int
    rejected_requests: int


class CircuitBreaker:
    """
    Usage:
        breaker = CircuitBreaker("identity-index", failure_threshold=5)
        result = await breaker.call(lambda: backend.touch_entry(sid))

    `call` accepts sync or async callables and never raises; what the
    callable raises comes back as Err(ReliabilityError).
    """

    __slots__ = (
        "_name", "_failure_threshold", "_reset_seconds", "_monotonic",
        "_state", "_consecutive_failures", "_opened_at",
        "_total_requests", "_rejected_requests", "_lock",
    )

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_seconds: float = 30.0,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._name = name
        self._failure_threshold = failure_threshold
        self._reset_seconds = reset_seconds
        self._monotonic = monotonic

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._total_requests = 0
        self._rejected_requests = 0
        self._lock = asyncio.Lock()

    async def call(
        self,
        func: Callable[[], Union[Awaitable[T], T]],
    ) -> Result[T, ReliabilityError]:
        async with self._lock:
            self._total_requests += 1
            rejection = self._admit()
            if rejection is not None:
                self._rejected_requests += 1
                return Err(rejection)

        try:
            outcome = func()
            if asyncio.iscoroutine(outcome):
                outcome = await outcome
        except Exception as e:
            async with self._lock:
                self._record_failure()
            return Err(ReliabilityError.call_failed(self._name, e))

        async with self._lock:
            self._consecutive_failures = 0
            if self._state is not CircuitState.CLOSED:
                self._move_to(CircuitState.CLOSED)
        return Ok(outcome)

    def _admit(self) -> Union[ReliabilityError, None]:
        """None when the call may proceed; otherwise the rejection."""
        if self._state is CircuitState.CLOSED:
            return None

        wait = self._opened_at + self._reset_seconds - self._monotonic()
        if self._state is CircuitState.OPEN and wait <= 0:
            # This caller becomes the single trial
            self._move_to(CircuitState.HALF_OPEN)
            return None

        return ReliabilityError.circuit_open(
            circuit_name=self._name,
            failure_count=self._consecutive_failures,
            retry_after_seconds=max(0, int(wait)),
        )

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        if (
            self._state is CircuitState.HALF_OPEN
            or self._consecutive_failures >= self._failure_threshold
        ):
            self._opened_at = self._monotonic()
            if self._state is not CircuitState.OPEN:
                self._move_to(CircuitState.OPEN)

    def _move_to(self, state: CircuitState) -> None:
        logger.info(
            "Circuit state change",
            extra={"circuit": self._name, "from": self._state.name, "to": state.name},
        )
        self._state = state

    def force_open(self) -> None:
        self._opened_at = self._monotonic()
        self._move_to(CircuitState.OPEN)

    def force_close(self) -> None:
        self._consecutive_failures = 0
        self._move_to(CircuitState.CLOSED)

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is CircuitState.CLOSED

    @property
    def stats(self) -> CircuitStats:
        return CircuitStats(
            state=self._state,
            consecutive_failures=self._consecutive_failures,
            total_requests=self._total_requests,
            rejected_requests=self._rejected_requests,
        )

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self._name!r}, state={self._state.name})"
