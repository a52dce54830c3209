"""
Shared Types: Result and Clock

Every storage and session operation returns Result instead of raising,
so callers branch on the outcome:

    match await service.get(sid):
        case Ok(record): ...
        case Err(SessionExpired()): ...

Times are integer milliseconds since the Unix epoch, read through an
injectable Clock so TTL checks can be driven from tests.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Literal, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


# =============================================================================
# RESULT
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Operation succeeded with value."""

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        return self.value

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Operation failed with error (normally a SessionStoreError)."""

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """Always raises; check is_ok() first."""
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIME
# =============================================================================
Clock = Callable[[], int]

# Expiry of a session whose TTL is disabled; later than any millisecond value
INFINITE: float = float("inf")


def now_millis() -> int:
    return time.time_ns() // 1_000_000
