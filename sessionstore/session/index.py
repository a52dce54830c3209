"""
Global Identity Index

A process-wide side table mapping session id -> identity display name,
plus the last access time the request pipeline observed for each sid.
It is a derived cache: the durable session record is authoritative and
the index is allowed to lag behind it.

Capability Injection:
    The service receives an IdentityIndex. Privileged deployments pass
    a GlobalIdentityIndex; per-application deployments pass the
    NullIdentityIndex, so no code path checks a mode flag.

Failure Isolation:
    Every backend call goes through a circuit breaker. Failures are
    logged, counted and swallowed; index methods never return errors
    and never raise into session operations.

Usage:
    index = GlobalIdentityIndex(RedisIndexBackend(config))
    await index.bulk_load(identity_pairs(repository, directory))
    await index.upsert(sid, "Ada Lovelace")
"""

from __future__ import annotations

from abc import abstractmethod
from typing import (
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Optional,
    Protocol,
    TypeVar,
    runtime_checkable,
)

from sessionstore.core import constants as C
from sessionstore.core.errors import IdentityIndexError
from sessionstore.core.types import Clock, now_millis
from sessionstore.observability.logging import StructuredLogger
from sessionstore.observability.metrics import SessionMetrics
from sessionstore.reliability.circuit_breaker import CircuitBreaker
from sessionstore.session.identity import IdentityDirectory
from sessionstore.session.repository import SessionRepository
from sessionstore.storage.protocols import IndexBackendProtocol

T = TypeVar("T")

logger = StructuredLogger(__name__)


@runtime_checkable
class IdentityIndex(Protocol):
    """What the session service needs from an identity index."""

    @abstractmethod
    async def upsert(self, sid: str, identity_name: str) -> None:
        ...

    @abstractmethod
    async def remove(self, sid: str) -> None:
        ...

    @abstractmethod
    async def touch(self, sid: str) -> Optional[int]:
        """Most recent access time the index holds for sid."""
        ...

    @abstractmethod
    async def record_access(self, sid: str, millis: Optional[int] = None) -> None:
        """Out-of-band access bump from the request pipeline."""
        ...

    @abstractmethod
    async def lookup(self, sid: str) -> Optional[str]:
        ...

    @abstractmethod
    async def bulk_load(self, pairs: AsyncIterable[tuple[str, str]]) -> int:
        ...


class NullIdentityIndex:
    """Stand-in for deployments without a global index."""

    __slots__ = ()

    async def upsert(self, sid: str, identity_name: str) -> None:
        return None

    async def remove(self, sid: str) -> None:
        return None

    async def touch(self, sid: str) -> Optional[int]:
        return None

    async def record_access(self, sid: str, millis: Optional[int] = None) -> None:
        return None

    async def lookup(self, sid: str) -> Optional[str]:
        return None

    async def bulk_load(self, pairs: AsyncIterable[tuple[str, str]]) -> int:
        return 0

    def __repr__(self) -> str:
        return "NullIdentityIndex()"


class GlobalIdentityIndex:
    """
    Identity index over an IndexBackendProtocol.

    Args:
        backend: Storage for entries and access times
        breaker: Circuit breaker guarding backend calls
        metrics: Failure counters and entry gauge
        clock: Millisecond time source for record_access
    """

    __slots__ = ("_backend", "_breaker", "_metrics", "_clock")

    def __init__(
        self,
        backend: IndexBackendProtocol,
        breaker: Optional[CircuitBreaker] = None,
        metrics: Optional[SessionMetrics] = None,
        clock: Clock = now_millis,
    ) -> None:
        self._backend = backend
        self._breaker = breaker or CircuitBreaker(
            "identity-index",
            failure_threshold=C.INDEX_BREAKER_FAILURE_THRESHOLD,
            reset_seconds=C.INDEX_BREAKER_RESET_SECONDS,
        )
        self._metrics = metrics
        self._clock = clock

    @property
    def backend(self) -> IndexBackendProtocol:
        return self._backend

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def _guarded(
        self,
        operation: str,
        sid: Optional[str],
        call: Callable[[], Awaitable[T]],
    ) -> Optional[T]:
        result = await self._breaker.call(call)
        if result.is_ok():
            return result.unwrap()

        error = IdentityIndexError.unavailable(operation, cause=result.error)
        if self._metrics is not None:
            self._metrics.index_failures.inc(operation=operation)
        logger.warning(
            "Identity index call failed",
            operation=operation,
            session_id=sid,
            error_code=error.code.name,
            cause=str(result.error),
        )
        return None

    async def upsert(self, sid: str, identity_name: str) -> None:
        await self._guarded("upsert", sid, lambda: self._backend.create_entry(sid, identity_name))

    async def remove(self, sid: str) -> None:
        await self._guarded("remove", sid, lambda: self._backend.clear_entry(sid))

    async def touch(self, sid: str) -> Optional[int]:
        return await self._guarded("touch", sid, lambda: self._backend.touch_entry(sid))

    async def record_access(self, sid: str, millis: Optional[int] = None) -> None:
        at = self._clock() if millis is None else millis
        await self._guarded("record_access", sid, lambda: self._backend.record_access(sid, at))

    async def lookup(self, sid: str) -> Optional[str]:
        return await self._guarded("lookup", sid, lambda: self._backend.get_entry(sid))

    async def bulk_load(self, pairs: AsyncIterable[tuple[str, str]]) -> int:
        """
        Replace the index contents with pairs.

        Never raises: a failing source or backend is logged and the
        index keeps whatever it held before. Returns entries written.
        """
        entries: dict[str, str] = {}
        try:
            async for sid, name in pairs:
                entries[sid] = name
        except Exception as e:
            error = IdentityIndexError.reload_failed(len(entries), cause=e)
            logger.error(
                "Identity index reload aborted while reading sessions",
                error_code=error.code.name,
                loaded=len(entries),
                cause=str(e),
            )
            return 0

        written = await self._guarded("bulk_load", None, lambda: self._backend.replace_all(entries))
        if written is None:
            return 0

        if self._metrics is not None:
            self._metrics.index_entries.set(written)
        logger.info("Identity index reloaded", entries=written)
        return written

    def __repr__(self) -> str:
        return f"GlobalIdentityIndex(backend={type(self._backend).__name__}, breaker={self._breaker!r})"


async def identity_pairs(
    repository: SessionRepository,
    directory: IdentityDirectory,
) -> AsyncIterator[tuple[str, str]]:
    """
    Join persisted sessions with their identities.

    Yields (session id, display name) for every bound session whose
    identity the directory still knows.
    """
    async for record in repository.iter_records():
        if record.identity_ref is None:
            continue
        identity = await directory.get_identity(record.identity_ref)
        if identity is None:
            continue
        yield record.id, identity.display_name
