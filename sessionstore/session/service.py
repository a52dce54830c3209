"""
Session Service: Lifecycle Orchestration

Public surface for callers:
    create(initial_data) -> Result[SessionRecord, SessionStoreError]
    get(sid)             -> Result[SessionRecord, SessionStoreError]
    delete(sid)          -> Result[None, SessionStoreError]

plus identity binding (set_identity / clear_identity), persistence of
caller mutations (save) and audited removal (discard).

Transactional Get:
    get() runs as one store transaction declaring read and write access
    to the session collection:

        1. fetch the record            (absent  -> SessionNotFound)
        2. consult the identity index  (adopt a strictly newer access
                                        time, clamped to now)
        3. enforce TTL                 (expired -> SessionExpired,
                                        nothing written)
        4. bump last access to now and persist

    Concurrent gets on one id are serialized by the store, and the bump
    is monotonic, so no access-time update is lost.
"""

from __future__ import annotations

import time
from typing import Any, Optional

from sessionstore.core.config import SessionConfig
from sessionstore.core.errors import (
    SessionExpired,
    SessionNotFound,
    SessionStoreError,
    StorageError,
)
from sessionstore.core.types import Clock, Result, Ok, now_millis
from sessionstore.observability.logging import StructuredLogger
from sessionstore.observability.metrics import SessionMetrics
from sessionstore.session.identity import Identity
from sessionstore.session.index import IdentityIndex, NullIdentityIndex
from sessionstore.session.record import SessionRecord, SessionState, TTLPolicy
from sessionstore.session.repository import SessionRepository
from sessionstore.session.sid import SidGenerator

logger = StructuredLogger(__name__)

# Attempts at drawing a fresh id when a generated one is already taken
MAX_CREATE_ATTEMPTS: int = 3


def _outcome(error: SessionStoreError) -> str:
    if isinstance(error, SessionExpired):
        return "expired"
    if isinstance(error, SessionNotFound):
        return "not_found"
    return "error"


class SessionService:
    """
    Session lifecycle over a repository and an identity index capability.

    Args:
        repository: Persistence for session records
        config: Id generation and TTL options
        index: Identity index capability (NullIdentityIndex when absent)
        clock: Millisecond time source shared by TTL and timestamps
        metrics: Operation counters and latency histogram
    """

    __slots__ = ("_repository", "_config", "_index", "_clock", "_policy", "_sids", "_metrics")

    def __init__(
        self,
        repository: SessionRepository,
        config: Optional[SessionConfig] = None,
        index: Optional[IdentityIndex] = None,
        clock: Clock = now_millis,
        metrics: Optional[SessionMetrics] = None,
    ) -> None:
        self._repository = repository
        self._config = config or SessionConfig()
        self._index = index if index is not None else NullIdentityIndex()
        self._clock = clock
        self._policy = TTLPolicy.from_config(self._config, clock)
        self._sids = SidGenerator(self._config, clock)
        self._metrics = metrics

    @property
    def policy(self) -> TTLPolicy:
        return self._policy

    @property
    def index(self) -> IdentityIndex:
        return self._index

    @property
    def repository(self) -> SessionRepository:
        return self._repository

    def _record(self, operation: str, outcome: str, started: float) -> None:
        if self._metrics is None:
            return
        self._metrics.operations.inc(operation=operation, outcome=outcome)
        self._metrics.latency.observe(time.perf_counter() - started, operation=operation)

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    async def create(
        self,
        initial_data: Optional[dict[str, Any]] = None,
    ) -> Result[SessionRecord, SessionStoreError]:
        """New anonymous session, persisted before it is returned."""
        started = time.perf_counter()

        for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
            record = SessionRecord.new(self._sids(), self._clock(), initial_data)
            result = await self._repository.save(record)
            if result.is_ok() or attempt == MAX_CREATE_ATTEMPTS:
                break
            if not (isinstance(result.error, StorageError) and result.error.is_duplicate_key):
                break
            logger.warning("Generated session id collided, drawing another", session_id=record.id)

        if result.is_err():
            self._record("create", "error", started)
            logger.error("Session create failed", error_code=result.error.code.name)
            return result

        if self._metrics is not None:
            self._metrics.created.inc(collection=self._repository.collection)
        self._record("create", "ok", started)
        logger.debug("Session created", session_id=result.unwrap().id)
        return result

    async def get(self, sid: str) -> Result[SessionRecord, SessionStoreError]:
        """Fetch, reconcile with the index, enforce TTL and record the access."""
        started = time.perf_counter()
        collection = self._repository.collection

        async def body() -> Result[SessionRecord, SessionStoreError]:
            fetched = await self._repository.fetch_by_id(sid)
            if fetched.is_err():
                return fetched
            record = fetched.unwrap()

            observed = await self._index.touch(sid)
            if record.adopt_access(observed, self._clock()):
                logger.debug(
                    "Adopted access time from identity index",
                    session_id=sid,
                    last_access_at=record.last_access_at,
                )

            checked = record.enforce_ttl(self._policy)
            if checked.is_err():
                return checked

            record.mark_accessed(self._clock())
            updated = await self._repository.update_fields(
                sid, {"lastAccess": record.last_access_at}
            )
            if updated.is_err():
                return updated
            return Ok(record)

        with logger.context(session_id=sid):
            result = await self._repository.store.run_transaction(
                read=[collection], write=[collection], body=body,
            )

            if result.is_ok():
                self._record("get", "ok", started)
                return result

            outcome = _outcome(result.error)
            self._record("get", outcome, started)
            if outcome == "expired" and self._metrics is not None:
                self._metrics.expired.inc(collection=collection)
            if outcome == "error":
                logger.error("Session get failed", error_code=result.error.code.name)
            else:
                logger.debug("Session unavailable", outcome=outcome)
            return result

    async def delete(self, sid: str) -> Result[None, SessionStoreError]:
        """Remove the record, then its index entry."""
        started = time.perf_counter()

        result = await self._repository.remove_by_id(sid)
        if result.is_err():
            outcome = _outcome(result.error)
            self._record("delete", outcome, started)
            if outcome == "error":
                logger.error("Session delete failed", session_id=sid, error_code=result.error.code.name)
            return result

        await self._index.remove(sid)
        self._record("delete", "ok", started)
        logger.debug("Session deleted", session_id=sid)
        return Ok(None)

    # -------------------------------------------------------------------------
    # Identity binding
    # -------------------------------------------------------------------------

    async def set_identity(
        self,
        record: SessionRecord,
        identity: Optional[Identity],
    ) -> SessionRecord:
        """Bind (or with None, clear) the identity; persist with save()."""
        if identity is None:
            return await self.clear_identity(record)
        record.bind_identity(identity)
        await self._index.upsert(record.id, identity.display_name)
        return record

    async def clear_identity(self, record: SessionRecord) -> SessionRecord:
        record.bind_identity(None)
        await self._index.remove(record.id)
        return record

    # -------------------------------------------------------------------------
    # Record persistence
    # -------------------------------------------------------------------------

    async def save(self, record: SessionRecord) -> Result[SessionRecord, SessionStoreError]:
        """
        Stamp access and update times, then replace the stored record.

        Runs in the same collection transaction as get(), and never lowers
        the stored lastAccess/lastUpdate below what is already there.
        """
        started = time.perf_counter()
        collection = self._repository.collection

        async def body() -> Result[SessionRecord, SessionStoreError]:
            current = await self._repository.fetch_by_id(record.id)
            if current.is_err():
                return current
            stored = current.unwrap()
            record.mark_accessed(stored.last_access_at)
            record.last_update_at = max(record.last_update_at, stored.last_update_at)
            record.touch(self._clock())
            return await self._repository.replace(record)

        result = await self._repository.store.run_transaction(
            read=[collection], write=[collection], body=body,
        )
        self._record("save", "ok" if result.is_ok() else _outcome(result.error), started)
        return result

    async def discard(self, record: SessionRecord) -> Result[bool, SessionStoreError]:
        """
        Stamp and delete the record.

        Returns:
            Ok(True) if deleted, Ok(False) if it was already gone,
            Err for any other failure.
        """
        record.touch(self._clock())
        result = await self.delete(record.id)
        if result.is_ok():
            return Ok(True)
        if isinstance(result.error, SessionNotFound):
            return Ok(False)
        return result

    async def state_of(self, sid: str) -> Result[SessionState, SessionStoreError]:
        """Lifecycle state without recording an access."""
        fetched = await self._repository.fetch_by_id(sid)
        if fetched.is_err():
            if isinstance(fetched.error, SessionNotFound):
                return Ok(SessionState.DELETED)
            return fetched
        return Ok(fetched.unwrap().state(self._policy))
