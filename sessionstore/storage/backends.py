"""
In-Memory Backends: Development and Testing Implementations

Provides protocol-complete in-memory implementations:
- InMemoryDocumentStore: collections of documents with declared-collection
  transactions
- InMemoryIndexBackend: process-local sid map behind the identity index

Design Principles:
    - Full protocol compliance for seamless swap with the Redis backends
    - Documents are deep-copied in and out; callers never share state
    - Optional latency simulation to surface interleavings in tests

Performance Characteristics:
    - fetch/save/replace/update/remove: O(1) average + copy cost
    - scan: O(n) over a snapshot of the collection

Author: Planetary AI Systems
License: MIT
"""

from __future__ import annotations

import asyncio
import copy
import time
from collections import defaultdict
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    TypeVar,
)

from sessionstore.core.types import Result, Ok, Err
from sessionstore.core.errors import SessionStoreError, StorageError
from sessionstore.core import constants as C
from sessionstore.storage.protocols import (
    Document,
    OperationMetadata,
    OperationType,
)

T = TypeVar("T")


# =============================================================================
# CONSTANTS
# =============================================================================
DEFAULT_SIMULATED_LATENCY_NS: int = 50_000  # 50 microseconds


# =============================================================================
# IN-MEMORY DOCUMENT STORE
# =============================================================================
class InMemoryDocumentStore:
    """
    In-memory document store.

    Features:
        - Independent copies on every read and write
        - Per-collection transaction locks, acquired in sorted order
        - Simulated I/O delay between steps when enabled

    Thread Safety:
        A single asyncio.Lock guards the data maps. Transaction locks
        are separate, so a transaction body can call the regular
        operations without deadlocking on itself.

    Example:
        store = InMemoryDocumentStore()
        await store.save("sessions", "abc", {"created": 1})
        result = await store.fetch_by_id("sessions", "abc")
    """

    __slots__ = (
        "_collections",
        "_lock",
        "_txn_locks",
        "_simulate_latency",
        "_acquire_timeout_ms",
    )

    def __init__(
        self,
        simulate_latency: bool = False,
        acquire_timeout_ms: int = C.TRANSACTION_ACQUIRE_TIMEOUT_MS,
    ) -> None:
        """
        Args:
            simulate_latency: If True, sleep briefly inside each operation
            acquire_timeout_ms: Bound on waiting for transaction locks
        """
        self._collections: Dict[str, Dict[str, Document]] = defaultdict(dict)
        self._lock = asyncio.Lock()
        self._txn_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._simulate_latency = simulate_latency
        self._acquire_timeout_ms = acquire_timeout_ms

    async def _simulate_network_latency(self) -> None:
        if self._simulate_latency:
            await asyncio.sleep(DEFAULT_SIMULATED_LATENCY_NS / 1_000_000_000)

    @staticmethod
    def _metadata(
        operation: OperationType,
        collection: str,
        start_ns: int,
        affected: int = 1,
    ) -> OperationMetadata:
        return OperationMetadata(
            operation=operation,
            collection=collection,
            latency_ns=time.perf_counter_ns() - start_ns,
            affected_rows=affected,
        )

    # -------------------------------------------------------------------------
    # Document operations
    # -------------------------------------------------------------------------

    async def save(
        self,
        collection: str,
        key: str,
        document: Mapping[str, Any],
    ) -> Result[OperationMetadata, StorageError]:
        start_ns = time.perf_counter_ns()
        await self._simulate_network_latency()

        async with self._lock:
            docs = self._collections[collection]
            if key in docs:
                return Err(StorageError.duplicate_key(collection, key))
            docs[key] = copy.deepcopy(dict(document))

        return Ok(self._metadata(OperationType.CREATE, collection, start_ns))

    async def fetch_by_id(
        self,
        collection: str,
        key: str,
    ) -> Result[Document, StorageError]:
        await self._simulate_network_latency()

        async with self._lock:
            document = self._collections[collection].get(key)
            if document is None:
                return Err(StorageError.document_not_found(collection, key))
            return Ok(copy.deepcopy(document))

    async def replace(
        self,
        collection: str,
        key: str,
        document: Mapping[str, Any],
    ) -> Result[OperationMetadata, StorageError]:
        start_ns = time.perf_counter_ns()
        await self._simulate_network_latency()

        async with self._lock:
            docs = self._collections[collection]
            if key not in docs:
                return Err(StorageError.document_not_found(collection, key))
            docs[key] = copy.deepcopy(dict(document))

        return Ok(self._metadata(OperationType.REPLACE, collection, start_ns))

    async def update(
        self,
        collection: str,
        key: str,
        fields: Mapping[str, Any],
    ) -> Result[OperationMetadata, StorageError]:
        start_ns = time.perf_counter_ns()
        await self._simulate_network_latency()

        async with self._lock:
            docs = self._collections[collection]
            existing = docs.get(key)
            if existing is None:
                return Err(StorageError.document_not_found(collection, key))
            existing.update(copy.deepcopy(dict(fields)))

        return Ok(self._metadata(OperationType.UPDATE, collection, start_ns))

    async def remove_by_id(
        self,
        collection: str,
        key: str,
    ) -> Result[OperationMetadata, StorageError]:
        start_ns = time.perf_counter_ns()
        await self._simulate_network_latency()

        async with self._lock:
            docs = self._collections[collection]
            if docs.pop(key, None) is None:
                return Err(StorageError.document_not_found(collection, key))

        return Ok(self._metadata(OperationType.DELETE, collection, start_ns))

    async def scan(self, collection: str) -> AsyncIterator[tuple[str, Document]]:
        async with self._lock:
            snapshot = list(self._collections[collection].items())

        for key, document in snapshot:
            yield key, copy.deepcopy(document)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def run_transaction(
        self,
        read: Sequence[str],
        write: Sequence[str],
        body: Callable[[], Awaitable[Result[T, SessionStoreError]]],
    ) -> Result[T, SessionStoreError]:
        """
        Serialize body against other transactions on the same write set.

        Read-only collections are not locked; readers see committed
        documents only since writes apply atomically under the data lock.
        """
        names = sorted(set(write))
        acquired: List[asyncio.Lock] = []
        timeout = self._acquire_timeout_ms / 1000

        try:
            for name in names:
                lock = self._txn_locks[name]
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=timeout)
                except asyncio.TimeoutError:
                    return Err(StorageError.lock_timeout(names, self._acquire_timeout_ms))
                acquired.append(lock)

            return await body()
        finally:
            for lock in reversed(acquired):
                lock.release()

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    async def count(self, collection: str) -> int:
        async with self._lock:
            return len(self._collections[collection])

    async def clear(self) -> None:
        async with self._lock:
            self._collections.clear()

    async def close(self) -> None:
        """Nothing to release."""


# =============================================================================
# IN-MEMORY INDEX BACKEND
# =============================================================================
class InMemoryIndexBackend:
    """
    Process-local sid map.

    Suitable for single-process deployments and tests. A failure can
    be injected with fail_with() to exercise the index's
    error isolation.
    """

    __slots__ = ("_names", "_access", "_lock", "_failure")

    def __init__(self) -> None:
        self._names: Dict[str, str] = {}
        self._access: Dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._failure: Optional[Exception] = None

    def fail_with(self, error: Optional[Exception]) -> None:
        """Make every subsequent call raise error (None to recover)."""
        self._failure = error

    def _check(self) -> None:
        if self._failure is not None:
            raise self._failure

    async def create_entry(self, sid: str, display_name: str) -> None:
        self._check()
        async with self._lock:
            self._names[sid] = display_name

    async def clear_entry(self, sid: str) -> None:
        self._check()
        async with self._lock:
            self._names.pop(sid, None)
            self._access.pop(sid, None)

    async def get_entry(self, sid: str) -> Optional[str]:
        self._check()
        async with self._lock:
            return self._names.get(sid)

    async def touch_entry(self, sid: str) -> Optional[int]:
        self._check()
        async with self._lock:
            return self._access.get(sid)

    async def record_access(self, sid: str, millis: int) -> None:
        self._check()
        async with self._lock:
            if millis > self._access.get(sid, -1):
                self._access[sid] = millis

    async def entries(self) -> AsyncIterator[tuple[str, str]]:
        self._check()
        async with self._lock:
            snapshot = list(self._names.items())
        for sid, name in snapshot:
            yield sid, name

    async def replace_all(self, entries: Mapping[str, str]) -> int:
        self._check()
        async with self._lock:
            self._names = dict(entries)
            self._access = {sid: at for sid, at in self._access.items() if sid in self._names}
            return len(self._names)

    def __len__(self) -> int:
        return len(self._names)

    async def close(self) -> None:
        """Nothing to release."""
