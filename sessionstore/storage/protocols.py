"""
Storage Protocol Definitions
============================

Structural subtyping protocols (PEP 544) for the pluggable backends:
- DocumentStoreProtocol: keyed JSON documents grouped in collections,
  with declared-collection transactions
- IndexBackendProtocol: flat sid -> (display name, access time) store
  behind the global identity index

Document stores return Result; index backends raise and the identity
index guards them with a circuit breaker.

Author: Planetary AI Systems
License: MIT
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
    runtime_checkable,
)

from sessionstore.core.types import Result
from sessionstore.core.errors import SessionStoreError, StorageError


T = TypeVar("T")

# A stored document: JSON-compatible mapping
Document = dict[str, Any]


# =============================================================================
# OPERATION TYPE
# =============================================================================
class OperationType(Enum):
    """Store operation types for logging and metrics."""
    CREATE = "create"
    REPLACE = "replace"
    UPDATE = "update"
    DELETE = "delete"


# =============================================================================
# OPERATION RESULT METADATA
# =============================================================================
@dataclass(frozen=True, slots=True)
class OperationMetadata:
    """What a successful store write reports back."""
    operation: OperationType
    collection: str
    latency_ns: int
    affected_rows: int = 0


# =============================================================================
# DOCUMENT STORE PROTOCOL
# =============================================================================
@runtime_checkable
class DocumentStoreProtocol(Protocol):
    """
    Keyed document store with collections.

    Every method returns Result for zero-exception control flow.
    A missing document is reported as
    StorageError(code=STORAGE_DOCUMENT_NOT_FOUND); callers map that
    to their own domain error.

    Example:
        result = await store.fetch_by_id("sessions", sid)
        if result.is_ok():
            document = result.unwrap()
    """

    @abstractmethod
    async def save(
        self,
        collection: str,
        key: str,
        document: Mapping[str, Any],
    ) -> Result[OperationMetadata, StorageError]:
        """
        Insert a new document.

        Returns:
            Ok(metadata): Document stored
            Err(StorageError.duplicate_key): Key already present
        """
        ...

    @abstractmethod
    async def fetch_by_id(
        self,
        collection: str,
        key: str,
    ) -> Result[Document, StorageError]:
        """
        Read a document.

        Returns:
            Ok(document): Independent copy of the stored document
            Err(StorageError.document_not_found): Key absent
        """
        ...

    @abstractmethod
    async def replace(
        self,
        collection: str,
        key: str,
        document: Mapping[str, Any],
    ) -> Result[OperationMetadata, StorageError]:
        """Overwrite an existing document wholesale."""
        ...

    @abstractmethod
    async def update(
        self,
        collection: str,
        key: str,
        fields: Mapping[str, Any],
    ) -> Result[OperationMetadata, StorageError]:
        """Merge top-level fields into an existing document."""
        ...

    @abstractmethod
    async def remove_by_id(
        self,
        collection: str,
        key: str,
    ) -> Result[OperationMetadata, StorageError]:
        """Delete a document; not-found when absent."""
        ...

    @abstractmethod
    def scan(self, collection: str) -> AsyncIterator[tuple[str, Document]]:
        """
        Iterate (key, document) pairs of a collection.

        Order is unspecified. Documents written during iteration may
        or may not be observed.
        """
        ...

    @abstractmethod
    async def run_transaction(
        self,
        read: Sequence[str],
        write: Sequence[str],
        body: Callable[[], Awaitable[Result[T, SessionStoreError]]],
    ) -> Result[T, SessionStoreError]:
        """
        Run body with exclusive access to the write collections.

        Two transactions sharing a write collection never interleave.
        The body's result is returned as-is; an exception raised by
        the body propagates after the locks are released.

        Returns:
            body's result, or Err(StorageError.lock_timeout)
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
        ...


# =============================================================================
# INDEX BACKEND PROTOCOL
# =============================================================================
@runtime_checkable
class IndexBackendProtocol(Protocol):
    """
    Flat process-wide map keyed by session id.

    Holds the identity display name bound to each sid and the most
    recent access time observed through the index. Implementations
    raise on failure.
    """

    @abstractmethod
    async def create_entry(self, sid: str, display_name: str) -> None:
        ...

    @abstractmethod
    async def clear_entry(self, sid: str) -> None:
        ...

    @abstractmethod
    async def get_entry(self, sid: str) -> Optional[str]:
        ...

    @abstractmethod
    async def touch_entry(self, sid: str) -> Optional[int]:
        """Last access time recorded for sid, or None."""
        ...

    @abstractmethod
    async def record_access(self, sid: str, millis: int) -> None:
        """Record an access; never moves the stored time backwards."""
        ...

    @abstractmethod
    def entries(self) -> AsyncIterator[tuple[str, str]]:
        """Iterate (sid, display name) pairs."""
        ...

    @abstractmethod
    async def replace_all(self, entries: Mapping[str, str]) -> int:
        """Swap the whole sid -> name map; returns entries written."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...
