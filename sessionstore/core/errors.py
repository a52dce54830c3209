"""
Session Store Errors

Errors are returned inside Err, not raised. Each carries an ErrorCode,
a message, an id to find it again in the logs, the wall-clock millis it
was created at and, where one exists, the underlying exception.

Usage:
    result = await service.get(sid)
    match result:
        case Ok(session):
            render(session)
        case Err(SessionExpired()):
            ask_for_login()
        case Err(SessionNotFound()):
            start_new_session()
        case Err(error):
            raise error
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from sessionstore.core.types import now_millis


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Stable numeric codes, grouped by layer:
    - 1xxx: Storage errors
    - 2xxx: Session lifecycle errors
    - 3xxx: Identity index errors
    - 6xxx: Reliability errors
    - 9xxx: Internal/unknown errors
    """

    # Storage errors (1xxx)
    STORAGE_CONNECTION_FAILED = 1001
    STORAGE_TIMEOUT = 1002
    STORAGE_DOCUMENT_NOT_FOUND = 1003
    STORAGE_DUPLICATE_KEY = 1004
    STORAGE_CORRUPTION = 1005
    STORAGE_LOCK_TIMEOUT = 1006
    STORAGE_OPERATION_FAILED = 1007

    # Session errors (2xxx)
    SESSION_NOT_FOUND = 2001
    SESSION_EXPIRED = 2002

    # Identity index errors (3xxx)
    INDEX_UNAVAILABLE = 3001
    INDEX_RELOAD_FAILED = 3002

    # Reliability errors (6xxx)
    RELIABILITY_CIRCUIT_OPEN = 6001
    RELIABILITY_CALL_FAILED = 6002

    # Internal errors (9xxx)
    INTERNAL_ERROR = 9001
    INTERNAL_CONFIGURATION_ERROR = 9002


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class SessionStoreError(Exception):
    """Root of every error a session store operation can return."""

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: int = field(default_factory=now_millis)
    cause: Optional[Exception] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Loggable form; the cause is left out."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "occurred_at": self.occurred_at,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# STORAGE ERRORS
# =============================================================================
@dataclass
class StorageError(SessionStoreError):
    """
    Errors from the document store backends.

    "Document not found" is the one condition the session layer
    translates; everything else propagates unchanged.
    """

    @classmethod
    def connection_failed(
        cls,
        host: str,
        port: int,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        """Store connection failed."""
        return cls(
            code=ErrorCode.STORAGE_CONNECTION_FAILED,
            message=f"Failed to connect to store at {host}:{port}",
            cause=cause,
            context={"host": host, "port": port},
        )

    @classmethod
    def timeout(
        cls,
        operation: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        """Operation timed out."""
        return cls(
            code=ErrorCode.STORAGE_TIMEOUT,
            message=f"Operation '{operation}' timed out",
            cause=cause,
            context={"operation": operation},
        )

    @classmethod
    def document_not_found(cls, collection: str, key: str) -> StorageError:
        """Addressed document does not exist."""
        return cls(
            code=ErrorCode.STORAGE_DOCUMENT_NOT_FOUND,
            message=f"Document '{key}' not found in '{collection}'",
            context={"collection": collection, "key": key},
        )

    @classmethod
    def duplicate_key(cls, collection: str, key: str) -> StorageError:
        """Insert collided with an existing document."""
        return cls(
            code=ErrorCode.STORAGE_DUPLICATE_KEY,
            message=f"Document '{key}' already exists in '{collection}'",
            context={"collection": collection, "key": key},
        )

    @classmethod
    def corruption(
        cls,
        description: str,
        key: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        """Stored document failed validation on the way out."""
        return cls(
            code=ErrorCode.STORAGE_CORRUPTION,
            message=f"Data corruption detected: {description}",
            cause=cause,
            context={"key": key},
        )

    @classmethod
    def lock_timeout(cls, collections: list[str], timeout_ms: int) -> StorageError:
        """Transaction could not acquire its collection locks."""
        return cls(
            code=ErrorCode.STORAGE_LOCK_TIMEOUT,
            message=f"Could not lock {collections} within {timeout_ms}ms",
            context={"collections": collections, "timeout_ms": timeout_ms},
        )

    @classmethod
    def operation_failed(cls, operation: str, cause: Exception) -> StorageError:
        """Backend rejected or failed an operation."""
        return cls(
            code=ErrorCode.STORAGE_OPERATION_FAILED,
            message=f"Operation '{operation}' failed: {cause}",
            cause=cause,
            context={"operation": operation},
        )

    @property
    def is_not_found(self) -> bool:
        return self.code == ErrorCode.STORAGE_DOCUMENT_NOT_FOUND

    @property
    def is_duplicate_key(self) -> bool:
        return self.code == ErrorCode.STORAGE_DUPLICATE_KEY


# =============================================================================
# SESSION ERRORS
# =============================================================================
@dataclass
class SessionError(SessionStoreError):
    """
    Session lifecycle errors surfaced to callers.

    Callers treat the two variants differently: an expired session
    means "log in again", a missing one means "session gone".
    """

    @property
    def session_id(self) -> Optional[str]:
        return self.context.get("session_id")

    @classmethod
    def not_found(
        cls,
        session_id: str,
        cause: Optional[Exception] = None,
    ) -> SessionNotFound:
        return SessionNotFound(
            code=ErrorCode.SESSION_NOT_FOUND,
            message=f"Session '{session_id}' not found",
            cause=cause,
            context={"session_id": session_id},
        )

    @classmethod
    def expired(cls, session_id: str, expired_at: float) -> SessionExpired:
        return SessionExpired(
            code=ErrorCode.SESSION_EXPIRED,
            message=f"Session '{session_id}' has expired",
            context={"session_id": session_id, "expired_at": expired_at},
        )


@dataclass
class SessionNotFound(SessionError):
    """Fetch or delete targeted an absent session record."""


@dataclass
class SessionExpired(SessionError):
    """TTL enforcement failed; the record itself is left untouched."""


# =============================================================================
# IDENTITY INDEX ERRORS
# =============================================================================
@dataclass
class IdentityIndexError(SessionStoreError):
    """
    Errors from the global identity index.

    Never surfaced from session operations; logged and swallowed
    by the index capability.
    """

    @classmethod
    def unavailable(
        cls,
        operation: str,
        cause: Optional[Exception] = None,
    ) -> IdentityIndexError:
        return cls(
            code=ErrorCode.INDEX_UNAVAILABLE,
            message=f"Identity index unavailable during '{operation}'",
            cause=cause,
            context={"operation": operation},
        )

    @classmethod
    def reload_failed(
        cls,
        loaded: int,
        cause: Optional[Exception] = None,
    ) -> IdentityIndexError:
        return cls(
            code=ErrorCode.INDEX_RELOAD_FAILED,
            message=f"Identity index reload failed after {loaded} entries",
            cause=cause,
            context={"loaded": loaded},
        )


# =============================================================================
# RELIABILITY ERRORS
# =============================================================================
@dataclass
class ReliabilityError(SessionStoreError):
    """Errors from reliability mechanisms."""

    @classmethod
    def circuit_open(
        cls,
        circuit_name: str,
        failure_count: int,
        retry_after_seconds: int,
    ) -> ReliabilityError:
        """Circuit breaker is open."""
        return cls(
            code=ErrorCode.RELIABILITY_CIRCUIT_OPEN,
            message=(
                f"Circuit '{circuit_name}' is open after {failure_count} failures, "
                f"retry after {retry_after_seconds}s"
            ),
            context={
                "circuit_name": circuit_name,
                "failure_count": failure_count,
                "retry_after_seconds": retry_after_seconds,
            },
        )

    @classmethod
    def call_failed(cls, circuit_name: str, cause: Exception) -> ReliabilityError:
        """Guarded call raised; counted against the circuit."""
        return cls(
            code=ErrorCode.RELIABILITY_CALL_FAILED,
            message=f"Call through circuit '{circuit_name}' failed: {cause}",
            cause=cause,
            context={"circuit_name": circuit_name},
        )

    @property
    def is_circuit_open(self) -> bool:
        return self.code == ErrorCode.RELIABILITY_CIRCUIT_OPEN
