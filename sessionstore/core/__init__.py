"""
Core module: Type definitions, error hierarchy, and configuration.

- Result (Ok/Err) returned by every fallible operation, millisecond Clock
- Error hierarchy with distinct session error variants
- Configuration management with validation
"""

from sessionstore.core.types import (
    Result,
    Ok,
    Err,
    Clock,
    INFINITE,
    now_millis,
)
from sessionstore.core.errors import (
    ErrorCode,
    SessionStoreError,
    StorageError,
    SessionError,
    SessionNotFound,
    SessionExpired,
    IdentityIndexError,
    ReliabilityError,
)
from sessionstore.core.config import (
    SessionConfig,
    StoreConfig,
    IndexConfig,
    ObservabilityConfig,
    SessionStoreConfig,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Clock",
    "INFINITE",
    "now_millis",
    "ErrorCode",
    "SessionStoreError",
    "StorageError",
    "SessionError",
    "SessionNotFound",
    "SessionExpired",
    "IdentityIndexError",
    "ReliabilityError",
    "SessionConfig",
    "StoreConfig",
    "IndexConfig",
    "ObservabilityConfig",
    "SessionStoreConfig",
]
