"""
Session Store

Server-side session lifecycle engine:
- Identifier generation with optional timestamp prefix
- TTL policy evaluated lazily on every read
- Transactional read-modify-write on access
- Optional global sid -> identity index, kept eventually consistent

Backends: in-memory (development, tests) and Redis/Valkey.

Author: Planetary AI Systems
License: MIT
"""

__version__ = "1.0.0"

from sessionstore.core.types import Result, Ok, Err
from sessionstore.core.errors import (
    SessionStoreError,
    StorageError,
    SessionError,
    SessionNotFound,
    SessionExpired,
)
from sessionstore.core.config import SessionConfig, SessionStoreConfig
from sessionstore.session import (
    Identity,
    SessionRecord,
    SessionService,
    SessionState,
)
from sessionstore.bootstrap import build_session_service

__all__ = [
    "__version__",
    "Result",
    "Ok",
    "Err",
    "SessionStoreError",
    "StorageError",
    "SessionError",
    "SessionNotFound",
    "SessionExpired",
    "SessionConfig",
    "SessionStoreConfig",
    "Identity",
    "SessionRecord",
    "SessionService",
    "SessionState",
    "build_session_service",
]
