"""
Configuration Management for the Session Store

Provides validated configuration with sensible defaults.
Supports environment variable overrides.

Design:
- Immutable after validation
- Fail-fast on invalid configuration
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from sessionstore.core.types import Result, Ok, Err
from sessionstore.core import constants as C
from sessionstore.storage.config import RedisConfig


# Record attribute consulted for each accepted ttl_type spelling
TTL_REFERENCE_FIELDS: dict[str, str] = {
    "created": "created_at",
    "createdAt": "created_at",
    "created_at": "created_at",
    "lastAccess": "last_access_at",
    "lastAccessAt": "last_access_at",
    "last_access_at": "last_access_at",
    "lastUpdate": "last_update_at",
    "lastUpdateAt": "last_update_at",
    "last_update_at": "last_update_at",
}


@dataclass(frozen=True)
class SessionConfig:
    """
    Session lifecycle options.

    Attributes:
        sid_length: Length of the random id suffix (0 with sid_timestamp
            means the timestamp alone is the id).
        sid_timestamp: Prefix ids with an encoded creation timestamp.
        time_to_live: Session lifetime in milliseconds; 0 disables expiry.
        ttl_type: Record field the lifetime is measured from.
    """

    sid_length: int = C.DEFAULT_SID_LENGTH
    sid_timestamp: bool = False
    time_to_live: int = C.TTL_DISABLED
    ttl_type: str = C.DEFAULT_TTL_TYPE

    @property
    def ttl_enabled(self) -> bool:
        return bool(self.time_to_live)

    @property
    def ttl_reference_field(self) -> str:
        """Record attribute the TTL is measured from."""
        return TTL_REFERENCE_FIELDS.get(self.ttl_type or C.DEFAULT_TTL_TYPE, "created_at")

    def validate(self) -> Result[None, str]:
        if self.sid_length < 0:
            return Err(f"sid_length must be >= 0, got {self.sid_length}")
        if self.time_to_live < 0:
            return Err(f"time_to_live must be >= 0, got {self.time_to_live}")
        if self.ttl_type and self.ttl_type not in TTL_REFERENCE_FIELDS:
            return Err(f"Unknown ttl_type: {self.ttl_type!r}")
        return Ok(None)


@dataclass(frozen=True)
class StoreConfig:
    """Document store configuration."""

    backend: str = "memory"  # "memory" or "redis"
    collection: str = C.APP_SESSION_COLLECTION
    system_collection: str = C.SYSTEM_SESSION_COLLECTION
    key_prefix: str = C.DEFAULT_KEY_PREFIX
    lock_timeout_ms: int = C.TRANSACTION_LOCK_TIMEOUT_MS
    acquire_timeout_ms: int = C.TRANSACTION_ACQUIRE_TIMEOUT_MS
    compression_threshold_bytes: int = C.COMPRESSION_THRESHOLD_BYTES


@dataclass(frozen=True)
class IndexConfig:
    """
    Global identity index configuration.

    Enabling the index selects the privileged (system) deployment:
    sessions live in the system collection and identity bindings are
    mirrored into the index.
    """

    enabled: bool = False
    backend: str = "memory"  # "memory" or "redis"
    key_prefix: str = f"{C.DEFAULT_KEY_PREFIX}:index"
    failure_threshold: int = C.INDEX_BREAKER_FAILURE_THRESHOLD
    reset_seconds: float = C.INDEX_BREAKER_RESET_SECONDS


@dataclass(frozen=True)
class ObservabilityConfig:
    """Observability and telemetry configuration."""

    metrics_enabled: bool = True
    log_level: str = "INFO"
    log_json: bool = True


@dataclass(frozen=True)
class SessionStoreConfig:
    """Root configuration for the session store."""

    session: SessionConfig = field(default_factory=SessionConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @property
    def privileged(self) -> bool:
        return self.index.enabled

    @property
    def collection_name(self) -> str:
        """Collection the sessions of this deployment live in."""
        if self.privileged:
            return self.store.system_collection
        return self.store.collection

    @classmethod
    def from_env(cls) -> Result[SessionStoreConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with SESSIONSTORE_.
        Example: SESSIONSTORE_TIME_TO_LIVE, SESSIONSTORE_INDEX_ENABLED
        Redis connection settings use the REDIS_ prefix.
        """

        def _bool(name: str, default: bool) -> bool:
            value = os.getenv(name, "").lower()
            if value in ("true", "1", "yes"):
                return True
            if value in ("false", "0", "no"):
                return False
            return default

        try:
            session = SessionConfig(
                sid_length=int(os.getenv("SESSIONSTORE_SID_LENGTH", str(C.DEFAULT_SID_LENGTH))),
                sid_timestamp=_bool("SESSIONSTORE_SID_TIMESTAMP", False),
                time_to_live=int(os.getenv("SESSIONSTORE_TIME_TO_LIVE", "0") or 0),
                ttl_type=os.getenv("SESSIONSTORE_TTL_TYPE", C.DEFAULT_TTL_TYPE),
            )

            store = StoreConfig(
                backend=os.getenv("SESSIONSTORE_STORE_BACKEND", "memory"),
                collection=os.getenv("SESSIONSTORE_COLLECTION", C.APP_SESSION_COLLECTION),
                key_prefix=os.getenv("SESSIONSTORE_KEY_PREFIX", C.DEFAULT_KEY_PREFIX),
            )

            index = IndexConfig(
                enabled=_bool("SESSIONSTORE_INDEX_ENABLED", False),
                backend=os.getenv("SESSIONSTORE_INDEX_BACKEND", "memory"),
            )

            observability = ObservabilityConfig(
                metrics_enabled=_bool("SESSIONSTORE_METRICS_ENABLED", True),
                log_level=os.getenv("SESSIONSTORE_LOG_LEVEL", "INFO").upper(),
                log_json=_bool("SESSIONSTORE_LOG_JSON", True),
            )

            return Ok(cls(
                session=session,
                store=store,
                index=index,
                redis=RedisConfig.from_env(),
                observability=observability,
            ))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate configuration invariants."""
        session_check = self.session.validate()
        if session_check.is_err():
            return session_check
        if self.store.backend not in ("memory", "redis"):
            return Err(f"Unknown store backend: {self.store.backend!r}")
        if self.index.backend not in ("memory", "redis"):
            return Err(f"Unknown index backend: {self.index.backend!r}")
        if self.store.lock_timeout_ms <= 0:
            return Err("lock_timeout_ms must be > 0")
        if self.observability.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            return Err(f"Unknown log level: {self.observability.log_level!r}")
        return Ok(None)
