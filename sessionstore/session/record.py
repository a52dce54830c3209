"""
Session Record and TTL Policy

A SessionRecord is one server-side session: caller payload, optional
identity binding, and three millisecond timestamps. It owns the
expiry arithmetic; persistence belongs to the repository and service.

Stored Document:
    {
        "uid":         str | null,     # identity reference
        "sessionData": object,         # caller payload
        "userData":    object,         # identity attribute snapshot
        "created":     int,            # ms since epoch
        "lastAccess":  int,
        "lastUpdate":  int
    }

The document key is the session id and is not repeated in the body.

Invariants:
    - last_access_at and last_update_at never decrease
    - identity_data is empty whenever identity_ref is None
    - an expired record is treated as absent by every read path
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Optional, Union

from sessionstore.core.config import SessionConfig
from sessionstore.core.errors import SessionError, SessionExpired, StorageError
from sessionstore.core.types import INFINITE, Clock, Result, Ok, Err, now_millis
from sessionstore.session.identity import Identity


# Record attribute -> document field
DOCUMENT_FIELDS: dict[str, str] = {
    "identity_ref": "uid",
    "session_data": "sessionData",
    "identity_data": "userData",
    "created_at": "created",
    "last_access_at": "lastAccess",
    "last_update_at": "lastUpdate",
}

_TIMESTAMP_FIELDS = ("created_at", "last_access_at", "last_update_at")


class SessionState(Enum):
    """Lifecycle: ACTIVE -> EXPIRED -> DELETED, or ACTIVE -> DELETED."""
    ACTIVE = auto()
    EXPIRED = auto()
    DELETED = auto()


# =============================================================================
# TTL POLICY
# =============================================================================
class TTLPolicy:
    """
    Expiry rules for one deployment.

    Args:
        time_to_live: Lifetime in milliseconds; 0 disables expiry
        ttl_type: Which timestamp the lifetime runs from
        clock: Millisecond time source
    """

    __slots__ = ("_ttl", "_reference", "_clock")

    def __init__(
        self,
        time_to_live: int = 0,
        ttl_type: Optional[str] = None,
        clock: Clock = now_millis,
    ) -> None:
        config = SessionConfig(time_to_live=time_to_live or 0, ttl_type=ttl_type or "created")
        self._ttl = config.time_to_live
        self._reference = config.ttl_reference_field
        self._clock = clock

    @classmethod
    def from_config(cls, config: SessionConfig, clock: Clock = now_millis) -> TTLPolicy:
        return cls(config.time_to_live, config.ttl_type, clock)

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    @property
    def time_to_live(self) -> int:
        return self._ttl

    def now(self) -> int:
        return self._clock()

    def reference_timestamp(self, record: SessionRecord) -> int:
        """Configured reference field, falling back to created_at when falsy."""
        return getattr(record, self._reference, None) or record.created_at

    def expiry_of(self, record: SessionRecord) -> Union[int, float]:
        if not self.enabled:
            return INFINITE
        return self.reference_timestamp(record) + self._ttl

    def remaining(self, record: SessionRecord) -> Union[int, float]:
        if not self.enabled:
            return INFINITE
        return max(0, self.expiry_of(record) - self._clock())

    def has_expired(self, record: SessionRecord) -> bool:
        return self.enabled and self.remaining(record) == 0


# =============================================================================
# SESSION RECORD
# =============================================================================
@dataclass(slots=True)
class SessionRecord:
    """
    One session.

    Mutators change the in-memory record only; callers persist through
    SessionService.save.
    """
    id: str
    identity_ref: Optional[str] = None
    session_data: dict[str, Any] = field(default_factory=dict)
    identity_data: dict[str, Any] = field(default_factory=dict)
    created_at: int = 0
    last_access_at: int = 0
    last_update_at: int = 0

    @classmethod
    def new(
        cls,
        sid: str,
        now: int,
        session_data: Optional[dict[str, Any]] = None,
    ) -> SessionRecord:
        """Anonymous record with every timestamp set to now."""
        return cls(
            id=sid,
            session_data=copy.deepcopy(session_data) if session_data else {},
            created_at=now,
            last_access_at=now,
            last_update_at=now,
        )

    @property
    def is_anonymous(self) -> bool:
        return self.identity_ref is None

    # -------------------------------------------------------------------------
    # TTL
    # -------------------------------------------------------------------------

    def compute_expiry_timestamp(self, policy: TTLPolicy) -> Union[int, float]:
        return policy.expiry_of(self)

    def remaining_ttl(self, policy: TTLPolicy) -> Union[int, float]:
        return policy.remaining(self)

    def has_expired(self, policy: TTLPolicy) -> bool:
        return policy.has_expired(self)

    def enforce_ttl(self, policy: TTLPolicy) -> Result[SessionRecord, SessionExpired]:
        """Err(SessionExpired) once the lifetime is used up; the record is not modified."""
        if policy.has_expired(self):
            return Err(SessionError.expired(self.id, policy.expiry_of(self)))
        return Ok(self)

    def state(self, policy: TTLPolicy) -> SessionState:
        return SessionState.EXPIRED if policy.has_expired(self) else SessionState.ACTIVE

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def bind_identity(self, identity: Optional[Identity]) -> SessionRecord:
        """Bind identity (snapshotting its attributes), or clear with None."""
        if identity is None:
            self.identity_ref = None
            self.identity_data = {}
        else:
            self.identity_ref = identity.id
            self.identity_data = copy.deepcopy(identity.attributes)
        return self

    # -------------------------------------------------------------------------
    # Timestamps
    # -------------------------------------------------------------------------

    def mark_accessed(self, now: int) -> None:
        self.last_access_at = max(self.last_access_at, now)

    def touch(self, now: int) -> None:
        """Access and update both happen now."""
        self.last_access_at = max(self.last_access_at, now)
        self.last_update_at = max(self.last_update_at, now)

    def adopt_access(self, observed: Optional[int], now: int) -> bool:
        """
        Take an externally observed access time if strictly newer.

        The value is clamped to now, so a source running ahead of the
        store clock cannot push the session's lifetime into the future.
        """
        if observed is None or observed <= self.last_access_at:
            return False
        adopted = min(observed, now)
        if adopted <= self.last_access_at:
            return False
        self.last_access_at = adopted
        return True

    # -------------------------------------------------------------------------
    # Document mapping
    # -------------------------------------------------------------------------

    def to_document(self) -> dict[str, Any]:
        return {
            "uid": self.identity_ref,
            "sessionData": copy.deepcopy(self.session_data),
            "userData": copy.deepcopy(self.identity_data),
            "created": self.created_at,
            "lastAccess": self.last_access_at,
            "lastUpdate": self.last_update_at,
        }

    @classmethod
    def from_document(cls, key: str, document: dict[str, Any]) -> Result[SessionRecord, StorageError]:
        """Validate a stored document; malformed documents are corruption."""
        uid = document.get("uid")
        if uid is not None and not isinstance(uid, str):
            return Err(StorageError.corruption("uid must be a string or null", key=key))

        session_data = document.get("sessionData") or {}
        identity_data = document.get("userData") or {}
        if not isinstance(session_data, dict) or not isinstance(identity_data, dict):
            return Err(StorageError.corruption("sessionData/userData must be objects", key=key))
        if uid is None and identity_data:
            return Err(StorageError.corruption("userData present on anonymous session", key=key))

        timestamps = {}
        for attr in _TIMESTAMP_FIELDS:
            value = document.get(DOCUMENT_FIELDS[attr], 0)
            if value is None:
                value = 0
            if isinstance(value, bool) or not isinstance(value, int):
                return Err(StorageError.corruption(f"{DOCUMENT_FIELDS[attr]} must be an integer", key=key))
            timestamps[attr] = value

        return Ok(cls(
            id=key,
            identity_ref=uid,
            session_data=session_data,
            identity_data=identity_data,
            **timestamps,
        ))

    def __repr__(self) -> str:
        # Payloads stay out of logs and tracebacks
        return (
            f"SessionRecord(id={self.id!r}, identity_ref={self.identity_ref!r}, "
            f"created_at={self.created_at}, last_access_at={self.last_access_at}, "
            f"last_update_at={self.last_update_at})"
        )
