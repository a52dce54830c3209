"""
System-Wide Constants for the Session Store

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# SIZE AND TIME UNITS
# =============================================================================
KB: Final[int] = 1024
MB: Final[int] = 1024 * KB

SECOND_MS: Final[int] = 1000
MINUTE_MS: Final[int] = 60 * SECOND_MS
HOUR_MS: Final[int] = 60 * MINUTE_MS

# =============================================================================
# SESSION IDENTIFIERS
# =============================================================================
DEFAULT_SID_LENGTH: Final[int] = 10
SID_SEPARATOR: Final[str] = "-"

# =============================================================================
# TTL POLICY
# =============================================================================
TTL_DISABLED: Final[int] = 0
DEFAULT_TTL_TYPE: Final[str] = "created"

# =============================================================================
# COLLECTIONS
# =============================================================================
APP_SESSION_COLLECTION: Final[str] = "sessions"
SYSTEM_SESSION_COLLECTION: Final[str] = "_sessions"
DEFAULT_KEY_PREFIX: Final[str] = "sessionstore"

# =============================================================================
# STORAGE
# =============================================================================
TRANSACTION_LOCK_TIMEOUT_MS: Final[int] = 10 * SECOND_MS
TRANSACTION_ACQUIRE_TIMEOUT_MS: Final[int] = 5 * SECOND_MS
COMPRESSION_THRESHOLD_BYTES: Final[int] = 1 * KB

# =============================================================================
# RELIABILITY
# =============================================================================
INDEX_BREAKER_FAILURE_THRESHOLD: Final[int] = 5
INDEX_BREAKER_RESET_SECONDS: Final[float] = 30.0
