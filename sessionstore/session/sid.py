"""
Session Identifier Generation

Identifiers are URL-safe and hard to guess:

    [<base64(creation millis)>-]<random alphanumeric suffix>

The optional timestamp prefix makes ids roughly sortable by creation
time and lets operators eyeball a session's age from its id. The
suffix is drawn from the `secrets` CSPRNG.
"""

from __future__ import annotations

import base64
import secrets
import string
from typing import Optional

from sessionstore.core import constants as C
from sessionstore.core.config import SessionConfig
from sessionstore.core.types import Clock, now_millis

SID_ALPHABET: str = string.ascii_letters + string.digits


def encode_timestamp(millis: int) -> str:
    """Compact URL-safe encoding of a millisecond timestamp."""
    raw = base64.urlsafe_b64encode(str(millis).encode("ascii"))
    return raw.decode("ascii").rstrip("=")


def decode_timestamp(prefix: str) -> Optional[int]:
    """Recover the creation millis from a prefix; None if not one."""
    padded = prefix + "=" * (-len(prefix) % 4)
    try:
        text = base64.urlsafe_b64decode(padded.encode("ascii")).decode("ascii")
    except (ValueError, UnicodeError):
        return None
    return int(text) if text.isdigit() else None


def random_suffix(length: int) -> str:
    return "".join(secrets.choice(SID_ALPHABET) for _ in range(length))


class SidGenerator:
    """
    Produces session identifiers from the session configuration.

    Usage:
        generate = SidGenerator(SessionConfig(sid_timestamp=True))
        sid = generate()
    """

    __slots__ = ("_length", "_timestamp", "_clock")

    def __init__(self, config: SessionConfig, clock: Clock = now_millis) -> None:
        self._length = config.sid_length
        self._timestamp = config.sid_timestamp
        self._clock = clock

    def __call__(self) -> str:
        return self.generate()

    def generate(self) -> str:
        if not self._timestamp:
            return random_suffix(self._length or C.DEFAULT_SID_LENGTH)

        prefix = encode_timestamp(self._clock())
        if self._length == 0:
            return prefix
        return f"{prefix}{C.SID_SEPARATOR}{random_suffix(self._length)}"

    @staticmethod
    def created_at(sid: str) -> Optional[int]:
        """Creation time encoded in a timestamp-prefixed id, if any."""
        prefix, _, _ = sid.partition(C.SID_SEPARATOR)
        return decode_timestamp(prefix)
