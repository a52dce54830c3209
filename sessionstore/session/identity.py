"""
Identity Provider Boundary

Sessions bind to identities owned by an external user directory. Only
three things cross the boundary: the identity's id, its display name
(what the global index maps sids to) and an attribute snapshot cached
on the session.
"""

from __future__ import annotations

import asyncio
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class Identity:
    """An authenticated identity as the directory reports it."""
    id: str
    display_name: str
    attributes: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class IdentityDirectory(Protocol):
    """Lookup used when rebuilding the identity index at startup."""

    @abstractmethod
    async def get_identity(self, ref: str) -> Optional[Identity]:
        """Identity for ref, or None if the directory no longer knows it."""
        ...


class InMemoryIdentityDirectory:
    """Dictionary-backed directory for tests and the demo."""

    __slots__ = ("_identities", "_lock")

    def __init__(self, identities: Iterable[Identity] = ()) -> None:
        self._identities: dict[str, Identity] = {i.id: i for i in identities}
        self._lock = asyncio.Lock()

    async def add(self, identity: Identity) -> None:
        async with self._lock:
            self._identities[identity.id] = identity

    async def get_identity(self, ref: str) -> Optional[Identity]:
        async with self._lock:
            return self._identities.get(ref)
