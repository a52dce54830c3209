"""
Session module: Session lifecycle engine.

Components (leaves first):
- SidGenerator: unique, hard-to-guess identifiers
- SessionRecord / TTLPolicy: the entity and its expiry rules
- SessionRepository: persistence boundary
- GlobalIdentityIndex / NullIdentityIndex: sid -> identity side table
- SessionService: transactional orchestration
"""

from sessionstore.session.sid import SidGenerator
from sessionstore.session.identity import Identity, IdentityDirectory, InMemoryIdentityDirectory
from sessionstore.session.record import SessionRecord, SessionState, TTLPolicy
from sessionstore.session.repository import SessionRepository
from sessionstore.session.index import (
    IdentityIndex,
    GlobalIdentityIndex,
    NullIdentityIndex,
    identity_pairs,
)
from sessionstore.session.service import SessionService

__all__ = [
    "SidGenerator",
    "Identity",
    "IdentityDirectory",
    "InMemoryIdentityDirectory",
    "SessionRecord",
    "SessionState",
    "TTLPolicy",
    "SessionRepository",
    "IdentityIndex",
    "GlobalIdentityIndex",
    "NullIdentityIndex",
    "identity_pairs",
    "SessionService",
]
