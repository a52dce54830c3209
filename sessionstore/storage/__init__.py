"""
Storage module: Document store and identity index backends.

- protocols: DocumentStoreProtocol, IndexBackendProtocol
- backends: in-memory implementations
- redis_store: Redis/Valkey implementations
"""

from sessionstore.storage.config import RedisConfig, RedisMode
from sessionstore.storage.protocols import (
    Document,
    DocumentStoreProtocol,
    IndexBackendProtocol,
    OperationMetadata,
    OperationType,
)
from sessionstore.storage.backends import InMemoryDocumentStore, InMemoryIndexBackend
from sessionstore.storage.redis_store import RedisDocumentStore, RedisIndexBackend

__all__ = [
    "RedisConfig",
    "RedisMode",
    "Document",
    "DocumentStoreProtocol",
    "IndexBackendProtocol",
    "OperationMetadata",
    "OperationType",
    "InMemoryDocumentStore",
    "InMemoryIndexBackend",
    "RedisDocumentStore",
    "RedisIndexBackend",
]
