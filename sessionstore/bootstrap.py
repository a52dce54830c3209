"""
Composition Root

Builds a SessionService from configuration: document store, repository,
identity index capability and metrics. In the privileged deployment
the identity index is rebuilt once here, from the join of persisted
sessions with the identity directory; a failing rebuild is logged and
startup continues.

Usage:
    config = SessionStoreConfig.from_env().unwrap()
    service = (await build_session_service(config)).unwrap()
"""

from __future__ import annotations

from typing import Optional

from sessionstore.core.config import SessionStoreConfig
from sessionstore.core.errors import ErrorCode, SessionStoreError
from sessionstore.core.types import Clock, Result, Ok, Err, now_millis
from sessionstore.observability.logging import StructuredLogger
from sessionstore.observability.metrics import MetricsCollector, SessionMetrics
from sessionstore.reliability.circuit_breaker import CircuitBreaker
from sessionstore.session.identity import IdentityDirectory
from sessionstore.session.index import (
    GlobalIdentityIndex,
    IdentityIndex,
    NullIdentityIndex,
    identity_pairs,
)
from sessionstore.session.repository import SessionRepository
from sessionstore.session.service import SessionService
from sessionstore.storage.backends import InMemoryDocumentStore, InMemoryIndexBackend
from sessionstore.storage.protocols import DocumentStoreProtocol, IndexBackendProtocol
from sessionstore.storage.redis_store import RedisDocumentStore, RedisIndexBackend

logger = StructuredLogger(__name__)


async def build_store(config: SessionStoreConfig) -> Result[DocumentStoreProtocol, SessionStoreError]:
    """Document store selected by config.store.backend."""
    if config.store.backend == "redis":
        store = RedisDocumentStore(
            config.redis,
            key_prefix=config.store.key_prefix,
            compression_threshold_bytes=config.store.compression_threshold_bytes,
            lock_timeout_ms=config.store.lock_timeout_ms,
            acquire_timeout_ms=config.store.acquire_timeout_ms,
        )
        connected = await store.connect()
        if connected.is_err():
            return connected
        return Ok(store)
    return Ok(InMemoryDocumentStore(acquire_timeout_ms=config.store.acquire_timeout_ms))


def build_index_backend(config: SessionStoreConfig) -> IndexBackendProtocol:
    if config.index.backend == "redis":
        return RedisIndexBackend(config.redis, key_prefix=config.index.key_prefix)
    return InMemoryIndexBackend()


async def build_session_service(
    config: Optional[SessionStoreConfig] = None,
    store: Optional[DocumentStoreProtocol] = None,
    index_backend: Optional[IndexBackendProtocol] = None,
    identities: Optional[IdentityDirectory] = None,
    clock: Clock = now_millis,
    collector: Optional[MetricsCollector] = None,
) -> Result[SessionService, SessionStoreError]:
    """
    Wire a SessionService.

    Args:
        config: Root configuration (defaults when None)
        store: Pre-built document store; built from config when None
        index_backend: Pre-built index backend (privileged mode only)
        identities: Directory used to rebuild the index at startup
        clock: Millisecond time source
        collector: Metrics registry (process-wide when None)

    Returns:
        Ok(service), or Err for invalid configuration or an
        unreachable store. Index problems never fail startup.
    """
    config = config or SessionStoreConfig()
    valid = config.validate()
    if valid.is_err():
        return Err(SessionStoreError(
            code=ErrorCode.INTERNAL_CONFIGURATION_ERROR,
            message=valid.error,
        ))

    if store is None:
        built = await build_store(config)
        if built.is_err():
            logger.error("Document store unavailable", error_code=built.error.code.name)
            return built
        store = built.unwrap()

    metrics = (
        SessionMetrics(collector or MetricsCollector.get_instance())
        if config.observability.metrics_enabled
        else None
    )
    repository = SessionRepository(store, config.collection_name)

    index: IdentityIndex
    if config.privileged:
        index = GlobalIdentityIndex(
            index_backend if index_backend is not None else build_index_backend(config),
            breaker=CircuitBreaker(
                "identity-index",
                failure_threshold=config.index.failure_threshold,
                reset_seconds=config.index.reset_seconds,
            ),
            metrics=metrics,
            clock=clock,
        )
        if identities is not None:
            await index.bulk_load(identity_pairs(repository, identities))
        else:
            logger.warning("No identity directory configured; identity index starts empty")
    else:
        index = NullIdentityIndex()

    logger.info(
        "Session service ready",
        collection=repository.collection,
        privileged=config.privileged,
        store=type(store).__name__,
        ttl_ms=config.session.time_to_live,
    )
    return Ok(SessionService(
        repository,
        config=config.session,
        index=index,
        clock=clock,
        metrics=metrics,
    ))
