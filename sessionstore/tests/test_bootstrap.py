"""
Service wiring tests.

Run: python -m pytest sessionstore/tests/test_bootstrap.py -v
"""

from __future__ import annotations

import pytest

from sessionstore.bootstrap import build_session_service
from sessionstore.core.config import IndexConfig, SessionConfig, SessionStoreConfig, ObservabilityConfig
from sessionstore.core.errors import ErrorCode
from sessionstore.observability.metrics import SessionMetrics
from sessionstore.session.identity import Identity, InMemoryIdentityDirectory
from sessionstore.session.index import GlobalIdentityIndex, NullIdentityIndex
from sessionstore.session.record import SessionRecord

from conftest import T0, FakeClock, assert_err, assert_ok

ADA = Identity(id="users/ada", display_name="Ada Lovelace")


@pytest.mark.asyncio
async def test_default_service_is_unprivileged(store, collector):
    service = assert_ok(await build_session_service(store=store, collector=collector))
    assert isinstance(service.index, NullIdentityIndex)
    assert service.repository.collection == "sessions"
    assert not service.policy.enabled


@pytest.mark.asyncio
async def test_builds_in_memory_store_when_none_given(collector):
    service = assert_ok(await build_session_service(collector=collector))
    record = assert_ok(await service.create())
    assert_ok(await service.get(record.id))


@pytest.mark.asyncio
async def test_invalid_configuration_is_rejected(collector):
    config = SessionStoreConfig(session=SessionConfig(time_to_live=-1))
    error = assert_err(await build_session_service(config, collector=collector))
    assert error.code == ErrorCode.INTERNAL_CONFIGURATION_ERROR


@pytest.mark.asyncio
async def test_privileged_service_reloads_index(store, index_backend, collector):
    bound = SessionRecord.new("s1", T0).bind_identity(ADA)
    assert_ok(await store.save("_sessions", bound.id, bound.to_document()))
    assert_ok(await store.save("sessions", "app-only", bound.to_document()))

    config = SessionStoreConfig(
        session=SessionConfig(time_to_live=60_000),
        index=IndexConfig(enabled=True),
    )
    service = assert_ok(await build_session_service(
        config,
        store=store,
        index_backend=index_backend,
        identities=InMemoryIdentityDirectory([ADA]),
        clock=FakeClock(T0),
        collector=collector,
    ))

    assert isinstance(service.index, GlobalIdentityIndex)
    assert service.index.backend is index_backend
    assert service.repository.collection == "_sessions"
    assert await index_backend.get_entry("s1") == "Ada Lovelace"
    assert await index_backend.get_entry("app-only") is None

    record = assert_ok(await service.create())
    await service.set_identity(record, ADA)
    assert await index_backend.get_entry(record.id) == "Ada Lovelace"


@pytest.mark.asyncio
async def test_failing_index_does_not_block_startup(store, index_backend, collector):
    index_backend.fail_with(ConnectionError("index down"))
    config = SessionStoreConfig(index=IndexConfig(enabled=True))

    service = assert_ok(await build_session_service(
        config,
        store=store,
        index_backend=index_backend,
        identities=InMemoryIdentityDirectory([ADA]),
        collector=collector,
    ))
    assert service.index.backend is index_backend
    assert SessionMetrics(collector).index_failures.get(operation="bulk_load") == 1
    assert_ok(await service.create())


@pytest.mark.asyncio
async def test_metrics_can_be_disabled(store, collector):
    config = SessionStoreConfig(observability=ObservabilityConfig(metrics_enabled=False))
    service = assert_ok(await build_session_service(config, store=store, collector=collector))
    assert_ok(await service.create())
    assert "sessionstore_operations_total" not in collector.export_prometheus()
