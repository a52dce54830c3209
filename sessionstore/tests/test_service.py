"""
Session service tests.

Covers the create/get/delete lifecycle, TTL enforcement inside the
transactional get, serialization of concurrent gets, reconciliation
with the identity index and propagation of storage failures.

Run: python -m pytest sessionstore/tests/test_service.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from sessionstore.core.errors import (
    ErrorCode,
    SessionExpired,
    SessionNotFound,
    StorageError,
)
from sessionstore.core.types import Err
from sessionstore.session.identity import Identity
from sessionstore.session.record import SessionState
from sessionstore.session.repository import SessionRepository
from sessionstore.session.service import MAX_CREATE_ATTEMPTS, SessionService
from sessionstore.storage.backends import InMemoryDocumentStore

from conftest import T0, TickingClock, assert_err, assert_ok

TTL = 60_000
YEAR_MS = 365 * 24 * 3600 * 1000

ADA = Identity(id="users/ada", display_name="Ada Lovelace", attributes={"role": "admin"})


class FailingFetchStore(InMemoryDocumentStore):
    """Store whose reads fail with a backend timeout."""

    async def fetch_by_id(self, collection, key):
        return Err(StorageError.timeout("fetch"))


class CollidingStore(InMemoryDocumentStore):
    """Rejects the first `collisions` inserts as duplicates."""

    def __init__(self, collisions: int) -> None:
        super().__init__()
        self.collisions = collisions
        self.attempts = 0

    async def save(self, collection, key, document):
        self.attempts += 1
        if self.attempts <= self.collisions:
            return Err(StorageError.duplicate_key(collection, key))
        return await super().save(collection, key, document)


class DelayedUpdateStore(InMemoryDocumentStore):
    """Holds every partial update until `release` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def update(self, collection, key, fields):
        await self.release.wait()
        return await super().update(collection, key, fields)


# =============================================================================
# CREATE
# =============================================================================
class TestCreate:

    @pytest.mark.asyncio
    async def test_create_persists_anonymous_record(self, make_service, store):
        service = make_service()
        record = assert_ok(await service.create({"cart": ["book"]}))

        assert record.is_anonymous
        assert record.session_data == {"cart": ["book"]}
        assert record.created_at == record.last_access_at == record.last_update_at == T0

        stored = assert_ok(await store.fetch_by_id("sessions", record.id))
        assert stored["sessionData"] == {"cart": ["book"]}
        assert stored["uid"] is None

    @pytest.mark.asyncio
    async def test_create_copies_initial_data(self, make_service):
        service = make_service()
        data = {"cart": ["book"]}
        record = assert_ok(await service.create(data))
        data["cart"].append("pen")
        assert record.session_data == {"cart": ["book"]}

    @pytest.mark.asyncio
    async def test_create_retries_on_id_collision(self, clock, metrics):
        store = CollidingStore(collisions=2)
        service = SessionService(SessionRepository(store, "sessions"), clock=clock, metrics=metrics)
        assert_ok(await service.create())
        assert store.attempts == 3

    @pytest.mark.asyncio
    async def test_create_gives_up_after_repeated_collisions(self, clock):
        store = CollidingStore(collisions=MAX_CREATE_ATTEMPTS)
        service = SessionService(SessionRepository(store, "sessions"), clock=clock)
        error = assert_err(await service.create(), StorageError)
        assert error.is_duplicate_key

    @pytest.mark.asyncio
    async def test_create_counts_sessions(self, make_service, metrics):
        service = make_service()
        await service.create()
        await service.create()
        assert metrics.created.get(collection="sessions") == 2
        assert metrics.operations.get(operation="create", outcome="ok") == 2


# =============================================================================
# GET
# =============================================================================
class TestGet:

    @pytest.mark.asyncio
    async def test_get_bumps_last_access(self, make_service, clock, store):
        service = make_service()
        created = assert_ok(await service.create())

        clock.advance(1_000)
        fetched = assert_ok(await service.get(created.id))
        assert fetched.last_access_at == T0 + 1_000
        assert fetched.last_update_at == T0

        stored = assert_ok(await store.fetch_by_id("sessions", created.id))
        assert stored["lastAccess"] == T0 + 1_000

    @pytest.mark.asyncio
    async def test_last_access_is_non_decreasing(self, make_service, clock):
        service = make_service()
        created = assert_ok(await service.create())

        seen = [created.last_access_at]
        for step in (0, 5, 0, 250):
            clock.advance(step)
            seen.append(assert_ok(await service.get(created.id)).last_access_at)
        assert seen == sorted(seen)

    @pytest.mark.asyncio
    async def test_disabled_ttl_never_expires(self, make_service, clock):
        service = make_service(time_to_live=0)
        created = assert_ok(await service.create())
        clock.advance(10 * YEAR_MS)
        assert_ok(await service.get(created.id))

    @pytest.mark.asyncio
    async def test_ttl_boundary(self, make_service, clock):
        service = make_service(time_to_live=TTL)
        created = assert_ok(await service.create())

        clock.set(T0 + TTL - 1)
        assert_ok(await service.get(created.id))

        clock.set(T0 + TTL + 1)
        error = assert_err(await service.get(created.id), SessionExpired)
        assert error.code == ErrorCode.SESSION_EXPIRED
        assert error.session_id == created.id

    @pytest.mark.asyncio
    async def test_sliding_expiry_with_last_access(self, make_service, clock):
        service = make_service(time_to_live=TTL, ttl_type="lastAccess")
        created = assert_ok(await service.create())

        for _ in range(3):
            clock.advance(TTL - 1)
            assert_ok(await service.get(created.id))

        clock.advance(TTL + 1)
        assert_err(await service.get(created.id), SessionExpired)

    @pytest.mark.asyncio
    async def test_expired_get_writes_nothing(self, make_service, clock, store):
        service = make_service(time_to_live=TTL)
        created = assert_ok(await service.create())
        before = assert_ok(await store.fetch_by_id("sessions", created.id))

        clock.set(T0 + TTL + 1)
        assert_err(await service.get(created.id), SessionExpired)

        after = assert_ok(await store.fetch_by_id("sessions", created.id))
        assert after == before
        assert assert_ok(await service.state_of(created.id)) is SessionState.EXPIRED

    @pytest.mark.asyncio
    async def test_expired_and_missing_are_distinct(self, make_service, clock, metrics):
        service = make_service(time_to_live=TTL)
        created = assert_ok(await service.create())
        clock.set(T0 + TTL + 1)

        expired = assert_err(await service.get(created.id))
        missing = assert_err(await service.get("no-such-session"))
        assert isinstance(expired, SessionExpired) and not isinstance(expired, SessionNotFound)
        assert isinstance(missing, SessionNotFound) and not isinstance(missing, SessionExpired)

        assert metrics.expired.get(collection="sessions") == 1
        assert metrics.operations.get(operation="get", outcome="expired") == 1
        assert metrics.operations.get(operation="get", outcome="not_found") == 1

    @pytest.mark.asyncio
    async def test_storage_errors_propagate_unchanged(self, clock, metrics):
        service = SessionService(
            SessionRepository(FailingFetchStore(), "sessions"),
            clock=clock,
            metrics=metrics,
        )
        error = assert_err(await service.get("s1"), StorageError)
        assert error.code == ErrorCode.STORAGE_TIMEOUT
        assert metrics.operations.get(operation="get", outcome="error") == 1

    @pytest.mark.asyncio
    async def test_concurrent_gets_keep_latest_access(self, metrics):
        clock = TickingClock(T0, step=7)
        store = InMemoryDocumentStore(simulate_latency=True)
        service = SessionService(SessionRepository(store, "sessions"), clock=clock, metrics=metrics)
        created = assert_ok(await service.create())

        results = await asyncio.gather(*(service.get(created.id) for _ in range(8)))
        accesses = [assert_ok(r).last_access_at for r in results]

        stored = assert_ok(await store.fetch_by_id("sessions", created.id))
        assert stored["lastAccess"] == max(accesses)
        assert len(set(accesses)) == len(accesses)

    @pytest.mark.asyncio
    async def test_get_waits_for_running_transaction(self, make_service, store):
        service = make_service()
        created = assert_ok(await service.create())
        release = asyncio.Event()
        order = []

        async def hold():
            order.append("held")
            await release.wait()
            order.append("released")
            return await service.repository.fetch_by_id(created.id)

        holder = asyncio.create_task(store.run_transaction(["sessions"], ["sessions"], hold))
        await asyncio.sleep(0)
        getter = asyncio.create_task(service.get(created.id))
        await asyncio.sleep(0.01)
        assert not getter.done()

        release.set()
        assert_ok(await holder)
        assert_ok(await getter)
        assert order == ["held", "released"]


# =============================================================================
# DELETE / SAVE / DISCARD
# =============================================================================
class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_then_get_is_not_found(self, make_service):
        service = make_service()
        created = assert_ok(await service.create())

        assert assert_ok(await service.delete(created.id)) is None
        assert_err(await service.get(created.id), SessionNotFound)
        assert assert_ok(await service.state_of(created.id)) is SessionState.DELETED

    @pytest.mark.asyncio
    async def test_delete_missing_is_not_found(self, make_service):
        service = make_service()
        error = assert_err(await service.delete("never-created"), SessionNotFound)
        assert error.session_id == "never-created"

    @pytest.mark.asyncio
    async def test_save_stamps_and_replaces(self, make_service, clock, store):
        service = make_service()
        record = assert_ok(await service.create())
        record.session_data["step"] = 2

        clock.advance(500)
        assert_ok(await service.save(record))
        assert record.last_update_at == T0 + 500

        stored = assert_ok(await store.fetch_by_id("sessions", record.id))
        assert stored["sessionData"] == {"step": 2}
        assert stored["lastUpdate"] == T0 + 500
        assert stored["lastAccess"] == T0 + 500

    @pytest.mark.asyncio
    async def test_save_after_delete_is_not_found(self, make_service):
        service = make_service()
        record = assert_ok(await service.create())
        assert_ok(await service.delete(record.id))
        assert_err(await service.save(record), SessionNotFound)

    @pytest.mark.asyncio
    async def test_save_waits_for_get_and_keeps_newer_access(self, clock, metrics):
        store = DelayedUpdateStore()
        service = SessionService(SessionRepository(store, "sessions"), clock=clock, metrics=metrics)
        record = assert_ok(await service.create())

        clock.set(T0 + 100)
        getter = asyncio.create_task(service.get(record.id))
        await asyncio.sleep(0.01)

        clock.set(T0 + 200)
        saver = asyncio.create_task(service.save(record))
        await asyncio.sleep(0.01)
        assert not saver.done()

        store.release.set()
        assert_ok(await getter)
        assert_ok(await saver)

        stored = assert_ok(await store.fetch_by_id("sessions", record.id))
        assert stored["lastAccess"] == T0 + 200
        assert stored["lastUpdate"] == T0 + 200

    @pytest.mark.asyncio
    async def test_stale_save_does_not_lower_stored_access(self, make_service, clock, store):
        service = make_service()
        record = assert_ok(await service.create())

        clock.set(T0 + 100)
        assert_ok(await service.get(record.id))

        clock.set(T0 + 50)
        assert_ok(await service.save(record))

        stored = assert_ok(await store.fetch_by_id("sessions", record.id))
        assert stored["lastAccess"] == T0 + 100
        assert stored["lastUpdate"] == T0 + 50
        assert record.last_access_at == T0 + 100

    @pytest.mark.asyncio
    async def test_discard(self, make_service):
        service = make_service()
        record = assert_ok(await service.create())
        assert assert_ok(await service.discard(record)) is True
        assert assert_ok(await service.discard(record)) is False


# =============================================================================
# IDENTITY INDEX INTEGRATION
# =============================================================================
class TestIndexIntegration:

    @pytest.mark.asyncio
    async def test_identity_binding_is_mirrored(self, make_service, index_backend, store):
        service = make_service(privileged=True)
        record = assert_ok(await service.create())

        await service.set_identity(record, ADA)
        assert_ok(await service.save(record))
        assert await service.index.lookup(record.id) == "Ada Lovelace"
        stored = assert_ok(await store.fetch_by_id("sessions", record.id))
        assert stored["uid"] == "users/ada"
        assert stored["userData"] == {"role": "admin"}

        await service.set_identity(record, None)
        assert_ok(await service.save(record))
        assert await service.index.lookup(record.id) is None
        assert record.is_anonymous

    @pytest.mark.asyncio
    async def test_delete_clears_index_entry(self, make_service, index_backend):
        service = make_service(privileged=True)
        record = assert_ok(await service.create())
        await service.set_identity(record, ADA)
        await service.index.record_access(record.id)

        assert_ok(await service.delete(record.id))
        assert await index_backend.get_entry(record.id) is None
        assert await index_backend.touch_entry(record.id) is None

    @pytest.mark.asyncio
    async def test_newer_index_access_extends_lifetime(self, make_service, clock):
        service = make_service(privileged=True, time_to_live=TTL, ttl_type="lastAccess")
        created = assert_ok(await service.create())

        await service.index.record_access(created.id, T0 + TTL - 100)
        clock.set(T0 + TTL + 500)

        fetched = assert_ok(await service.get(created.id))
        assert fetched.last_access_at == T0 + TTL + 500

    @pytest.mark.asyncio
    async def test_future_index_access_is_clamped(self, make_service, clock, store):
        service = make_service(privileged=True, time_to_live=TTL, ttl_type="lastAccess")
        created = assert_ok(await service.create())

        await service.index.record_access(created.id, T0 + 10 * TTL)
        clock.set(T0 + TTL + 500)

        # Adopted time is clamped to the store clock
        fetched = assert_ok(await service.get(created.id))
        assert fetched.last_access_at == T0 + TTL + 500
        stored = assert_ok(await store.fetch_by_id("sessions", created.id))
        assert stored["lastAccess"] == T0 + TTL + 500

    @pytest.mark.asyncio
    async def test_older_index_access_is_ignored(self, make_service, clock):
        service = make_service(privileged=True, time_to_live=TTL, ttl_type="lastAccess")
        created = assert_ok(await service.create())

        await service.index.record_access(created.id, T0 - 1_000)
        clock.set(T0 + TTL + 1)
        assert_err(await service.get(created.id), SessionExpired)

    @pytest.mark.asyncio
    async def test_index_failure_never_fails_sessions(self, make_service, index_backend, metrics):
        service = make_service(privileged=True)
        record = assert_ok(await service.create())
        index_backend.fail_with(ConnectionError("index down"))

        await service.set_identity(record, ADA)
        assert_ok(await service.save(record))
        assert_ok(await service.get(record.id))
        assert_ok(await service.delete(record.id))

        assert metrics.index_failures.get(operation="upsert") == 1
        assert metrics.index_failures.get(operation="touch") == 1

    @pytest.mark.asyncio
    async def test_unprivileged_service_ignores_index(self, make_service, index_backend):
        service = make_service(privileged=False)
        record = assert_ok(await service.create())
        await service.set_identity(record, ADA)
        assert len(index_backend) == 0
        assert await service.index.lookup(record.id) is None
