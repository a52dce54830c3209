"""
Session Repository: Persistence Boundary

Thin CRUD layer over a DocumentStoreProtocol collection. The only
translation it performs is storage "document not found" into
SessionNotFound; every other storage error passes through unchanged.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Mapping

from sessionstore.core.errors import SessionError, SessionStoreError, StorageError
from sessionstore.core.types import Result, Ok, Err
from sessionstore.observability.logging import StructuredLogger
from sessionstore.session.record import SessionRecord
from sessionstore.storage.protocols import DocumentStoreProtocol

logger = StructuredLogger(__name__)


def _translate(sid: str, error: StorageError) -> SessionStoreError:
    if isinstance(error, StorageError) and error.is_not_found:
        return SessionError.not_found(sid, cause=error)
    return error


class SessionRepository:
    """
    Session records in one collection of a document store.

    Usage:
        repo = SessionRepository(store, "sessions")
        await repo.save(record)
        result = await repo.fetch_by_id(record.id)
    """

    __slots__ = ("_store", "_collection")

    def __init__(self, store: DocumentStoreProtocol, collection: str) -> None:
        self._store = store
        self._collection = collection

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def store(self) -> DocumentStoreProtocol:
        return self._store

    async def save(self, record: SessionRecord) -> Result[SessionRecord, SessionStoreError]:
        result = await self._store.save(self._collection, record.id, record.to_document())
        if result.is_err():
            return result
        return Ok(record)

    async def fetch_by_id(self, sid: str) -> Result[SessionRecord, SessionStoreError]:
        result = await self._store.fetch_by_id(self._collection, sid)
        if result.is_err():
            return Err(_translate(sid, result.error))
        return SessionRecord.from_document(sid, result.unwrap())

    async def replace(self, record: SessionRecord) -> Result[SessionRecord, SessionStoreError]:
        result = await self._store.replace(self._collection, record.id, record.to_document())
        if result.is_err():
            return Err(_translate(record.id, result.error))
        return Ok(record)

    async def update_fields(
        self,
        sid: str,
        fields: Mapping[str, Any],
    ) -> Result[None, SessionStoreError]:
        """Partial update of document fields (document field names)."""
        result = await self._store.update(self._collection, sid, fields)
        if result.is_err():
            return Err(_translate(sid, result.error))
        return Ok(None)

    async def remove_by_id(self, sid: str) -> Result[None, SessionStoreError]:
        result = await self._store.remove_by_id(self._collection, sid)
        if result.is_err():
            return Err(_translate(sid, result.error))
        return Ok(None)

    async def iter_records(self) -> AsyncIterator[SessionRecord]:
        """All decodable records; corrupt documents are logged and skipped."""
        async for key, document in self._store.scan(self._collection):
            decoded = SessionRecord.from_document(key, document)
            if decoded.is_err():
                logger.warning(
                    "Skipping corrupt session document",
                    collection=self._collection,
                    session_id=key,
                    error_code=decoded.error.code.name,
                )
                continue
            yield decoded.unwrap()
