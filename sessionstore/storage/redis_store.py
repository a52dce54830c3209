"""
Redis Backends
==============

Redis/Valkey implementations of the storage protocols:
- RedisDocumentStore: DocumentStoreProtocol over Redis hashes
- RedisIndexBackend: IndexBackendProtocol over two flat hashes

Key Layout:
-----------
| Key                                 | Type | Contents                     |
|-------------------------------------|------|------------------------------|
| {prefix}:doc:{collection}:{key}     | hash | d=payload, c=created, u=upd. |
| {prefix}:lock:{collection}          | str  | transaction lock token       |
| {index_prefix}:sids                 | hash | sid -> identity display name |
| {index_prefix}:sid_access           | hash | sid -> last access millis    |

Payload Encoding:
-----------------
One marker byte followed by UTF-8 JSON. Marker 0x01 means the JSON is
LZ4-frame compressed (used above the configured threshold), 0x00 means
raw. Anything else is reported as corruption.

Atomicity:
----------
- Create-if-absent and replace-if-present run as Lua scripts
- Partial updates use WATCH/MULTI with bounded retries
- Transactions hold a redis-py Lock per write collection, acquired in
  sorted order, with an expiry so a crashed holder cannot wedge the
  collection

Author: Planetary AI Systems
License: MIT
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Mapping,
    Optional,
    Sequence,
    TypeVar,
)

import lz4.frame
import redis.asyncio as aioredis
from redis.asyncio.sentinel import Sentinel
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    LockError,
    RedisError,
    TimeoutError as RedisTimeoutError,
    WatchError,
)

from sessionstore.core.types import Result, Ok, Err
from sessionstore.core.errors import SessionStoreError, StorageError
from sessionstore.core import constants as C
from sessionstore.storage.config import RedisConfig, RedisMode
from sessionstore.storage.protocols import (
    Document,
    OperationMetadata,
    OperationType,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# CONSTANTS
# =============================================================================

# SCAN count hint
MAX_SCAN_COUNT: int = 500

# WATCH/MULTI attempts before an update gives up
MAX_UPDATE_RETRIES: int = 8

MARKER_RAW: bytes = b"\x00"
MARKER_LZ4: bytes = b"\x01"

# KEYS[1]=document key; ARGV[1]=payload, ARGV[2]=now (ms)
LUA_CREATE_IF_ABSENT: str = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return 0
end
redis.call('HSET', KEYS[1], 'd', ARGV[1], 'c', ARGV[2], 'u', ARGV[2])
return 1
"""

# KEYS[1]=document key; ARGV[1]=payload, ARGV[2]=now (ms)
LUA_REPLACE_IF_PRESENT: str = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
redis.call('HSET', KEYS[1], 'd', ARGV[1], 'u', ARGV[2])
return 1
"""

# KEYS[1]=access hash; ARGV[1]=sid, ARGV[2]=millis
LUA_MAX_ACCESS: str = """
local current = redis.call('HGET', KEYS[1], ARGV[1])
if (not current) or tonumber(current) < tonumber(ARGV[2]) then
    redis.call('HSET', KEYS[1], ARGV[1], ARGV[2])
    return 1
end
return 0
"""


# =============================================================================
# PAYLOAD CODEC
# =============================================================================
def encode_document(document: Mapping[str, Any], threshold: int) -> bytes:
    """Serialize a document, compressing when larger than threshold bytes."""
    data = json.dumps(document, separators=(",", ":")).encode("utf-8")
    if threshold > 0 and len(data) > threshold:
        return MARKER_LZ4 + lz4.frame.compress(data)
    return MARKER_RAW + data


def decode_document(payload: bytes, key: Optional[str] = None) -> Result[Document, StorageError]:
    """Inverse of encode_document; corruption on any malformed payload."""
    if not payload:
        return Err(StorageError.corruption("empty payload", key=key))

    marker, body = payload[:1], payload[1:]
    try:
        if marker == MARKER_LZ4:
            body = lz4.frame.decompress(body)
        elif marker != MARKER_RAW:
            return Err(StorageError.corruption(f"unknown payload marker {marker!r}", key=key))
        document = json.loads(body.decode("utf-8"))
    except (RuntimeError, UnicodeDecodeError, ValueError) as e:
        return Err(StorageError.corruption("undecodable payload", key=key, cause=e))

    if not isinstance(document, dict):
        return Err(StorageError.corruption("payload is not an object", key=key))
    return Ok(document)


def _connect_client(config: RedisConfig, decode_responses: bool) -> aioredis.Redis:
    kwargs = config.get_connection_kwargs(decode_responses=decode_responses)
    if config.mode == RedisMode.SENTINEL:
        sentinel = Sentinel(
            list(config.sentinel_hosts),
            socket_timeout=config.timeout_seconds,
        )
        kwargs.pop("host")
        kwargs.pop("port")
        return sentinel.master_for(config.sentinel_service, redis_class=aioredis.Redis, **kwargs)
    return aioredis.Redis(**kwargs)


def _map_error(operation: str, config: Optional[RedisConfig], e: Exception) -> StorageError:
    if isinstance(e, (RedisTimeoutError, asyncio.TimeoutError)):
        return StorageError.timeout(operation, cause=e)
    if isinstance(e, RedisConnectionError) and config is not None:
        return StorageError.connection_failed(config.host, config.port, cause=e)
    return StorageError.operation_failed(operation, e)


# =============================================================================
# REDIS DOCUMENT STORE
# =============================================================================
class RedisDocumentStore:
    """
    Document store on Redis hashes.

    Example:
        >>> store = RedisDocumentStore(RedisConfig.from_env())
        >>> await store.connect()
        >>> await store.save("sessions", sid, document)
        >>> await store.close()

    A pre-built client may be injected (tests pass a mock); it must be
    created with decode_responses=False since payloads are binary.
    """

    __slots__ = (
        "_config",
        "_client",
        "_key_prefix",
        "_compression_threshold",
        "_lock_timeout_ms",
        "_acquire_timeout_ms",
        "_create_script",
        "_replace_script",
    )

    def __init__(
        self,
        config: Optional[RedisConfig] = None,
        key_prefix: str = C.DEFAULT_KEY_PREFIX,
        compression_threshold_bytes: int = C.COMPRESSION_THRESHOLD_BYTES,
        lock_timeout_ms: int = C.TRANSACTION_LOCK_TIMEOUT_MS,
        acquire_timeout_ms: int = C.TRANSACTION_ACQUIRE_TIMEOUT_MS,
        client: Optional[aioredis.Redis] = None,
    ) -> None:
        self._config = config or RedisConfig()
        self._client = client
        self._key_prefix = key_prefix
        self._compression_threshold = compression_threshold_bytes
        self._lock_timeout_ms = lock_timeout_ms
        self._acquire_timeout_ms = acquire_timeout_ms
        self._create_script = None
        self._replace_script = None
        if client is not None:
            self._register_scripts()

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self) -> Result[None, StorageError]:
        """Create the client and verify the server answers."""
        if self._client is None:
            self._client = _connect_client(self._config, decode_responses=False)
            self._register_scripts()
        try:
            await self._client.ping()
        except (RedisError, OSError) as e:
            return Err(StorageError.connection_failed(self._config.host, self._config.port, cause=e))
        return Ok(None)

    def _register_scripts(self) -> None:
        self._create_script = self._client.register_script(LUA_CREATE_IF_ABSENT)
        self._replace_script = self._client.register_script(LUA_REPLACE_IF_PRESENT)

    async def close(self) -> None:
        """Close the connection pool. Safe to call multiple times."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _doc_key(self, collection: str, key: str) -> str:
        return f"{self._key_prefix}:doc:{collection}:{key}"

    def _lock_key(self, collection: str) -> str:
        return f"{self._key_prefix}:lock:{collection}"

    @staticmethod
    def _now_ms() -> int:
        return time.time_ns() // 1_000_000

    def _encode(self, operation: str, document: Mapping[str, Any]) -> Result[bytes, StorageError]:
        try:
            return Ok(encode_document(document, self._compression_threshold))
        except (TypeError, ValueError) as e:
            return Err(StorageError.operation_failed(operation, e))

    def _metadata(self, operation: OperationType, collection: str, start_ns: int) -> OperationMetadata:
        return OperationMetadata(
            operation=operation,
            collection=collection,
            latency_ns=time.perf_counter_ns() - start_ns,
            affected_rows=1,
        )

    # -------------------------------------------------------------------------
    # DOCUMENT OPERATIONS
    # -------------------------------------------------------------------------

    async def save(
        self,
        collection: str,
        key: str,
        document: Mapping[str, Any],
    ) -> Result[OperationMetadata, StorageError]:
        start_ns = time.perf_counter_ns()
        encoded = self._encode("save", document)
        if encoded.is_err():
            return encoded
        payload = encoded.unwrap()
        try:
            created = await self._create_script(
                keys=[self._doc_key(collection, key)],
                args=[payload, self._now_ms()],
            )
        except (RedisError, asyncio.TimeoutError) as e:
            return Err(_map_error("save", self._config, e))

        if not int(created):
            return Err(StorageError.duplicate_key(collection, key))
        return Ok(self._metadata(OperationType.CREATE, collection, start_ns))

    async def fetch_by_id(
        self,
        collection: str,
        key: str,
    ) -> Result[Document, StorageError]:
        try:
            payload = await self._client.hget(self._doc_key(collection, key), "d")
        except (RedisError, asyncio.TimeoutError) as e:
            return Err(_map_error("fetch", self._config, e))

        if payload is None:
            return Err(StorageError.document_not_found(collection, key))
        return decode_document(payload, key=key)

    async def replace(
        self,
        collection: str,
        key: str,
        document: Mapping[str, Any],
    ) -> Result[OperationMetadata, StorageError]:
        start_ns = time.perf_counter_ns()
        encoded = self._encode("replace", document)
        if encoded.is_err():
            return encoded
        payload = encoded.unwrap()
        try:
            replaced = await self._replace_script(
                keys=[self._doc_key(collection, key)],
                args=[payload, self._now_ms()],
            )
        except (RedisError, asyncio.TimeoutError) as e:
            return Err(_map_error("replace", self._config, e))

        if not int(replaced):
            return Err(StorageError.document_not_found(collection, key))
        return Ok(self._metadata(OperationType.REPLACE, collection, start_ns))

    async def update(
        self,
        collection: str,
        key: str,
        fields: Mapping[str, Any],
    ) -> Result[OperationMetadata, StorageError]:
        """Read-merge-write under WATCH; retried on concurrent modification."""
        start_ns = time.perf_counter_ns()
        doc_key = self._doc_key(collection, key)

        try:
            for _ in range(MAX_UPDATE_RETRIES):
                async with self._client.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(doc_key)
                        payload = await pipe.hget(doc_key, "d")
                        if payload is None:
                            return Err(StorageError.document_not_found(collection, key))

                        decoded = decode_document(payload, key=key)
                        if decoded.is_err():
                            return decoded
                        document = decoded.unwrap()
                        document.update(fields)
                        encoded = self._encode("update", document)
                        if encoded.is_err():
                            return encoded

                        pipe.multi()
                        pipe.hset(doc_key, mapping={
                            "d": encoded.unwrap(),
                            "u": self._now_ms(),
                        })
                        await pipe.execute()
                        return Ok(self._metadata(OperationType.UPDATE, collection, start_ns))
                    except WatchError:
                        continue
        except (RedisError, asyncio.TimeoutError) as e:
            return Err(_map_error("update", self._config, e))

        return Err(StorageError.timeout("update"))

    async def remove_by_id(
        self,
        collection: str,
        key: str,
    ) -> Result[OperationMetadata, StorageError]:
        start_ns = time.perf_counter_ns()
        try:
            deleted = await self._client.delete(self._doc_key(collection, key))
        except (RedisError, asyncio.TimeoutError) as e:
            return Err(_map_error("remove", self._config, e))

        if not deleted:
            return Err(StorageError.document_not_found(collection, key))
        return Ok(self._metadata(OperationType.DELETE, collection, start_ns))

    async def scan(self, collection: str) -> AsyncIterator[tuple[str, Document]]:
        """
        Iterate a collection with SCAN + pipelined HGET.

        Undecodable documents are logged and skipped; a dropped
        connection raises StorageError to the consumer.
        """
        prefix = self._doc_key(collection, "")
        batch: List[bytes] = []
        try:
            async for raw_key in self._client.scan_iter(match=f"{prefix}*", count=MAX_SCAN_COUNT):
                batch.append(raw_key)
                if len(batch) >= MAX_SCAN_COUNT:
                    for item in await self._fetch_batch(prefix, batch):
                        yield item
                    batch = []
            if batch:
                for item in await self._fetch_batch(prefix, batch):
                    yield item
        except (RedisError, asyncio.TimeoutError) as e:
            raise _map_error("scan", self._config, e) from e

    async def _fetch_batch(self, prefix: str, raw_keys: List[bytes]) -> List[tuple[str, Document]]:
        async with self._client.pipeline(transaction=False) as pipe:
            for raw_key in raw_keys:
                pipe.hget(raw_key, "d")
            payloads = await pipe.execute()

        items: List[tuple[str, Document]] = []
        for raw_key, payload in zip(raw_keys, payloads):
            if payload is None:
                continue  # removed since SCAN returned it
            full_key = raw_key.decode("utf-8") if isinstance(raw_key, bytes) else raw_key
            key = full_key[len(prefix):]
            decoded = decode_document(payload, key=key)
            if decoded.is_err():
                logger.warning("Skipping undecodable document", extra={"key": key})
                continue
            items.append((key, decoded.unwrap()))
        return items

    # -------------------------------------------------------------------------
    # TRANSACTIONS
    # -------------------------------------------------------------------------

    async def run_transaction(
        self,
        read: Sequence[str],
        write: Sequence[str],
        body: Callable[[], Awaitable[Result[T, SessionStoreError]]],
    ) -> Result[T, SessionStoreError]:
        names = sorted(set(write))
        held = []

        try:
            for name in names:
                lock = self._client.lock(
                    self._lock_key(name),
                    timeout=self._lock_timeout_ms / 1000,
                    blocking_timeout=self._acquire_timeout_ms / 1000,
                )
                try:
                    acquired = await lock.acquire()
                except (RedisError, asyncio.TimeoutError) as e:
                    return Err(_map_error("transaction", self._config, e))
                if not acquired:
                    return Err(StorageError.lock_timeout(names, self._acquire_timeout_ms))
                held.append(lock)

            return await body()
        finally:
            for lock in reversed(held):
                try:
                    await lock.release()
                except LockError:
                    logger.warning(
                        "Transaction lock expired before release",
                        extra={"collections": names, "lock_timeout_ms": self._lock_timeout_ms},
                    )


# =============================================================================
# REDIS INDEX BACKEND
# =============================================================================
class RedisIndexBackend:
    """
    Identity index entries shared by every process on one Redis.

    Raises redis exceptions; the identity index wraps calls in a
    circuit breaker and never lets them reach session callers.
    """

    __slots__ = ("_config", "_client", "_names_key", "_access_key", "_max_access")

    def __init__(
        self,
        config: Optional[RedisConfig] = None,
        key_prefix: str = f"{C.DEFAULT_KEY_PREFIX}:index",
        client: Optional[aioredis.Redis] = None,
    ) -> None:
        self._config = config or RedisConfig()
        self._client = client or _connect_client(self._config, decode_responses=True)
        self._names_key = f"{key_prefix}:sids"
        self._access_key = f"{key_prefix}:sid_access"
        self._max_access = self._client.register_script(LUA_MAX_ACCESS)

    async def create_entry(self, sid: str, display_name: str) -> None:
        await self._client.hset(self._names_key, sid, display_name)

    async def clear_entry(self, sid: str) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.hdel(self._names_key, sid)
            pipe.hdel(self._access_key, sid)
            await pipe.execute()

    async def get_entry(self, sid: str) -> Optional[str]:
        return await self._client.hget(self._names_key, sid)

    async def touch_entry(self, sid: str) -> Optional[int]:
        value = await self._client.hget(self._access_key, sid)
        return int(value) if value is not None else None

    async def record_access(self, sid: str, millis: int) -> None:
        await self._max_access(keys=[self._access_key], args=[sid, millis])

    async def entries(self) -> AsyncIterator[tuple[str, str]]:
        async for sid, name in self._client.hscan_iter(self._names_key, count=MAX_SCAN_COUNT):
            yield sid, name

    async def replace_all(self, entries: Mapping[str, str]) -> int:
        """Rewrite the name hash and drop access times of sids not in entries."""
        stale = [sid for sid in await self._client.hkeys(self._access_key) if sid not in entries]
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.delete(self._names_key)
            if entries:
                pipe.hset(self._names_key, mapping=dict(entries))
            if stale:
                pipe.hdel(self._access_key, *stale)
            await pipe.execute()
        return len(entries)

    async def close(self) -> None:
        await self._client.aclose()


__all__ = [
    "RedisDocumentStore",
    "RedisIndexBackend",
    "encode_document",
    "decode_document",
    "LUA_CREATE_IF_ABSENT",
    "LUA_REPLACE_IF_PRESENT",
    "LUA_MAX_ACCESS",
]
