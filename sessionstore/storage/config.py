"""
Redis Connection Settings
=========================

Where the Redis-backed session collections and identity index live.
One Redis (or a Sentinel-managed primary) serves both; each builds its
own client from the same settings, binary for documents and decoded for
the index.

Environment (prefix defaults to REDIS):
    {prefix}_HOST, {prefix}_PORT, {prefix}_PASSWORD, {prefix}_DB,
    {prefix}_SSL, {prefix}_TIMEOUT_MS, {prefix}_POOL_SIZE,
    {prefix}_MODE (standalone|sentinel),
    {prefix}_SENTINEL_HOSTS (comma-separated host:port),
    {prefix}_SENTINEL_SERVICE
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, Optional, Tuple

SentinelHosts = Tuple[Tuple[str, int], ...]


class RedisMode(Enum):
    STANDALONE = auto()
    SENTINEL = auto()


def _parse_sentinels(raw: str) -> SentinelHosts:
    """'a:26379, b:26379' -> (("a", 26379), ("b", 26379)); malformed items are skipped."""
    hosts = []
    for item in raw.split(","):
        host, sep, port = item.strip().rpartition(":")
        if sep and host and port.isdigit():
            hosts.append((host, int(port)))
    return tuple(hosts)


@dataclass(frozen=True, slots=True)
class RedisConfig:
    """
    Connection settings shared by RedisDocumentStore and RedisIndexBackend.

    timeout_ms bounds both connecting and each command; session reads sit
    on the request path, so one budget covers the whole round trip.
    Raises ValueError on construction when a value is out of range.
    """
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    ssl: bool = False
    timeout_ms: int = 2000
    pool_size: int = 50
    mode: RedisMode = RedisMode.STANDALONE
    sentinel_hosts: SentinelHosts = ()
    sentinel_service: str = "mymaster"

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        if self.mode is RedisMode.STANDALONE and not 0 <= self.db <= 15:
            raise ValueError(f"db out of range: {self.db}")
        if self.timeout_ms <= 0 or self.pool_size <= 0:
            raise ValueError("timeout_ms and pool_size must be positive")
        if self.mode is RedisMode.SENTINEL and not self.sentinel_hosts:
            raise ValueError("sentinel mode needs at least one sentinel host")

    @classmethod
    def from_env(cls, prefix: str = "REDIS") -> RedisConfig:
        def env(key: str, default: str = "") -> str:
            return os.environ.get(f"{prefix}_{key}", default)

        return cls(
            host=env("HOST", "localhost"),
            port=int(env("PORT", "6379")),
            password=env("PASSWORD") or None,
            db=int(env("DB", "0")),
            ssl=env("SSL").lower() in ("1", "true", "yes"),
            timeout_ms=int(env("TIMEOUT_MS", "2000")),
            pool_size=int(env("POOL_SIZE", "50")),
            mode=RedisMode.SENTINEL if env("MODE").lower() == "sentinel" else RedisMode.STANDALONE,
            sentinel_hosts=_parse_sentinels(env("SENTINEL_HOSTS")),
            sentinel_service=env("SENTINEL_SERVICE", "mymaster"),
        )

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def get_connection_kwargs(self, decode_responses: bool = True) -> Dict[str, Any]:
        """Keyword arguments for redis.asyncio.Redis / Sentinel.master_for."""
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "db": self.db,
            "ssl": self.ssl,
            "max_connections": self.pool_size,
            "socket_connect_timeout": self.timeout_seconds,
            "socket_timeout": self.timeout_seconds,
            "decode_responses": decode_responses,
        }
        if self.password:
            kwargs["password"] = self.password
        return kwargs
