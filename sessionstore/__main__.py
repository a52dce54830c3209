#!/usr/bin/env python3
"""
Session Store Demo

Walks through the session lifecycle against the configured backend
(in-memory unless SESSIONSTORE_STORE_BACKEND=redis).

Usage:
    python -m sessionstore

    # Privileged mode with a two-second TTL
    SESSIONSTORE_INDEX_ENABLED=true SESSIONSTORE_TIME_TO_LIVE=2000 python -m sessionstore
"""

from __future__ import annotations

import asyncio
import sys

from sessionstore.bootstrap import build_session_service
from sessionstore.core.config import SessionStoreConfig
from sessionstore.core.errors import SessionExpired, SessionNotFound
from sessionstore.core.types import Err
from sessionstore.observability.logging import LogLevel, setup_logging
from sessionstore.observability.metrics import MetricsCollector
from sessionstore.session.identity import Identity, InMemoryIdentityDirectory


async def main() -> None:
    print("\n" + "=" * 60)
    print("Session Store - Lifecycle Demo")
    print("=" * 60 + "\n")

    config_result = SessionStoreConfig.from_env()
    if config_result.is_err():
        print(f"Configuration error: {config_result.error}")
        sys.exit(1)
    config = config_result.unwrap()

    setup_logging(
        LogLevel.from_name(config.observability.log_level),
        json_output=config.observability.log_json,
    )

    ada = Identity(id="users/ada", display_name="Ada Lovelace", attributes={"role": "admin"})
    directory = InMemoryIdentityDirectory([ada])

    built = await build_session_service(config, identities=directory)
    if built.is_err():
        print(f"Startup error: {built.error}")
        sys.exit(1)
    service = built.unwrap()

    print(f"✓ Service ready (collection={service.repository.collection}, "
          f"privileged={config.privileged}, ttl_ms={config.session.time_to_live})")

    created = (await service.create({"cart": ["book"]})).unwrap()
    print(f"✓ Created session {created.id}")

    fetched = await service.get(created.id)
    print(f"✓ Fetched: last_access_at={fetched.unwrap().last_access_at}")

    record = await service.set_identity(fetched.unwrap(), ada)
    await service.save(record)
    print(f"✓ Bound identity {record.identity_ref}; index says {await service.index.lookup(record.id)!r}")

    await service.clear_identity(record)
    await service.save(record)
    print(f"✓ Cleared identity; anonymous={record.is_anonymous}")

    deleted = await service.delete(created.id)
    print(f"✓ Deleted: {deleted.is_ok()}")

    match await service.get(created.id):
        case Err(SessionNotFound()):
            print("✓ Get after delete -> SessionNotFound")
        case Err(SessionExpired()):
            print("✗ Unexpected SessionExpired")
        case other:
            print(f"✗ Unexpected result: {other!r}")

    print("\nMetrics:")
    print(MetricsCollector.get_instance().export_prometheus())


def run() -> None:
    """Entry point for the console script."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
