"""Pluggable persistence backends behind Protocol interfaces."""

from __future__ import annotations

from typing import NamedTuple

from sentinel.core.config import AppSettings
from sentinel.core.protocols import (
    ICacheBackend,
    IDirectory,
    IEscalationStore,
    IItemStore,
    INotificationInbox,
    INotificationLog,
)
from sentinel.persistence.memory_backend import (
    MemoryDirectory,
    MemoryEscalationStore,
    MemoryItemStore,
    MemoryNotificationInbox,
    MemoryNotificationLog,
)


class Stores(NamedTuple):
    items: IItemStore
    escalations: IEscalationStore
    directory: IDirectory
    notification_log: INotificationLog
    inbox: INotificationInbox
    cache: ICacheBackend | None = None


def create_memory_stores() -> Stores:
    return Stores(
        items=MemoryItemStore(),
        escalations=MemoryEscalationStore(),
        directory=MemoryDirectory(),
        notification_log=MemoryNotificationLog(),
        inbox=MemoryNotificationInbox(),
    )


def create_persistence(settings: AppSettings | None = None) -> Stores:
    """Create wired-up persistence backends from application settings."""
    if settings is None:
        settings = AppSettings()

    if settings.backend == "memory":
        return create_memory_stores()

    from sentinel.persistence.dynamodb_backend import (
        DynamoDBDirectory,
        DynamoDBEscalationStore,
        DynamoDBItemStore,
        DynamoDBNotificationInbox,
        DynamoDBNotificationLog,
    )

    cache = None
    if settings.redis.enabled:
        from sentinel.persistence.redis_backend import RedisCacheBackend

        cache = RedisCacheBackend(
            host=settings.redis.host,
            port=settings.redis.port,
            db=settings.redis.db,
            key_prefix=settings.redis.key_prefix,
        )

    ddb = settings.dynamodb
    common = {
        "table_suffix": ddb.table_suffix,
        "region": ddb.region,
        "endpoint_url": ddb.endpoint_url,
    }
    return Stores(
        items=DynamoDBItemStore(**common),
        escalations=DynamoDBEscalationStore(**common, cache=cache),
        directory=DynamoDBDirectory(**common),
        notification_log=DynamoDBNotificationLog(**common),
        inbox=DynamoDBNotificationInbox(**common),
        cache=cache,
    )
