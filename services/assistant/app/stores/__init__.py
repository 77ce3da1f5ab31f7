"""Persistence backends for research items, chat history and snapshots."""

from __future__ import annotations

from ..settings import AssistantSettings
from .base import (
    ChangeFeed,
    KeyValueStore,
    RecordChange,
    RecordStore,
    RecordStoreError,
    matches,
)
from .memory import InMemoryKeyValueStore, InMemoryRecordStore


async def build_record_store(settings: AssistantSettings) -> RecordStore:
    if settings.record_store == "postgres":
        from .postgres import PostgresRecordStore

        store = PostgresRecordStore(settings.database_url or "")
        await store.open()
        return store
    return InMemoryRecordStore()


def build_kv_store(settings: AssistantSettings) -> KeyValueStore:
    if settings.kv_store == "redis":
        from .redis_kv import RedisKeyValueStore

        return RedisKeyValueStore(settings.redis_url or "")
    return InMemoryKeyValueStore()


__all__ = [
    "ChangeFeed",
    "KeyValueStore",
    "RecordChange",
    "RecordStore",
    "RecordStoreError",
    "matches",
    "InMemoryKeyValueStore",
    "InMemoryRecordStore",
    "build_record_store",
    "build_kv_store",
]
