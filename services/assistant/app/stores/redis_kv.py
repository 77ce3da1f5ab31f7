"""Redis-backed key-value store for session snapshots and templates."""

from __future__ import annotations

from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .base import KeyValueStore, RecordStoreError


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, url: str, *, namespace: str = "word_pilot") -> None:
        self._redis = Redis.from_url(url, encoding="utf-8", decode_responses=True)
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._redis.get(self._key(key))
        except RedisError as exc:
            raise RecordStoreError(f"Redis read failed for {key}: {exc}") from exc

    async def set(self, key: str, value: str) -> None:
        try:
            await self._redis.set(self._key(key), value)
        except RedisError as exc:
            raise RecordStoreError(f"Redis write failed for {key}: {exc}") from exc

    async def close(self) -> None:
        await self._redis.aclose()
