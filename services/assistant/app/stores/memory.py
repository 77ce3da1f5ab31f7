"""In-memory store implementations for tests and single-process development."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Sequence
from uuid import uuid4

from .base import ChangeCallback, ChangeFeed, Filters, KeyValueStore, RecordStore, Row, matches


class InMemoryRecordStore(RecordStore):
    """Record store keeping rows per collection in insertion order.

    Rows receive an ``id`` and ``created_at``/``updated_at`` timestamps when the
    caller does not provide them. Sorting is stable, so rows sharing a sort key
    keep their insertion order.
    """

    def __init__(self) -> None:
        self._collections: dict[str, list[Row]] = {}
        self._feed = ChangeFeed()

    async def insert(self, collection: str, rows: Sequence[Row]) -> list[Row]:
        now = datetime.now(timezone.utc)
        stored: list[Row] = []
        for row in rows:
            record = copy.deepcopy(dict(row))
            record.setdefault("id", str(uuid4()))
            record.setdefault("created_at", now)
            record.setdefault("updated_at", record["created_at"])
            stored.append(record)
        self._collections.setdefault(collection, []).extend(stored)
        self._feed.publish(collection, "INSERT", stored)
        return copy.deepcopy(stored)

    async def select(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        order_by: Sequence[str] = (),
    ) -> list[Row]:
        rows = [row for row in self._collections.get(collection, []) if matches(row, filters)]
        for key in reversed(list(order_by)):
            rows.sort(key=lambda row: _sort_key(row.get(key)))
        return copy.deepcopy(rows)

    async def update(self, collection: str, filters: Filters, values: Mapping[str, Any]) -> list[Row]:
        updated: list[Row] = []
        for row in self._collections.get(collection, []):
            if matches(row, filters):
                row.update(copy.deepcopy(dict(values)))
                updated.append(row)
        self._feed.publish(collection, "UPDATE", updated)
        return copy.deepcopy(updated)

    async def delete(self, collection: str, filters: Filters) -> int:
        rows = self._collections.get(collection, [])
        removed = [row for row in rows if matches(row, filters)]
        self._collections[collection] = [row for row in rows if not matches(row, filters)]
        self._feed.publish(collection, "DELETE", removed)
        return len(removed)

    def subscribe(
        self, collection: str, filters: Optional[Filters], callback: ChangeCallback
    ) -> Callable[[], None]:
        return self._feed.subscribe(collection, filters, callback)


def _sort_key(value: Any) -> tuple[int, Any]:
    # None sorts first; mixed types are compared by their string form.
    if value is None:
        return (0, "")
    if isinstance(value, (int, float, datetime)):
        return (1, value)
    return (2, str(value))


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value
