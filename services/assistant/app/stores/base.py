"""Abstract persistence interfaces consumed by the assistant core."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence

from ..errors import AssistantError

logger = logging.getLogger(__name__)

Row = dict[str, Any]
Filters = Mapping[str, Any]


class RecordStoreError(AssistantError):
    """Raised when a record or key-value store operation fails."""


@dataclass(slots=True)
class RecordChange:
    """Change notification delivered to record store subscribers."""

    collection: str
    event: str
    row: Row


ChangeCallback = Callable[[RecordChange], None]


def matches(row: Mapping[str, Any], filters: Optional[Filters]) -> bool:
    """Equality match; list, tuple and set filter values mean membership."""

    if not filters:
        return True
    for key, expected in filters.items():
        value = row.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


@dataclass
class _Subscription:
    collection: str
    filters: Optional[Filters]
    callback: ChangeCallback


@dataclass
class ChangeFeed:
    """In-process fan-out of record changes to subscribers."""

    _subscriptions: list[_Subscription] = field(default_factory=list)

    def subscribe(
        self, collection: str, filters: Optional[Filters], callback: ChangeCallback
    ) -> Callable[[], None]:
        subscription = _Subscription(collection, dict(filters or {}), callback)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def publish(self, collection: str, event: str, rows: Sequence[Row]) -> None:
        for subscription in list(self._subscriptions):
            if subscription.collection != collection:
                continue
            for row in rows:
                if not matches(row, subscription.filters):
                    continue
                try:
                    subscription.callback(RecordChange(collection, event, dict(row)))
                except Exception:  # noqa: BLE001 - a failing observer must not break writes
                    logger.exception(
                        "Record change subscriber failed",
                        extra={"collection": collection, "event": event},
                    )


class RecordStore(ABC):
    """Generic CRUD + filter + subscribe over named collections."""

    @abstractmethod
    async def insert(self, collection: str, rows: Sequence[Row]) -> list[Row]:
        """Insert rows and return them as stored (ids and timestamps filled)."""

    @abstractmethod
    async def select(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        order_by: Sequence[str] = (),
    ) -> list[Row]:
        """Return rows matching ``filters`` ordered ascending by ``order_by``."""

    @abstractmethod
    async def update(self, collection: str, filters: Filters, values: Mapping[str, Any]) -> list[Row]:
        """Apply ``values`` to matching rows and return the updated rows."""

    @abstractmethod
    async def delete(self, collection: str, filters: Filters) -> int:
        """Delete matching rows and return how many were removed."""

    @abstractmethod
    def subscribe(
        self, collection: str, filters: Optional[Filters], callback: ChangeCallback
    ) -> Callable[[], None]:
        """Register ``callback`` for changes; returns an unsubscribe function."""

    async def close(self) -> None:
        return None


class KeyValueStore(ABC):
    """String key-value persistence used for snapshots and templates."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or ``None``."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    async def close(self) -> None:
        return None
