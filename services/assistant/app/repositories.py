"""Typed access to research items, chat history and session snapshots."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from pydantic import ValidationError

from word_pilot_schemas import ChatMessage, ResearchItem, ResearchPhase, Session

from .stores.base import ChangeCallback, KeyValueStore, RecordStore, RecordStoreError

logger = logging.getLogger(__name__)

RESEARCH_ITEMS = "research_items"
CHAT_MESSAGES = "research_chat_messages"
SESSION_KEY_PREFIX = "research-session-"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessageRepository:
    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def save(self, message: ChatMessage) -> ChatMessage:
        row = message.model_dump(mode="python")
        row["role"] = message.role.value
        rows = await self._store.insert(CHAT_MESSAGES, [row])
        return ChatMessage.model_validate(rows[0])

    async def load(self, project_id: str, phase: Optional[int] = None) -> list[ChatMessage]:
        """Return the history ordered by creation time, optionally for one phase."""

        filters: dict[str, Any] = {"project_id": project_id}
        if phase is not None:
            filters["phase"] = int(phase)
        rows = await self._store.select(CHAT_MESSAGES, filters, order_by=("created_at",))
        return [ChatMessage.model_validate(row) for row in rows]

    async def delete_by_ids(self, ids: Iterable[str]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        return await self._store.delete(CHAT_MESSAGES, {"id": ids})

    async def delete_all(self, project_id: str, phase: Optional[int] = None) -> int:
        filters: dict[str, Any] = {"project_id": project_id}
        if phase is not None:
            filters["phase"] = int(phase)
        return await self._store.delete(CHAT_MESSAGES, filters)


class ResearchItemRepository:
    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def create_structure(
        self, project_id: str, sections: Sequence[tuple[str, Sequence[str]]]
    ) -> list[ResearchItem]:
        """Bulk-create empty items, one per ``(section, [names])`` entry."""

        now = _utcnow()
        rows = [
            ResearchItem(
                project_id=project_id, section=section, name=name, data={}, created_at=now, updated_at=now
            ).model_dump(mode="python")
            for section, names in sections
            for name in names
        ]
        if not rows:
            return []
        stored = await self._store.insert(RESEARCH_ITEMS, rows)
        return [ResearchItem.model_validate(row) for row in stored]

    async def list_items(self, project_id: str) -> list[ResearchItem]:
        rows = await self._store.select(
            RESEARCH_ITEMS, {"project_id": project_id}, order_by=("section", "name")
        )
        return [ResearchItem.model_validate(row) for row in rows]

    async def find_by_name(self, project_id: str, name: str) -> Optional[ResearchItem]:
        """Exact name match first, then a case-insensitive one."""

        rows = await self._store.select(RESEARCH_ITEMS, {"project_id": project_id, "name": name})
        if rows:
            return ResearchItem.model_validate(rows[0])
        wanted = name.strip().casefold()
        for item in await self.list_items(project_id):
            if item.name.strip().casefold() == wanted:
                return item
        return None

    async def save_research(self, project_id: str, name: str, data: Mapping[str, Any]) -> ResearchItem:
        rows = await self._store.update(
            RESEARCH_ITEMS,
            {"project_id": project_id, "name": name},
            {"data": dict(data), "updated_at": _utcnow()},
        )
        if not rows:
            raise RecordStoreError(f"Research item '{name}' not found for project {project_id}")
        return ResearchItem.model_validate(rows[0])

    async def replace_data(self, item_id: str, data: Mapping[str, Any]) -> ResearchItem:
        rows = await self._store.update(
            RESEARCH_ITEMS, {"id": item_id}, {"data": dict(data), "updated_at": _utcnow()}
        )
        if not rows:
            raise RecordStoreError(f"Research item {item_id} not found")
        return ResearchItem.model_validate(rows[0])

    async def update_field(self, item_id: str, field: str, value: Any) -> ResearchItem:
        rows = await self._store.select(RESEARCH_ITEMS, {"id": item_id})
        if not rows:
            raise RecordStoreError(f"Research item {item_id} not found")
        data = dict(rows[0].get("data") or {})
        data[field] = value
        return await self.replace_data(item_id, data)

    def subscribe(self, project_id: str, callback: ChangeCallback) -> Callable[[], None]:
        return self._store.subscribe(RESEARCH_ITEMS, {"project_id": project_id}, callback)


class SessionRepository:
    """Session snapshots keyed by project in the key-value store."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    @staticmethod
    def key(project_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}{project_id}"

    async def load(self, project_id: str) -> Session:
        raw = await self._kv.get(self.key(project_id))
        if raw:
            try:
                return Session.model_validate_json(raw)
            except ValidationError:
                logger.warning(
                    "Session snapshot unreadable; starting a new session",
                    extra={"project_id": project_id},
                )
        session = Session(current_phase=ResearchPhase.PLANNING)
        await self.save(project_id, session)
        return session

    async def save(self, project_id: str, session: Session) -> None:
        await self._kv.set(self.key(project_id), session.model_dump_json(by_alias=True))
