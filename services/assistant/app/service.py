"""Wiring of stores, repositories, provider and per-project conversations."""

from __future__ import annotations

import logging
from typing import Optional

from word_pilot_providers import LLMProvider, ProviderFactory, load_provider_config

from .conversation import ConversationManager
from .phases import PhaseSessionState
from .repositories import ChatMessageRepository, ResearchItemRepository, SessionRepository
from .settings import AssistantSettings
from .stores import KeyValueStore, RecordStore, build_kv_store, build_record_store
from .templates import PromptTemplateStore
from .usage import NullUsageTracker, SubscriptionUsageTracker, UsageTracker

logger = logging.getLogger(__name__)


class AssistantService:
    """Holds shared collaborators and one conversation manager per project."""

    def __init__(
        self,
        *,
        record_store: RecordStore,
        kv_store: KeyValueStore,
        provider: LLMProvider,
        settings: Optional[AssistantSettings] = None,
        usage: Optional[UsageTracker] = None,
    ) -> None:
        self.settings = settings or AssistantSettings()
        self.record_store = record_store
        self.kv_store = kv_store
        self.provider = provider
        self.usage = usage or NullUsageTracker()

        self.messages = ChatMessageRepository(record_store)
        self.items = ResearchItemRepository(record_store)
        self.sessions = SessionRepository(kv_store)
        self.templates = PromptTemplateStore(kv_store)
        self.phases = PhaseSessionState(self.sessions, self.items, self.templates)
        self._managers: dict[str, ConversationManager] = {}

    @classmethod
    async def from_settings(
        cls, settings: AssistantSettings, provider: Optional[LLMProvider] = None
    ) -> "AssistantService":
        record_store = await build_record_store(settings)
        kv_store = build_kv_store(settings)
        provider = provider or ProviderFactory.create(load_provider_config(settings.provider))
        usage: UsageTracker = (
            SubscriptionUsageTracker(record_store) if settings.track_usage else NullUsageTracker()
        )
        logger.info(
            "Assistant service configured",
            extra={
                "record_store": settings.record_store,
                "kv_store": settings.kv_store,
                "provider": provider.name,
                "track_usage": settings.track_usage,
            },
        )
        return cls(
            record_store=record_store,
            kv_store=kv_store,
            provider=provider,
            settings=settings,
            usage=usage,
        )

    async def manager(self, project_id: str, user_id: Optional[str] = None) -> ConversationManager:
        """Return the project's conversation, loading it on first use."""

        manager = self._managers.get(project_id)
        if manager is None:
            manager = ConversationManager(
                project_id,
                provider=self.provider,
                phases=self.phases,
                items=self.items,
                messages=self.messages,
                usage=self.usage,
                user_id=user_id,
                summary_threshold=self.settings.summary_threshold,
                summary_batch_size=self.settings.summary_batch_size,
            )
            await manager.load()
            self._managers[project_id] = manager
        elif user_id:
            manager.user_id = user_id
        return manager

    async def close(self) -> None:
        self._managers.clear()
        await self.record_store.close()
        await self.kv_store.close()
