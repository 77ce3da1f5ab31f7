"""Rolling summarization of persisted chat history."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from word_pilot_observability import record_summarization
from word_pilot_providers import LLMProvider, ProviderError, ProviderRequest, ProviderResponse
from word_pilot_schemas import ChatMessage, MessageRole, format_summary

from .prompts import SUMMARY_SYSTEM_PROMPT, build_summary_prompt
from .repositories import ChatMessageRepository
from .stores.base import RecordStoreError

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 5
DEFAULT_BATCH_SIZE = 5

ResponseHook = Callable[[ProviderResponse], Awaitable[None]]


class ConversationSummarizer:
    """Folds the oldest messages of a phase history into one summary message.

    When the persisted history is longer than ``threshold`` the first
    ``batch_size`` messages are summarized, replaced by a single
    ``is_summary`` message and the history is reloaded. Failures leave the
    history untouched.
    """

    def __init__(
        self,
        provider: LLMProvider,
        messages: ChatMessageRepository,
        *,
        threshold: int = DEFAULT_THRESHOLD,
        batch_size: int = DEFAULT_BATCH_SIZE,
        on_response: Optional[ResponseHook] = None,
    ) -> None:
        self._provider = provider
        self._messages = messages
        self.threshold = threshold
        self.batch_size = batch_size
        self._on_response = on_response

    async def maybe_summarize(self, project_id: str, phase: int) -> list[ChatMessage]:
        """Return the history to send, summarizing first when it is too long."""

        history = await self._messages.load(project_id, phase)
        if len(history) <= self.threshold:
            return history

        batch = history[: self.batch_size]
        try:
            summary_text = await self._summarize(batch)
            summary = await self._messages.save(
                ChatMessage(
                    project_id=project_id,
                    phase=phase,
                    role=MessageRole.ASSISTANT,
                    content=format_summary(summary_text),
                    created_at=batch[0].created_at,
                    is_summary=True,
                )
            )
        except (ProviderError, RecordStoreError) as exc:
            return self._failed(project_id, phase, history, exc)

        try:
            await self._messages.delete_by_ids(message.id for message in batch)
        except RecordStoreError as exc:
            await self._discard(summary)
            return self._failed(project_id, phase, history, exc)

        record_summarization("succeeded")
        logger.info(
            "Summarized chat history",
            extra={"project_id": project_id, "phase": phase, "summarized": len(batch)},
        )
        return await self._messages.load(project_id, phase)

    def _failed(
        self, project_id: str, phase: int, history: list[ChatMessage], exc: Exception
    ) -> list[ChatMessage]:
        record_summarization("failed")
        logger.warning(
            "History summarization failed; continuing with full history",
            extra={"project_id": project_id, "phase": phase, "error": str(exc)},
        )
        return history

    async def _discard(self, summary: ChatMessage) -> None:
        # The originals are still stored, so the summary must not stay beside them.
        try:
            await self._messages.delete_by_ids([summary.id])
        except RecordStoreError:
            logger.error(
                "Could not remove summary after a failed history cleanup",
                extra={"project_id": summary.project_id, "summary_id": summary.id},
                exc_info=True,
            )

    async def _summarize(self, batch: list[ChatMessage]) -> str:
        prompt = build_summary_prompt([(message.role.value, message.content) for message in batch])
        request = ProviderRequest.from_prompt(
            prompt,
            system_prompt=SUMMARY_SYSTEM_PROMPT,
            temperature=0.3,
            max_output_tokens=300,
            metadata={"flow": "summary"},
        )
        response = await self._provider.generate(request)
        if self._on_response is not None:
            await self._on_response(response)
        text = response.text.strip()
        if not text:
            raise ProviderError("Summary completion returned no text")
        return text
