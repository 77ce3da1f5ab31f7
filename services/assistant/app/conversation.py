"""Conversation orchestration for one project's research session.

The manager owns the displayed history of the active phase and routes every
submission to one of three flows:

* research (phase 2, ``research <item>``): completion parsed into a preview
  that only reaches the research item once approved;
* edit (phase 3, ``fix the <field> in <item>`` / ``edit <item>``): same gate,
  the approved data replaces the item's data wholesale;
* chat: streamed reply persisted with the user's turn; in phase 1 the reply
  may carry the planning payload that builds the research structure.

Observers receive :class:`ConversationEvent` objects for every change to the
displayed state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

from word_pilot_observability import (
    log_context,
    observe_flow_outcome,
    observe_provider_response,
    record_preview_decision,
)
from word_pilot_providers import ChatTurn, LLMProvider, ProviderError, ProviderRequest, ProviderResponse
from word_pilot_schemas import (
    ChatMessage,
    MessageRole,
    ResearchItem,
    ResearchPhase,
    Session,
)

from . import prompts
from .errors import (
    ConversationBusyError,
    NoPendingPreviewError,
    QuotaExceededError,
    UsageTrackingError,
    describe_error,
)
from .parser import (
    EditCommand,
    extract_edit_command,
    extract_item_name,
    parse_research_output,
    serialise_research_data,
)
from .phases import PhaseSessionState, greeting, parse_phase1_json
from .repositories import ChatMessageRepository, ResearchItemRepository
from .stores.base import RecordStoreError
from .summarizer import DEFAULT_BATCH_SIZE, DEFAULT_THRESHOLD, ConversationSummarizer
from .usage import NullUsageTracker, UsageTracker

logger = logging.getLogger(__name__)


class ConversationState(str, Enum):
    IDLE = "idle"
    AWAITING_COMMAND = "awaiting_command"
    DIRECT_COMMAND = "direct_command"
    CHAT_STREAMING = "chat_streaming"


class EventKind(str, Enum):
    MESSAGE_ADDED = "message_added"
    MESSAGE_UPDATED = "message_updated"
    MESSAGE_REMOVED = "message_removed"
    HISTORY_RELOADED = "history_reloaded"
    PREVIEW_READY = "preview_ready"
    PREVIEW_CLOSED = "preview_closed"
    PLAN_APPLIED = "plan_applied"


class PreviewKind(str, Enum):
    RESEARCH = "research"
    EDIT = "edit"


@dataclass
class DisplayMessage:
    """Message as shown to the user; ``transient`` ones are never persisted."""

    role: MessageRole
    content: str
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_summary: bool = False
    transient: bool = False

    @classmethod
    def from_chat(cls, message: ChatMessage) -> "DisplayMessage":
        return cls(
            role=message.role,
            content=message.content,
            id=message.id,
            created_at=message.created_at,
            is_summary=message.is_summary,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "is_summary": self.is_summary,
            "transient": self.transient,
        }


@dataclass
class ResearchPreview:
    """Model-proposed research data awaiting approve, regenerate or cancel."""

    kind: PreviewKind
    item: ResearchItem
    prompt: str
    data: dict[str, Any] = field(default_factory=dict)
    field_name: Optional[str] = None
    original_data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "item": self.item.model_dump(mode="json"),
            "data": serialise_research_data(self.data),
            "field_name": self.field_name,
            "original_data": self.original_data,
        }


@dataclass
class ConversationEvent:
    kind: EventKind
    message: Optional[DisplayMessage] = None
    messages: Optional[list[DisplayMessage]] = None
    preview: Optional[ResearchPreview] = None
    session: Optional[Session] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"event": self.kind.value}
        if self.message is not None:
            payload["message"] = self.message.to_dict()
        if self.messages is not None:
            payload["messages"] = [message.to_dict() for message in self.messages]
        if self.preview is not None:
            payload["preview"] = self.preview.to_dict()
        if self.session is not None:
            payload["session"] = self.session.model_dump(mode="json", by_alias=True)
        return payload


EventCallback = Callable[[ConversationEvent], None]


class ConversationManager:
    def __init__(
        self,
        project_id: str,
        *,
        provider: LLMProvider,
        phases: PhaseSessionState,
        items: ResearchItemRepository,
        messages: ChatMessageRepository,
        usage: Optional[UsageTracker] = None,
        user_id: Optional[str] = None,
        summary_threshold: int = DEFAULT_THRESHOLD,
        summary_batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self.project_id = project_id
        self.user_id = user_id
        self._provider = provider
        self._phases = phases
        self._items = items
        self._messages = messages
        self._usage = usage or NullUsageTracker()
        self._summarizer = ConversationSummarizer(
            provider,
            messages,
            threshold=summary_threshold,
            batch_size=summary_batch_size,
            on_response=self._summary_response,
        )
        self._observers: list[EventCallback] = []

        self.state = ConversationState.IDLE
        self.phase = ResearchPhase.PLANNING
        self.session: Optional[Session] = None
        self.messages: list[DisplayMessage] = []
        self.preview: Optional[ResearchPreview] = None

    # -- observers -----------------------------------------------------------------

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _emit(self, event: ConversationEvent) -> None:
        for callback in list(self._observers):
            try:
                callback(event)
            except Exception:  # noqa: BLE001 - observers must not break the flow
                logger.exception("Conversation observer failed", extra={"event": event.kind.value})

    def _add(self, message: DisplayMessage) -> DisplayMessage:
        self.messages.append(message)
        self._emit(ConversationEvent(EventKind.MESSAGE_ADDED, message=message))
        return message

    def _remove(self, message: DisplayMessage) -> None:
        if message in self.messages:
            self.messages.remove(message)
            self._emit(ConversationEvent(EventKind.MESSAGE_REMOVED, message=message))

    def _notice(self, content: str) -> DisplayMessage:
        return self._add(DisplayMessage(role=MessageRole.ASSISTANT, content=content, transient=True))

    def _store_failed(self, flow: str) -> None:
        logger.error("Project data could not be read", extra={"flow": flow}, exc_info=True)
        observe_flow_outcome(flow, "store_error")
        self._notice(prompts.STORE_UNAVAILABLE_NOTICE)

    def _set_history(self, history: list[ChatMessage], *extra: DisplayMessage) -> None:
        self.messages = [DisplayMessage.from_chat(message) for message in history] + list(extra)
        self._emit(ConversationEvent(EventKind.HISTORY_RELOADED, messages=list(self.messages)))

    # -- lifecycle -----------------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self.state != ConversationState.IDLE or self.preview is not None

    def _ensure_ready(self) -> None:
        if self.state != ConversationState.IDLE:
            raise ConversationBusyError("A request is already in progress")
        if self.preview is not None:
            raise ConversationBusyError("Approve, regenerate or cancel the pending preview first")

    async def load(self) -> Session:
        """Restore the session and the persisted history of its current phase."""

        self.session = await self._phases.load(self.project_id)
        self.phase = self.session.current_phase
        await self._load_history()
        return self.session

    async def _load_history(self) -> None:
        history = await self._messages.load(self.project_id, self.phase)
        if history:
            self._set_history(history)
        else:
            self._set_history(
                [],
                DisplayMessage(role=MessageRole.ASSISTANT, content=greeting(self.phase), transient=True),
            )

    async def switch_phase(self, phase: ResearchPhase | int) -> Session:
        self._ensure_ready()
        self.session = await self._phases.switch_phase(self.project_id, phase)
        self.phase = ResearchPhase(phase)
        await self._load_history()
        return self.session

    async def clear_history(self) -> int:
        """Delete the persisted history of the active phase."""

        self._ensure_ready()
        removed = await self._messages.delete_all(self.project_id, self.phase)
        logger.info(
            "Cleared chat history",
            extra={"project_id": self.project_id, "phase": self.phase.value, "removed": removed},
        )
        await self._load_history()
        return removed

    async def submit(self, text: str) -> None:
        """Handle one user submission; returns once the triggered flow is done.

        Raises:
            ConversationBusyError: While a request runs or a preview awaits a decision.
        """

        text = text.strip()
        if not text:
            return
        self._ensure_ready()
        self.state = ConversationState.AWAITING_COMMAND
        try:
            with log_context(project_id=self.project_id, phase=self.phase.value):
                if self.phase == ResearchPhase.RESEARCH:
                    item_name = extract_item_name(text)
                    if item_name:
                        self.state = ConversationState.DIRECT_COMMAND
                        await self._research_flow(item_name)
                        return
                if self.phase == ResearchPhase.FACT_CHECKING:
                    command = extract_edit_command(text)
                    if command:
                        self.state = ConversationState.DIRECT_COMMAND
                        await self._edit_flow(command)
                        return
                self.state = ConversationState.CHAT_STREAMING
                await self._chat_flow(text)
        finally:
            self.state = ConversationState.IDLE

    # -- completions ---------------------------------------------------------------

    async def _track(self, response: ProviderResponse, flow: str) -> None:
        observe_provider_response(flow=flow, provider=self._provider.name, response=response)
        await self._usage.track(self.user_id, response.total_tokens)

    async def _summary_response(self, response: ProviderResponse) -> None:
        await self._track(response, "summary")

    async def _complete(self, prompt: str, flow: str) -> str:
        system_prompt = await self._phases.system_prompt(self.phase)
        request = ProviderRequest.from_prompt(
            prompt,
            system_prompt=system_prompt,
            metadata={"flow": flow, "project_id": self.project_id},
        )
        stream = self._provider.stream(request)
        try:
            response = await stream.collect()
        finally:
            await stream.aclose()
        await self._track(response, flow)
        return response.text

    # -- research and edit flows -------------------------------------------------

    async def _research_flow(self, item_name: str) -> None:
        with log_context(flow="research"):
            try:
                item = await self._items.find_by_name(self.project_id, item_name)
                fields = await self._phases.research_fields(self.project_id) if item is not None else []
            except RecordStoreError:
                self._store_failed("research")
                return
            if item is None:
                observe_flow_outcome("research", "not_found")
                self._notice(prompts.RESEARCH_NOT_FOUND_NOTICE.format(name=item_name))
                return
            preview = ResearchPreview(
                kind=PreviewKind.RESEARCH,
                item=item,
                prompt=prompts.build_research_prompt(item.name, item.section, fields),
            )
            await self._generate_preview(preview)

    async def _edit_flow(self, command: EditCommand) -> None:
        with log_context(flow="edit"):
            try:
                item = await self._items.find_by_name(self.project_id, command.item_name)
            except RecordStoreError:
                self._store_failed("edit")
                return
            if item is None:
                observe_flow_outcome("edit", "not_found")
                self._notice(prompts.EDIT_NOT_FOUND_NOTICE.format(name=command.item_name))
                return
            preview = ResearchPreview(
                kind=PreviewKind.EDIT,
                item=item,
                prompt=prompts.build_edit_prompt(item.name, item.section, item.data, command.field_name),
                field_name=command.field_name,
                original_data=dict(item.data),
            )
            await self._generate_preview(preview)

    async def _generate_preview(self, preview: ResearchPreview, *, regenerating: bool = False) -> None:
        flow = preview.kind.value
        try:
            text = await self._complete(preview.prompt, flow)
        except (ProviderError, UsageTrackingError) as exc:
            observe_flow_outcome(flow, "quota_exceeded" if isinstance(exc, QuotaExceededError) else "error")
            logger.warning("Preview generation failed", extra={"error": str(exc), "item": preview.item.name})
            self._notice(describe_error(exc))
            return
        except RecordStoreError:
            self._store_failed(flow)
            return

        data = parse_research_output(text)
        if data is None:
            observe_flow_outcome(flow, "parse_failed")
            logger.info("Model output had no field blocks", extra={"item": preview.item.name})
            if regenerating:
                self._close_preview()
            parse_notice = (
                prompts.RESEARCH_PARSE_NOTICE
                if preview.kind is PreviewKind.RESEARCH
                else prompts.EDIT_PARSE_NOTICE
            )
            self._notice(parse_notice)
            return

        preview.data = data
        self.preview = preview
        observe_flow_outcome(flow, "preview")
        self._emit(ConversationEvent(EventKind.PREVIEW_READY, preview=preview))

    def _require_preview(self) -> ResearchPreview:
        if self.preview is None:
            raise NoPendingPreviewError("There is no research preview awaiting a decision")
        if self.state != ConversationState.IDLE:
            raise ConversationBusyError("A request is already in progress")
        return self.preview

    def _close_preview(self) -> None:
        preview = self.preview
        self.preview = None
        if preview is not None:
            self._emit(ConversationEvent(EventKind.PREVIEW_CLOSED, preview=preview))

    async def approve_preview(self) -> Optional[ResearchItem]:
        """Persist the previewed data; returns the updated item or ``None`` on failure."""

        preview = self._require_preview()
        record_preview_decision(preview.kind.value, "approve")
        self.state = ConversationState.DIRECT_COMMAND
        try:
            with log_context(project_id=self.project_id, flow=preview.kind.value):
                self._close_preview()
                data = serialise_research_data(preview.data)
                try:
                    if preview.kind is PreviewKind.RESEARCH:
                        item = await self._items.save_research(self.project_id, preview.item.name, data)
                    else:
                        item = await self._items.replace_data(preview.item.id, data)
                except RecordStoreError:
                    logger.error(
                        "Failed to persist approved research",
                        extra={"item": preview.item.name},
                        exc_info=True,
                    )
                    observe_flow_outcome(preview.kind.value, "save_failed")
                    failed = (
                        prompts.RESEARCH_SAVE_FAILED_NOTICE
                        if preview.kind is PreviewKind.RESEARCH
                        else prompts.EDIT_SAVE_FAILED_NOTICE
                    )
                    self._notice(failed)
                    return None

                observe_flow_outcome(preview.kind.value, "saved")
                saved = (
                    prompts.RESEARCH_SAVED_NOTICE
                    if preview.kind is PreviewKind.RESEARCH
                    else prompts.EDIT_SAVED_NOTICE
                )
                self._notice(saved.format(name=item.name))
                return item
        finally:
            self.state = ConversationState.IDLE

    async def regenerate_preview(self) -> None:
        """Re-run the preview prompt; the preview stays open if the service fails."""

        preview = self._require_preview()
        record_preview_decision(preview.kind.value, "regenerate")
        self.state = ConversationState.DIRECT_COMMAND
        try:
            with log_context(project_id=self.project_id, flow=preview.kind.value):
                await self._generate_preview(preview, regenerating=True)
        finally:
            self.state = ConversationState.IDLE

    def cancel_preview(self) -> None:
        preview = self._require_preview()
        record_preview_decision(preview.kind.value, "cancel")
        self._close_preview()

    # -- chat flow -----------------------------------------------------------------

    async def _chat_flow(self, text: str) -> None:
        with log_context(flow="chat"):
            user_message = self._add(DisplayMessage(role=MessageRole.USER, content=text))

            try:
                history = await self._summarizer.maybe_summarize(self.project_id, self.phase)
                system_prompt = await self._phases.system_prompt(self.phase)
            except UsageTrackingError as exc:
                observe_flow_outcome("chat", "quota_exceeded")
                user_message.transient = True
                self._notice(describe_error(exc))
                return
            except RecordStoreError:
                user_message.transient = True
                self._store_failed("chat")
                return
            displayed_ids = [
                message.id for message in self.messages if not message.transient and message is not user_message
            ]
            if [message.id for message in history] != displayed_ids:
                self._set_history(history, user_message)

            try:
                stored = await self._messages.save(
                    ChatMessage(
                        id=user_message.id,
                        project_id=self.project_id,
                        phase=self.phase.value,
                        role=MessageRole.USER,
                        content=text,
                        created_at=user_message.created_at,
                    )
                )
            except RecordStoreError:
                logger.error("Failed to persist user message", exc_info=True)
                observe_flow_outcome("chat", "save_failed")
                user_message.transient = True
                self._notice(prompts.MESSAGE_SAVE_FAILED_NOTICE)
                return

            turns = [ChatTurn(role=message.role.value, content=message.content) for message in history]
            turns.append(ChatTurn(role=stored.role.value, content=stored.content))
            request = ProviderRequest(
                messages=turns,
                system_prompt=system_prompt,
                metadata={"flow": "chat", "project_id": self.project_id},
            )

            placeholder = self._add(DisplayMessage(role=MessageRole.ASSISTANT, content=""))
            response = await self._stream_reply(request, placeholder)
            if response is None:
                return

            try:
                await self._messages.save(
                    ChatMessage(
                        id=placeholder.id,
                        project_id=self.project_id,
                        phase=self.phase.value,
                        role=MessageRole.ASSISTANT,
                        content=response.text,
                    )
                )
            except RecordStoreError:
                logger.error("Failed to persist assistant message", exc_info=True)
                observe_flow_outcome("chat", "save_failed")
                placeholder.transient = True
                self._notice(prompts.MESSAGE_SAVE_FAILED_NOTICE)
                return

            observe_flow_outcome("chat", "completed")
            if self.phase == ResearchPhase.PLANNING:
                await self._apply_planning_payload(response.text)

    async def _stream_reply(
        self, request: ProviderRequest, placeholder: DisplayMessage
    ) -> Optional[ProviderResponse]:
        stream = self._provider.stream(request)
        try:
            async for chunk in stream:
                placeholder.content += chunk
                self._emit(ConversationEvent(EventKind.MESSAGE_UPDATED, message=placeholder))
            response = stream.response
        except ProviderError as exc:
            await stream.aclose()
            observe_flow_outcome("chat", "error")
            logger.warning("Chat completion failed", extra={"error": str(exc)})
            self._remove(placeholder)
            self._notice(describe_error(exc))
            return None

        try:
            await self._track(response, "chat")
        except UsageTrackingError as exc:
            observe_flow_outcome("chat", "quota_exceeded")
            placeholder.transient = True
            self._emit(ConversationEvent(EventKind.MESSAGE_UPDATED, message=placeholder))
            self._notice(describe_error(exc))
            return None
        return response

    async def _apply_planning_payload(self, text: str) -> None:
        plan = parse_phase1_json(text)
        if plan is None:
            return
        try:
            outcome = await self._phases.apply_phase1_plan(self.project_id, plan)
        except RecordStoreError:
            logger.error("Failed to save planning data", exc_info=True)
            observe_flow_outcome("planning", "save_failed")
            self._notice(prompts.STRUCTURE_FAILED_NOTICE)
            return

        self.session = outcome.session
        self._emit(ConversationEvent(EventKind.PLAN_APPLIED, session=outcome.session))
        if outcome.error is not None:
            observe_flow_outcome("planning", "partial")
            self._notice(prompts.STRUCTURE_FAILED_NOTICE)
            return
        observe_flow_outcome("planning", "applied")
        self._notice(prompts.structure_created_notice(len(outcome.created_items)))
