"""Phase lifecycle for a research session and extraction of the planning payload."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from word_pilot_schemas import Phase1Plan, PhaseStatus, ResearchItem, ResearchPhase, Session

from .repositories import ResearchItemRepository, SessionRepository
from .stores.base import RecordStoreError
from .templates import PromptTemplateStore

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_REQUIRED_KEYS = ("bookPlan", "researchPlan")


def phase_name(phase: ResearchPhase | int) -> str:
    return f"Phase {int(phase)}: {ResearchPhase(phase).label}"


def greeting(phase: ResearchPhase | int) -> str:
    phase = ResearchPhase(phase)
    opener = f"Hi! I'm here to help you research your book. We're currently in {phase_name(phase)}."
    if phase is ResearchPhase.PLANNING:
        return f"{opener} Let's start by understanding what you want to write about. What's your book topic?"
    return f"{opener} How can I help you with this phase?"


def _first_object(text: str) -> Optional[str]:
    """Return the first balanced top-level ``{...}`` substring, ignoring braces in strings."""

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def parse_phase1_json(text: str) -> Optional[Phase1Plan]:
    """Extract the planning payload from an assistant turn.

    A fenced code block is preferred over the surrounding text. ``None`` means
    the turn was ordinary conversation: no object, invalid JSON, or a payload
    without both ``bookPlan`` and ``researchPlan``.
    """

    if not text:
        return None
    candidate_source = text.strip()
    fenced = _FENCED_BLOCK.search(candidate_source)
    if fenced:
        candidate_source = fenced.group(1)

    candidate = _first_object(candidate_source)
    if candidate is None:
        return None

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    if any(payload.get(key) is None for key in _REQUIRED_KEYS):
        return None

    try:
        return Phase1Plan.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Planning payload failed validation", extra={"errors": exc.error_count()})
        return None


@dataclass
class Phase1Outcome:
    """Result of applying a planning payload; ``error`` is set on partial success."""

    session: Session
    created_items: list[ResearchItem] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PhaseSessionState:
    """Reads and mutates the per-project session snapshot.

    Phase changes are permissive: any phase can be entered at any time.
    """

    def __init__(
        self,
        sessions: SessionRepository,
        items: ResearchItemRepository,
        templates: PromptTemplateStore,
    ) -> None:
        self._sessions = sessions
        self._items = items
        self._templates = templates

    async def load(self, project_id: str) -> Session:
        return await self._sessions.load(project_id)

    async def switch_phase(self, project_id: str, phase: ResearchPhase | int) -> Session:
        phase = ResearchPhase(phase)
        session = await self._sessions.load(project_id)
        session.current_phase = phase
        state = session.phase_state(phase)
        if state.status == PhaseStatus.NOT_STARTED:
            state.status = PhaseStatus.IN_PROGRESS
        await self._sessions.save(project_id, session)
        logger.info("Switched research phase", extra={"project_id": project_id, "phase": phase.value})
        return session

    async def mark_phase_complete(self, project_id: str, phase: ResearchPhase | int) -> Session:
        session = await self._sessions.load(project_id)
        state = session.phase_state(phase)
        state.status = PhaseStatus.COMPLETE
        state.completed_at = datetime.now(timezone.utc)
        await self._sessions.save(project_id, session)
        return session

    async def apply_phase1_plan(self, project_id: str, plan: Phase1Plan) -> Phase1Outcome:
        """Create the research structure and store the planning data.

        Planning data is saved even when item creation fails; the failure is
        returned on the outcome instead of being raised.
        """

        created: list[ResearchItem] = []
        error: Optional[Exception] = None
        try:
            existing = {(item.section, item.name) for item in await self._items.list_items(project_id)}
            sections = []
            for section in plan.research_plan.sections:
                if not section.title:
                    continue
                names = [
                    name for name in section.items_to_research if (section.title, name) not in existing
                ]
                if names:
                    sections.append((section.title, names))
            created = await self._items.create_structure(project_id, sections)
        except RecordStoreError as exc:
            error = exc
            logger.error(
                "Failed to create research structure",
                extra={"project_id": project_id},
                exc_info=True,
            )

        session = await self._sessions.load(project_id)
        session.book_plan = plan.book_plan
        session.similar_works = list(plan.similar_works)
        session.research_plan = plan.research_plan
        planning = session.phase_state(ResearchPhase.PLANNING)
        planning.status = PhaseStatus.COMPLETE
        planning.completed_at = datetime.now(timezone.utc)
        if plan.phase2_prompt:
            session.phase_state(ResearchPhase.RESEARCH).suggested_prompt = plan.phase2_prompt
        await self._sessions.save(project_id, session)

        logger.info(
            "Applied planning payload",
            extra={
                "project_id": project_id,
                "items_created": len(created),
                "sections": len(plan.research_plan.sections),
            },
        )
        return Phase1Outcome(session=session, created_items=created, error=error)

    async def system_prompt(self, phase: ResearchPhase | int) -> str:
        return await self._templates.active_phase_prompt(phase)

    async def research_fields(self, project_id: str) -> list[str]:
        session = await self._sessions.load(project_id)
        return session.research_fields
