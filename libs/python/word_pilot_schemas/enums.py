"""Enum definitions shared across the assistant service."""

from __future__ import annotations

from enum import Enum, IntEnum


class ResearchPhase(IntEnum):
    PLANNING = 1
    RESEARCH = 2
    FACT_CHECKING = 3

    @property
    def label(self) -> str:
        return _PHASE_LABELS[self]

    @property
    def key(self) -> str:
        """Key used for the phase inside a session snapshot (``phase1`` etc.)."""

        return f"phase{self.value}"


_PHASE_LABELS = {
    ResearchPhase.PLANNING: "Planning",
    ResearchPhase.RESEARCH: "Research",
    ResearchPhase.FACT_CHECKING: "Fact Checking",
}


class PhaseStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class SourceType(str, Enum):
    BOOK = "book"
    WEBSITE = "website"
    ARTICLE = "article"
    OTHER = "other"
