"""Shared data model for the Word Pilot research assistant."""

from .enums import MessageRole, PhaseStatus, ResearchPhase, SourceType
from .models import (
    SUMMARY_PREFIX,
    BookPlan,
    ChatMessage,
    Phase1Plan,
    PhaseState,
    PromptTemplate,
    ResearchItem,
    ResearchPlan,
    ResearchPlanSection,
    Session,
    SimilarWork,
    Source,
    format_summary,
)

__all__ = [
    "MessageRole",
    "PhaseStatus",
    "ResearchPhase",
    "SourceType",
    "SUMMARY_PREFIX",
    "BookPlan",
    "ChatMessage",
    "Phase1Plan",
    "PhaseState",
    "PromptTemplate",
    "ResearchItem",
    "ResearchPlan",
    "ResearchPlanSection",
    "Session",
    "SimilarWork",
    "Source",
    "format_summary",
]
