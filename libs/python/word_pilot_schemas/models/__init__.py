"""Pydantic models for research sessions, chat history and research items."""

from .messages import SUMMARY_PREFIX, ChatMessage, format_summary
from .research import ResearchItem, Source
from .session import (
    BookPlan,
    Phase1Plan,
    PhaseState,
    ResearchPlan,
    ResearchPlanSection,
    Session,
    SimilarWork,
)
from .templates import PromptTemplate

__all__ = [
    "SUMMARY_PREFIX",
    "ChatMessage",
    "format_summary",
    "ResearchItem",
    "Source",
    "BookPlan",
    "Phase1Plan",
    "PhaseState",
    "ResearchPlan",
    "ResearchPlanSection",
    "Session",
    "SimilarWork",
    "PromptTemplate",
]
