"""Prompt template model."""

from __future__ import annotations

from pydantic import BaseModel, Field

from ..enums import ResearchPhase


class PromptTemplate(BaseModel):
    """Named set of system instructions, one per research phase."""

    name: str = Field(..., min_length=1, max_length=200)
    phase1: str
    phase2: str
    phase3: str

    def prompt_for(self, phase: ResearchPhase | int) -> str:
        return getattr(self, ResearchPhase(phase).key)
