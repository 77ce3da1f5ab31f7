"""Research session snapshot and the Phase-1 planning payload."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..enums import PhaseStatus, ResearchPhase


class CamelModel(BaseModel):
    """Base model that reads and writes the camelCase keys used in snapshots and model output."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class BookPlan(CamelModel):
    topic: Optional[str] = None
    angle: Optional[str] = None
    audience: Optional[str] = None
    depth: Optional[str] = None
    scope: Optional[str] = None


class SimilarWork(CamelModel):
    title: Optional[str] = None
    author: Optional[str] = None
    how_its_different: Optional[str] = None


class ResearchPlanSection(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    items_to_research: list[str] = Field(default_factory=list)

    @field_validator("items_to_research", mode="before")
    @classmethod
    def normalise_items(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(item).strip() for item in value if item is not None and str(item).strip()]


class ResearchPlan(CamelModel):
    sections: list[ResearchPlanSection] = Field(default_factory=list)
    research_fields: list[str] = Field(default_factory=list)

    @field_validator("sections", "research_fields", mode="before")
    @classmethod
    def none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def item_count(self) -> int:
        return sum(len(section.items_to_research) for section in self.sections if section.title)


class PhaseState(CamelModel):
    status: PhaseStatus = PhaseStatus.NOT_STARTED
    completed_at: Optional[datetime] = None
    suggested_prompt: Optional[str] = Field(
        None, description="Phase instructions proposed by the planning conversation"
    )


def _default_phases() -> dict[str, PhaseState]:
    return {phase.key: PhaseState() for phase in ResearchPhase}


class Session(CamelModel):
    """Per-project research session snapshot."""

    current_phase: ResearchPhase = ResearchPhase.PLANNING
    book_plan: Optional[BookPlan] = None
    similar_works: list[SimilarWork] = Field(default_factory=list)
    research_plan: Optional[ResearchPlan] = None
    phases: dict[str, PhaseState] = Field(default_factory=_default_phases)

    @field_validator("phases")
    @classmethod
    def ensure_all_phases(cls, phases: dict[str, PhaseState]) -> dict[str, PhaseState]:
        for phase in ResearchPhase:
            phases.setdefault(phase.key, PhaseState())
        return phases

    def phase_state(self, phase: ResearchPhase | int) -> PhaseState:
        return self.phases[ResearchPhase(phase).key]

    @property
    def research_fields(self) -> list[str]:
        """Configured research fields; only trusted once planning is complete."""

        if self.research_plan is None:
            return []
        if self.phase_state(ResearchPhase.PLANNING).status != PhaseStatus.COMPLETE:
            return []
        return list(self.research_plan.research_fields)


class Phase1Plan(CamelModel):
    """Structured payload emitted by the planning conversation."""

    book_plan: BookPlan
    similar_works: list[SimilarWork] = Field(default_factory=list)
    research_plan: ResearchPlan
    phase2_prompt: Optional[str] = None

    @field_validator("similar_works", mode="before")
    @classmethod
    def none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value
