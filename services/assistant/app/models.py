"""Request and response models for the assistant HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from word_pilot_schemas import PromptTemplate, ResearchItem


class SubmitMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=20000)


class PhaseSwitchRequest(BaseModel):
    phase: int = Field(..., ge=1, le=3)


class DisplayMessageOut(BaseModel):
    id: str
    role: str
    content: str
    created_at: datetime
    is_summary: bool = False
    transient: bool = False


class PreviewOut(BaseModel):
    kind: str
    item: ResearchItem
    data: dict[str, Any]
    field_name: Optional[str] = None
    original_data: dict[str, Any] = Field(default_factory=dict)


class ConversationSnapshot(BaseModel):
    """Displayed state of a project conversation."""

    project_id: str
    phase: int
    state: str
    messages: list[DisplayMessageOut]
    preview: Optional[PreviewOut] = None


class ApproveResponse(ConversationSnapshot):
    item: Optional[ResearchItem] = None


class ClearHistoryResponse(BaseModel):
    removed: int


class TemplatePayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    phase1: str = Field(..., min_length=1)
    phase2: str = Field(..., min_length=1)
    phase3: str = Field(..., min_length=1)


class TemplateListResponse(BaseModel):
    templates: dict[str, PromptTemplate]
    selected_id: str


class TemplateCreatedResponse(TemplateListResponse):
    id: str


class TemplateSelection(BaseModel):
    template_id: str = Field(..., min_length=1)


class TokenUsageOut(BaseModel):
    used: int
    limit: int
    remaining: int
    percentage: float
