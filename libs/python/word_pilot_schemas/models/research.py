"""Research item records and the source citations parsed into them."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from ..enums import SourceType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Source(BaseModel):
    """Single numbered citation extracted from a ``SOURCES:`` block."""

    number: int = Field(..., ge=0)
    citation: str
    type: SourceType = SourceType.OTHER
    url: Optional[str] = Field(None, max_length=2000)


class ResearchItem(BaseModel):
    """Named unit of investigation belonging to a section of the research plan."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str
    section: str
    name: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
