"""Chat message representations."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field

from ..enums import MessageRole

SUMMARY_PREFIX = "[Previous conversation summary: "


class ChatMessage(BaseModel):
    """Persisted conversation turn for a project phase."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str
    phase: int = Field(..., ge=1, le=3)
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_summary: bool = False


def format_summary(text: str) -> str:
    """Wrap a generated summary the way it is stored in history."""

    return f"{SUMMARY_PREFIX}{text.strip()}]"
