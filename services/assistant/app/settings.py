"""Environment-driven configuration for the research assistant service."""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from .errors import AssistantError

ENV_PREFIX = "WORD_PILOT_"


class AssistantSettings(BaseModel):
    """Runtime settings; every field maps to ``WORD_PILOT_<FIELD>``."""

    record_store: Literal["memory", "postgres"] = "memory"
    database_url: str | None = None
    kv_store: Literal["memory", "redis"] = "memory"
    provider: str | None = Field(None, description="Completion provider; LLM_PROVIDER when unset")
    redis_url: str | None = None
    summary_threshold: int = Field(5, ge=1, description="History length that triggers summarization")
    summary_batch_size: int = Field(5, ge=1, description="Oldest messages folded into one summary")
    track_usage: bool = Field(False, description="Charge completions to the user's subscription")
    allowed_origins: str = "http://localhost:5173"
    log_level: str = "INFO"

    def origins(self) -> list[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


def load_settings() -> AssistantSettings:
    """Read settings from the environment.

    Raises:
        AssistantError: If a value is invalid or a selected backend lacks its URL.
    """

    values: dict[str, str] = {}
    for name in AssistantSettings.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw not in (None, ""):
            values[name] = raw.strip()

    try:
        settings = AssistantSettings.model_validate(values)
    except ValidationError as exc:
        raise AssistantError(f"Invalid assistant configuration: {exc}") from exc

    if settings.record_store == "postgres" and not settings.database_url:
        raise AssistantError("WORD_PILOT_DATABASE_URL is required for the postgres record store")
    if settings.kv_store == "redis" and not settings.redis_url:
        raise AssistantError("WORD_PILOT_REDIS_URL is required for the redis key-value store")
    return settings
