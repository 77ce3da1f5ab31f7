"""Shared observability helpers used across Word Pilot services."""

from .logging import current_log_context, log_context, setup_logging
from .metrics import (
    observe_flow_outcome,
    observe_provider_response,
    record_preview_decision,
    record_summarization,
    setup_fastapi_metrics,
)

__all__ = [
    "current_log_context",
    "log_context",
    "setup_logging",
    "observe_flow_outcome",
    "observe_provider_response",
    "record_preview_decision",
    "record_summarization",
    "setup_fastapi_metrics",
]
