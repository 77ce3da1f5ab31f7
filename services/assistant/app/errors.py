"""Assistant error types and user-facing error messages."""

from __future__ import annotations

from word_pilot_providers.exceptions import (
    ProviderAuthError,
    ProviderConfigError,
    ProviderError,
    ProviderRateLimitError,
)

RATE_LIMIT_MESSAGE = "Too many requests. Please wait a moment and try again."
INVALID_CREDENTIAL_MESSAGE = "Invalid API key. Please check your API key in Settings."
GENERIC_SERVICE_MESSAGE = (
    "Failed to connect to the research assistant. Please check your API key and try again."
)


class AssistantError(RuntimeError):
    """Base error for the assistant service."""


class ConversationBusyError(AssistantError):
    """Raised when input arrives while a request or preview is still pending."""


class NoPendingPreviewError(AssistantError):
    """Raised when a preview action is requested but nothing awaits approval."""


class UsageTrackingError(AssistantError):
    """Raised when token usage cannot be recorded for the user."""


class QuotaExceededError(UsageTrackingError):
    """Raised when recording usage would exceed the user's token allowance."""


def describe_error(exc: BaseException, fallback: str = GENERIC_SERVICE_MESSAGE) -> str:
    """Turn a service or usage error into the message shown as the assistant's turn."""

    if isinstance(exc, UsageTrackingError):
        return str(exc) or fallback
    status_code = getattr(exc, "status_code", None)
    if isinstance(exc, ProviderRateLimitError) or status_code == 429:
        return RATE_LIMIT_MESSAGE
    if isinstance(exc, (ProviderAuthError, ProviderConfigError)) or status_code == 401:
        return INVALID_CREDENTIAL_MESSAGE
    if isinstance(exc, ProviderError) and str(exc):
        return f"Failed to connect to the research assistant: {exc}"
    return fallback
