"""Custom exceptions used by provider adapters."""

from __future__ import annotations


class ProviderError(RuntimeError):
    """Base error raised for provider failures."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderConfigError(ProviderError):
    """Raised when configuration is missing or invalid."""


class ProviderResponseError(ProviderError):
    """Raised when a provider returns an unusable response."""


class ProviderRateLimitError(ProviderError):
    """Raised when the provider rejects a call with HTTP 429."""


class ProviderAuthError(ProviderError):
    """Raised when the provider rejects the configured credentials."""


def error_for_status(status_code: int | None, message: str) -> ProviderError:
    """Map an HTTP-like status code onto the matching provider error."""

    if status_code == 429:
        return ProviderRateLimitError(message, status_code=status_code)
    if status_code in (401, 403):
        return ProviderAuthError(message, status_code=status_code)
    return ProviderError(message, status_code=status_code)
