"""Streaming completion providers for OpenAI, Gemini and offline mocks."""

from .base import (
    ChatTurn,
    CompletionStream,
    LLMProvider,
    ProviderCapabilities,
    ProviderRequest,
    ProviderResponse,
)
from .config import ProviderConfig, ProviderSettings, load_provider_config, mock_provider_config
from .exceptions import (
    ProviderAuthError,
    ProviderConfigError,
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
)
from .factory import ProviderFactory
from .mock import MockProvider

__all__ = [
    "ChatTurn",
    "CompletionStream",
    "LLMProvider",
    "ProviderCapabilities",
    "ProviderRequest",
    "ProviderResponse",
    "ProviderConfig",
    "ProviderSettings",
    "load_provider_config",
    "mock_provider_config",
    "ProviderAuthError",
    "ProviderConfigError",
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderResponseError",
    "ProviderFactory",
    "MockProvider",
]
