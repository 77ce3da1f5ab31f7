"""Provider registry and construction from configuration."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Type

from .base import LLMProvider
from .config import ProviderConfig, load_provider_config
from .exceptions import ProviderConfigError
from .gemini import GeminiProvider
from .mock import MockProvider, ScriptedReply
from .openai import OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDER_MAP: Dict[str, Type[LLMProvider]] = {
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
    "mock": MockProvider,
}


class ProviderFactory:
    """Builds the completion provider the assistant streams from."""

    @staticmethod
    def names() -> list[str]:
        return sorted(PROVIDER_MAP)

    @staticmethod
    def register(name: str, provider_cls: Type[LLMProvider]) -> None:
        PROVIDER_MAP[name.lower()] = provider_cls

    @classmethod
    def create(
        cls,
        config: ProviderConfig | None = None,
        *,
        replies: Iterable[ScriptedReply] = (),
    ) -> LLMProvider:
        """Instantiate the provider named by ``config``.

        Args:
            config: Provider configuration; read from the environment when omitted.
            replies: Scripted replies, accepted only by the mock provider.

        Raises:
            ProviderConfigError: For unknown providers, or replies given to a hosted one.
        """

        if config is None:
            config = load_provider_config()
        name = config.name.lower()
        provider_cls = PROVIDER_MAP.get(name)
        if provider_cls is None:
            raise ProviderConfigError(
                f"Unknown provider: {config.name}. Expected one of: {', '.join(cls.names())}"
            )

        replies = list(replies)
        if issubclass(provider_cls, MockProvider):
            provider: LLMProvider = provider_cls(config, replies=replies)
        elif replies:
            raise ProviderConfigError(f"Provider {name} does not accept scripted replies")
        else:
            provider = provider_cls(config)

        logger.info(
            "Completion provider ready",
            extra={"provider": name, "model": config.model, "scripted_replies": len(replies)},
        )
        return provider
