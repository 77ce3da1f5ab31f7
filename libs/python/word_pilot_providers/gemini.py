"""Google Gemini provider implementation."""

from __future__ import annotations

import time
from typing import Any, AsyncIterator

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .base import (
    CompletionStream,
    LLMProvider,
    ProviderCapabilities,
    ProviderRequest,
    ProviderResponse,
    StreamItem,
)
from .config import ProviderConfig
from .exceptions import ProviderError, ProviderResponseError, error_for_status
from .pricing import estimate_cost


def _translate_error(exc: genai_errors.APIError) -> ProviderError:
    return error_for_status(getattr(exc, "code", None), str(exc))


class GeminiProvider(LLMProvider):
    name = "gemini"

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        self._client = genai.Client(api_key=config.api_key)

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_streaming=True,
            max_output_tokens=self._config.settings.max_output_tokens,
        )

    def _contents(self, request: ProviderRequest) -> list[dict[str, Any]]:
        # Gemini names the assistant role "model".
        return [
            {
                "role": "model" if turn.role == "assistant" else "user",
                "parts": [{"text": turn.content}],
            }
            for turn in request.messages
        ]

    def _generation_config(self, request: ProviderRequest) -> types.GenerateContentConfig:
        settings = self._config.settings
        return types.GenerateContentConfig(
            system_instruction=request.system_prompt or None,
            temperature=(
                request.temperature if request.temperature is not None else settings.temperature
            ),
            top_p=request.top_p if request.top_p is not None else settings.top_p,
            max_output_tokens=(
                request.max_output_tokens
                if request.max_output_tokens is not None
                else settings.max_output_tokens
            ),
        )

    def _response(self, text: str, raw: Any, usage: Any, started: float) -> ProviderResponse:
        prompt_tokens = getattr(usage, "prompt_token_count", 0) if usage else 0
        completion_tokens = getattr(usage, "candidates_token_count", 0) if usage else 0
        return ProviderResponse(
            text=text,
            raw=raw,
            model=self._config.model,
            prompt_tokens=prompt_tokens or 0,
            completion_tokens=completion_tokens or 0,
            cost_usd=estimate_cost(
                provider=self._config.name,
                model=self._config.model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
            ),
            latency_ms=(time.perf_counter() - started) * 1000,
        )

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        start = time.perf_counter()
        try:
            response = await self._client.aio.models.generate_content(
                model=self._config.model,
                contents=self._contents(request),
                config=self._generation_config(request),
            )
        except genai_errors.APIError as exc:
            raise _translate_error(exc) from exc

        try:
            text = response.text or ""
        except (AttributeError, ValueError) as err:
            raise ProviderResponseError("Gemini response missing text content") from err

        return self._response(text, response, getattr(response, "usage_metadata", None), start)

    def stream(self, request: ProviderRequest) -> CompletionStream:
        return CompletionStream(self._stream_items(request), model=self._config.model)

    async def _stream_items(self, request: ProviderRequest) -> AsyncIterator[StreamItem]:
        start = time.perf_counter()
        parts: list[str] = []
        usage = None
        try:
            stream = await self._client.aio.models.generate_content_stream(
                model=self._config.model,
                contents=self._contents(request),
                config=self._generation_config(request),
            )
            async for chunk in stream:
                if getattr(chunk, "usage_metadata", None):
                    usage = chunk.usage_metadata
                delta = chunk.text
                if delta:
                    parts.append(delta)
                    yield delta
        except genai_errors.APIError as exc:
            raise _translate_error(exc) from exc

        yield self._response("".join(parts), None, usage, start)
