"""OpenAI chat completions provider implementation."""

from __future__ import annotations

import time
from typing import Any, AsyncIterator, Dict, List

import openai
from openai import AsyncOpenAI

from .base import (
    CompletionStream,
    LLMProvider,
    ProviderCapabilities,
    ProviderRequest,
    ProviderResponse,
    StreamItem,
    turns_as_dicts,
)
from .config import ProviderConfig
from .exceptions import ProviderError, ProviderResponseError, error_for_status
from .pricing import estimate_cost


def _translate_error(exc: openai.OpenAIError) -> ProviderError:
    if isinstance(exc, openai.APIStatusError):
        return error_for_status(exc.status_code, exc.message)
    return ProviderError(f"OpenAI request failed: {exc}")


class OpenAIProvider(LLMProvider):
    name = "openai"

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        self._client = AsyncOpenAI(api_key=config.api_key)

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_streaming=True,
            max_output_tokens=self._config.settings.max_output_tokens,
        )

    def _build_params(self, request: ProviderRequest) -> Dict[str, Any]:
        messages: List[Dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend(turns_as_dicts(request.messages))

        settings = self._config.settings
        params: Dict[str, Any] = {
            "model": self._config.model,
            "messages": messages,
            "temperature": (
                request.temperature if request.temperature is not None else settings.temperature
            ),
        }
        top_p = request.top_p if request.top_p is not None else settings.top_p
        if top_p is not None:
            params["top_p"] = top_p
        max_output = (
            request.max_output_tokens
            if request.max_output_tokens is not None
            else settings.max_output_tokens
        )
        if max_output:
            params["max_completion_tokens"] = max_output
        return params

    def _response(
        self, text: str, raw: Any, model: str, usage: Any, started: float
    ) -> ProviderResponse:
        prompt_tokens = getattr(usage, "prompt_tokens", 0) if usage else 0
        completion_tokens = getattr(usage, "completion_tokens", 0) if usage else 0
        return ProviderResponse(
            text=text,
            raw=raw,
            model=model,
            prompt_tokens=prompt_tokens or 0,
            completion_tokens=completion_tokens or 0,
            cost_usd=estimate_cost(
                provider=self._config.name,
                model=model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
            ),
            latency_ms=(time.perf_counter() - started) * 1000,
        )

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        start = time.perf_counter()
        try:
            response = await self._client.chat.completions.create(**self._build_params(request))
        except openai.OpenAIError as exc:
            raise _translate_error(exc) from exc

        try:
            text = response.choices[0].message.content or ""
        except (IndexError, AttributeError) as err:
            raise ProviderResponseError("OpenAI response missing content") from err

        return self._response(text, response, response.model, getattr(response, "usage", None), start)

    def stream(self, request: ProviderRequest) -> CompletionStream:
        return CompletionStream(self._stream_items(request), model=self._config.model)

    async def _stream_items(self, request: ProviderRequest) -> AsyncIterator[StreamItem]:
        start = time.perf_counter()
        params = self._build_params(request)
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}

        parts: list[str] = []
        usage = None
        model = self._config.model
        try:
            stream = await self._client.chat.completions.create(**params)
            async for chunk in stream:
                model = getattr(chunk, "model", None) or model
                if getattr(chunk, "usage", None):
                    usage = chunk.usage
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    parts.append(delta)
                    yield delta
        except openai.OpenAIError as exc:
            raise _translate_error(exc) from exc

        yield self._response("".join(parts), None, model, usage, start)
