"""Deterministic mock provider for tests and offline development."""

from __future__ import annotations

from collections import deque
from typing import AsyncIterator, Iterable, Union

from .base import (
    CompletionStream,
    LLMProvider,
    ProviderCapabilities,
    ProviderRequest,
    ProviderResponse,
    StreamItem,
)
from .config import ProviderConfig, mock_provider_config

DEFAULT_TEXT = "Mock response generated for testing."

ScriptedReply = Union[str, Exception]


class MockProvider(LLMProvider):
    """Replays scripted replies, or echoes the last user message when none are queued.

    Scripted entries may be exceptions, which are raised instead of replying.
    Every request is recorded on :attr:`requests` for assertions.
    """

    name = "mock"

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        replies: Iterable[ScriptedReply] = (),
        chunk_size: int = 16,
    ) -> None:
        self._config = config or mock_provider_config()
        self._replies: deque[ScriptedReply] = deque(replies)
        self._chunk_size = max(chunk_size, 1)
        self.requests: list[ProviderRequest] = []

    def queue(self, *replies: ScriptedReply) -> None:
        self._replies.extend(replies)

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_streaming=True,
            max_input_tokens=32000,
            max_output_tokens=2000,
        )

    def _next_text(self, request: ProviderRequest) -> str:
        self.requests.append(request)
        if self._replies:
            reply = self._replies.popleft()
            if isinstance(reply, Exception):
                raise reply
            return reply
        last = request.messages[-1].content if request.messages else ""
        return f"{DEFAULT_TEXT}\nPrompt: {last[:80]}"

    def _response(self, request: ProviderRequest, text: str) -> ProviderResponse:
        prompt_words = sum(len(turn.content.split()) for turn in request.messages)
        if request.system_prompt:
            prompt_words += len(request.system_prompt.split())
        return ProviderResponse(
            text=text,
            raw={"mock": True},
            model="mock",
            prompt_tokens=prompt_words,
            completion_tokens=len(text.split()),
            cost_usd=0.0,
            latency_ms=1.0,
        )

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        return self._response(request, self._next_text(request))

    def stream(self, request: ProviderRequest) -> CompletionStream:
        return CompletionStream(self._stream_items(request), model="mock")

    async def _stream_items(self, request: ProviderRequest) -> AsyncIterator[StreamItem]:
        text = self._next_text(request)
        for start in range(0, len(text), self._chunk_size):
            yield text[start : start + self._chunk_size]
        yield self._response(request, text)
