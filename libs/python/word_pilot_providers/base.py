"""Core interfaces and dataclasses for provider interactions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, MutableMapping, Optional, Sequence, Union

from .exceptions import ProviderError


@dataclass(slots=True)
class ChatTurn:
    """One message of conversation context sent to a provider."""

    role: str
    content: str


@dataclass(slots=True)
class ProviderRequest:
    """Normalized request passed to providers."""

    messages: list[ChatTurn]
    system_prompt: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    top_p: float | None = None
    metadata: MutableMapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_prompt(cls, prompt: str, **kwargs: Any) -> "ProviderRequest":
        return cls(messages=[ChatTurn(role="user", content=prompt)], **kwargs)


@dataclass(slots=True)
class ProviderResponse:
    """Standard response returned by providers."""

    text: str
    raw: Any
    model: str
    prompt_tokens: int
    completion_tokens: int
    cost_usd: float | None = None
    latency_ms: float | None = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_tokens(self) -> int:
        return int(self.prompt_tokens or 0) + int(self.completion_tokens or 0)


@dataclass(slots=True)
class ProviderCapabilities:
    """Capability flags used when choosing a provider."""

    supports_streaming: bool = True
    max_input_tokens: int | None = None
    max_output_tokens: int | None = None


StreamItem = Union[str, ProviderResponse]


class CompletionStream:
    """Lazy, finite, single-use sequence of text deltas.

    Providers feed it an async generator that yields text chunks and finally a
    :class:`ProviderResponse` carrying usage. Iterating yields only the text
    chunks; once exhausted, :attr:`response` exposes the full text and token
    counts. The stream can be closed early with :meth:`aclose`.
    """

    def __init__(self, source: AsyncIterator[StreamItem], *, model: str = "unknown") -> None:
        self._source = source
        self._model = model
        self._chunks: list[str] = []
        self._response: Optional[ProviderResponse] = None
        self._started = False
        self._finished = False

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise ProviderError("Completion stream can only be consumed once")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        async for item in self._source:
            if isinstance(item, ProviderResponse):
                self._response = item
                continue
            if item:
                self._chunks.append(item)
                yield item
        self._finished = True

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def response(self) -> ProviderResponse:
        if not self._finished:
            raise ProviderError("Completion stream has not finished yet")
        if self._response is None:
            self._response = ProviderResponse(
                text=self.text,
                raw=None,
                model=self._model,
                prompt_tokens=0,
                completion_tokens=0,
            )
        elif self._response.text != self.text:
            self._response.text = self.text
        return self._response

    async def collect(self) -> ProviderResponse:
        """Drain the stream and return the final response."""

        async for _ in self:
            pass
        return self.response

    async def aclose(self) -> None:
        closer = getattr(self._source, "aclose", None)
        if closer is not None:
            await closer()


class LLMProvider(ABC):
    """Abstract base class implemented by concrete providers."""

    name: str

    @abstractmethod
    def capabilities(self) -> ProviderCapabilities:
        """Return capability metadata."""

    @abstractmethod
    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Generate a complete response for the request."""

    @abstractmethod
    def stream(self, request: ProviderRequest) -> CompletionStream:
        """Return a stream of text deltas for the request."""


def turns_as_dicts(turns: Sequence[ChatTurn]) -> list[dict[str, str]]:
    return [{"role": turn.role, "content": turn.content} for turn in turns]
