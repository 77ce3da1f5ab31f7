"""Prometheus metrics helpers and middleware."""

from __future__ import annotations

from time import perf_counter
from typing import TYPE_CHECKING, Optional

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from word_pilot_providers.base import ProviderResponse


_HTTP_REQUEST_COUNT = Counter(
    "word_pilot_http_requests_total",
    "Total HTTP requests processed by service",
    labelnames=("service", "method", "route", "status"),
)

_HTTP_REQUEST_LATENCY = Histogram(
    "word_pilot_http_request_duration_seconds",
    "Latency of HTTP requests",
    labelnames=("service", "method", "route"),
)

_FLOW_RUNS = Counter(
    "word_pilot_conversation_flows_total",
    "Conversation flows by kind and outcome",
    labelnames=("flow", "outcome"),
)

_LLM_TOKENS = Counter(
    "word_pilot_llm_tokens_total",
    "Token usage by provider and flow",
    labelnames=("flow", "provider", "token_type"),
)

_LLM_COST = Counter(
    "word_pilot_llm_cost_usd_total",
    "Aggregated LLM cost in USD",
    labelnames=("flow", "provider"),
)

_LLM_LATENCY = Histogram(
    "word_pilot_llm_latency_seconds",
    "Latency of LLM provider calls",
    labelnames=("flow", "provider"),
)

_SUMMARIZATIONS = Counter(
    "word_pilot_history_summarizations_total",
    "Rolling summarization attempts by outcome",
    labelnames=("outcome",),
)

_PREVIEW_DECISIONS = Counter(
    "word_pilot_preview_decisions_total",
    "User decisions taken on research previews",
    labelnames=("kind", "decision"),
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect request metrics for FastAPI services."""

    def __init__(self, app: FastAPI, service_name: str) -> None:
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start = perf_counter()
        response = await call_next(request)
        elapsed = perf_counter() - start

        route = request.scope.get("route")
        route_template = getattr(route, "path", None) or request.url.path
        status = getattr(response, "status_code", 500)

        _HTTP_REQUEST_COUNT.labels(self.service_name, request.method, route_template, str(status)).inc()
        _HTTP_REQUEST_LATENCY.labels(self.service_name, request.method, route_template).observe(elapsed)
        return response


def setup_fastapi_metrics(app: FastAPI, service_name: str, endpoint: str = "/metrics") -> None:
    """Register Prometheus middleware and metrics endpoint for a FastAPI app."""

    if getattr(app.state, "metrics_configured", False):
        return

    app.add_middleware(PrometheusMiddleware, service_name=service_name)

    @app.get(endpoint, include_in_schema=False)
    async def _metrics_endpoint() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.state.metrics_configured = True


def observe_provider_response(
    *,
    flow: str,
    provider: str,
    response: Optional["ProviderResponse"],
) -> None:
    """Capture token usage, latency, and cost from provider responses."""

    if response is None:
        return

    if response.prompt_tokens >= 0:
        _LLM_TOKENS.labels(flow, provider, "prompt").inc(response.prompt_tokens)
    if response.completion_tokens >= 0:
        _LLM_TOKENS.labels(flow, provider, "completion").inc(response.completion_tokens)
    if response.latency_ms is not None and response.latency_ms >= 0:
        _LLM_LATENCY.labels(flow, provider).observe(response.latency_ms / 1000)
    if response.cost_usd is not None and response.cost_usd >= 0:
        _LLM_COST.labels(flow, provider).inc(response.cost_usd)


def observe_flow_outcome(flow: str, outcome: str) -> None:
    _FLOW_RUNS.labels(flow, outcome).inc()


def record_summarization(outcome: str) -> None:
    _SUMMARIZATIONS.labels(outcome).inc()


def record_preview_decision(kind: str, decision: str) -> None:
    _PREVIEW_DECISIONS.labels(kind, decision).inc()
