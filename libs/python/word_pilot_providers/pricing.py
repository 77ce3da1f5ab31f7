"""Static pricing tables and helpers for estimating provider cost."""

from __future__ import annotations

from typing import Mapping

# USD per one million (input, output) tokens. Longer prefixes are matched first
# so dated snapshots such as "gpt-4o-2024-08-06" resolve to their family.
_PRICING: Mapping[str, Mapping[str, tuple[float, float]]] = {
    "openai": {
        "gpt-4o-mini": (0.15, 0.60),
        "gpt-4o": (2.50, 10.0),
        "gpt-4.1-nano": (0.10, 0.40),
        "gpt-4.1-mini": (0.40, 1.60),
        "gpt-4.1": (2.0, 8.0),
        "gpt-5-nano": (0.05, 0.40),
        "gpt-5-mini": (0.25, 2.0),
        "gpt-5": (1.25, 10.0),
    },
    "gemini": {
        "gemini-2.0-flash": (0.10, 0.40),
        "gemini-2.5-flash": (0.30, 2.50),
        "gemini-2.5-pro": (1.25, 10.0),
    },
}


def _lookup(provider: str, model: str) -> tuple[float, float] | None:
    table = _PRICING.get(provider)
    if not table:
        return None
    for prefix in sorted(table, key=len, reverse=True):
        if model.startswith(prefix):
            return table[prefix]
    return None


def estimate_cost(
    provider: str,
    model: str,
    prompt_tokens: int | float | None,
    completion_tokens: int | float | None,
) -> float | None:
    """Approximate cost in USD for a provider response.

    Returns ``0.0`` for the mock provider and ``None`` when the model is not
    priced.
    """

    provider_key = (provider or "").lower()
    if provider_key == "mock":
        return 0.0

    pricing = _lookup(provider_key, (model or "").lower())
    if pricing is None:
        return None

    input_rate, output_rate = pricing
    prompt_value = max(float(prompt_tokens or 0.0), 0.0)
    completion_value = max(float(completion_tokens or 0.0), 0.0)
    cost = (prompt_value * input_rate + completion_value * output_rate) / 1_000_000.0
    return round(cost, 6)


__all__ = ["estimate_cost"]
