"""Deterministic fallback pricing for models missing from the pricing store."""

from __future__ import annotations

from llm_cascade.models import ModelPricing

# First matching substring wins, so more specific families come first.
FALLBACK_FAMILIES: list[tuple[str, ModelPricing]] = [
    (
        "gpt-4o-mini",
        ModelPricing(
            provider="openai",
            model_name="gpt-4o-mini",
            input_cost_per_million_tokens=0.15,
            output_cost_per_million_tokens=0.60,
            cached_input_cost_per_million_tokens=0.075,
            context_window_tokens=128_000,
            notes="Fallback pricing for GPT-4o mini variants",
        ),
    ),
    (
        "gpt-4o",
        ModelPricing(
            provider="openai",
            model_name="gpt-4o",
            input_cost_per_million_tokens=2.50,
            output_cost_per_million_tokens=10.00,
            cached_input_cost_per_million_tokens=1.25,
            context_window_tokens=128_000,
            notes="Fallback pricing for GPT-4o variants",
        ),
    ),
    (
        "gpt-4",
        ModelPricing(
            provider="openai",
            model_name="gpt-4",
            input_cost_per_million_tokens=30.0,
            output_cost_per_million_tokens=60.0,
            context_window_tokens=8192,
            notes="Fallback pricing for GPT-4 variants",
        ),
    ),
    (
        "gpt-3.5",
        ModelPricing(
            provider="openai",
            model_name="gpt-3.5-turbo",
            input_cost_per_million_tokens=0.50,
            output_cost_per_million_tokens=1.50,
            context_window_tokens=16_385,
            notes="Fallback pricing for GPT-3.5 variants",
        ),
    ),
    (
        "claude",
        ModelPricing(
            provider="anthropic",
            model_name="claude-3",
            model_variant="haiku",
            input_cost_per_million_tokens=0.25,
            output_cost_per_million_tokens=1.25,
            context_window_tokens=200_000,
            notes="Fallback pricing for Claude variants",
        ),
    ),
    (
        "8b",
        ModelPricing(
            provider="groq",
            model_name="llama-3",
            model_variant="8b",
            input_cost_per_million_tokens=0.05,
            output_cost_per_million_tokens=0.08,
            context_window_tokens=8192,
            notes="Fallback pricing for 8B open-weight models",
        ),
    ),
    (
        "llama",
        ModelPricing(
            provider="groq",
            model_name="llama-3",
            model_variant="70b",
            input_cost_per_million_tokens=0.59,
            output_cost_per_million_tokens=0.79,
            context_window_tokens=8192,
            notes="Fallback pricing for Llama variants",
        ),
    ),
    (
        "mixtral",
        ModelPricing(
            provider="groq",
            model_name="mixtral",
            model_variant="8x7b",
            input_cost_per_million_tokens=0.24,
            output_cost_per_million_tokens=0.24,
            context_window_tokens=32_768,
            notes="Fallback pricing for Mixtral variants",
        ),
    ),
]

DEFAULT_FALLBACK = ModelPricing(
    provider="unknown",
    model_name="unknown",
    input_cost_per_million_tokens=1.0,
    output_cost_per_million_tokens=2.0,
    context_window_tokens=4096,
    notes="Default fallback pricing",
)


def fallback_pricing(model_name: str) -> ModelPricing:
    """Resolve any model name to a price. Never returns None."""
    lowered = model_name.lower()
    for family, pricing in FALLBACK_FAMILIES:
        if family in lowered:
            return pricing
    return DEFAULT_FALLBACK


def _price(
    provider: str,
    model_name: str,
    input_cost: float,
    output_cost: float,
    *,
    cached: float | None = None,
    context: int = 8192,
) -> ModelPricing:
    return ModelPricing(
        provider=provider,
        model_name=model_name,
        input_cost_per_million_tokens=input_cost,
        output_cost_per_million_tokens=output_cost,
        cached_input_cost_per_million_tokens=cached,
        context_window_tokens=context,
    )


# Seed rows for a fresh pricing store, and the in-memory default source.
DEFAULT_PRICING: list[ModelPricing] = [
    _price("groq", "llama-3.3-70b-versatile", 0.59, 0.79, context=131_072),
    _price("groq", "llama-3.1-8b-instant", 0.05, 0.08, context=131_072),
    _price("groq", "llama3-70b-8192", 0.59, 0.79),
    _price("groq", "llama3-8b-8192", 0.05, 0.08),
    _price("openai", "gpt-4o", 2.50, 10.00, cached=1.25, context=128_000),
    _price("openai", "gpt-4o-mini", 0.15, 0.60, cached=0.075, context=128_000),
    _price("openai", "chatgpt-4o-latest", 5.00, 15.00, context=128_000),
    _price("openai", "gpt-4-turbo", 10.00, 30.00, context=128_000),
    _price("openai", "gpt-4", 30.00, 60.00),
    _price("openai", "gpt-3.5-turbo", 0.50, 1.50, context=16_385),
]
