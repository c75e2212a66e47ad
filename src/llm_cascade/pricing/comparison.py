"""What a request would have cost on the premium model the caller asked for."""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel

from llm_cascade.models import Message
from llm_cascade.pricing.table import PricingTable, calculate_cost
from llm_cascade.providers.premium import map_premium_model
from llm_cascade.tokens.counter import TokenCounter, estimate_tokens


class ModelCost(BaseModel):
    name: str
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float


class CostComparison(BaseModel):
    actual: ModelCost
    requested: ModelCost
    savings_usd: float
    savings_percent: float


async def calculate_cost_comparison(
    messages: Iterable[Message],
    response: str,
    actual_model: str,
    actual_cost: float,
    requested_model: str | None = None,
    *,
    pricing: PricingTable,
    counter: TokenCounter | None = None,
    actual_provider: str = "groq",
) -> CostComparison:
    """Compare ``actual_cost`` against the requested premium model.

    The premium side is priced with exact token counts including message
    overhead. The actual side shows length estimates for display; its total is
    the cost that was really charged.
    """
    msgs = list(messages)
    counter = counter or TokenCounter()
    requested_name = map_premium_model(requested_model)

    usage = counter.count_with_overhead(msgs, response)
    premium = await pricing.price_for("openai", requested_name)
    premium_in = calculate_cost(premium, usage.input_tokens, 0)
    premium_out = calculate_cost(premium, 0, usage.output_tokens)
    premium_total = premium_in + premium_out

    actual_in_tokens = sum(estimate_tokens(m.content) for m in msgs)
    actual_out_tokens = estimate_tokens(response)
    actual = await pricing.price_for(actual_provider, actual_model)

    savings = max(0.0, premium_total - actual_cost)
    percent = savings / premium_total * 100 if premium_total > 0 else 0.0

    return CostComparison(
        actual=ModelCost(
            name=actual_model,
            input_tokens=actual_in_tokens,
            output_tokens=actual_out_tokens,
            input_cost=calculate_cost(actual, actual_in_tokens, 0),
            output_cost=calculate_cost(actual, 0, actual_out_tokens),
            total_cost=actual_cost,
        ),
        requested=ModelCost(
            name=requested_name,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            input_cost=premium_in,
            output_cost=premium_out,
            total_cost=premium_total,
        ),
        savings_usd=savings,
        savings_percent=percent,
    )


def format_cost(cost: float) -> str:
    if cost < 0.000001:
        return "$0.000001"
    if cost < 0.01:
        return f"${cost:.6f}"
    if cost < 1:
        return f"${cost:.4f}"
    return f"${cost:.2f}"


def format_savings_percentage(percentage: float) -> str:
    if percentage < 0.1:
        return "< 0.1%"
    if percentage > 99.9:
        return "> 99%"
    return f"{percentage:.1f}%"
