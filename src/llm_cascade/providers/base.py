"""OpenAI-compatible chat/completions call shared by both tiers and the graders."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from llm_cascade.exceptions import (
    MissingCredentialError,
    ProviderError,
    ProviderUnreachableError,
)
from llm_cascade.models import (
    CallCostBreakdown,
    KeySource,
    Message,
    ProviderResponse,
    Role,
    Tier,
    Timing,
    coerce_messages,
)
from llm_cascade.pricing.table import calculate_cost
from llm_cascade.security import redact_secrets
from llm_cascade.tokens.counter import TokenCounter

if TYPE_CHECKING:
    from llm_cascade.config import Config
    from llm_cascade.models import ModelPricing
    from llm_cascade.net.client import ResilientClient
    from llm_cascade.pricing.table import PricingTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatCompletion:
    """Parsed body of one successful completion call."""

    content: str
    model: str
    prompt_tokens: int | None
    completion_tokens: int | None
    api_call_ms: float


def order_messages(messages: Iterable[Message]) -> list[Message]:
    """System messages first, then the conversation in its original order."""
    messages = list(messages)
    system = [m for m in messages if m.role == Role.SYSTEM]
    conversation = [m for m in messages if m.role != Role.SYSTEM]
    return system + conversation


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return ""
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return str(data["error"].get("message") or "")
    return ""


def _usage_value(usage: Mapping[str, Any], key: str) -> int | None:
    value = usage.get(key)
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return None


async def chat_completion(
    http: ResilientClient,
    *,
    label: str,
    base_url: str,
    api_key: str,
    payload: dict[str, Any],
    timeout_s: float,
    max_retries: int,
) -> ChatCompletion:
    """POST ``payload`` to ``{base_url}/chat/completions`` and parse the first choice.

    Raises:
        ProviderUnreachableError: transport failure after every retry.
        ProviderError: non-2xx status or a body without usable content.
    """
    request = httpx.Request(
        "POST",
        f"{base_url.rstrip('/')}/chat/completions",
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        json=payload,
    )

    start = time.perf_counter()
    try:
        response = await http.send(request, max_retries=max_retries, timeout_s=timeout_s)
    except (httpx.TransportError, TimeoutError) as e:
        logger.warning("%s call to %s unreachable: %s", label, request.url.host, redact_secrets(e))
        msg = f"Provider unreachable: {type(e).__name__}"
        raise ProviderUnreachableError(label, msg) from e
    api_call_ms = (time.perf_counter() - start) * 1000

    if not response.is_success:
        msg = f"API error: {response.status_code} {response.reason_phrase}"
        detail = _error_detail(response)
        if detail:
            msg += f" - {detail}"
        logger.warning("%s call failed: %s", label, redact_secrets(msg))
        raise ProviderError(label, msg, status_code=response.status_code)

    try:
        data = response.json()
        content = data["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        msg = "Malformed completion body"
        raise ProviderError(label, msg, status_code=response.status_code) from e
    if not isinstance(content, str) or not content:
        msg = "No content in completion body"
        raise ProviderError(label, msg, status_code=response.status_code)

    usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
    return ChatCompletion(
        content=content,
        model=str(data.get("model") or payload.get("model", "")),
        prompt_tokens=_usage_value(usage, "prompt_tokens"),
        completion_tokens=_usage_value(usage, "completion_tokens"),
        api_call_ms=api_call_ms,
    )


def cost_breakdown(
    pricing: ModelPricing, input_tokens: int, output_tokens: int
) -> CallCostBreakdown:
    input_cost = (input_tokens / 1_000_000) * pricing.input_cost_per_million_tokens
    output_cost = (output_tokens / 1_000_000) * pricing.output_cost_per_million_tokens
    return CallCostBreakdown(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        input_cost_per_1m=pricing.input_cost_per_million_tokens,
        output_cost_per_1m=pricing.output_cost_per_million_tokens,
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost=calculate_cost(pricing, input_tokens, output_tokens),
    )


class TierAdapter:
    """One model tier behind an OpenAI-compatible endpoint.

    Subclasses set the tier, the pricing provider key and how the model and
    credential are chosen.
    """

    tier: Tier
    provider: str

    def __init__(
        self,
        config: Config,
        http: ResilientClient,
        pricing: PricingTable,
        counter: TokenCounter | None = None,
    ) -> None:
        self.config = config
        self.http = http
        self.pricing = pricing
        self.counter = counter or TokenCounter()

    @property
    def base_url(self) -> str:
        raise NotImplementedError

    @property
    def max_tokens(self) -> int:
        raise NotImplementedError

    def resolve_model(self, requested: str | None) -> str:
        raise NotImplementedError

    def resolve_credential(self, override: str | None) -> tuple[str, KeySource]:
        raise NotImplementedError

    async def generate(
        self,
        messages: Iterable[Message | Mapping[str, Any]],
        *,
        model: str | None = None,
        override_credential: str | None = None,
    ) -> ProviderResponse:
        """Run one completion and price it."""
        msgs = order_messages(coerce_messages(messages))
        api_key, key_source = self.resolve_credential(override_credential)
        model_name = self.resolve_model(model)

        start_time = time.time()
        start = time.perf_counter()
        completion = await chat_completion(
            self.http,
            label=self.tier.value,
            base_url=self.base_url,
            api_key=api_key,
            payload={
                "model": model_name,
                "messages": [{"role": m.role.value, "content": m.content} for m in msgs],
                "temperature": self.config.temperature,
                "max_tokens": self.max_tokens,
            },
            timeout_s=self.config.provider_timeout_s,
            max_retries=self.config.max_retries,
        )

        prompt_tokens = completion.prompt_tokens
        completion_tokens = completion.completion_tokens
        usage_estimated = prompt_tokens is None or completion_tokens is None
        if usage_estimated:
            estimate = self.counter.count_with_overhead(msgs, completion.content)
            if prompt_tokens is None:
                prompt_tokens = estimate.input_tokens
            if completion_tokens is None:
                completion_tokens = estimate.output_tokens
            logger.debug("%s response omitted usage, estimated locally", self.tier)

        pricing = await self.pricing.price_for(self.provider, model_name)
        breakdown = cost_breakdown(pricing, prompt_tokens, completion_tokens)
        duration_ms = (time.perf_counter() - start) * 1000

        return ProviderResponse(
            content=completion.content,
            model=model_name,
            tier=self.tier,
            cost=breakdown.total_cost,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            usage_estimated=usage_estimated,
            timing=Timing(
                duration_ms=duration_ms,
                start_time=start_time,
                end_time=start_time + duration_ms / 1000,
                api_call_ms=completion.api_call_ms,
            ),
            cost_breakdown=breakdown,
            key_source=key_source,
        )


def require_credential(tier: str, value: str | None, env_var: str) -> str:
    if not value:
        msg = f"No API key available ({env_var} is not set)"
        raise MissingCredentialError(tier, msg)
    return value
