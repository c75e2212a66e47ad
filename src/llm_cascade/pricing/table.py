"""Read-through pricing cache with TTL, stale serving and deterministic fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from llm_cascade.models import ModelPricing
from llm_cascade.pricing.fallback import fallback_pricing
from llm_cascade.pricing.source import PricingSource, StaticPricingSource
from llm_cascade.security import redact_secrets

logger = logging.getLogger(__name__)

DEFAULT_TTL_S = 24 * 60 * 60

PricingKey = tuple[str, str, str | None]


@dataclass(frozen=True)
class _Entry:
    pricing: ModelPricing
    fetched_at: float
    is_fallback: bool = False


def calculate_cost(
    pricing: ModelPricing,
    input_tokens: int,
    output_tokens: int,
    cached_input_tokens: int = 0,
) -> float:
    """USD cost of one call. Cached input is billed only when the model has a cached rate."""
    cost = (input_tokens / 1_000_000) * pricing.input_cost_per_million_tokens
    cost += (output_tokens / 1_000_000) * pricing.output_cost_per_million_tokens
    if cached_input_tokens > 0 and pricing.cached_input_cost_per_million_tokens:
        cost += (cached_input_tokens / 1_000_000) * pricing.cached_input_cost_per_million_tokens
    return cost


class PricingTable:
    """Process-lifetime pricing cache, constructed once and passed by reference.

    Readers never take a lock; a refresh swaps the whole entry in one dict
    assignment so no reader sees a partial write. Concurrent misses on one key
    share a single fetch.
    """

    def __init__(
        self,
        source: PricingSource | None = None,
        *,
        ttl_s: float = DEFAULT_TTL_S,
        max_entries: int = 512,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source: PricingSource = source or StaticPricingSource()
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[PricingKey, _Entry] = {}
        self._locks: dict[PricingKey, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _fresh(self, entry: _Entry) -> bool:
        return self._clock() - entry.fetched_at < self.ttl_s

    async def price_for(
        self, provider: str, model_name: str, model_variant: str | None = None
    ) -> ModelPricing:
        """Pricing for a model. Never raises, never returns None."""
        key: PricingKey = (provider, model_name, model_variant)
        entry = self._entries.get(key)
        if entry is not None and self._fresh(entry):
            return entry.pricing

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another task may have refreshed while we waited.
            entry = self._entries.get(key)
            if entry is not None and self._fresh(entry):
                return entry.pricing
            return await self._refresh(key, entry)

    async def _refresh(self, key: PricingKey, stale: _Entry | None) -> ModelPricing:
        provider, model_name, model_variant = key
        try:
            pricing = await self.source.fetch(provider, model_name, model_variant)
        except Exception as e:
            if stale is not None:
                logger.warning(
                    "Pricing source unavailable for %s/%s, serving stale entry: %s",
                    provider,
                    model_name,
                    redact_secrets(e),
                )
                return stale.pricing
            logger.warning(
                "Pricing source unavailable for %s/%s, using fallback: %s",
                provider,
                model_name,
                redact_secrets(e),
            )
            # Nothing is stored for this key, so its lock would never be evicted.
            self._locks.pop(key, None)
            return fallback_pricing(model_name)

        if pricing is None:
            logger.debug("No pricing for %s/%s, using fallback", provider, model_name)
            self._store(key, _Entry(fallback_pricing(model_name), self._clock(), is_fallback=True))
        else:
            self._store(key, _Entry(pricing, self._clock()))
        return self._entries[key].pricing

    def _store(self, key: PricingKey, entry: _Entry) -> None:
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            self._locks.pop(oldest, None)
        self._entries[key] = entry

    def is_fallback(self, provider: str, model_name: str, model_variant: str | None = None) -> bool:
        entry = self._entries.get((provider, model_name, model_variant))
        return entry is not None and entry.is_fallback

    def clear(self) -> None:
        """Drop every cached entry (forced refresh)."""
        self._entries.clear()
        self._locks.clear()
