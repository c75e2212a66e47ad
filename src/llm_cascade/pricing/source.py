"""Pricing sources: where the pricing table reads through to on a cache miss."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

import aiosqlite

from llm_cascade.models import ModelPricing

PRICING_COLUMNS = (
    "provider, model_name, model_variant, input_cost_per_million_tokens, "
    "output_cost_per_million_tokens, cached_input_cost_per_million_tokens, "
    "context_window_tokens, notes"
)


class PricingSource(Protocol):
    async def fetch(
        self, provider: str, model_name: str, model_variant: str | None = None
    ) -> ModelPricing | None:
        """Return the exact entry, None when absent. May raise when unavailable."""
        ...


class StaticPricingSource:
    """In-memory pricing list. Used as the default source and in tests."""

    def __init__(self, entries: Iterable[ModelPricing] = ()) -> None:
        self._entries = {(p.provider, p.model_name, p.model_variant): p for p in entries}

    async def fetch(
        self, provider: str, model_name: str, model_variant: str | None = None
    ) -> ModelPricing | None:
        return self._entries.get((provider, model_name, model_variant))


class SQLitePricingSource:
    """Read-only view of the ``model_pricing`` table.

    The table stores a missing variant as ``''`` so it can be part of the key.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    async def fetch(
        self, provider: str, model_name: str, model_variant: str | None = None
    ) -> ModelPricing | None:
        uri = f"file:{self.db_path}?mode=ro"
        async with aiosqlite.connect(uri, uri=True) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {PRICING_COLUMNS} FROM model_pricing "  # noqa: S608
                "WHERE provider = ? AND model_name = ? AND model_variant = ?",
                (provider, model_name, model_variant or ""),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return row_to_pricing(dict(row))


def row_to_pricing(row: dict) -> ModelPricing:
    row["model_variant"] = row.get("model_variant") or None
    return ModelPricing(**row)
