"""CLI pricing commands: inspect and seed the pricing store."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from llm_cascade.pricing.fallback import fallback_pricing
from llm_cascade.pricing.table import calculate_cost
from llm_cascade.storage.sqlite_store import SQLiteStore

pricing_app = typer.Typer(help="Inspect and seed model pricing.")
console = Console()


def _open_store() -> SQLiteStore:
    from llm_cascade.config import Config

    config = Config()
    config.ensure_dirs()
    return SQLiteStore(config.db_path)


@pricing_app.command("list")
def list_cmd(
    provider: Annotated[str | None, typer.Option(help="Only this provider")] = None,
) -> None:
    """List stored pricing rows."""
    store = _open_store()
    try:
        rows = store.list_pricing(provider)
    finally:
        store.close()

    if not rows:
        console.print("[yellow]No pricing rows. Run `llm-cascade pricing seed`.[/yellow]")
        return

    table = Table(title="Model pricing (USD per 1M tokens)")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Variant")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    table.add_column("Cached input", justify="right")
    table.add_column("Context", justify="right")
    for p in rows:
        cached = p.cached_input_cost_per_million_tokens
        table.add_row(
            p.provider,
            p.model_name,
            p.model_variant or "",
            f"{p.input_cost_per_million_tokens:.3f}",
            f"{p.output_cost_per_million_tokens:.3f}",
            f"{cached:.3f}" if cached is not None else "-",
            f"{p.context_window_tokens:,}",
        )
    console.print(table)


@pricing_app.command("seed")
def seed_cmd() -> None:
    """Insert the default pricing rows that are missing."""
    store = _open_store()
    try:
        inserted = store.seed_default_pricing()
    finally:
        store.close()
    console.print(f"Seeded {inserted} pricing row(s).")


@pricing_app.command("show")
def show_cmd(
    provider: Annotated[str, typer.Argument(help="Provider, e.g. openai")],
    model: Annotated[str, typer.Argument(help="Model name, e.g. gpt-4o")],
    variant: Annotated[str | None, typer.Option(help="Model variant")] = None,
    tokens: Annotated[
        int, typer.Option(help="Price a call of this many input and output tokens")
    ] = 1000,
) -> None:
    """Show the pricing the cascade would use for one model."""
    store = _open_store()
    try:
        pricing = store.get_pricing(provider, model, variant)
    finally:
        store.close()

    source = "store"
    if pricing is None:
        pricing = fallback_pricing(model)
        source = "fallback"

    console.print(f"[bold]{provider}/{model}[/bold] ({source})")
    console.print(f"  Input:   ${pricing.input_cost_per_million_tokens:.3f} / 1M")
    console.print(f"  Output:  ${pricing.output_cost_per_million_tokens:.3f} / 1M")
    console.print(f"  Context: {pricing.context_window_tokens:,} tokens")
    cost = calculate_cost(pricing, tokens, tokens)
    console.print(f"  {tokens} in + {tokens} out: ${cost:.6f}")
