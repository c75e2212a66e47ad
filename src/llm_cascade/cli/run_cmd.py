"""CLI run command: one cascade from the terminal."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.table import Table

from llm_cascade.exceptions import CascadeError
from llm_cascade.models import CascadeResult, Message, Role

if TYPE_CHECKING:
    from llm_cascade.config import Config

console = Console()


async def _run(
    config: Config,
    messages: list[Message],
    model: str | None,
    force_escalate: bool,
) -> CascadeResult:
    from llm_cascade.cascade.orchestrator import CascadeOrchestrator
    from llm_cascade.logging.logger import RequestLogger
    from llm_cascade.pricing.source import SQLitePricingSource
    from llm_cascade.pricing.table import PricingTable
    from llm_cascade.storage.sqlite_store import SQLiteStore

    config.ensure_dirs()
    store = SQLiteStore(config.db_path)
    store.seed_default_pricing()
    request_logger = RequestLogger(config.log_dir, store, retain_prompts=config.retain_prompts)
    orchestrator = CascadeOrchestrator(
        config,
        pricing=PricingTable(
            SQLitePricingSource(config.db_path),
            ttl_s=config.pricing_ttl_s,
            max_entries=config.pricing_cache_size,
        ),
        request_logger=request_logger,
    )
    try:
        await orchestrator.load_tokenizer()
        return await orchestrator.run_cascade(messages, model, force_escalate)
    finally:
        await request_logger.drain()
        await orchestrator.close()
        store.close()


def _print_flow(result: CascadeResult) -> None:
    table = Table(title="Cascade flow")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Cost", justify="right")
    table.add_column("Details")
    for step in result.flow:
        table.add_row(
            str(step.step),
            step.name,
            step.status,
            f"${step.cost:.6f}",
            step.details,
        )
    console.print(table)

    metrics = result.performance_metrics
    console.print(
        f"Tier: [bold]{result.tier.value}[/bold] ({result.model})  "
        f"Quality: {metrics.quality_score:.1f}  "
        f"Cost: ${result.cost:.6f}  "
        f"Saved: ${metrics.cost_savings_usd:.6f} ({metrics.cost_savings_percent:.1f}%)  "
        f"Time: {metrics.total_response_time_ms:.0f}ms"
    )


def run_cmd(
    prompt: Annotated[str, typer.Argument(help="User message to answer")],
    system: Annotated[str | None, typer.Option(help="System message")] = None,
    model: Annotated[str | None, typer.Option(help="Requested premium model ceiling")] = None,
    force_escalate: Annotated[
        bool, typer.Option("--force-escalate", help="Always answer with the premium tier")
    ] = False,
    as_json: Annotated[bool, typer.Option("--json", help="Output the full result as JSON")] = False,
) -> None:
    """Answer one prompt through the cascade."""
    from llm_cascade.config import Config

    config = Config()
    messages = [Message(role=Role.USER, content=prompt)]
    if system:
        messages.insert(0, Message(role=Role.SYSTEM, content=system))

    try:
        result = asyncio.run(_run(config, messages, model, force_escalate))
    except CascadeError as e:
        console.print(f"[red]Cascade failed:[/red] {e}")
        raise typer.Exit(code=1) from e

    if as_json:
        typer.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        return

    console.print(result.response)
    console.print()
    _print_flow(result)
