"""CLI compress command: lossless prompt compression on a file or stdin."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from llm_cascade.compression.compressor import PromptCompressor

console = Console()


def compress_cmd(
    path: Annotated[
        Path | None, typer.Argument(help="File to compress; reads stdin when omitted")
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
    stats: Annotated[bool, typer.Option(help="Show the transformation table")] = True,
) -> None:
    """Compress a prompt without changing its meaning."""
    if path is not None:
        if not path.exists():
            console.print(f"[red]File not found:[/red] {path}")
            raise typer.Exit(code=1)
        text = path.read_text()
    else:
        text = sys.stdin.read()

    if not text.strip():
        console.print("[yellow]Nothing to compress.[/yellow]")
        raise typer.Exit(code=1)

    result = asyncio.run(PromptCompressor().compress(text))

    if as_json:
        typer.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        return

    typer.echo(result.compressed)
    if not stats:
        return

    table = Table(title="Compression")
    table.add_column("Transformation")
    for t in result.transformations:
        table.add_row(t)
    if not result.transformations:
        table.add_row("[dim]none[/dim]")
    console.print(table)
    console.print(
        f"Tokens: {result.original_tokens} -> {result.compressed_tokens} "
        f"([bold]{result.ratio:.1%}[/bold] saved)"
    )
