"""Root Typer app for the llm-cascade CLI."""

from __future__ import annotations

import typer

app = typer.Typer(
    name="llm-cascade",
    help="llm-cascade: cheap model first, graded, escalated only when needed.",
    no_args_is_help=True,
)


def _register_commands() -> None:
    """Register all CLI commands and sub-apps."""
    from llm_cascade.cli.compress_cmd import compress_cmd
    from llm_cascade.cli.pricing_cmd import pricing_app
    from llm_cascade.cli.run_cmd import run_cmd
    from llm_cascade.cli.serve_cmd import serve_cmd

    app.command(name="run")(run_cmd)
    app.command(name="compress")(compress_cmd)
    app.command(name="serve")(serve_cmd)
    app.add_typer(pricing_app, name="pricing")


_register_commands()
