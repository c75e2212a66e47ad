"""CLI serve command: run the HTTP service."""

from __future__ import annotations

from typing import Annotated

import typer


def serve_cmd(
    host: Annotated[str, typer.Option(help="Interface to bind")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Port to listen on")] = 8000,
) -> None:
    """Serve the OpenAI-compatible endpoint with uvicorn."""
    from llm_cascade.config import Config
    from llm_cascade.server.app import run_server

    run_server(Config(), host=host, port=port)
