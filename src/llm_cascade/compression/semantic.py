"""Pluggable semantic (lossy) compression backend."""

from __future__ import annotations

from typing import Protocol


class SemanticCompressor(Protocol):
    async def summarize(self, text: str) -> str | None:
        """Return a shorter rendition of ``text``, or None to leave it untouched."""
        ...


class NoopSemanticCompressor:
    """Default backend: never rewrites anything."""

    async def summarize(self, text: str) -> str | None:
        return None
