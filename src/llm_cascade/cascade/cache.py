"""Response cache extension point. The default never hits."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from typing import Protocol

from llm_cascade.models import Message


def prompt_hash(messages: Iterable[Message]) -> str:
    """Stable SHA-256 over roles and contents."""
    digest = hashlib.sha256()
    for m in messages:
        digest.update(m.role.value.encode())
        digest.update(b"\x00")
        digest.update(m.content.encode())
        digest.update(b"\x1e")
    return digest.hexdigest()


class CacheStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, response: str) -> None: ...


class NullCacheStore:
    """Always misses, stores nothing."""

    async def get(self, key: str) -> str | None:
        return None

    async def put(self, key: str, response: str) -> None:
        return None
