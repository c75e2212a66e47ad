"""Shared fixtures for all test modules."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from llm_cascade.config import Config
from llm_cascade.logging.logger import RequestLogger
from llm_cascade.net.client import ResilientClient
from llm_cascade.pricing.fallback import DEFAULT_PRICING
from llm_cascade.pricing.source import StaticPricingSource
from llm_cascade.pricing.table import PricingTable
from llm_cascade.storage.sqlite_store import SQLiteStore

CHEAP_MODEL = "llama-3.3-70b-versatile"
PREMIUM_MODEL = "gpt-4o"
FAST_GRADER = "llama-3.1-8b-instant"
STRONG_GRADER = "gpt-4o-mini"


@pytest.fixture
def tmp_config(tmp_path):
    """Config pointing to a temp directory: fresh DB per test."""
    config = Config(base_dir=tmp_path / ".llm-cascade")
    config.ensure_dirs()
    return config


@pytest.fixture
def store(tmp_config):
    """SQLiteStore with migrated DB."""
    s = SQLiteStore(tmp_config.db_path)
    yield s
    s.close()


@pytest.fixture
def request_logger(tmp_config, store):
    """RequestLogger writing to temp dir and the test store."""
    return RequestLogger(tmp_config.log_dir, store)


@pytest.fixture
def api_keys(monkeypatch):
    """Provider keys in the environment, no dedicated grader key."""
    monkeypatch.setenv("GROQ_API_KEY", "gsk_test_cheap_key")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-premium-key")
    monkeypatch.delenv("OPENAI_GRADER_API_KEY", raising=False)


@pytest.fixture
def pricing():
    return PricingTable(StaticPricingSource(DEFAULT_PRICING))


# -----------------------------------------------------------------------
# Scripted OpenAI-compatible provider
# -----------------------------------------------------------------------


def completion_body(
    content: str,
    model: str,
    *,
    prompt_tokens: int | None = 100,
    completion_tokens: int | None = 50,
) -> dict[str, Any]:
    usage = {}
    if prompt_tokens is not None:
        usage["prompt_tokens"] = prompt_tokens
    if completion_tokens is not None:
        usage["completion_tokens"] = completion_tokens
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": usage,
    }


def grader_json(
    scores: dict[str, float],
    *,
    confidence: float = 0.9,
    question_type: str | None = "FACTUAL",
) -> str:
    data: dict[str, Any] = {
        "scores": scores,
        "reasoning": {d: "ok" for d in scores},
        "confidence": confidence,
    }
    if question_type is not None:
        data["type"] = question_type
    return json.dumps(data)


class FakeProvider:
    """Replies per model name. The last scripted reply for a model repeats."""

    def __init__(self) -> None:
        self.replies: dict[str, list[dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []

    def reply(
        self,
        model: str,
        content: str = "",
        *,
        status: int = 200,
        body: dict[str, Any] | None = None,
        error: Exception | None = None,
        prompt_tokens: int | None = 100,
        completion_tokens: int | None = 50,
    ) -> FakeProvider:
        if body is None and status == 200:
            body = completion_body(
                content,
                model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
            )
        elif body is None:
            body = {"error": {"message": f"scripted {status}"}}
        self.replies.setdefault(model, []).append(
            {"status": status, "body": body, "error": error}
        )
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        model = json.loads(request.content)["model"]
        queue = self.replies.get(model)
        if not queue:
            return httpx.Response(500, json={"error": {"message": f"no reply for {model}"}})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if item["error"] is not None:
            raise item["error"]
        return httpx.Response(item["status"], json=item["body"])

    def payloads(self, model: str | None = None) -> list[dict[str, Any]]:
        bodies = [json.loads(r.content) for r in self.requests]
        return [b for b in bodies if model is None or b["model"] == model]

    def calls(self, model: str) -> int:
        return len(self.payloads(model))


async def _no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
async def http(fake_provider):
    """ResilientClient over the scripted provider, with no backoff delay."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_provider.handler))
    resilient = ResilientClient(client, sleep=_no_sleep, jitter=lambda: 0.0)
    yield resilient
    await client.aclose()
