"""OpenAI-compatible HTTP front end over the cascade, with lifespan and uvicorn runner."""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from llm_cascade.cascade.orchestrator import CascadeOrchestrator
from llm_cascade.config import Config
from llm_cascade.exceptions import CascadeError, InvalidMessagesError, ProviderError
from llm_cascade.logging.logger import RequestLogger
from llm_cascade.models import CascadeResult, Tier, coerce_messages
from llm_cascade.net.client import ResilientClient
from llm_cascade.pricing.comparison import calculate_cost_comparison
from llm_cascade.pricing.source import SQLitePricingSource
from llm_cascade.pricing.table import PricingTable
from llm_cascade.security import redact_secrets
from llm_cascade.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

RESPONSE_VERSION = "2025-01-16"
DEFAULT_REQUESTED_MODEL = "gpt-3.5-turbo"

_start_time: float = 0.0


class ChatCompletionRequest(BaseModel):
    # Left untyped so a malformed list is a 400 from the cascade, not a 422.
    messages: Any = None
    model: str = DEFAULT_REQUESTED_MODEL


class HealthResponse(BaseModel):
    status: str
    uptime_s: int
    pricing_entries: int
    cached_prices: int


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared collaborators once per process."""
    global _start_time  # noqa: PLW0603
    _start_time = time.monotonic()

    config: Config = getattr(app.state, "config", None) or Config()
    config.ensure_dirs()

    store = SQLiteStore(config.db_path)
    seeded = store.seed_default_pricing()
    if seeded:
        logger.info("Seeded %d default pricing rows", seeded)

    pricing = PricingTable(
        SQLitePricingSource(config.db_path),
        ttl_s=config.pricing_ttl_s,
        max_entries=config.pricing_cache_size,
    )
    request_logger = RequestLogger(config.log_dir, store, retain_prompts=config.retain_prompts)
    orchestrator = CascadeOrchestrator(
        config,
        http=ResilientClient(),
        pricing=pricing,
        request_logger=request_logger,
    )
    await orchestrator.load_tokenizer()

    app.state.config = config
    app.state.store = store
    app.state.pricing = pricing
    app.state.request_logger = request_logger
    app.state.orchestrator = orchestrator

    yield

    # Shutdown
    await request_logger.drain()
    await orchestrator.close()
    store.close()


app = FastAPI(lifespan=lifespan)


def _flag(value: str | None) -> bool:
    return value is not None and value.strip().lower() in ("1", "true", "yes", "on")


def _debug_requested(header: str | None, param: str | None) -> bool:
    return _flag(header) or _flag(param) or "full" in (header, param) or header == "flow,timing"


def _cascade_block(
    result: CascadeResult,
    request_id: str,
    requested_model: str,
    comparison: dict | None,
    debug: bool,
) -> dict[str, Any]:
    metrics = result.performance_metrics
    block: dict[str, Any] = {
        "request_id": request_id,
        "actual_model": result.model,
        "tier_used": result.tier.value,
        "total_cost": round(result.cost, 6),
        "baseline_savings": round(metrics.cost_savings_usd, 6),
        "savings_percent": metrics.cost_savings_percent,
        "version": RESPONSE_VERSION,
        "tokens": {
            "prompt": result.prompt_tokens,
            "completion": result.completion_tokens,
            "total": result.prompt_tokens + result.completion_tokens,
        },
        "performance": {
            "total_response_time_ms": metrics.total_response_time_ms,
            "overhead_ms": metrics.overhead_ms,
            "model_api_calls_ms": metrics.model_api_calls_ms,
            "grader_api_calls_ms": metrics.grader_api_calls_ms,
            "grader_classification_ms": result.timing_breakdown.grader_classification_ms,
            "grader_evaluation_ms": result.timing_breakdown.grader_evaluation_ms,
        },
        "quality": {
            "score": metrics.quality_score,
            "passed": result.tier == Tier.CHEAP,
            "compression_applied": metrics.compression_applied,
        },
        "cost_comparison": comparison,
    }
    if debug:
        block["debug"] = {
            "requested_model": requested_model,
            "system_context_applied": result.system_context_applied,
            "cached": result.cached,
            "key_source": result.key_source.value if result.key_source else None,
            "cost_breakdown": result.cost_breakdown.model_dump(),
            "timing_breakdown": result.timing_breakdown.model_dump(),
            "flow": [step.model_dump(mode="json") for step in result.flow],
        }
    return block


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.post("/v1/chat/completions")
async def chat_completions(
    body: ChatCompletionRequest,
    x_cascade_force_escalate: str | None = Header(default=None),
    x_openai_key: str | None = Header(default=None),
    x_cascade_debug: str | None = Header(default=None),
    debug: str | None = Query(default=None),
    force_escalate: str | None = Query(default=None),
) -> JSONResponse:
    """Run one cascade and answer in the chat.completion shape."""
    request_id = str(uuid.uuid4())
    orchestrator: CascadeOrchestrator = app.state.orchestrator
    forced = _flag(x_cascade_force_escalate) or _flag(force_escalate)

    try:
        messages = coerce_messages(body.messages)
        result = await orchestrator.run_cascade(
            messages,
            body.model,
            forced,
            x_openai_key or None,
            request_id=request_id,
        )
    except InvalidMessagesError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ProviderError as e:
        logger.warning("Cascade %s failed at provider: %s", request_id, e)
        raise HTTPException(status_code=502, detail=str(e)) from e
    except CascadeError as e:
        logger.error("Cascade %s failed: %s", request_id, e)
        raise HTTPException(status_code=500, detail="Internal server error") from e

    comparison: dict | None = None
    try:
        cmp = await calculate_cost_comparison(
            messages,
            result.response,
            result.model,
            result.cost,
            body.model,
            pricing=orchestrator.pricing,
            counter=orchestrator.counter,
        )
        comparison = cmp.model_dump()
    except Exception as e:
        logger.warning("Cost comparison failed: %s", redact_secrets(e))

    payload = {
        "id": f"chatcmpl-{uuid.uuid4().hex[:24]}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": body.model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": result.response},
                "finish_reason": "stop",
            }
        ],
        "usage": {
            "prompt_tokens": result.prompt_tokens,
            "completion_tokens": result.completion_tokens,
            "total_tokens": result.prompt_tokens + result.completion_tokens,
        },
        "cascade": _cascade_block(
            result,
            request_id,
            body.model,
            comparison,
            _debug_requested(x_cascade_debug, debug),
        ),
    }
    headers = {
        "X-Cascade-Cost": f"{result.cost:.6f}",
        "X-Cascade-Model": result.model,
        "X-Cascade-Tier": result.tier.value,
        "X-Cascade-Trace": request_id,
        "X-Cascade-Savings": f"{result.performance_metrics.cost_savings_usd:.6f}",
    }
    return JSONResponse(payload, headers=headers)


@app.get("/api/health")
async def health() -> HealthResponse:
    """Liveness + basic stats."""
    return HealthResponse(
        status="ok",
        uptime_s=int(time.monotonic() - _start_time),
        pricing_entries=len(app.state.store.list_pricing()),
        cached_prices=len(app.state.pricing),
    )


@app.get("/api/pricing/{provider}/{model}")
async def get_pricing(provider: str, model: str, variant: str | None = None) -> dict:
    """Pricing the cascade would charge for a model, and whether it is a fallback."""
    pricing: PricingTable = app.state.pricing
    entry = await pricing.price_for(provider, model, variant)
    return {
        "pricing": entry.model_dump(),
        "fallback": pricing.is_fallback(provider, model, variant),
    }


def run_server(config: Config, host: str = "127.0.0.1", port: int = 8000) -> None:
    """Run the service with uvicorn."""
    app.state.config = config
    uvicorn.run(app, host=host, port=port, log_level="info", lifespan="on")


if __name__ == "__main__":
    run_server(Config())
