"""JSONL + SQLite dual-write request logger."""

from __future__ import annotations

import asyncio
import functools
import json
import sys
import threading
import time
import uuid
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from llm_cascade.cascade.cache import prompt_hash
from llm_cascade.models import (
    CascadeResult,
    CompressStep,
    GradeStep,
    Message,
    render_prompt,
)
from llm_cascade.security import redact_secrets, sanitize_for_logging

if TYPE_CHECKING:
    from llm_cascade.cascade.trace import CascadeTrace
    from llm_cascade.storage.sqlite_store import SQLiteStore

REQUEST_EVENT = "cascade.request"
ERROR_EVENT = "cascade.error"
CANCELLED_EVENT = "cascade.cancelled"


class RequestLogger:
    """Dual-write analytics sink: JSONL file (one per day) + SQLite event_log.

    Both writes are best-effort on the request path. ``log`` itself lets a
    JSONL failure propagate; ``log_request``/``log_failure`` never raise.
    """

    def __init__(
        self,
        log_dir: Path,
        store: SQLiteStore | None = None,
        *,
        retain_prompts: bool = False,
    ) -> None:
        self.log_dir = log_dir
        self.store = store
        self.retain_prompts = retain_prompts
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._pending: set[asyncio.Future[None]] = set()

    @property
    def _log_file(self) -> Path:
        """Current log file (one per day)."""
        today = datetime.now(UTC).strftime("%Y-%m-%d")
        return self.log_dir / f"llm-cascade-{today}.jsonl"

    def log(
        self,
        event_type: str,
        data: dict,
        *,
        request_id: str | None = None,
        duration_ms: int | None = None,
        tokens_in: int | None = None,
        tokens_out: int | None = None,
        cost_usd: float | None = None,
        prompt_digest: str | None = None,
    ) -> None:
        """Write to JSONL first (source of truth), then SQLite (best-effort).

        JSONL failure propagates. SQLite failure is swallowed. ``prompt_digest``
        is added after redaction since a SHA-256 hex string looks like a key.
        """
        clean = sanitize_for_logging(data)
        if prompt_digest is not None:
            clean["prompt_hash"] = prompt_digest
        entry = {
            "event_type": event_type,
            "data": clean,
            "request_id": request_id,
            "duration_ms": duration_ms,
            "tokens_in": tokens_in,
            "tokens_out": tokens_out,
            "cost_usd": cost_usd,
            "timestamp": datetime.now(UTC).isoformat(),
        }

        with self._lock:
            # 1. JSONL: source of truth (propagates on failure)
            with self._log_file.open("a") as f:
                f.write(json.dumps(entry, default=str) + "\n")

            # 2. SQLite: best-effort
            if self.store is not None:
                self.store.log_event(
                    event_type,
                    clean,
                    request_id=request_id,
                    duration_ms=duration_ms,
                    tokens_in=tokens_in,
                    tokens_out=tokens_out,
                    cost_usd=cost_usd,
                )

    def _safe_log(self, event_type: str, data: dict, **kwargs: Any) -> None:
        try:
            self.log(event_type, data, **kwargs)
        except Exception as e:
            print(
                f"WARNING: Failed to write event {event_type}: {redact_secrets(e)}",
                file=sys.stderr,
            )

    def log_async(self, event_type: str, data: dict, **kwargs: Any) -> None:
        """Schedule a write on a worker thread and return immediately.

        Outside a running event loop the write happens inline.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._safe_log(event_type, data, **kwargs)
            return
        future = loop.run_in_executor(
            None, functools.partial(self._safe_log, event_type, data, **kwargs)
        )
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every scheduled write. Used at shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -----------------------------------------------------------------------
    # Cascade records
    # -----------------------------------------------------------------------

    def _prompt_fields(self, msgs: list[Message]) -> dict[str, Any]:
        fields: dict[str, Any] = {"message_count": len(msgs)}
        if self.retain_prompts:
            fields["prompt"] = render_prompt(msgs)
        return fields

    def log_request(
        self,
        result: CascadeResult,
        messages: Iterable[Message],
        *,
        force_escalate: bool = False,
        request_id: str | None = None,
    ) -> str:
        """Record one completed cascade. Returns the request id."""
        request_id = request_id or str(uuid.uuid4())
        metrics = result.performance_metrics
        data: dict[str, Any] = {
            "tier": result.tier.value,
            "model": result.model,
            "cached": result.cached,
            "force_escalate": force_escalate,
            "key_source": result.key_source.value if result.key_source else None,
            "cost": result.cost,
            "baseline_cost": metrics.baseline_cost_usd,
            "savings": metrics.cost_savings_usd,
            "savings_percent": metrics.cost_savings_percent,
            "quality_score": metrics.quality_score,
            "system_context_applied": result.system_context_applied,
            "compression_applied": metrics.compression_applied,
            "cost_breakdown": result.cost_breakdown.model_dump(),
            "timing_breakdown": result.timing_breakdown.model_dump(),
            "flow": [
                {"step": s.step, "kind": s.kind, "name": s.name, "status": s.status}
                for s in result.flow
            ],
        }
        for step in result.flow:
            if isinstance(step, GradeStep):
                data["grading"] = {
                    "score": step.score,
                    "passed": step.passed,
                    "question_type": step.question_type.value,
                    "confidence": step.confidence,
                    "threshold": step.threshold,
                    "grader": step.grader,
                }
            elif isinstance(step, CompressStep):
                data["compression"] = {
                    "original_tokens": step.compression.original_tokens,
                    "compressed_tokens": step.compression.compressed_tokens,
                    "ratio": step.compression.ratio,
                }
        msgs = list(messages)
        data.update(self._prompt_fields(msgs))

        self.log_async(
            REQUEST_EVENT,
            data,
            request_id=request_id,
            duration_ms=int(result.timing_breakdown.total_ms),
            tokens_in=result.prompt_tokens,
            tokens_out=result.completion_tokens,
            cost_usd=result.cost,
            prompt_digest=prompt_hash(msgs),
        )
        return request_id

    def log_failure(
        self,
        trace: CascadeTrace,
        messages: Iterable[Message],
        *,
        outcome: str,
        error: Exception | None = None,
        force_escalate: bool = False,
        request_id: str | None = None,
    ) -> str:
        """Record a cascade that raised or was cancelled, with the costs it had incurred."""
        request_id = request_id or str(uuid.uuid4())
        data: dict[str, Any] = {
            "outcome": outcome,
            "force_escalate": force_escalate,
            "error": redact_secrets(error) if error is not None else None,
            "error_type": type(error).__name__ if error is not None else None,
            "cost": trace.total_cost,
            "cost_breakdown": dict(trace.costs),
            "flow": [
                {"step": s.step, "kind": s.kind, "name": s.name, "status": s.status}
                for s in trace.steps
            ],
        }
        msgs = list(messages)
        data.update(self._prompt_fields(msgs))

        event_type = CANCELLED_EVENT if outcome == "cancelled" else ERROR_EVENT
        self.log_async(
            event_type,
            data,
            request_id=request_id,
            duration_ms=int(trace.elapsed_ms),
            cost_usd=trace.total_cost,
            prompt_digest=prompt_hash(msgs),
        )
        return request_id

    @contextmanager
    def timed(self, event_type: str, **kwargs):
        """Context manager that auto-captures duration and status."""
        context: dict[str, Any] = {"status": "started"}
        start = time.monotonic()
        try:
            yield context
            context["status"] = "success"
        except Exception as e:
            context["status"] = "error"
            context["error"] = redact_secrets(e)
            raise
        finally:
            duration_ms = int((time.monotonic() - start) * 1000)
            self.log(event_type, context, duration_ms=duration_ms, **kwargs)
