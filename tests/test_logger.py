"""Tests for RequestLogger: JSONL + SQLite dual-write and cascade records."""

import json
import time

import pytest

from llm_cascade.cascade.cache import prompt_hash
from llm_cascade.cascade.trace import CHEAP_GENERATION, CascadeTrace
from llm_cascade.logging.logger import (
    CANCELLED_EVENT,
    ERROR_EVENT,
    REQUEST_EVENT,
    RequestLogger,
)
from llm_cascade.models import FastPathStep, GenerateStep, Message, Role, Tier

MESSAGES = [
    Message(role=Role.SYSTEM, content="Be terse"),
    Message(role=Role.USER, content="What is the boiling point of water?"),
]


def _entries(tmp_config) -> list[dict]:
    log_files = list(tmp_config.log_dir.glob("llm-cascade-*.jsonl"))
    assert len(log_files) == 1
    return [json.loads(line) for line in log_files[0].read_text().splitlines()]


def _result(cost: float = 0.0002):
    trace = CascadeTrace()
    trace.record(
        FastPathStep(
            step=1,
            name="Fast Path",
            status="complete",
            cost=cost,
            model="llama-3.3-70b-versatile",
            score=95.0,
            prompt_tokens=20,
            completion_tokens=5,
        ),
        CHEAP_GENERATION,
    )
    return trace.freeze(
        response="100 C",
        model="llama-3.3-70b-versatile",
        tier=Tier.CHEAP,
        quality_score=95.0,
        baseline_cost=0.001,
        prompt_tokens=20,
        completion_tokens=5,
        tokens_processed=25,
        system_context_applied=True,
        compression_applied=False,
    )


class TestRequestLogger:
    def test_log_writes_valid_jsonl(self, request_logger, tmp_config):
        """Log entry produces valid JSONL in the daily log file."""
        request_logger.log("test.event", {"key": "value"})
        entries = _entries(tmp_config)
        assert len(entries) == 1
        assert entries[0]["event_type"] == "test.event"
        assert entries[0]["data"]["key"] == "value"

    def test_log_writes_to_sqlite(self, request_logger, store):
        """Log entry also writes to the SQLite event_log."""
        request_logger.log("test.sqlite", {"msg": "hello"}, request_id="req-1", cost_usd=0.5)
        events = store.query_events(event_type="test.sqlite")
        assert len(events) == 1
        assert events[0].request_id == "req-1"
        assert events[0].cost_usd == 0.5

    def test_secrets_redacted(self, request_logger, tmp_config, store):
        """Credentials never reach either sink."""
        request_logger.log(
            "test.secret",
            {"authorization": "Bearer abc", "note": "key sk-abcdefghijklmnopqrstuvwx leaked"},
        )
        raw = next(tmp_config.log_dir.glob("*.jsonl")).read_text()
        assert "sk-abcdefghijklmnopqrstuvwx" not in raw
        assert "Bearer abc" not in raw
        stored = store.query_events("test.secret")[0].data
        assert "sk-abcdefghijklmnopqrstuvwx" not in stored

    def test_timed_captures_duration(self, request_logger, tmp_config):
        """timed() context manager records duration_ms."""
        with request_logger.timed("test.timed"):
            time.sleep(0.05)  # 50ms
        entry = _entries(tmp_config)[-1]
        assert entry["duration_ms"] >= 40  # Allow some tolerance
        assert entry["data"]["status"] == "success"

    def test_timed_captures_error_status(self, request_logger, tmp_config):
        """timed() records error status on exception."""
        with pytest.raises(ValueError, match="test error"), request_logger.timed("test.error"):
            raise ValueError("test error")  # noqa: EM101
        entry = _entries(tmp_config)[-1]
        assert entry["data"]["status"] == "error"
        assert "test error" in entry["data"]["error"]

    def test_file_only_mode(self, tmp_config):
        """Logger works without a store (file-only mode)."""
        file_logger = RequestLogger(tmp_config.log_dir)
        file_logger.log("test.fileonly", {"standalone": True})
        assert _entries(tmp_config)[0]["event_type"] == "test.fileonly"

    def test_log_async_without_loop_writes_inline(self, request_logger, tmp_config):
        """Outside an event loop the write is immediate."""
        request_logger.log_async("test.inline", {"n": 1})
        assert _entries(tmp_config)[0]["event_type"] == "test.inline"

    async def test_log_async_drained(self, request_logger, store):
        """Inside a loop writes run on a worker thread until drained."""
        for i in range(3):
            request_logger.log_async("test.async", {"i": i})
        await request_logger.drain()
        assert len(store.query_events("test.async")) == 3

    def test_write_failure_does_not_raise(self, tmp_path, capsys):
        """A broken log directory only prints a warning on the async path."""
        broken = RequestLogger(tmp_path / "logs")
        (tmp_path / "logs").rmdir()
        (tmp_path / "logs").write_text("not a directory")
        broken.log_async("test.broken", {})
        assert "WARNING: Failed to write event test.broken" in capsys.readouterr().err


class TestCascadeRecords:
    def test_log_request_record(self, request_logger, tmp_config, store):
        """A completed cascade is logged with a prompt hash and no prompt text."""
        result = _result()
        request_id = request_logger.log_request(result, MESSAGES, request_id="req-42")
        assert request_id == "req-42"

        entry = _entries(tmp_config)[0]
        assert entry["event_type"] == REQUEST_EVENT
        assert entry["cost_usd"] == pytest.approx(result.cost)
        assert entry["tokens_in"] == 20
        assert entry["tokens_out"] == 5
        data = entry["data"]
        assert data["tier"] == "cheap"
        assert data["savings"] == pytest.approx(0.0008)
        assert data["system_context_applied"] is True
        assert data["message_count"] == 2
        assert data["prompt_hash"] == prompt_hash(MESSAGES)
        assert data["flow"] == [
            {"step": 1, "kind": "fast_path", "name": "Fast Path", "status": "complete"}
        ]
        assert "prompt" not in data
        assert "boiling" not in json.dumps(entry)

        events = store.query_events(REQUEST_EVENT, request_id="req-42")
        assert events[0].payload["prompt_hash"] == prompt_hash(MESSAGES)

    def test_retain_prompts(self, tmp_config, store):
        """Prompt text is kept only when retention is switched on."""
        keeping = RequestLogger(tmp_config.log_dir, store, retain_prompts=True)
        keeping.log_request(_result(), MESSAGES)
        data = _entries(tmp_config)[0]["data"]
        assert "boiling point of water" in data["prompt"]

    def test_request_id_generated(self, request_logger):
        assert request_logger.log_request(_result(), MESSAGES)

    def test_log_failure_error(self, request_logger, store):
        """A failed cascade is logged with the cost it had already incurred."""
        trace = CascadeTrace()
        trace.record(
            GenerateStep(
                step=1, name="Cheap Tier", status="complete", tier=Tier.CHEAP, cost=0.01
            ),
            CHEAP_GENERATION,
        )
        request_logger.log_failure(
            trace,
            MESSAGES,
            outcome="error",
            error=RuntimeError("upstream said sk-abcdefghijklmnopqrstuvwx"),
            request_id="req-err",
        )
        event = store.query_events(ERROR_EVENT)[0]
        assert event.request_id == "req-err"
        assert event.cost_usd == pytest.approx(0.01)
        assert event.payload["error_type"] == "RuntimeError"
        assert "sk-abcdefghijklmnopqrstuvwx" not in event.payload["error"]
        assert event.payload["cost_breakdown"]["cheap_generation"] == pytest.approx(0.01)

    def test_log_failure_cancelled(self, request_logger, store):
        """Cancellation is its own event type."""
        request_logger.log_failure(CascadeTrace(), MESSAGES, outcome="cancelled")
        events = store.query_events(CANCELLED_EVENT)
        assert len(events) == 1
        assert events[0].payload["error"] is None
