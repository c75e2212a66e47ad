"""SQLite storage with WAL mode: pricing rows and the analytics event log."""

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable
from pathlib import Path

from llm_cascade.models import ModelPricing
from llm_cascade.pricing.fallback import DEFAULT_PRICING
from llm_cascade.pricing.source import PRICING_COLUMNS, row_to_pricing
from llm_cascade.storage.migrations import migrate
from llm_cascade.storage.models import EventLogEntry

logger = logging.getLogger(__name__)


class SQLiteStore:
    """Thread-safe SQLite store. Each thread/process should use its own instance."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(
            str(db_path),
            isolation_level=None,
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=3000")
        self.conn.execute("PRAGMA wal_autocheckpoint=1000")
        migrate(self.conn)

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def checkpoint(self, mode: str = "PASSIVE") -> None:
        """WAL checkpoint.

        Modes: PASSIVE (non-blocking), RESTART, TRUNCATE.
        """
        if mode not in ("PASSIVE", "RESTART", "TRUNCATE"):
            msg = f"Invalid mode: {mode}"
            raise ValueError(msg)
        self.conn.execute(f"PRAGMA wal_checkpoint({mode})")

    # -----------------------------------------------------------------------
    # Pricing
    # -----------------------------------------------------------------------
    def upsert_pricing(self, pricing: ModelPricing) -> None:
        """Insert or replace one pricing row. A missing variant is stored as ''."""
        self.conn.execute(
            f"""INSERT INTO model_pricing ({PRICING_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(provider, model_name, model_variant) DO UPDATE SET
                    input_cost_per_million_tokens = excluded.input_cost_per_million_tokens,
                    output_cost_per_million_tokens = excluded.output_cost_per_million_tokens,
                    cached_input_cost_per_million_tokens =
                        excluded.cached_input_cost_per_million_tokens,
                    context_window_tokens = excluded.context_window_tokens,
                    notes = excluded.notes,
                    updated_at = datetime('now')""",
            (
                pricing.provider,
                pricing.model_name,
                pricing.model_variant or "",
                pricing.input_cost_per_million_tokens,
                pricing.output_cost_per_million_tokens,
                pricing.cached_input_cost_per_million_tokens,
                pricing.context_window_tokens,
                pricing.notes,
            ),
        )

    def get_pricing(
        self, provider: str, model_name: str, model_variant: str | None = None
    ) -> ModelPricing | None:
        row = self.conn.execute(
            f"SELECT {PRICING_COLUMNS} FROM model_pricing "
            "WHERE provider = ? AND model_name = ? AND model_variant = ?",
            (provider, model_name, model_variant or ""),
        ).fetchone()
        if row is None:
            return None
        return row_to_pricing(dict(row))

    def list_pricing(self, provider: str | None = None) -> list[ModelPricing]:
        """List pricing rows ordered by provider then model."""
        query = f"SELECT {PRICING_COLUMNS} FROM model_pricing"
        params: list = []
        if provider is not None:
            query += " WHERE provider = ?"
            params.append(provider)
        query += " ORDER BY provider, model_name, model_variant"
        rows = self.conn.execute(query, params).fetchall()
        return [row_to_pricing(dict(r)) for r in rows]

    def seed_default_pricing(self, entries: Iterable[ModelPricing] | None = None) -> int:
        """Insert the default rows that are missing. Existing rows are left alone.

        Returns the number of rows inserted.
        """
        inserted = 0
        for p in DEFAULT_PRICING if entries is None else entries:
            cursor = self.conn.execute(
                f"""INSERT OR IGNORE INTO model_pricing ({PRICING_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    p.provider,
                    p.model_name,
                    p.model_variant or "",
                    p.input_cost_per_million_tokens,
                    p.output_cost_per_million_tokens,
                    p.cached_input_cost_per_million_tokens,
                    p.context_window_tokens,
                    p.notes,
                ),
            )
            inserted += cursor.rowcount
        return inserted

    # -----------------------------------------------------------------------
    # Event log
    # -----------------------------------------------------------------------
    def log_event(
        self,
        event_type: str,
        data: dict | None = None,
        *,
        request_id: str | None = None,
        duration_ms: int | None = None,
        tokens_in: int | None = None,
        tokens_out: int | None = None,
        cost_usd: float | None = None,
    ) -> None:
        """Log event to SQLite. Best-effort: swallows errors."""
        try:
            self.conn.execute(
                """INSERT INTO event_log
                   (id, request_id, event_type, data, duration_ms, tokens_in, tokens_out,
                    cost_usd)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    str(uuid.uuid4()),
                    request_id,
                    event_type,
                    json.dumps(data or {}),
                    duration_ms,
                    tokens_in,
                    tokens_out,
                    cost_usd,
                ),
            )
        except Exception:
            logger.warning("Failed to log event %s", event_type, exc_info=True)

    def query_events(
        self,
        event_type: str | None = None,
        request_id: str | None = None,
        *,
        limit: int | None = None,
    ) -> list[EventLogEntry]:
        """Query events by type and/or request, oldest first."""
        query = "SELECT * FROM event_log WHERE 1=1"
        params: list = []
        if event_type is not None:
            query += " AND event_type = ?"
            params.append(event_type)
        if request_id is not None:
            query += " AND request_id = ?"
            params.append(request_id)
        query += " ORDER BY created_at, rowid"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = self.conn.execute(query, params).fetchall()
        return [EventLogEntry(**dict(r)) for r in rows]
