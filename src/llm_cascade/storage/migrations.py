"""SQLite migration system using PRAGMA user_version."""

import sqlite3

# Each migration is (version, sql). Append-only, sequential.
MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS model_pricing (
            provider TEXT NOT NULL,
            model_name TEXT NOT NULL,
            model_variant TEXT NOT NULL DEFAULT '',
            input_cost_per_million_tokens REAL NOT NULL
                CHECK(input_cost_per_million_tokens >= 0),
            output_cost_per_million_tokens REAL NOT NULL
                CHECK(output_cost_per_million_tokens >= 0),
            cached_input_cost_per_million_tokens REAL,
            context_window_tokens INTEGER NOT NULL DEFAULT 8192,
            notes TEXT,
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            PRIMARY KEY (provider, model_name, model_variant)
        );

        CREATE TABLE IF NOT EXISTS event_log (
            id TEXT PRIMARY KEY,
            request_id TEXT,
            event_type TEXT NOT NULL,
            data TEXT NOT NULL DEFAULT '{}' CHECK(json_valid(data)),
            duration_ms INTEGER,
            tokens_in INTEGER,
            tokens_out INTEGER,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE INDEX IF NOT EXISTS idx_pricing_provider ON model_pricing(provider);
        CREATE INDEX IF NOT EXISTS idx_log_request ON event_log(request_id);
        CREATE INDEX IF NOT EXISTS idx_log_type ON event_log(event_type);
        CREATE INDEX IF NOT EXISTS idx_log_time ON event_log(created_at);
        """,
    ),
    (
        2,
        """
        ALTER TABLE event_log ADD COLUMN cost_usd REAL;
        """,
    ),
]

LATEST_VERSION = MIGRATIONS[-1][0]


def get_version(conn: sqlite3.Connection) -> int:
    """Get the current schema version."""
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def migrate(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations sequentially.

    Takes an EXCLUSIVE lock per step and re-checks the version, so two
    processes opening a fresh database apply each migration once.
    """
    current = get_version(conn)
    for version, sql in MIGRATIONS:
        if version <= current:
            continue
        conn.execute("BEGIN EXCLUSIVE")
        try:
            if version > get_version(conn):
                for stmt in _split_sql(sql):
                    conn.execute(stmt)
                conn.execute(f"PRAGMA user_version = {version}")
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        current = version


def _split_sql(sql: str) -> list[str]:
    """Split a multi-statement SQL string into individual statements."""
    return [s.strip() for s in sql.strip().split(";") if s.strip()]
