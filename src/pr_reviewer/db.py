"""SQLite persistence: connection, schema, query primitives and the app_config store.

Schema:
  review_sessions    one row per (repo_id, branch)
  comments           review comments, keyed by id
  app_config         key/value settings (persisted AI provider/model)
  mcp_clients        registry of connected automation clients
  comment_deliveries which client pulled which sent comment
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS review_sessions (
    id                    TEXT PRIMARY KEY,
    repo_id               TEXT NOT NULL,
    branch                TEXT NOT NULL,
    base_branch_override  TEXT,
    repo_path             TEXT,
    created_at            TEXT NOT NULL,
    UNIQUE (repo_id, branch)
);

CREATE TABLE IF NOT EXISTS comments (
    id            TEXT PRIMARY KEY,
    session_id    TEXT NOT NULL REFERENCES review_sessions(id) ON DELETE CASCADE,
    file_path     TEXT NOT NULL,
    line_start    INTEGER,
    line_end      INTEGER,
    side          TEXT CHECK (side IN ('old', 'new', 'both')),
    content       TEXT NOT NULL,
    status        TEXT NOT NULL DEFAULT 'queued'
                  CHECK (status IN ('queued', 'staged', 'sent', 'cancelled', 'resolved')),
    created_at    TEXT NOT NULL,
    sent_at       TEXT,
    delivered_at  TEXT,
    resolved_at   TEXT,
    resolved_by   TEXT
);

CREATE TABLE IF NOT EXISTS app_config (
    key    TEXT PRIMARY KEY,
    value  TEXT
);

CREATE TABLE IF NOT EXISTS mcp_clients (
    id              TEXT PRIMARY KEY,
    client_name     TEXT,
    client_version  TEXT,
    working_dir     TEXT,
    connected_at    TEXT NOT NULL,
    last_seen_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS comment_deliveries (
    id            TEXT PRIMARY KEY,
    comment_id    TEXT NOT NULL REFERENCES comments(id) ON DELETE CASCADE,
    client_id     TEXT REFERENCES mcp_clients(id) ON DELETE CASCADE,
    delivered_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_review_sessions_path ON review_sessions (repo_path);
CREATE INDEX IF NOT EXISTS idx_comments_session ON comments (session_id);
CREATE INDEX IF NOT EXISTS idx_comments_status ON comments (status);
CREATE INDEX IF NOT EXISTS idx_mcp_clients_seen ON mcp_clients (last_seen_at);
CREATE INDEX IF NOT EXISTS idx_deliveries_comment ON comment_deliveries (comment_id);
CREATE INDEX IF NOT EXISTS idx_deliveries_client ON comment_deliveries (client_id);
"""


def timestamp(value: datetime | None = None) -> str:
    """Fixed-width UTC ISO string so stored timestamps compare lexically."""
    value = value or datetime.now(timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class Database:
    """Thin wrapper around one SQLite connection.

    ``":memory:"`` is accepted for tests. Every write commits immediately so a
    crash never leaves a half-applied row.
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.path = str(db_path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()
        logger.debug("Database ready at %s", self.path)

    def query(self, sql: str, params: tuple | list = ()) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(sql, tuple(params)).fetchall()
        return [dict(r) for r in rows]

    def query_one(self, sql: str, params: tuple | list = ()) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(sql, tuple(params)).fetchone()
        return dict(row) if row is not None else None

    def execute(self, sql: str, params: tuple | list = ()) -> int:
        """Run a write statement and return the number of affected rows."""
        with self._lock:
            cursor = self._conn.execute(sql, tuple(params))
            self._conn.commit()
            return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class AppConfigStore:
    """Key/value settings persisted in the app_config table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, key: str) -> str | None:
        row = self._db.query_one("SELECT value FROM app_config WHERE key = ?", (key,))
        if row is None:
            return None
        return row["value"]

    def set(self, key: str, value: str) -> None:
        self._db.execute(
            "INSERT OR REPLACE INTO app_config (key, value) VALUES (?, ?)",
            (key, value),
        )

    def delete(self, key: str) -> None:
        self._db.execute("DELETE FROM app_config WHERE key = ?", (key,))
