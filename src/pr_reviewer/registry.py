"""Remote Client Registry: MCP clients that heartbeat into the shared database."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from pr_reviewer.db import Database, timestamp
from pr_reviewer.errors import NotFoundError
from pr_reviewer.models import ClientSummary, McpClient, McpStatus, _uuid

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS = timedelta(minutes=5)


class ClientRegistry:
    """Reads and writes the mcp_clients table.

    A client is connected while ``now - last_seen_at < freshness``. Stale rows
    are filtered out of listings but never deleted here.
    """

    def __init__(self, db: Database, freshness: timedelta = DEFAULT_FRESHNESS) -> None:
        self._db = db
        self.freshness = freshness

    def register(
        self,
        client_name: str | None = None,
        client_version: str | None = None,
        working_dir: str | None = None,
    ) -> str:
        client_id = _uuid()
        now = timestamp()
        self._db.execute(
            """
            INSERT INTO mcp_clients (id, client_name, client_version, working_dir, connected_at, last_seen_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (client_id, client_name, client_version, working_dir, now, now),
        )
        logger.info("MCP client connected: %s (%s, cwd=%s)", client_id, client_name or "unnamed", working_dir)
        return client_id

    def heartbeat(self, client_id: str, at: datetime | None = None) -> None:
        updated = self._db.execute(
            "UPDATE mcp_clients SET last_seen_at = ? WHERE id = ?",
            (timestamp(at), client_id),
        )
        if not updated:
            raise NotFoundError("MCP client", client_id)

    def get(self, client_id: str) -> McpClient:
        row = self._db.query_one("SELECT * FROM mcp_clients WHERE id = ?", (client_id,))
        if row is None:
            raise NotFoundError("MCP client", client_id)
        return McpClient.model_validate(row)

    def list_connected(self, now: datetime | None = None) -> list[McpClient]:
        """Clients seen within the freshness window, most recently seen first."""
        now = now or datetime.now(timezone.utc)
        cutoff = timestamp(now - self.freshness)
        rows = self._db.query(
            "SELECT * FROM mcp_clients WHERE last_seen_at > ? ORDER BY last_seen_at DESC",
            (cutoff,),
        )
        return [McpClient.model_validate(r) for r in rows]

    def get_status(self, now: datetime | None = None) -> McpStatus:
        clients = self.list_connected(now)
        return McpStatus(
            clients=[ClientSummary(name=c.display_name, last_seen=c.last_seen_at) for c in clients],
        )
