"""Target Resolver: merges registry clients and the clipboard fallback, and picks a default."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from pr_reviewer.errors import NotFoundError, ReviewerError
from pr_reviewer.models import (
    CLIPBOARD_TARGET_ID,
    TMUX_TARGET_PREFIX,
    ClipboardTarget,
    DeliveryTarget,
    McpClientTarget,
    TmuxSession,
    TmuxTarget,
)
from pr_reviewer.registry import ClientRegistry
from pr_reviewer.tmux import agent_rank

logger = logging.getLogger(__name__)


def clipboard_only() -> list[DeliveryTarget]:
    return [ClipboardTarget()]


def is_ambiguous(agent_sessions: list[TmuxSession]) -> bool:
    """True when more than one live agent could be the intended recipient."""
    candidates = [s for s in agent_sessions if s.detected_process]
    if not candidates:
        return False
    if len(candidates) > 1:
        return True
    return candidates[0].multiple_agents


def best_agent_session(agent_sessions: list[TmuxSession]) -> TmuxSession | None:
    candidates = [s for s in agent_sessions if s.detected_process]
    if not candidates:
        return None
    return min(candidates, key=lambda s: agent_rank(s.detected_process or ""))


def auto_select(
    targets: list[DeliveryTarget],
    agent_sessions: list[TmuxSession],
    current_id: str | None = None,
) -> DeliveryTarget | None:
    """Pick a default delivery target, or None when the user must choose.

    An existing selection that is still listed is kept. Any ambiguity among
    detected agents blocks auto-selection; otherwise the first remote client
    wins, then the clipboard.
    """
    if current_id:
        for target in targets:
            if target.id == current_id:
                return target

    if is_ambiguous(agent_sessions):
        best = best_agent_session(agent_sessions)
        logger.debug("Not auto-selecting: ambiguous agents (best=%s)", best.name if best else None)
        return None

    for target in targets:
        if isinstance(target, McpClientTarget):
            return target
    for target in targets:
        if isinstance(target, ClipboardTarget):
            return target
    return None


class TargetResolver:
    def __init__(self, registry: ClientRegistry) -> None:
        self.registry = registry

    def list_targets(self, now: datetime | None = None) -> list[DeliveryTarget]:
        """Connected MCP clients (most recently seen first) followed by the clipboard.

        A registry failure degrades to the clipboard alone.
        """
        targets: list[DeliveryTarget] = []
        try:
            clients = self.registry.list_connected(now)
        except (sqlite3.Error, ReviewerError):
            logger.exception("Failed to query MCP clients; offering clipboard only")
            clients = []
        for client in clients:
            targets.append(
                McpClientTarget(
                    id=client.id,
                    name=client.display_name,
                    working_dir=client.working_dir,
                    connected=True,
                    last_seen=client.last_seen_at,
                )
            )
        targets.append(ClipboardTarget())
        return targets

    def resolve(
        self, target_id: str, session_name: str | None = None, now: datetime | None = None,
    ) -> DeliveryTarget:
        """Turn an id chosen in the UI into a concrete target.

        ``tmux:<session>`` names the session inline; a bare ``tmux`` id takes
        it from *session_name*.
        """
        target_id = (target_id or "").strip()
        if target_id == CLIPBOARD_TARGET_ID:
            return ClipboardTarget()
        if target_id == TMUX_TARGET_PREFIX.rstrip(":") or target_id.startswith(TMUX_TARGET_PREFIX):
            session_name = target_id[len(TMUX_TARGET_PREFIX):] or session_name
            if not session_name:
                raise NotFoundError("Target", target_id)
            return TmuxTarget.for_session(session_name)
        for target in self.list_targets(now):
            if target.id == target_id:
                return target
        raise NotFoundError("Target", target_id)
