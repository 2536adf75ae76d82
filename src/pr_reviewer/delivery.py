"""Delivery Orchestrator: one payload format, three transports."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pr_reviewer.comment_store import CommentStore
from pr_reviewer.errors import ValidationError
from pr_reviewer.models import (
    ClipboardTarget,
    Comment,
    CommentStatus,
    DeliveryResult,
    DeliveryTarget,
    McpClientTarget,
    TmuxTarget,
)
from pr_reviewer.state import can_transition
from pr_reviewer.tmux import TmuxClient

logger = logging.getLogger(__name__)

COMMENT_SEPARATOR = "\n\n---\n\n"


def format_location(file_path: str, line_start: int | None, line_end: int | None = None) -> str:
    """``path``, ``path:10`` or ``path:10-14``."""
    if line_start is None:
        return file_path
    if line_end is not None and line_end != line_start:
        return f"{file_path}:{line_start}-{line_end}"
    return f"{file_path}:{line_start}"


def format_comment(
    file_path: str, line_start: int | None, content: str, line_end: int | None = None,
) -> str:
    return f"[{format_location(file_path, line_start, line_end)}]\n{content}"


def format_comments(comments: Sequence[Comment]) -> str:
    return COMMENT_SEPARATOR.join(
        format_comment(c.file_path, c.line_start, c.content, c.line_end) for c in comments
    )


def is_deliverable(comment: Comment) -> bool:
    """Only queued and staged comments may be sent."""
    return comment.status != CommentStatus.SENT and can_transition(comment, CommentStatus.SENT)


class DeliveryOrchestrator:
    def __init__(self, store: CommentStore, tmux: TmuxClient) -> None:
        self.store = store
        self.tmux = tmux

    async def deliver(self, target: DeliveryTarget, comments: Sequence[Comment]) -> DeliveryResult:
        """Send *comments* to *target*.

        Clipboard delivery only returns text; the caller marks the comments
        sent once the UI has copied it. MCP delivery is pull based: comments
        are marked sent and picked up on the client's next poll. tmux delivery
        pastes into the session, then marks them sent.

        Comments that are not queued or staged are left out of the payload;
        ValidationError when none remain.
        """
        if not comments:
            raise ValidationError("No comments to send")
        deliverable = [c for c in comments if is_deliverable(c)]
        if not deliverable:
            raise ValidationError("Only queued or staged comments can be sent")
        if len(deliverable) < len(comments):
            logger.info("Skipping %d comment(s) that are not queued or staged", len(comments) - len(deliverable))
        formatted = format_comments(deliverable)
        ids = [c.id for c in deliverable]

        if isinstance(target, ClipboardTarget):
            return DeliveryResult(
                target_id=target.id, target_type=target.type, formatted=formatted, comment_count=len(ids),
            )

        if isinstance(target, McpClientTarget):
            sent = self.store.mark_sent(ids)
            logger.info("Queued %d comment(s) for MCP client %s", sent, target.name)
            return DeliveryResult(
                target_id=target.id, target_type=target.type, formatted=formatted, sent_count=sent, comment_count=len(ids),
            )

        if isinstance(target, TmuxTarget):
            await self.tmux.send_to_session(target.session_name, formatted)
            sent = self.store.mark_sent(ids)
            logger.info("Pasted %d comment(s) into tmux session %s", sent, target.session_name)
            return DeliveryResult(
                target_id=target.id, target_type=target.type, formatted=formatted, sent_count=sent, comment_count=len(ids),
            )

        raise ValidationError(f"Unsupported target type: {getattr(target, 'type', target)!r}")
