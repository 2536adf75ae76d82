"""Comment Store: durable CRUD and forward-only status transitions for review comments."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable

from pr_reviewer.db import Database, timestamp
from pr_reviewer.errors import NotFoundError, ValidationError
from pr_reviewer.models import (
    Comment,
    CommentSide,
    CommentStatus,
    CreateCommentInput,
    ReviewSession,
    _uuid,
    normalize_repo_path,
)
from pr_reviewer.state import REVIEW_STATUSES, can_edit_content, sources_for, transition

logger = logging.getLogger(__name__)

# Extra timestamp columns stamped when a comment enters a status.
_STAMPED_COLUMNS: dict[CommentStatus, str] = {
    CommentStatus.SENT: "sent_at",
    CommentStatus.RESOLVED: "resolved_at",
}


def parse_status(value: CommentStatus | str) -> CommentStatus:
    try:
        return CommentStatus(value)
    except ValueError as e:
        raise ValidationError(f"Unknown comment status: {value}") from e


class CommentStore:
    """Comments and the review sessions they belong to."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Review sessions
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> ReviewSession:
        row = self._db.query_one("SELECT * FROM review_sessions WHERE id = ?", (session_id,))
        if row is None:
            raise NotFoundError("Session", session_id)
        return ReviewSession.model_validate(row)

    def get_or_create_session(
        self, repo_id: str, branch: str, repo_path: str | None = None,
    ) -> ReviewSession:
        """Return the session for (repo_id, branch), creating it on first visit."""
        if not repo_id or not branch:
            raise ValidationError("repo_id and branch are required")
        normalized = normalize_repo_path(repo_path) if repo_path else None
        row = self._db.query_one(
            "SELECT * FROM review_sessions WHERE repo_id = ? AND branch = ?",
            (repo_id, branch),
        )
        if row is not None:
            if normalized and row["repo_path"] != normalized:
                self._db.execute(
                    "UPDATE review_sessions SET repo_path = ? WHERE id = ?",
                    (normalized, row["id"]),
                )
                row["repo_path"] = normalized
            return ReviewSession.model_validate(row)

        session = ReviewSession(repo_id=repo_id, branch=branch, repo_path=normalized)
        self._db.execute(
            """
            INSERT INTO review_sessions (id, repo_id, branch, base_branch_override, repo_path, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (session.id, repo_id, branch, None, normalized, timestamp(session.created_at)),
        )
        logger.info("Review session created: %s (%s @ %s)", session.id, repo_id, branch)
        return session

    def set_base_branch_override(self, session_id: str, base_branch: str | None) -> ReviewSession:
        self.get_session(session_id)
        self._db.execute(
            "UPDATE review_sessions SET base_branch_override = ? WHERE id = ?",
            (base_branch or None, session_id),
        )
        return self.get_session(session_id)

    def latest_session_for_path(self, repo_path: str) -> ReviewSession | None:
        row = self._db.query_one(
            "SELECT * FROM review_sessions WHERE repo_path = ? ORDER BY created_at DESC LIMIT 1",
            (normalize_repo_path(repo_path),),
        )
        return ReviewSession.model_validate(row) if row else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, comment_id: str) -> Comment:
        row = self._db.query_one("SELECT * FROM comments WHERE id = ?", (comment_id,))
        if row is None:
            raise NotFoundError("Comment", comment_id)
        return Comment.model_validate(row)

    def get_many(self, comment_ids: Iterable[str]) -> list[Comment]:
        """Return the comments that exist, in request order; unknown ids are dropped."""
        found: list[Comment] = []
        for comment_id in dict.fromkeys(comment_ids):
            try:
                found.append(self.get(comment_id))
            except NotFoundError:
                logger.debug("Skipping unknown comment id %s", comment_id)
        return found

    def list_for_session(
        self, session_id: str, status: CommentStatus | None = None,
    ) -> list[Comment]:
        if status is None:
            rows = self._db.query(
                "SELECT * FROM comments WHERE session_id = ? ORDER BY file_path, line_start",
                (session_id,),
            )
        else:
            rows = self._db.query(
                "SELECT * FROM comments WHERE session_id = ? AND status = ? ORDER BY file_path, line_start",
                (session_id, parse_status(status).value),
            )
        return [Comment.model_validate(r) for r in rows]

    def counts_by_status(self, session_id: str) -> dict[str, int]:
        """Zero-filled counts; every review status key is always present."""
        counts = {s.value: 0 for s in REVIEW_STATUSES}
        counts[CommentStatus.RESOLVED.value] = 0
        rows = self._db.query(
            "SELECT status, COUNT(*) AS n FROM comments WHERE session_id = ? GROUP BY status",
            (session_id,),
        )
        for row in rows:
            counts[row["status"]] = row["n"]
        return counts

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_input(data: CreateCommentInput) -> None:
        if not data.content.strip():
            raise ValidationError("Comment content cannot be empty")
        if not data.file_path.strip():
            raise ValidationError("file_path is required")
        if data.line_end is not None and data.line_start is None:
            raise ValidationError("line_end requires line_start")
        if data.line_start is not None and data.line_start < 0:
            raise ValidationError("line_start must be non-negative")
        if (
            data.line_start is not None
            and data.line_end is not None
            and data.line_end < data.line_start
        ):
            raise ValidationError(
                f"line_end ({data.line_end}) must be >= line_start ({data.line_start})"
            )

    def create(self, data: CreateCommentInput | dict) -> Comment:
        """Insert a new queued comment. Raises ValidationError on bad input."""
        if isinstance(data, dict):
            try:
                data = CreateCommentInput.model_validate(data)
            except ValueError as e:
                raise ValidationError(str(e)) from e
        self._validate_input(data)
        self.get_session(data.session_id)

        comment_id = _uuid()
        side = CommentSide(data.side).value if data.side else None
        self._db.execute(
            """
            INSERT INTO comments (id, session_id, file_path, line_start, line_end, side, content, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                comment_id,
                data.session_id,
                data.file_path,
                data.line_start,
                data.line_end,
                side,
                data.content,
                CommentStatus.QUEUED.value,
                timestamp(),
            ),
        )
        logger.info("Comment created: %s (session %s)", comment_id, data.session_id)
        return self.get(comment_id)

    def update(
        self,
        comment_id: str,
        content: str | None = None,
        status: CommentStatus | str | None = None,
    ) -> Comment:
        """Edit content and/or move status forward. No-op when neither is given."""
        existing = self.get(comment_id)
        if content is None and status is None:
            return existing

        assignments: list[str] = []
        values: list = []
        # Statuses the row may still hold when the write lands.
        allowed: set[CommentStatus] = set(CommentStatus)

        if content is not None:
            if not content.strip():
                raise ValidationError("Comment content cannot be empty")
            if not can_edit_content(existing):
                raise ValidationError(f"Comment {comment_id} was already sent and can no longer be edited")
            assignments.append("content = ?")
            values.append(content)
            allowed.discard(CommentStatus.SENT)

        if status is not None:
            target = parse_status(status)
            if target != existing.status:
                transition(existing.model_copy(), target)
                allowed &= sources_for(target) | {target}
                assignments.append("status = ?")
                values.append(target.value)
                column = _STAMPED_COLUMNS.get(target)
                if column:
                    assignments.append(f"{column} = COALESCE({column}, ?)")
                    values.append(timestamp())
                if target == CommentStatus.RESOLVED:
                    assignments.append("resolved_by = COALESCE(resolved_by, ?)")
                    values.append("reviewer")

        if not assignments:
            return existing

        guard = sorted(s.value for s in allowed)
        placeholders = ", ".join("?" for _ in guard)
        changed = self._db.execute(
            f"UPDATE comments SET {', '.join(assignments)} WHERE id = ? AND status IN ({placeholders})",
            [*values, comment_id, *guard],
        )
        if not changed:
            # Another write moved the row after it was read.
            current = self.get(comment_id)
            if status is not None:
                transition(current.model_copy(), parse_status(status))
            raise ValidationError(f"Comment {comment_id} was already sent and can no longer be edited")
        logger.debug("Comment updated: %s", comment_id)
        return self.get(comment_id)

    def delete(self, comment_id: str) -> bool:
        """Delete a comment. Idempotent; sent comments are kept."""
        row = self._db.query_one("SELECT status FROM comments WHERE id = ?", (comment_id,))
        if row is None:
            return False
        if row["status"] == CommentStatus.SENT.value:
            raise ValidationError(f"Comment {comment_id} was already sent and cannot be deleted")
        deleted = self._db.execute(
            "DELETE FROM comments WHERE id = ? AND status != ?",
            (comment_id, CommentStatus.SENT.value),
        ) > 0
        logger.debug("Comment deleted: %s (removed=%s)", comment_id, deleted)
        return deleted

    def bulk_set_status(
        self,
        comment_ids: Iterable[str],
        status: CommentStatus | str,
        *,
        resolved_by: str | None = None,
    ) -> int:
        """Move each comment to *status* independently and return how many matched.

        Unknown ids and comments that cannot move forward to *status* are
        skipped. Comments already in *status* count as matched and keep their
        original timestamps. Nothing is rolled back if a later row fails.
        """
        target = parse_status(status)
        allowed = sorted(s.value for s in sources_for(target) | {target})
        placeholders = ", ".join("?" for _ in allowed)

        assignments = ["status = ?"]
        stamp_values: list = [target.value]
        column = _STAMPED_COLUMNS.get(target)
        if column:
            assignments.append(f"{column} = COALESCE({column}, ?)")
            stamp_values.append(timestamp())
        if target == CommentStatus.RESOLVED:
            assignments.append("resolved_by = COALESCE(resolved_by, ?)")
            stamp_values.append(resolved_by or "reviewer")

        sql = f"UPDATE comments SET {', '.join(assignments)} WHERE id = ? AND status IN ({placeholders})"
        count = 0
        for comment_id in dict.fromkeys(comment_ids):
            try:
                count += self._db.execute(sql, [*stamp_values, comment_id, *allowed])
            except sqlite3.Error:
                logger.exception("Failed to set status %s on comment %s", target.value, comment_id)
        logger.info("Set status %s on %d comment(s)", target.value, count)
        return count

    def stage(self, comment_ids: Iterable[str]) -> int:
        return self.bulk_set_status(comment_ids, CommentStatus.STAGED)

    def cancel(self, comment_ids: Iterable[str]) -> int:
        return self.bulk_set_status(comment_ids, CommentStatus.CANCELLED)

    def mark_sent(self, comment_ids: Iterable[str]) -> int:
        """Bulk move to sent, stamping sent_at."""
        return self.bulk_set_status(comment_ids, CommentStatus.SENT)

    def resolve(self, comment_id: str, resolved_by: str = "agent") -> Comment:
        """Mark a comment resolved on behalf of an external agent."""
        existing = self.get(comment_id)
        if existing.status == CommentStatus.RESOLVED:
            return existing
        transition(existing.model_copy(), CommentStatus.RESOLVED)
        self.bulk_set_status([comment_id], CommentStatus.RESOLVED, resolved_by=resolved_by)
        return self.get(comment_id)

    # ------------------------------------------------------------------
    # Pull delivery (MCP clients)
    # ------------------------------------------------------------------

    def pending_for_client(self, session_id: str, client_id: str) -> list[Comment]:
        """Sent comments in the session that *client_id* has not pulled yet."""
        rows = self._db.query(
            """
            SELECT c.* FROM comments c
            WHERE c.session_id = ?
              AND c.status = ?
              AND c.id NOT IN (SELECT comment_id FROM comment_deliveries WHERE client_id = ?)
            ORDER BY c.file_path, c.line_start
            """,
            (session_id, CommentStatus.SENT.value, client_id),
        )
        return [Comment.model_validate(r) for r in rows]

    def record_delivery(self, comment_id: str, client_id: str | None) -> None:
        now = timestamp()
        self._db.execute(
            "INSERT INTO comment_deliveries (id, comment_id, client_id, delivered_at) VALUES (?, ?, ?, ?)",
            (_uuid(), comment_id, client_id, now),
        )
        self._db.execute(
            "UPDATE comments SET delivered_at = COALESCE(delivered_at, ?) WHERE id = ?",
            (now, comment_id),
        )

    def pending_summary(self) -> list[dict]:
        """Per-session count of sent comments still waiting to be resolved."""
        return self._db.query(
            """
            SELECT rs.id AS session_id, rs.repo_id, rs.branch, rs.repo_path,
                   COUNT(c.id) AS pending_count, MIN(c.sent_at) AS waiting_since
            FROM comments c
            JOIN review_sessions rs ON c.session_id = rs.id
            WHERE c.status = ?
            GROUP BY rs.id
            ORDER BY waiting_since
            """,
            (CommentStatus.SENT.value,),
        )
