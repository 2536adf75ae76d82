"""State machine for review comments."""

from __future__ import annotations

from pr_reviewer.errors import ValidationError
from pr_reviewer.models import Comment, CommentStatus

# Valid transitions: from_status -> set of allowed to_statuses.
# Forward only; resolved is reachable from every live state.
TRANSITIONS: dict[CommentStatus, set[CommentStatus]] = {
    CommentStatus.QUEUED: {
        CommentStatus.STAGED,
        CommentStatus.SENT,
        CommentStatus.CANCELLED,
        CommentStatus.RESOLVED,
    },
    CommentStatus.STAGED: {CommentStatus.SENT, CommentStatus.CANCELLED, CommentStatus.RESOLVED},
    CommentStatus.SENT: {CommentStatus.RESOLVED},
    CommentStatus.CANCELLED: set(),
    CommentStatus.RESOLVED: set(),
}

# Always reported by counts_by_status; resolved is appended separately.
REVIEW_STATUSES: tuple[CommentStatus, ...] = (
    CommentStatus.QUEUED,
    CommentStatus.STAGED,
    CommentStatus.SENT,
    CommentStatus.CANCELLED,
)


class InvalidTransitionError(ValidationError):
    def __init__(self, from_status: CommentStatus, to_status: CommentStatus) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition: {from_status.value} -> {to_status.value}"
        )


def sources_for(to: CommentStatus) -> set[CommentStatus]:
    """Return every status that may move to *to*."""
    return {src for src, allowed in TRANSITIONS.items() if to in allowed}


def transition(comment: Comment, to: CommentStatus) -> Comment:
    """Move comment to a new status. Raises InvalidTransitionError if not allowed."""
    if comment.status == to:
        return comment
    allowed = TRANSITIONS.get(comment.status, set())
    if to not in allowed:
        raise InvalidTransitionError(comment.status, to)
    comment.status = to
    return comment


def can_transition(comment: Comment, to: CommentStatus) -> bool:
    """Check if a transition is valid without performing it."""
    if comment.status == to:
        return True
    return to in TRANSITIONS.get(comment.status, set())


def can_edit_content(comment: Comment) -> bool:
    return comment.status != CommentStatus.SENT
