"""FastMCP tool definitions: the pull side of comment delivery."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from pr_reviewer import __version__
from pr_reviewer.delivery import format_location
from pr_reviewer.errors import NotFoundError, ValidationError
from pr_reviewer.models import Comment, CommentStatus, normalize_repo_path

if TYPE_CHECKING:
    from pr_reviewer.runtime import Runtime

logger = logging.getLogger(__name__)

mcp = FastMCP("pr-reviewer", instructions="Pulls local PR review comments into a coding agent")

# Will be set by server.py / the stdio command at startup
_runtime: Runtime | None = None
_working_dir: str | None = None
# Registry client id per MCP session; the None key is the process itself.
_clients: dict[str | None, str] = {}


@dataclass(frozen=True)
class McpSession:
    """Identity of the MCP session a tool call arrived on."""

    key: str
    client_name: str | None = None
    client_version: str | None = None


def set_runtime(runtime: Runtime | None, working_dir: str | None = None) -> None:
    global _runtime, _working_dir
    _runtime = runtime
    _working_dir = working_dir
    _clients.clear()


def _get_runtime() -> Runtime:
    if _runtime is None:
        raise RuntimeError("Runtime not initialized")
    return _runtime


def _default_repo_path() -> str:
    return normalize_repo_path(_working_dir or os.getcwd())


def session_from_context(ctx: Context | None) -> McpSession | None:
    """Read the session id and client info FastMCP attaches to a request."""
    if ctx is None:
        return None
    try:
        key = ctx.session_id
        params = getattr(ctx.session, "client_params", None)
    except RuntimeError:
        # Called outside an MCP request.
        return None
    if not key:
        return None
    info = getattr(params, "clientInfo", None)
    return McpSession(
        key=str(key),
        client_name=getattr(info, "name", None),
        client_version=getattr(info, "version", None),
    )


def touch_client(session: McpSession | None = None, repo_path: str | None = None) -> str:
    """Register the calling MCP session on first use, heartbeat after.

    Each session gets its own registry row, so pull bookkeeping is tracked
    per connected agent. Without a session the process registers once.
    """
    runtime = _get_runtime()
    key = session.key if session else None
    client_id = _clients.get(key)
    if client_id is not None:
        try:
            runtime.registry.heartbeat(client_id)
            return client_id
        except NotFoundError:
            logger.info("MCP client %s vanished from the registry; registering again", client_id)

    if session is None:
        working_dir: str | None = _default_repo_path()
    elif repo_path:
        working_dir = normalize_repo_path(repo_path)
    else:
        # Over HTTP the server's own cwd says nothing about the agent.
        working_dir = normalize_repo_path(_working_dir) if _working_dir else None

    client_id = runtime.registry.register(
        client_name=runtime.config.client_name or (session.client_name if session else None),
        client_version=(session.client_version if session else None) or __version__,
        working_dir=working_dir,
    )
    _clients[key] = client_id
    return client_id


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _location(comment: Comment) -> str:
    return format_location(comment.file_path, comment.line_start, comment.line_end)


def check_comments(repo_path: str | None = None, mcp_session: McpSession | None = None) -> str:
    """Deliver sent comments this client has not seen yet and mark them delivered."""
    runtime = _get_runtime()
    client_id = touch_client(mcp_session, repo_path)
    path = normalize_repo_path(repo_path) if repo_path else _default_repo_path()

    session = runtime.store.latest_session_for_path(path)
    if session is None:
        return f"No review session found for {path}. Open the PR Reviewer UI for this repository first."

    comments = runtime.store.pending_for_client(session.id, client_id)
    if not comments:
        return "No pending PR review comments for this repository."

    for comment in comments:
        runtime.store.record_delivery(comment.id, client_id)
    logger.info("Delivered %d comment(s) to MCP client %s", len(comments), client_id)

    lines = [f"Found {_plural(len(comments), 'PR review comment')} for {session.repo_id} ({session.branch}):", ""]
    for index, comment in enumerate(comments, start=1):
        lines.append(f"{index}. [{_location(comment)}]")
        lines.append(comment.content)
        lines.append(f"   (id: {comment.id})")
        lines.append("")
    return "\n".join(lines)


def resolve_comment(comment_id: str, mcp_session: McpSession | None = None) -> str:
    runtime = _get_runtime()
    touch_client(mcp_session)
    try:
        existing = runtime.store.get(comment_id)
        if existing.status == CommentStatus.RESOLVED:
            return f"Comment {comment_id} is already resolved (resolved at {existing.resolved_at})"
        runtime.store.resolve(comment_id, resolved_by="agent")
    except NotFoundError as e:
        return str(e)
    except ValidationError as e:
        return f"Cannot resolve comment {comment_id}: {e}"
    return f"Comment {comment_id} marked as resolved."


def pending_overview(mcp_session: McpSession | None = None) -> str:
    runtime = _get_runtime()
    touch_client(mcp_session)
    rows = runtime.store.pending_summary()
    if not rows:
        return "No pending PR review comments."

    total = 0
    lines = ["Pending PR review comments:", ""]
    for row in rows:
        total += row["pending_count"]
        lines.append(f"- {row['repo_id']} ({row['branch']}): {_plural(row['pending_count'], 'comment')}")
        if row["repo_path"]:
            lines.append(f"  {row['repo_path']}")
    lines.append("")
    lines.append(f"Total: {_plural(total, 'pending comment')}")
    return "\n".join(lines)


def comment_details(comment_id: str, mcp_session: McpSession | None = None) -> dict:
    runtime = _get_runtime()
    touch_client(mcp_session)
    try:
        comment = runtime.store.get(comment_id)
    except NotFoundError as e:
        return {"error": str(e)}
    details = comment.to_api()
    details["location"] = _location(comment)
    return details


# ----------------------------------------------------------------------
# Tools
# ----------------------------------------------------------------------


@mcp.tool()
async def check_pr_comments(repo_path: str | None = None, ctx: Context | None = None) -> str:
    """Fetch PR review comments sent to you for this repository. Call this to receive new review feedback."""
    return check_comments(repo_path, session_from_context(ctx))


@mcp.tool()
async def mark_comment_resolved(comment_id: str, ctx: Context | None = None) -> str:
    """Mark a review comment as resolved once you have addressed it."""
    return resolve_comment(comment_id, session_from_context(ctx))


@mcp.tool()
async def list_pending_comments(ctx: Context | None = None) -> str:
    """List repositories with comments that were sent but not yet resolved."""
    return pending_overview(session_from_context(ctx))


@mcp.tool()
async def get_comment_details(comment_id: str, ctx: Context | None = None) -> dict:
    """Return one comment with its location, status and timestamps."""
    return comment_details(comment_id, session_from_context(ctx))
