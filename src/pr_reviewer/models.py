"""Data models for Local PR Reviewer."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

GENERAL_FILE_PATH = "[general]"
CLIPBOARD_TARGET_ID = "clipboard"
TMUX_TARGET_PREFIX = "tmux:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return uuid.uuid4().hex[:12]


def normalize_repo_path(path: str) -> str:
    """Strip a trailing slash; the filesystem root stays as ``/``."""
    stripped = path.rstrip("/")
    return stripped or "/"


class ApiModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# --- Comments ---


class CommentStatus(str, enum.Enum):
    QUEUED = "queued"
    STAGED = "staged"
    SENT = "sent"
    CANCELLED = "cancelled"
    RESOLVED = "resolved"


class CommentSide(str, enum.Enum):
    OLD = "old"
    NEW = "new"
    BOTH = "both"


class Comment(ApiModel):
    id: str
    session_id: str
    file_path: str
    line_start: int | None = None
    line_end: int | None = None
    side: CommentSide | None = None
    content: str
    status: CommentStatus = CommentStatus.QUEUED
    created_at: datetime
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None

    @property
    def is_general(self) -> bool:
        return self.file_path == GENERAL_FILE_PATH


class CreateCommentInput(ApiModel):
    session_id: str
    file_path: str
    content: str
    line_start: int | None = None
    line_end: int | None = None
    side: CommentSide | None = None


class ReviewSession(ApiModel):
    id: str = Field(default_factory=_uuid)
    repo_id: str
    branch: str
    base_branch_override: str | None = None
    repo_path: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


# --- Delivery targets ---


class _TargetBase(ApiModel):
    id: str
    name: str
    working_dir: str | None = None
    connected: bool = True
    last_seen: datetime | None = None


class McpClientTarget(_TargetBase):
    type: Literal["mcp_client"] = "mcp_client"


class ClipboardTarget(_TargetBase):
    type: Literal["clipboard"] = "clipboard"
    id: str = CLIPBOARD_TARGET_ID
    name: str = "Copy to Clipboard"


class TmuxTarget(_TargetBase):
    type: Literal["tmux_session"] = "tmux_session"
    session_name: str

    @classmethod
    def for_session(cls, session_name: str, working_dir: str | None = None) -> TmuxTarget:
        return cls(
            id=f"{TMUX_TARGET_PREFIX}{session_name}",
            name=session_name,
            session_name=session_name,
            working_dir=working_dir,
        )


DeliveryTarget = Annotated[
    Union[McpClientTarget, ClipboardTarget, TmuxTarget],
    Field(discriminator="type"),
]


# --- tmux topology ---


class TmuxWindow(ApiModel):
    session_name: str
    window_index: int
    window_name: str = ""
    pane_current_path: str = ""
    pane_current_command: str = ""
    detected_agent: str | None = None


class TmuxSession(ApiModel):
    name: str
    window_count: int = 0
    attached: bool = False
    working_dir: str = ""
    windows: list[TmuxWindow] = Field(default_factory=list)
    detected_process: str | None = None
    multiple_agents: bool = False


class DetectionResult(ApiModel):
    available: bool
    sessions: list[TmuxSession] = Field(default_factory=list)
    error: str | None = None

    @property
    def coding_agent_sessions(self) -> list[TmuxSession]:
        return [s for s in self.sessions if s.detected_process is not None]


# --- Remote clients ---


class McpClient(ApiModel):
    id: str
    client_name: str | None = None
    client_version: str | None = None
    working_dir: str | None = None
    connected_at: datetime
    last_seen_at: datetime

    @property
    def display_name(self) -> str:
        return self.client_name or "Unknown Agent"


class ClientSummary(ApiModel):
    name: str
    last_seen: datetime


class McpStatus(ApiModel):
    clients: list[ClientSummary] = Field(default_factory=list)

    @computed_field(alias="clientCount")  # type: ignore[prop-decorator]
    @property
    def client_count(self) -> int:
        return len(self.clients)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def connected(self) -> bool:
        return self.client_count > 0


# --- AI ---


class AISettings(ApiModel):
    provider: str | None = None
    model: str | None = None


# --- Delivery ---


class DeliveryResult(ApiModel):
    target_id: str
    target_type: str
    formatted: str
    sent_count: int = 0
    # Comments included in ``formatted``.
    comment_count: int = 0

    @property
    def count(self) -> int:
        """Clipboard reports what was formatted; other targets what moved to sent."""
        return self.comment_count if self.target_type == "clipboard" else self.sent_count
