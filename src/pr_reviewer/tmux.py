"""Session/Agent detection: tmux topology plus process-tree inspection.

Every external call (``tmux``, ``pgrep``, ``ps``) goes through ``run_command``
with a bounded timeout so a wedged pane cannot stall enumeration of the rest.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import shutil
from contextlib import suppress
from dataclasses import dataclass
from pathlib import PurePosixPath

from pr_reviewer.errors import TransportError
from pr_reviewer.models import DetectionResult, TmuxSession, TmuxWindow, normalize_repo_path

logger = logging.getLogger(__name__)

# Detection list and tie-break order.
AGENT_PRIORITY: tuple[str, ...] = ("claude", "opencode", "aider", "cursor", "copilot", "gemini", "codex")

# Children, then grandchildren.
MAX_PROCESS_DEPTH = 2

PASTE_BUFFER = "pr-reviewer"
_SEP = "\t"
_NO_SERVER_MARKERS = ("no server running", "no sessions", "error connecting to")


async def run_command(
    *args: str, timeout: float, input_text: str | None = None,
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr).

    Raises TransportError if the binary is missing or the call times out.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise TransportError(f"{args[0]} is not available: {e}") from e

    data = input_text.encode() if input_text is not None else None
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(data), timeout=timeout)
    except asyncio.TimeoutError as e:
        with suppress(ProcessLookupError):
            proc.kill()
        with suppress(Exception):
            await proc.wait()
        raise TransportError(f"{' '.join(args[:2])} timed out after {timeout:.1f}s") from e

    return proc.returncode or 0, stdout.decode(errors="replace"), stderr.decode(errors="replace")


def match_agent(command: str) -> str | None:
    """Return the first agent (in priority order) whose name appears in *command*."""
    lowered = (command or "").lower()
    if not lowered:
        return None
    for agent in AGENT_PRIORITY:
        if agent in lowered:
            return agent
    return None


def agent_rank(agent: str) -> int:
    try:
        return AGENT_PRIORITY.index(agent)
    except ValueError:
        return len(AGENT_PRIORITY)


def summarize_agents(windows: list[TmuxWindow]) -> tuple[str | None, bool]:
    """Return (detected_process, multiple_agents) for the given windows.

    The detected process is the highest-priority agent regardless of window
    order; multiple_agents is set when more than one window runs an agent.
    """
    agents = [w.detected_agent for w in windows if w.detected_agent]
    if not agents:
        return None, False
    best = min(agents, key=agent_rank)
    return best, len(agents) > 1


def path_within(path: str, root: str) -> bool:
    """True if *path* equals *root* or is a strict subdirectory of it."""
    if not path:
        return False
    path = normalize_repo_path(path)
    if root == "/":
        return path.startswith("/")
    return path == root or path.startswith(root + "/")


def filter_sessions_for_repo(sessions: list[TmuxSession], repo_path: str) -> list[TmuxSession]:
    """Keep sessions that live in *repo_path*, recomputing agent fields per repo.

    A session matches when any window's path is inside the repository or the
    session's own working directory is. Only matching windows are kept and
    they alone decide detected_process/multiple_agents.
    """
    root = normalize_repo_path(repo_path)
    matched: list[TmuxSession] = []
    for session in sessions:
        windows = [w for w in session.windows if path_within(w.pane_current_path, root)]
        if not windows and not path_within(session.working_dir, root):
            continue
        detected, multiple = summarize_agents(windows)
        matched.append(
            session.model_copy(
                update={"windows": windows, "detected_process": detected, "multiple_agents": multiple},
            )
        )
    return matched


def merge_window(existing: TmuxWindow | None, probe: TmuxWindow) -> TmuxWindow:
    """Fold a second probe of the same window into the first.

    Detection only moves toward "found": a probe that found an agent replaces
    one that did not, never the other way round.
    """
    if existing is None:
        return probe
    if existing.detected_agent is None and probe.detected_agent is not None:
        return existing.model_copy(
            update={
                "pane_current_path": probe.pane_current_path,
                "pane_current_command": probe.pane_current_command,
                "detected_agent": probe.detected_agent,
            }
        )
    return existing


# ----------------------------------------------------------------------
# Process inspection
# ----------------------------------------------------------------------


class ProcessInspector(abc.ABC):
    """Read-only view of the OS process tree."""

    @abc.abstractmethod
    async def list_children(self, pid: int) -> list[int]:
        """Return direct child pids of *pid*."""
        ...

    @abc.abstractmethod
    async def command_of(self, pid: int) -> str:
        """Return the command name of *pid* (empty if it has exited)."""
        ...


class PsProcessInspector(ProcessInspector):
    """ProcessInspector backed by ``pgrep -P`` and ``ps -o comm=``."""

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self._timeout = timeout_seconds

    async def list_children(self, pid: int) -> list[int]:
        code, stdout, stderr = await run_command("pgrep", "-P", str(pid), timeout=self._timeout)
        if code == 1:
            return []  # no children
        if code != 0:
            raise TransportError(f"pgrep -P {pid} failed: {stderr.strip()}")
        children: list[int] = []
        for line in stdout.split():
            with suppress(ValueError):
                children.append(int(line))
        return children

    async def command_of(self, pid: int) -> str:
        code, stdout, _ = await run_command("ps", "-o", "comm=", "-p", str(pid), timeout=self._timeout)
        if code != 0:
            return ""
        # macOS reports the full executable path.
        return PurePosixPath(stdout.strip()).name if stdout.strip() else ""


# ----------------------------------------------------------------------
# tmux
# ----------------------------------------------------------------------


@dataclass
class PaneInfo:
    window_index: int
    window_name: str
    path: str
    command: str
    pid: int | None


class TmuxClient:
    """Shells out to the tmux binary."""

    def __init__(self, timeout_seconds: float = 5.0, binary: str = "tmux") -> None:
        self.timeout_seconds = timeout_seconds
        self.binary = binary

    def is_installed(self) -> bool:
        return shutil.which(self.binary) is not None

    async def run(self, *args: str, input_text: str | None = None) -> str:
        code, stdout, stderr = await run_command(
            self.binary, *args, timeout=self.timeout_seconds, input_text=input_text,
        )
        if code != 0:
            raise TransportError(stderr.strip() or f"tmux {args[0]} exited with {code}")
        return stdout

    async def list_sessions(self) -> list[TmuxSession]:
        """Return bare sessions (no windows). An idle tmux server yields []."""
        fmt = _SEP.join(["#{session_name}", "#{session_windows}", "#{session_attached}", "#{pane_current_path}"])
        try:
            stdout = await self.run("list-sessions", "-F", fmt)
        except TransportError as e:
            if any(marker in str(e).lower() for marker in _NO_SERVER_MARKERS):
                return []
            raise

        sessions: list[TmuxSession] = []
        for line in stdout.splitlines():
            if not line.strip():
                continue
            parts = line.split(_SEP)
            parts += [""] * (4 - len(parts))
            name, windows, attached, working_dir = parts[:4]
            sessions.append(
                TmuxSession(
                    name=name,
                    window_count=int(windows) if windows.isdigit() else 0,
                    attached=attached not in ("", "0"),
                    working_dir=working_dir,
                )
            )
        return sessions

    async def list_panes(self, session_name: str) -> list[PaneInfo]:
        """Return every pane across all windows of *session_name*."""
        fmt = _SEP.join([
            "#{window_index}",
            "#{window_name}",
            "#{pane_current_path}",
            "#{pane_current_command}",
            "#{pane_pid}",
        ])
        stdout = await self.run("list-panes", "-s", "-t", session_name, "-F", fmt)
        panes: list[PaneInfo] = []
        for line in stdout.splitlines():
            if not line.strip():
                continue
            parts = line.split(_SEP)
            parts += [""] * (5 - len(parts))
            index, name, path, command, pid = parts[:5]
            if not index.isdigit():
                continue
            panes.append(
                PaneInfo(
                    window_index=int(index),
                    window_name=name,
                    path=path,
                    command=command,
                    pid=int(pid) if pid.isdigit() else None,
                )
            )
        return panes

    async def send_to_session(self, session_name: str, text: str) -> None:
        """Paste *text* into the session's active pane and press Enter."""
        try:
            await self.run("load-buffer", "-b", PASTE_BUFFER, "-", input_text=text)
            await self.run("paste-buffer", "-d", "-b", PASTE_BUFFER, "-t", session_name)
        except TransportError as e:
            logger.warning("Paste buffer delivery to %s failed (%s); falling back to send-keys", session_name, e)
            await self.run("send-keys", "-t", session_name, "-l", text)
        await self.run("send-keys", "-t", session_name, "Enter")


class AgentDetector:
    """Builds the live session/window topology and spots running coding agents."""

    def __init__(self, tmux: TmuxClient, inspector: ProcessInspector) -> None:
        self.tmux = tmux
        self.inspector = inspector

    async def detect_pane_agent(self, command: str, pid: int | None) -> str | None:
        """Match the foreground command, then walk the process tree breadth-first."""
        agent = match_agent(command)
        if agent or pid is None:
            return agent

        frontier = [pid]
        for depth in range(1, MAX_PROCESS_DEPTH + 1):
            children: list[int] = []
            for parent in frontier:
                children.extend(await self.inspector.list_children(parent))
            if not children:
                return None
            found = [a for a in [match_agent(await self.inspector.command_of(c)) for c in children] if a]
            if found:
                logger.debug("Agent %s found at depth %d under pid %d", found[0], depth, pid)
                return min(found, key=agent_rank)
            frontier = children
        return None

    async def _probe_pane(self, session_name: str, pane: PaneInfo) -> TmuxWindow:
        try:
            agent = await self.detect_pane_agent(pane.command, pane.pid)
        except TransportError as e:
            logger.warning("Process inspection failed for %s:%d: %s", session_name, pane.window_index, e)
            agent = match_agent(pane.command)
        return TmuxWindow(
            session_name=session_name,
            window_index=pane.window_index,
            window_name=pane.window_name,
            pane_current_path=pane.path,
            pane_current_command=pane.command,
            detected_agent=agent,
        )

    async def list_windows(self, session_name: str) -> list[TmuxWindow]:
        """Probe every pane and fold panes into one entry per window index."""
        panes = await self.tmux.list_panes(session_name)
        probes = await asyncio.gather(*(self._probe_pane(session_name, p) for p in panes))
        windows: dict[int, TmuxWindow] = {}
        for probe in probes:
            windows[probe.window_index] = merge_window(windows.get(probe.window_index), probe)
        return [windows[i] for i in sorted(windows)]

    async def _populate(self, session: TmuxSession) -> TmuxSession:
        try:
            windows = await self.list_windows(session.name)
        except TransportError as e:
            logger.warning("Could not list panes for tmux session %s: %s", session.name, e)
            windows = []
        detected, multiple = summarize_agents(windows)
        return session.model_copy(
            update={"windows": windows, "detected_process": detected, "multiple_agents": multiple},
        )

    async def list_sessions(self) -> DetectionResult:
        """Return all sessions with agent detection across all of their windows.

        Never raises: an unusable multiplexer is reported as ``available=False``.
        """
        if not self.tmux.is_installed():
            return DetectionResult(available=False, error="tmux is not installed or not available")
        try:
            bare = await self.tmux.list_sessions()
        except TransportError as e:
            logger.warning("tmux query failed: %s", e)
            return DetectionResult(available=False, error=str(e))
        sessions = await asyncio.gather(*(self._populate(s) for s in bare))
        return DetectionResult(available=True, sessions=list(sessions))

    async def list_sessions_for_repo(self, repo_path: str) -> DetectionResult:
        result = await self.list_sessions()
        if not result.available:
            return result
        return result.model_copy(update={"sessions": filter_sessions_for_repo(result.sessions, repo_path)})
