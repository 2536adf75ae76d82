"""Integration tests for the FastAPI server."""

import sqlite3
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from pr_reviewer.config import AppConfig
from pr_reviewer.consolidation import ConsolidationPipeline
from pr_reviewer.models import DetectionResult, TmuxSession
from pr_reviewer.runtime import build_runtime
from pr_reviewer.server import create_app
from pr_reviewer.tmux import AgentDetector


class FakeAttempt:
    def __init__(self, text: str | None = "Consolidated feedback"):
        self.text = text

    async def __call__(self, provider: str, model: str, prompt: str) -> str:
        if self.text is None:
            raise RuntimeError("quota exceeded")
        return self.text


@pytest.fixture
def runtime(db, tmp_path):
    rt = build_runtime(AppConfig(home=tmp_path), db=db)
    rt.detector = MagicMock(spec=AgentDetector)
    rt.detector.list_sessions = AsyncMock(return_value=DetectionResult(available=True))
    rt.detector.list_sessions_for_repo = AsyncMock(return_value=DetectionResult(available=True))
    rt.tmux.send_to_session = AsyncMock()
    rt.pipeline = ConsolidationPipeline(rt.config_store, env={"GOOGLE_API_KEY": "g"}, attempt=FakeAttempt())
    return rt


@pytest.fixture
def app(runtime):
    return create_app(runtime=runtime, port=9999)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _new_session(client) -> str:
    resp = await client.post("/api/sessions", json={"repoId": "acme/widgets", "branch": "main", "repoPath": "/work/widgets"})
    assert resp.status_code == 200
    return resp.json()["session"]["id"]


async def _new_comment(client, session_id: str, content: str = "Check bounds", **extra) -> dict:
    body = {"intent": "create", "sessionId": session_id, "filePath": "src/app.py", "content": content, **extra}
    resp = await client.post("/api/comments", json=body)
    assert resp.status_code == 200
    return resp.json()["comment"]


class TestHealthAndStatus:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.json() == {"status": "ok", "pollIntervalSeconds": 30.0}

    @pytest.mark.asyncio
    async def test_mcp_status(self, client, runtime):
        runtime.registry.register("claude-code")
        data = (await client.get("/api/mcp-status")).json()
        assert data["clientCount"] == 1
        assert data["connected"] is True
        assert data["clients"][0]["name"] == "claude-code"


class TestTargets:
    @pytest.mark.asyncio
    async def test_clipboard_default(self, client):
        data = (await client.get("/api/targets")).json()
        assert [t["id"] for t in data["targets"]] == ["clipboard"]
        assert data["mcpStatus"]["clientCount"] == 0
        assert data["defaultTargetId"] == "clipboard"

    @pytest.mark.asyncio
    async def test_client_preferred(self, client, runtime):
        client_id = runtime.registry.register("codex")
        data = (await client.get("/api/targets")).json()
        assert [t["type"] for t in data["targets"]] == ["mcp_client", "clipboard"]
        assert data["defaultTargetId"] == client_id

    @pytest.mark.asyncio
    async def test_ambiguous_agents_block_default(self, client, runtime):
        runtime.detector.list_sessions_for_repo.return_value = DetectionResult(
            available=True,
            sessions=[TmuxSession(name="work", detected_process="claude", multiple_agents=True)],
        )
        data = (await client.get("/api/targets", params={"repoPath": "/work/widgets"})).json()
        runtime.detector.list_sessions_for_repo.assert_awaited_once_with("/work/widgets")
        assert "defaultTargetId" not in data

    @pytest.mark.asyncio
    async def test_failure_returns_clipboard_fallback(self, client, runtime):
        with patch.object(runtime.registry, "get_status", side_effect=sqlite3.OperationalError("database is locked")):
            resp = await client.get("/api/targets")
        assert resp.status_code == 200
        data = resp.json()
        assert data["error"] == "database is locked"
        assert [t["id"] for t in data["targets"]] == ["clipboard"]
        assert data["mcpStatus"]["clientCount"] == 0


class TestSessions:
    @pytest.mark.asyncio
    async def test_list_tmux_sessions(self, client, runtime):
        runtime.detector.list_sessions.return_value = DetectionResult(
            available=True,
            sessions=[TmuxSession(name="work", detected_process="aider"), TmuxSession(name="idle")],
        )
        data = (await client.get("/api/sessions")).json()
        assert data["available"] is True
        assert [s["name"] for s in data["sessions"]] == ["work", "idle"]
        assert [s["detectedProcess"] for s in data["codingAgentSessions"]] == ["aider"]
        assert "error" not in data

    @pytest.mark.asyncio
    async def test_tmux_unavailable(self, client, runtime):
        runtime.detector.list_sessions.return_value = DetectionResult(available=False, error="tmux is not installed")
        data = (await client.get("/api/sessions")).json()
        assert data == {"available": False, "sessions": [], "codingAgentSessions": [], "error": "tmux is not installed"}

    @pytest.mark.asyncio
    async def test_create_review_session_is_idempotent(self, client):
        first = await _new_session(client)
        assert await _new_session(client) == first

    @pytest.mark.asyncio
    async def test_base_branch_override(self, client):
        resp = await client.post("/api/sessions", json={"repoId": "r", "branch": "b", "baseBranchOverride": "develop"})
        assert resp.json()["session"]["baseBranchOverride"] == "develop"

    @pytest.mark.asyncio
    async def test_missing_fields(self, client):
        resp = await client.post("/api/sessions", json={"repoId": "acme/widgets"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_send_test_message(self, client, runtime):
        resp = await client.post("/api/sessions", json={"intent": "test", "sessionName": "work"})
        assert resp.json() == {"success": True}
        session_name, message = runtime.tmux.send_to_session.await_args.args
        assert session_name == "work"
        assert message.startswith("[PR Reviewer Test]")


class TestComments:
    @pytest.mark.asyncio
    async def test_lifecycle(self, client):
        session_id = await _new_session(client)
        a = await _new_comment(client, session_id, lineStart=3, lineEnd=5, side="new")
        b = await _new_comment(client, session_id, "Second")
        assert a["status"] == "queued"
        assert a["lineStart"] == 3

        resp = await client.post("/api/comments", json={"intent": "update", "id": a["id"], "content": "Check bounds twice"})
        assert resp.json()["comment"]["content"] == "Check bounds twice"

        resp = await client.post("/api/comments", json={"intent": "stage", "ids": [a["id"], b["id"]]})
        assert resp.json() == {"success": True, "count": 2}
        resp = await client.post("/api/comments", json={"intent": "markSent", "ids": [a["id"]]})
        assert resp.json()["count"] == 1
        resp = await client.post("/api/comments", json={"intent": "cancel", "ids": [b["id"]]})
        assert resp.json()["count"] == 1

        data = (await client.get("/api/comments", params={"sessionId": session_id})).json()
        assert data["counts"] == {"queued": 0, "staged": 0, "sent": 1, "cancelled": 1, "resolved": 0}
        sent = (await client.get("/api/comments", params={"sessionId": session_id, "status": "sent"})).json()
        assert [c["id"] for c in sent["comments"]] == [a["id"]]
        assert sent["comments"][0]["sentAt"] is not None

    @pytest.mark.asyncio
    async def test_sent_comment_cannot_be_deleted(self, client):
        session_id = await _new_session(client)
        comment = await _new_comment(client, session_id)
        await client.post("/api/comments", json={"intent": "markSent", "ids": [comment["id"]]})
        resp = await client.post("/api/comments", json={"intent": "delete", "id": comment["id"]})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_backward_status_is_rejected(self, client):
        session_id = await _new_session(client)
        comment = await _new_comment(client, session_id)
        await client.post("/api/comments", json={"intent": "cancel", "ids": [comment["id"]]})
        resp = await client.post("/api/comments", json={"intent": "update", "id": comment["id"], "status": "queued"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [("content", 123), ("content", ["x"]), ("status", 5)])
    async def test_update_rejects_non_string_fields(self, client, runtime, field, value):
        session_id = await _new_session(client)
        comment = await _new_comment(client, session_id)
        resp = await client.post("/api/comments", json={"intent": "update", "id": comment["id"], field: value})
        assert resp.status_code == 400
        assert resp.json()["detail"] == f"{field} must be a string"
        assert runtime.store.get(comment["id"]).content == "Check bounds"

    @pytest.mark.asyncio
    async def test_delete(self, client):
        session_id = await _new_session(client)
        comment = await _new_comment(client, session_id)
        resp = await client.post("/api/comments", json={"intent": "delete", "id": comment["id"]})
        assert resp.json() == {"success": True}
        resp = await client.post("/api/comments", json={"intent": "delete", "id": comment["id"]})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_errors(self, client):
        session_id = await _new_session(client)
        assert (await client.get("/api/comments")).status_code == 400
        assert (await client.get("/api/comments", params={"sessionId": session_id, "status": "bogus"})).status_code == 400
        assert (await client.post("/api/comments", json={"intent": "archive"})).status_code == 400
        assert (await client.post("/api/comments", json={"intent": "stage", "ids": []})).status_code == 400
        assert (await client.post("/api/comments", json={"intent": "create", "sessionId": session_id})).status_code == 400
        resp = await client.post("/api/comments", json={"intent": "update", "id": "ghost", "content": "x"})
        assert resp.status_code == 404
        resp = await client.post(
            "/api/comments",
            json={"intent": "create", "sessionId": "ghost", "filePath": "a.py", "content": "x"},
        )
        assert resp.status_code == 404


class TestProcess:
    @pytest.mark.asyncio
    async def test_settings(self, client):
        data = (await client.get("/api/process")).json()
        assert data["availableProviders"] == ["google"]
        assert data["providerModels"]["openai"] == ["gpt-4o-mini", "gpt-4o"]
        assert data["currentSettings"] == {"provider": None, "model": None}

        resp = await client.post("/api/process", json={"intent": "saveSettings", "provider": "google", "model": "gemini-2.5-pro"})
        assert resp.json() == {"success": True}
        data = (await client.get("/api/process")).json()
        assert data["currentSettings"] == {"provider": "google", "model": "gemini-2.5-pro"}

    @pytest.mark.asyncio
    async def test_save_settings_validation(self, client):
        resp = await client.post("/api/process", json={"intent": "saveSettings", "provider": "google"})
        assert resp.status_code == 400
        resp = await client.post("/api/process", json={"intent": "saveSettings", "provider": "google", "model": "gpt-4o"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_process(self, client):
        session_id = await _new_session(client)
        comment = await _new_comment(client, session_id)
        resp = await client.post("/api/process", json={"intent": "process", "commentIds": [comment["id"]]})
        data = resp.json()
        assert data["success"] is True
        assert data["processedText"] == "Consolidated feedback"
        assert [c["id"] for c in data["originalComments"]] == [comment["id"]]

    @pytest.mark.asyncio
    async def test_all_providers_failing(self, client, runtime):
        runtime.pipeline._attempt = FakeAttempt(text=None)
        session_id = await _new_session(client)
        comment = await _new_comment(client, session_id)
        resp = await client.post("/api/process", json={"intent": "process", "commentIds": [comment["id"]]})
        assert resp.status_code == 502
        assert "All AI providers failed" in resp.json()["detail"]
        assert "google/gemini-2.5-flash" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_process_errors(self, client):
        assert (await client.post("/api/process", json={"intent": "process", "commentIds": []})).status_code == 400
        assert (await client.post("/api/process", json={"intent": "process", "commentIds": ["ghost"]})).status_code == 404
        assert (await client.post("/api/process", json={"intent": "summarize"})).status_code == 400


class TestSend:
    @pytest.mark.asyncio
    async def test_clipboard(self, client):
        session_id = await _new_session(client)
        comment = await _new_comment(client, session_id, lineStart=7)
        resp = await client.post("/api/send", json={"targetId": "clipboard", "commentIds": [comment["id"]]})
        assert resp.json() == {
            "success": True,
            "count": 1,
            "formatted": "[src/app.py:7]\nCheck bounds",
            "targetType": "clipboard",
        }
        listed = (await client.get("/api/comments", params={"sessionId": session_id})).json()
        assert listed["comments"][0]["status"] == "queued"

    @pytest.mark.asyncio
    async def test_mcp_client(self, client, runtime):
        client_id = runtime.registry.register("claude-code")
        session_id = await _new_session(client)
        comment = await _new_comment(client, session_id)
        resp = await client.post("/api/send", json={"targetId": client_id, "commentIds": [comment["id"]]})
        assert resp.json()["targetType"] == "mcp_client"
        assert runtime.store.get(comment["id"]).status.value == "sent"

    @pytest.mark.asyncio
    async def test_tmux_session(self, client, runtime):
        session_id = await _new_session(client)
        comment = await _new_comment(client, session_id)
        resp = await client.post(
            "/api/send",
            json={"targetId": "tmux", "sessionName": "work", "commentIds": [comment["id"]]},
        )
        assert resp.json()["targetType"] == "tmux_session"
        runtime.tmux.send_to_session.assert_awaited_once_with("work", "[src/app.py]\nCheck bounds")
        assert runtime.store.get(comment["id"]).status.value == "sent"

    @pytest.mark.asyncio
    async def test_errors(self, client):
        session_id = await _new_session(client)
        comment = await _new_comment(client, session_id)
        assert (await client.post("/api/send", json={"targetId": "clipboard", "commentIds": []})).status_code == 400
        assert (await client.post("/api/send", json={"targetId": "clipboard", "commentIds": ["ghost"]})).status_code == 404
        resp = await client.post("/api/send", json={"targetId": "ghost", "commentIds": [comment["id"]]})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_count_reflects_comments_actually_sent(self, client, runtime):
        session_id = await _new_session(client)
        live = await _new_comment(client, session_id, "live one")
        withdrawn = await _new_comment(client, session_id, "withdrawn one")
        await client.post("/api/comments", json={"intent": "cancel", "ids": [withdrawn["id"]]})

        resp = await client.post(
            "/api/send",
            json={"targetId": "tmux:work", "commentIds": [live["id"], withdrawn["id"]]},
        )
        assert resp.status_code == 200
        assert resp.json()["count"] == 1
        runtime.tmux.send_to_session.assert_awaited_once_with("work", "[src/app.py]\nlive one")
        assert runtime.store.get(withdrawn["id"]).status.value == "cancelled"

    @pytest.mark.asyncio
    async def test_only_cancelled_comments_is_400(self, client, runtime):
        session_id = await _new_session(client)
        comment = await _new_comment(client, session_id)
        await client.post("/api/comments", json={"intent": "cancel", "ids": [comment["id"]]})
        resp = await client.post("/api/send", json={"targetId": "tmux:work", "commentIds": [comment["id"]]})
        assert resp.status_code == 400
        runtime.tmux.send_to_session.assert_not_called()
