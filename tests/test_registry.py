"""Tests for the MCP client registry."""

from datetime import datetime, timedelta, timezone

import pytest

from pr_reviewer.errors import NotFoundError
from pr_reviewer.registry import DEFAULT_FRESHNESS, ClientRegistry


@pytest.fixture
def registry(db) -> ClientRegistry:
    return ClientRegistry(db)


def _later(minutes: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


class TestRegistry:
    def test_register_and_get(self, registry):
        client_id = registry.register("claude-code", "1.2.0", "/work/widgets")
        client = registry.get(client_id)
        assert client.client_name == "claude-code"
        assert client.working_dir == "/work/widgets"
        assert client.connected_at == client.last_seen_at

    def test_unknown_client(self, registry):
        with pytest.raises(NotFoundError):
            registry.get("ghost")
        with pytest.raises(NotFoundError):
            registry.heartbeat("ghost")

    def test_default_freshness_is_five_minutes(self):
        assert DEFAULT_FRESHNESS == timedelta(minutes=5)

    def test_stale_clients_filtered_but_kept(self, registry, db):
        client_id = registry.register("aider")
        assert [c.id for c in registry.list_connected()] == [client_id]
        assert registry.list_connected(now=_later(6)) == []
        # still in the table
        assert registry.get(client_id).id == client_id

    def test_heartbeat_revives(self, registry):
        client_id = registry.register("aider")
        registry.heartbeat(client_id, at=_later(10))
        assert [c.id for c in registry.list_connected(now=_later(12))] == [client_id]

    def test_most_recently_seen_first(self, registry):
        older = registry.register("older")
        newer = registry.register("newer")
        registry.heartbeat(older, at=_later(1))
        registry.heartbeat(newer, at=_later(2))
        assert [c.id for c in registry.list_connected(now=_later(3))] == [newer, older]

    def test_custom_freshness(self, db):
        registry = ClientRegistry(db, freshness=timedelta(seconds=30))
        registry.register("quick")
        assert registry.list_connected(now=_later(1)) == []


class TestStatus:
    def test_empty_status(self, registry):
        status = registry.get_status()
        assert status.client_count == 0
        assert status.connected is False
        assert status.to_api() == {"clients": [], "clientCount": 0, "connected": False}

    def test_unnamed_client_display(self, registry):
        registry.register()
        registry.register("codex")
        status = registry.get_status()
        assert status.client_count == len(status.clients) == 2
        assert {c.name for c in status.clients} == {"Unknown Agent", "codex"}
        assert status.to_api()["clientCount"] == 2
