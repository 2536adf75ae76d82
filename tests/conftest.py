"""Shared fixtures for PR Reviewer tests."""

import pytest

from pr_reviewer.comment_store import CommentStore
from pr_reviewer.db import AppConfigStore, Database
from pr_reviewer.models import CreateCommentInput, ReviewSession


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path, monkeypatch):
    """Prevent tests from touching the real ~/.pr-reviewer directory or AI keys."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PR_REVIEWER_HOME", str(tmp_path / ".pr-reviewer"))
    for key in ("GOOGLE_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def db():
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def store(db) -> CommentStore:
    return CommentStore(db)


@pytest.fixture
def config_store(db) -> AppConfigStore:
    return AppConfigStore(db)


@pytest.fixture
def session(store) -> ReviewSession:
    return store.get_or_create_session("acme/widgets", "feature/login", repo_path="/work/widgets")


@pytest.fixture
def make_comment(store, session):
    """Factory: create a queued comment in the default session."""

    def _make(content: str = "Handle the None case", file_path: str = "src/app.py", **kwargs):
        data = CreateCommentInput(session_id=session.id, file_path=file_path, content=content, **kwargs)
        return store.create(data)

    return _make
