"""Application configuration: defaults, ~/.pr-reviewer/config.yaml, then environment."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel

DEFAULT_HOME = Path.home() / ".pr-reviewer"

# env var -> AppConfig field
_ENV_OVERRIDES: dict[str, str] = {
    "PR_REVIEWER_DB": "db_path",
    "PR_REVIEWER_HOST": "host",
    "PR_REVIEWER_PORT": "port",
    "PR_REVIEWER_CLIENT_NAME": "client_name",
}


class AppConfig(BaseModel):
    home: Path = DEFAULT_HOME
    db_path: Path | None = None
    host: str = "127.0.0.1"
    port: int = 3000
    tmux_timeout_seconds: float = 5.0
    client_freshness_seconds: float = 300.0
    poll_interval_seconds: float = 30.0
    client_name: str | None = None

    @property
    def database_file(self) -> Path:
        return self.db_path or (self.home / "pr-reviewer.db")


def resolve_home(env: dict[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    raw = env.get("PR_REVIEWER_HOME", "")
    return Path(raw).expanduser() if raw else DEFAULT_HOME


def load_config(path: str | Path | None = None, env: dict[str, str] | None = None) -> AppConfig:
    """Load config from YAML (if present) and apply PR_REVIEWER_* env overrides."""
    env = os.environ if env is None else env
    home = resolve_home(env)
    config_file = Path(path).expanduser() if path else home / "config.yaml"

    raw: dict = {}
    if config_file.exists():
        loaded = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            raw = loaded

    raw.setdefault("home", str(home))
    for env_key, field_name in _ENV_OVERRIDES.items():
        value = env.get(env_key)
        if value:
            raw[field_name] = value

    return AppConfig.model_validate(raw)
