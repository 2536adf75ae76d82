"""Tests for configuration loading."""

from pathlib import Path

from pr_reviewer.config import DEFAULT_HOME, load_config, resolve_home


class TestConfig:
    def test_defaults(self, tmp_path):
        config = load_config(env={"PR_REVIEWER_HOME": str(tmp_path)})
        assert config.home == tmp_path
        assert config.port == 3000
        assert config.host == "127.0.0.1"
        assert config.client_freshness_seconds == 300
        assert config.database_file == tmp_path / "pr-reviewer.db"

    def test_default_home(self):
        assert resolve_home({}) == DEFAULT_HOME

    def test_yaml_file(self, tmp_path):
        (tmp_path / "config.yaml").write_text("port: 4100\ntmux_timeout_seconds: 2\n")
        config = load_config(env={"PR_REVIEWER_HOME": str(tmp_path)})
        assert config.port == 4100
        assert config.tmux_timeout_seconds == 2

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("client_name: my-agent\n")
        assert load_config(path, env={}).client_name == "my-agent"

    def test_env_overrides_yaml(self, tmp_path):
        (tmp_path / "config.yaml").write_text("port: 4100\n")
        config = load_config(env={
            "PR_REVIEWER_HOME": str(tmp_path),
            "PR_REVIEWER_PORT": "5200",
            "PR_REVIEWER_DB": str(tmp_path / "other.db"),
        })
        assert config.port == 5200
        assert config.database_file == Path(tmp_path / "other.db")

    def test_non_mapping_yaml_ignored(self, tmp_path):
        (tmp_path / "config.yaml").write_text("- just\n- a list\n")
        assert load_config(env={"PR_REVIEWER_HOME": str(tmp_path)}).port == 3000
