"""Tests for EngineConfig.from_env and the YAML loader."""

import pytest
import yaml

from potato.engine.config import EngineConfig, parse_mode
from potato.engine.models import CapabilityMode
from potato.engine.yaml_config import (
    ConnectorConfig,
    build_connector_config,
    discover_config_path,
    load_yaml_config,
    parse_connector,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in ("POTATO_MODEL", "POTATO_MODE", "POTATO_VAULT", "POTATO_PROJECT_DIR",
                "POTATO_MAX_RETRIES", "POTATO_QUIESCENCE", "POTATO_HISTORY_LIMIT"):
        monkeypatch.delenv(key, raising=False)


class TestFromEnv:
    def test_defaults(self):
        config = EngineConfig.from_env()
        assert config.mode == CapabilityMode.VAULT
        assert config.max_auto_retries == 2
        assert config.agent_quiescence_seconds == 5.0
        assert config.history_limit == 50
        assert config.connector_config is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("POTATO_MODE", "project")
        monkeypatch.setenv("POTATO_VAULT", "/notes")
        monkeypatch.setenv("POTATO_MAX_RETRIES", "3")
        config = EngineConfig.from_env()
        assert config.mode == CapabilityMode.PROJECT
        assert config.vault_root == "/notes"
        assert config.max_auto_retries == 3

    def test_unknown_mode_falls_back_to_vault(self):
        assert parse_mode("sandbox") == CapabilityMode.VAULT
        assert parse_mode(" Project ") == CapabilityMode.PROJECT


class TestYaml:
    def _write(self, tmp_path, data):
        path = tmp_path / "potato.yaml"
        path.write_text(yaml.safe_dump(data))
        return path

    def test_engine_and_defaults(self, tmp_path):
        path = self._write(tmp_path, {
            "engine": {"max_auto_retries": 1, "agent_quiescence_seconds": 2,
                       "vault_auto_tools": ["Read", "Grep"]},
            "defaults": {"mode": "project", "vault": "/notes", "project_dir": "/src"},
        })
        config = load_yaml_config(path, base=EngineConfig()).engine
        assert config.max_auto_retries == 1
        assert config.agent_quiescence_seconds == 2.0
        assert config.vault_auto_tools == ("Read", "Grep")
        assert config.mode == CapabilityMode.PROJECT
        assert config.vault_root == "/notes"
        assert config.project_dir == "/src"

    def test_connectors_with_env_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TRACKER_TOKEN", "sekrit")
        path = self._write(tmp_path, {"connectors": {
            "tracker": {"type": "http", "url": "https://t.example/mcp",
                        "headers": {"Authorization": "Bearer ${TRACKER_TOKEN}"}},
            "calendar": {"command": "npx", "args": ["-y", "cal-mcp"]},
            "broken": {"type": "http"},
        }})
        loaded = load_yaml_config(path, base=EngineConfig())

        assert sorted(loaded.connectors) == ["calendar", "tracker"]
        assert loaded.engine.connector_config == {
            "calendar": {"type": "stdio", "command": "npx", "args": ["-y", "cal-mcp"]},
            "tracker": {"type": "http", "url": "https://t.example/mcp",
                        "headers": {"Authorization": "Bearer sekrit"}},
        }

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "potato.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_yaml_config(path, base=EngineConfig())

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_yaml_config(tmp_path / "nope.yaml")

    def test_discovery(self, tmp_path):
        assert discover_config_path(tmp_path) is None
        (tmp_path / ".potato").mkdir()
        (tmp_path / ".potato" / "potato.yaml").write_text("{}\n")
        assert discover_config_path(tmp_path) == tmp_path / ".potato" / "potato.yaml"


class TestConnectors:
    def test_unknown_type_skipped(self):
        assert parse_connector("x", {"type": "grpc", "url": "u"}) is None

    def test_stdio_requires_command(self):
        assert parse_connector("x", {"args": ["a"]}) is None

    def test_no_connectors_is_none(self):
        assert build_connector_config({}) is None

    def test_stdio_env(self):
        connector = ConnectorConfig(name="c", command="run", env={"A": "1"})
        assert connector.to_server_config() == {
            "type": "stdio", "command": "run", "args": [], "env": {"A": "1"},
        }
