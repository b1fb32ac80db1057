"""YAML configuration loader.

Loads a single YAML file layered over the env-var configuration.
When no YAML is found, ``EngineConfig.from_env()`` is used as-is.

Example YAML:
    engine:
      default_model: claude-sonnet-4-5-20250929
      max_auto_retries: 2
      agent_quiescence_seconds: 5

    defaults:
      mode: vault
      vault: /home/me/notes
      project_dir: /home/me/src/app

    connectors:
      calendar:
        command: npx
        args: ["-y", "@acme/calendar-mcp"]
      tracker:
        type: http
        url: https://tracker.example.com/mcp
        headers:
          Authorization: "Bearer ${TRACKER_TOKEN}"
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .config import EngineConfig, parse_mode

logger = logging.getLogger(__name__)

CONFIG_DIRNAME = ".potato"
CONFIG_FILENAME = "potato.yaml"

_ENGINE_FIELDS = (
    "default_model",
    "max_auto_retries",
    "agent_quiescence_seconds",
    "history_limit",
    "title_max_chars",
    "connector_prefix",
    "log_level",
)
_TOOL_TABLE_FIELDS = (
    "vault_auto_tools",
    "project_base_tools",
    "write_tools",
    "shell_tools",
    "delegation_tools",
    "ask_tools",
)


@dataclass
class ConnectorConfig:
    """A single external service connector server.

    Supports three transport types:
    - stdio: command + args + env (local subprocess)
    - http: url + headers (streamable HTTP)
    - sse: url + headers (Server-Sent Events)
    """

    name: str
    type: str = "stdio"
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] | None = None
    url: str | None = None
    headers: dict[str, str] | None = None

    def to_server_config(self) -> dict[str, Any]:
        """Render in the shape the agent SDK expects for one server."""
        if self.type == "stdio":
            config: dict[str, Any] = {
                "type": "stdio",
                "command": self.command,
                "args": list(self.args),
            }
            if self.env:
                config["env"] = dict(self.env)
            return config
        config = {"type": self.type, "url": self.url}
        if self.headers:
            config["headers"] = dict(self.headers)
        return config


@dataclass
class PotatoConfig:
    """Complete parsed YAML configuration."""
    engine: EngineConfig
    connectors: dict[str, ConnectorConfig] = field(default_factory=dict)
    source: Path | None = None


def expand_env(value: Any) -> Any:
    """Expand ``${VAR}`` references in strings, recursively."""
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    return value


def parse_connector(name: str, cfg: dict) -> ConnectorConfig | None:
    """Parse one connector entry. Returns None if required fields are missing."""
    if not isinstance(cfg, dict):
        logger.warning("Connector '%s' is not a mapping, skipping", name)
        return None
    cfg = expand_env(cfg)
    connector_type = cfg.get("type", "stdio")

    if connector_type == "stdio" and not cfg.get("command"):
        logger.warning("stdio connector '%s' missing 'command', skipping", name)
        return None
    if connector_type in ("http", "sse") and not cfg.get("url"):
        logger.warning("%s connector '%s' missing 'url', skipping", connector_type, name)
        return None
    if connector_type not in ("stdio", "http", "sse"):
        logger.warning("Unknown connector type %r for %s, skipping", connector_type, name)
        return None

    return ConnectorConfig(
        name=name,
        type=connector_type,
        command=cfg.get("command"),
        args=[str(a) for a in cfg.get("args", [])],
        env=cfg.get("env"),
        url=cfg.get("url"),
        headers=cfg.get("headers"),
    )


def build_connector_config(
    connectors: dict[str, ConnectorConfig],
) -> dict[str, Any] | None:
    """Outbound connector config, or None when no connector is enabled."""
    if not connectors:
        return None
    return {
        name: connector.to_server_config()
        for name, connector in sorted(connectors.items())
    }


def discover_config_path(cwd: Path | None = None) -> Path | None:
    """Return ``<cwd>/.potato/potato.yaml`` if it exists."""
    candidate = (cwd or Path.cwd()) / CONFIG_DIRNAME / CONFIG_FILENAME
    logger.debug(
        "Config auto-discovery candidate: %s (exists=%s)",
        candidate, candidate.is_file(),
    )
    return candidate if candidate.is_file() else None


def load_yaml_config(
    path: str | Path,
    base: EngineConfig | None = None,
) -> PotatoConfig:
    """Load and parse a YAML config file over *base* (env config by default)."""
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    engine = base or EngineConfig.from_env()

    engine_raw = raw.get("engine") or {}
    for name in _ENGINE_FIELDS:
        if name in engine_raw:
            current = getattr(engine, name)
            setattr(engine, name, type(current)(engine_raw[name]))
    for name in _TOOL_TABLE_FIELDS:
        if name in engine_raw:
            setattr(engine, name, tuple(str(t) for t in engine_raw[name] or ()))

    defaults = raw.get("defaults") or {}
    if "mode" in defaults:
        engine.mode = parse_mode(defaults["mode"])
    if defaults.get("model"):
        engine.default_model = str(defaults["model"])
    if defaults.get("vault"):
        engine.vault_root = str(Path(expand_env(defaults["vault"])).expanduser())
    if defaults.get("project_dir"):
        engine.project_dir = str(Path(expand_env(defaults["project_dir"])).expanduser())

    connectors: dict[str, ConnectorConfig] = {}
    for name, cfg in (raw.get("connectors") or {}).items():
        connector = parse_connector(str(name), cfg)
        if connector is not None:
            connectors[connector.name] = connector
    engine.connector_config = build_connector_config(connectors)

    logger.info(
        "Parsed YAML config %s: mode=%s connectors=%s",
        path.name, engine.mode.value, ", ".join(sorted(connectors)) or "(none)",
    )
    return PotatoConfig(engine=engine, connectors=connectors, source=path)
