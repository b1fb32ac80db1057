"""Custom agent catalog discovered from ``.claude/agents/*.md``.

Each agent file starts with YAML frontmatter carrying ``name`` and
``description``. The catalog only feeds the vault system prompt; the
backend resolves the agents itself from the same directory.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

AGENTS_SUBDIR = Path(".claude") / "agents"

_FRONTMATTER_PATTERN = re.compile(
    r"^---\s*\n(.*?)\n---\s*\n?(.*)$",
    re.DOTALL,
)


@dataclass(frozen=True)
class AgentSpec:
    name: str
    description: str
    path: Path


def _parse_frontmatter(content: str) -> dict[str, Any]:
    match = _FRONTMATTER_PATTERN.match(content)
    if not match:
        raise ValueError("missing YAML frontmatter")
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise ValueError(f"invalid YAML in frontmatter: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("frontmatter must be a YAML mapping")
    return data


def load_agent_file(path: Path) -> AgentSpec | None:
    """Parse one agent file. Returns None if it cannot be used."""
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Error reading agent file %s: %s", path, e)
        return None
    try:
        meta = _parse_frontmatter(content)
    except ValueError as e:
        logger.warning("Skipping agent file %s: %s", path, e)
        return None

    name = str(meta.get("name") or path.stem).strip()
    description = " ".join(str(meta.get("description") or "").split())
    return AgentSpec(name=name, description=description, path=path)


def discover_agents(base_dir: str | Path | None) -> list[AgentSpec]:
    """List the agents under ``<base_dir>/.claude/agents``, sorted by name."""
    if not base_dir:
        return []
    agents_dir = Path(base_dir).expanduser() / AGENTS_SUBDIR
    if not agents_dir.is_dir():
        logger.debug("No agents directory at %s", agents_dir)
        return []

    agents = []
    for path in sorted(agents_dir.glob("*.md")):
        agent = load_agent_file(path)
        if agent is not None:
            agents.append(agent)
    logger.info("Discovered %d custom agent(s) in %s", len(agents), agents_dir)
    return sorted(agents, key=lambda a: a.name.lower())
