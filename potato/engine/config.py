"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via POTATO_* env vars or
a YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .models import CapabilityMode

logger = logging.getLogger(__name__)


# Optional async callback for real-time event observation.
# Signature: async def callback(event: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set. Callback errors never break a turn."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.debug(
            "Event callback failed for %s", event.get("event"), exc_info=True,
        )


@dataclass
class EngineConfig:
    """Orchestration engine configuration."""

    default_model: str = "claude-sonnet-4-5-20250929"
    mode: CapabilityMode = CapabilityMode.VAULT
    # Active vault root; write-class tools in vault mode must target it.
    vault_root: str | None = None
    # Source directory for project mode. Falls back to the vault root.
    project_dir: str | None = None

    # Automatic reject-and-resubmit cycles allowed per user turn.
    max_auto_retries: int = 2
    # Silence after a sub-agent result before it is inferred complete.
    agent_quiescence_seconds: float = 5.0

    # History store
    history_limit: int = 50
    title_max_chars: int = 60

    # Tool tables
    vault_auto_tools: tuple[str, ...] = (
        "Read", "Glob", "Grep", "WebSearch", "WebFetch", "Task",
    )
    project_base_tools: tuple[str, ...] = (
        "Read", "Glob", "Grep", "WebFetch", "WebSearch",
    )
    write_tools: tuple[str, ...] = ("Write", "Edit", "MultiEdit")
    shell_tools: tuple[str, ...] = ("Bash",)
    delegation_tools: tuple[str, ...] = ("Task",)
    ask_tools: tuple[str, ...] = ("AskUserQuestion",)
    connector_prefix: str = "mcp__"

    # External service connector servers, passed through to the transport.
    # None when no connector is enabled.
    connector_config: dict[str, Any] | None = field(default=None, repr=False)

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from POTATO_* environment variables."""
        potato_vars = {
            k: v for k, v in os.environ.items() if k.startswith("POTATO_")
        }
        if potato_vars:
            logger.info(
                "EngineConfig.from_env: POTATO_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(potato_vars.items())),
            )
        else:
            logger.debug("EngineConfig.from_env: no POTATO_* env vars set, using defaults")

        config = cls(
            default_model=os.getenv("POTATO_MODEL", cls.default_model),
            mode=parse_mode(os.getenv("POTATO_MODE", cls.mode.value)),
            vault_root=os.getenv("POTATO_VAULT") or None,
            project_dir=os.getenv("POTATO_PROJECT_DIR") or None,
            max_auto_retries=int(os.getenv(
                "POTATO_MAX_RETRIES", str(cls.max_auto_retries)
            )),
            agent_quiescence_seconds=float(os.getenv(
                "POTATO_QUIESCENCE", str(cls.agent_quiescence_seconds)
            )),
            history_limit=int(os.getenv(
                "POTATO_HISTORY_LIMIT", str(cls.history_limit)
            )),
            log_level=os.getenv("POTATO_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "EngineConfig.from_env: model=%s mode=%s vault=%s project=%s",
            config.default_model, config.mode.value,
            config.vault_root, config.project_dir,
        )
        return config


def parse_mode(value: str | CapabilityMode | None) -> CapabilityMode:
    """Parse a mode string, defaulting to vault for unknown values."""
    if isinstance(value, CapabilityMode):
        return value
    try:
        return CapabilityMode((value or "").strip().lower())
    except ValueError:
        logger.warning("Unknown capability mode %r, using vault", value)
        return CapabilityMode.VAULT
