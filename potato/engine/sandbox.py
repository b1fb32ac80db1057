"""Sandbox policy: decides what happens to a requested tool.

Pure functions of (mode, tool, input, allow-list); no side effects.

Vault mode:
    - search/read/web/delegation primitives are auto-allowed
    - write-class tools need approval when they target a path inside
      the vault root, and are auto-rejected otherwise
    - connector tools (namespaced ``mcp__server__tool``) always need
      approval, whatever was approved before
    - anything else is auto-rejected

Project mode:
    - the base set plus the session allow-list is auto-allowed
    - anything else needs approval on first use
"""
from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from typing import Any

from .config import EngineConfig
from .errors import MalformedToolInputError
from .models import CapabilityMode, SandboxVerdict, ToolClass

logger = logging.getLogger(__name__)

# Keys carrying the target path of write-class tools
PATH_KEYS = ("file_path", "notebook_path", "path")


def target_path(tool_input: Mapping[str, Any] | None) -> str | None:
    """Return the target path of a file tool, or None if absent."""
    if not tool_input:
        return None
    for key in PATH_KEYS:
        value = tool_input.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def is_within(path: str, root: str) -> bool:
    """True if *path* lies inside *root* after normalization.

    Relative paths are never inside. ``..`` segments are collapsed
    first, so ``/vault/../etc`` is outside ``/vault``.
    """
    root_norm = os.path.normpath(os.path.expanduser(root))
    candidate = os.path.expanduser(path)
    if not os.path.isabs(candidate):
        return False
    candidate = os.path.normpath(candidate)
    try:
        return os.path.commonpath([candidate, root_norm]) == root_norm
    except ValueError:
        # Different drives on Windows
        return False


class SandboxPolicy:
    """Capability sandbox for one engine configuration."""

    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    @property
    def config(self) -> EngineConfig:
        return self._config

    def is_connector(self, tool_name: str) -> bool:
        return tool_name.startswith(self._config.connector_prefix)

    def is_write(self, tool_name: str) -> bool:
        return tool_name in self._config.write_tools

    def is_delegation(self, tool_name: str) -> bool:
        return tool_name in self._config.delegation_tools

    def is_ask(self, tool_name: str) -> bool:
        return tool_name in self._config.ask_tools

    def classify(self, tool_name: str) -> ToolClass:
        if self.is_connector(tool_name):
            return ToolClass.CONNECTOR
        if self.is_write(tool_name):
            return ToolClass.WRITE
        if tool_name in self._config.shell_tools:
            return ToolClass.SHELL
        return ToolClass.GENERIC

    def validate_input(
        self,
        tool_name: str,
        tool_input: Mapping[str, Any] | None,
    ) -> None:
        """Raise MalformedToolInputError if a known tool lacks its required field."""
        tool_class = self.classify(tool_name)
        if tool_class == ToolClass.WRITE and target_path(tool_input) is None:
            raise MalformedToolInputError(tool_name, "file_path")
        if tool_class == ToolClass.SHELL:
            command = (tool_input or {}).get("command")
            if not isinstance(command, str) or not command.strip():
                raise MalformedToolInputError(tool_name, "command")

    def base_tools(self, mode: CapabilityMode) -> tuple[str, ...]:
        if mode == CapabilityMode.VAULT:
            return self._config.vault_auto_tools
        return self._config.project_base_tools

    def allowed_tools(
        self,
        mode: CapabilityMode,
        session_approved: Iterable[str] = (),
    ) -> list[str]:
        """Union of the mode's base set and the session allow-list, ordered."""
        allowed = list(self.base_tools(mode))
        for name in sorted(session_approved):
            if name not in allowed:
                allowed.append(name)
        return allowed

    def decide(
        self,
        mode: CapabilityMode,
        tool_name: str,
        tool_input: Mapping[str, Any] | None = None,
        *,
        vault_root: str | None = None,
        session_approved: Iterable[str] = (),
    ) -> SandboxVerdict:
        """Return the verdict for one tool request.

        Raises MalformedToolInputError when a known tool lacks a field it
        needs: there is nothing to approve.
        """
        self.validate_input(tool_name, tool_input)
        if mode == CapabilityMode.VAULT:
            verdict = self._decide_vault(tool_name, tool_input, vault_root)
        else:
            verdict = self._decide_project(tool_name, session_approved)
        logger.debug("Sandbox verdict mode=%s tool=%s -> %s", mode.value, tool_name, verdict.value)
        return verdict

    def _decide_vault(
        self,
        tool_name: str,
        tool_input: Mapping[str, Any] | None,
        vault_root: str | None,
    ) -> SandboxVerdict:
        if tool_name in self._config.vault_auto_tools:
            return SandboxVerdict.AUTO_ALLOW
        if self.is_connector(tool_name):
            return SandboxVerdict.NEEDS_APPROVAL
        if self.is_write(tool_name):
            path = target_path(tool_input) or ""
            if vault_root and is_within(path, vault_root):
                return SandboxVerdict.NEEDS_APPROVAL
            logger.info("Write outside vault rejected: %s (vault=%s)", path, vault_root)
            return SandboxVerdict.AUTO_REJECT
        return SandboxVerdict.AUTO_REJECT

    def _decide_project(
        self,
        tool_name: str,
        session_approved: Iterable[str],
    ) -> SandboxVerdict:
        if tool_name in self._config.project_base_tools:
            return SandboxVerdict.AUTO_ALLOW
        if tool_name in set(session_approved):
            return SandboxVerdict.AUTO_ALLOW
        return SandboxVerdict.NEEDS_APPROVAL
