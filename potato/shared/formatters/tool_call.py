"""Tool call formatting for the chat log and the approval dialog.

A registry of per-tool formatters produces a small intermediate
representation; the TUI and the headless console render it with Rich.

Adding a new tool format requires only a decorated function:

    @tool_formatter("MyTool")
    def _format_my_tool(name, args, result, success):
        return FormattedToolCall(icon="*", label=..., preview=...)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable

COMMAND_LABEL_CHARS = 50
PREVIEW_CHARS = 2000


@dataclass
class FormattedToolCall:
    """Structured representation of a formatted tool call.

    ``label`` is the short one-line description shown next to the tool
    name (``$ ls -la``, a file path, a search pattern). ``preview`` is
    the longer body shown when the user is asked to approve the call.
    """

    icon: str = ""
    name: str = ""
    label: str = ""
    file_path: str = ""
    preview: str = ""
    preview_language: str = "text"
    result: str = ""
    success: bool = True


# ── Formatter Registry ──

_FORMATTERS: dict[str, Callable[..., FormattedToolCall]] = {}


def tool_formatter(*names: str):
    """Decorator to register a formatter for one or more tool names."""

    def decorator(fn: Callable[..., FormattedToolCall]):
        for name in names:
            _FORMATTERS[name] = fn
        return fn

    return decorator


def format_tool_call(
    name: str,
    args: dict[str, Any] | None = None,
    result: str | None = None,
    success: bool = True,
) -> FormattedToolCall:
    """Dispatch to a registered formatter or the default."""
    formatter = _FORMATTERS.get(name, _format_default)
    formatted = formatter(name, dict(args or {}), result, success)
    formatted.name = name
    formatted.result = result or ""
    formatted.success = success
    return formatted


def tool_label(name: str, args: dict[str, Any] | None = None) -> str:
    return format_tool_call(name, args).label


# ── Helpers ──


def _trunc(text: str, length: int = PREVIEW_CHARS) -> str:
    if not text or len(text) <= length:
        return text or ""
    return text[:length] + "\n..."


def _json_preview(args: dict[str, Any]) -> str:
    if not args:
        return ""
    return _trunc(json.dumps(args, indent=2, ensure_ascii=False, default=str))


# ── Formatters ──


@tool_formatter("Bash")
def _format_bash(name: str, args: dict, result: str | None, success: bool) -> FormattedToolCall:
    command = str(args.get("command", ""))
    return FormattedToolCall(
        icon="$",
        label=f"$ {command[:COMMAND_LABEL_CHARS]}",
        preview=command,
        preview_language="bash",
    )


@tool_formatter("Read")
def _format_read(name: str, args: dict, result: str | None, success: bool) -> FormattedToolCall:
    file_path = args.get("file_path", "")
    return FormattedToolCall(icon="\U0001f4c4", label=file_path, file_path=file_path)


@tool_formatter("Write")
def _format_write(name: str, args: dict, result: str | None, success: bool) -> FormattedToolCall:
    file_path = args.get("file_path", "")
    return FormattedToolCall(
        icon="\U0001f4dd",
        label=file_path,
        file_path=file_path,
        preview=_trunc(str(args.get("content", ""))),
        preview_language="markdown",
    )


@tool_formatter("Edit", "MultiEdit")
def _format_edit(name: str, args: dict, result: str | None, success: bool) -> FormattedToolCall:
    file_path = args.get("file_path", "")
    edits = args.get("edits") if isinstance(args.get("edits"), list) else [args]
    lines: list[str] = []
    for edit in edits:
        if not isinstance(edit, dict):
            continue
        for old in str(edit.get("old_string", "")).splitlines():
            lines.append(f"- {old}")
        for new in str(edit.get("new_string", "")).splitlines():
            lines.append(f"+ {new}")
    return FormattedToolCall(
        icon="✏️",
        label=file_path,
        file_path=file_path,
        preview=_trunc("\n".join(lines)),
        preview_language="diff",
    )


@tool_formatter("Glob", "Grep")
def _format_search(name: str, args: dict, result: str | None, success: bool) -> FormattedToolCall:
    return FormattedToolCall(icon="\U0001f50d", label=str(args.get("pattern", "")))


@tool_formatter("WebSearch", "WebFetch")
def _format_web(name: str, args: dict, result: str | None, success: bool) -> FormattedToolCall:
    return FormattedToolCall(
        icon="\U0001f310",
        label=str(args.get("query") or args.get("url") or ""),
    )


@tool_formatter("Task")
def _format_task(name: str, args: dict, result: str | None, success: bool) -> FormattedToolCall:
    return FormattedToolCall(
        icon="\U0001f916",
        label=str(args.get("subagent_type") or args.get("description") or ""),
        preview=_trunc(str(args.get("prompt", ""))),
    )


def _format_default(name: str, args: dict, result: str | None, success: bool) -> FormattedToolCall:
    icon = "\U0001f50c" if name.startswith("mcp__") else "\U0001f527"
    return FormattedToolCall(icon=icon, label="", preview=_json_preview(args), preview_language="json")
