"""Notice types emitted by the turn controller.

Each notice corresponds to an engine callback dict, parsed into a typed
dataclass for safe consumption by the TUI and the headless console.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class EngineNotice:
    """Base notice from the orchestration engine."""
    event_type: str = ""
    local_id: str | None = None


@dataclass
class TurnStateChanged(EngineNotice):
    event_type: str = "turn_state_changed"
    state: str = ""


@dataclass
class TextDeltaNotice(EngineNotice):
    event_type: str = "text_delta"
    text: str = ""


@dataclass
class AssistantMessage(EngineNotice):
    event_type: str = "assistant_message"
    content: str = ""


@dataclass
class ToolStarted(EngineNotice):
    event_type: str = "tool_started"
    tool_id: str = ""
    tool_name: str = ""
    input: dict[str, Any] = field(default_factory=dict)
    parent_tool_id: str | None = None


@dataclass
class ToolFinished(EngineNotice):
    event_type: str = "tool_finished"
    tool_id: str = ""
    tool_name: str = ""
    result: str = ""
    is_error: bool = False


@dataclass
class ToolRejected(EngineNotice):
    """Transient inline marker for an automatic policy rejection."""
    event_type: str = "tool_rejected"
    tool_name: str = ""
    attempt: int = 0
    limit: int = 0


@dataclass
class ApprovalRequested(EngineNotice):
    event_type: str = "approval_requested"
    tool_id: str = ""
    tool_name: str = ""
    tool_class: str = ""
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class ApprovalResolved(EngineNotice):
    event_type: str = "approval_resolved"
    tool_name: str = ""
    decision: str = ""


@dataclass
class QuestionRequested(EngineNotice):
    event_type: str = "question_requested"
    tool_id: str = ""
    questions: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class AgentNodeChanged(EngineNotice):
    event_type: str = "agent_node_changed"
    node_id: str = ""
    name: str = ""
    description: str = ""
    status: str = ""
    preview: str = ""


@dataclass
class TurnError(EngineNotice):
    event_type: str = "turn_error"
    error: str = ""


@dataclass
class SessionChanged(EngineNotice):
    event_type: str = "session_changed"
    title: str = ""
    mode: str = ""


_EVENT_MAP: dict[str, type[EngineNotice]] = {
    "turn_state_changed": TurnStateChanged,
    "text_delta": TextDeltaNotice,
    "assistant_message": AssistantMessage,
    "tool_started": ToolStarted,
    "tool_finished": ToolFinished,
    "tool_rejected": ToolRejected,
    "approval_requested": ApprovalRequested,
    "approval_resolved": ApprovalResolved,
    "question_requested": QuestionRequested,
    "agent_node_changed": AgentNodeChanged,
    "turn_error": TurnError,
    "session_changed": SessionChanged,
}


def event_to_dict(event: EngineNotice) -> dict[str, Any]:
    """Convert a typed notice to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is not None:
            d[f] = val
    # "event" key instead of "event_type", matching the engine callbacks
    if "event_type" in d:
        d["event"] = d.pop("event_type")
    return d


def dict_to_event(data: dict[str, Any]) -> EngineNotice:
    """Convert an engine callback dict to a typed notice."""
    event_type = data.get("event", "")
    cls = _EVENT_MAP.get(event_type, EngineNotice)
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    if "event" in data and "event_type" not in filtered:
        filtered["event_type"] = data["event"]
    return cls(**filtered)
