"""Core data models for the tool-orchestration engine.

All enums, dataclasses and inbound transport events live here so the
policy, workflow and controller modules can share them without circular
imports.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CapabilityMode(str, Enum):
    """Sandbox profile for a chat."""
    VAULT = "vault"
    PROJECT = "project"


class SandboxVerdict(str, Enum):
    AUTO_ALLOW = "auto_allow"
    NEEDS_APPROVAL = "needs_approval"
    AUTO_REJECT = "auto_reject"


class ToolPhase(str, Enum):
    """Phase of a tool invocation as reported by the transport."""
    ASK = "ask"
    APPROVAL = "approval"
    START = "start"
    RESULT = "result"


class ToolClass(str, Enum):
    """Closed set of tool classes driving approve/deny instructions."""
    WRITE = "write"
    SHELL = "shell"
    CONNECTOR = "connector"
    GENERIC = "generic"


class ApprovalDecision(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class AgentStatus(str, Enum):
    """Sub-agent node states. See lifecycle.py for transition rules."""
    WORKING = "working"
    DONE = "done"
    ERROR = "error"
    STOPPED = "stopped"


class TurnState(str, Enum):
    """Per-turn state machine of the Turn Controller."""
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    AWAITING_APPROVAL = "awaiting_approval"
    AWAITING_ANSWER = "awaiting_answer"
    ABORTED = "aborted"
    COMPLETED = "completed"


SUSPENDED_STATES: frozenset[TurnState] = frozenset({
    TurnState.AWAITING_APPROVAL,
    TurnState.AWAITING_ANSWER,
})


def new_turn_token() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class ToolEvent:
    """One tool invocation report. Never mutated by the engine.

    ``parent_tool_id`` is set when the event was produced inside a
    delegated sub-agent whose own tool id is ``parent_tool_id``.
    """
    phase: ToolPhase
    tool_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    result_text: str = ""
    is_error: bool = False
    parent_tool_id: str | None = None


@dataclass
class PendingApproval:
    tool_event: ToolEvent
    decision: ApprovalDecision = ApprovalDecision.PENDING


@dataclass(frozen=True)
class OutboundRequest:
    """Everything the transport needs to dispatch one request."""
    message: str
    backend_session_id: str | None
    model: str
    working_directory: str | None
    allowed_tools: list[str]
    system_prompt: str | None = None
    connector_config: dict[str, Any] | None = None
    turn_token: str = field(default_factory=new_turn_token)


# ── Inbound transport events ──


@dataclass
class TransportEvent:
    """Base event delivered by a transport for one request."""
    event_type: str = ""
    token: str | None = None


@dataclass
class SessionAssigned(TransportEvent):
    event_type: str = "session_assigned"
    session_id: str = ""


@dataclass
class TextDelta(TransportEvent):
    event_type: str = "text_delta"
    text: str = ""


@dataclass
class ToolActivity(TransportEvent):
    event_type: str = "tool"
    tool: ToolEvent | None = None


@dataclass
class TurnDone(TransportEvent):
    event_type: str = "done"
    is_error: bool = False
    error: str | None = None


@dataclass
class TransportFailure(TransportEvent):
    """The stream was dropped mid-turn."""
    event_type: str = "transport_failure"
    error: str = ""


@dataclass(frozen=True)
class TurnOutcome:
    """Terminal or suspended result of driving a turn."""
    state: TurnState
    error: str | None = None
    pending: PendingApproval | None = None
    question: ToolEvent | None = None

    @property
    def suspended(self) -> bool:
        return self.state in SUSPENDED_STATES
