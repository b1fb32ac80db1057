"""Potato engine: tool orchestration for one agent conversation."""
from .models import (
    AgentStatus,
    ApprovalDecision,
    CapabilityMode,
    OutboundRequest,
    PendingApproval,
    SandboxVerdict,
    ToolClass,
    ToolEvent,
    ToolPhase,
    TurnOutcome,
    TurnState,
)
from .config import EngineConfig
from .errors import (
    ApprovalStateError,
    EngineError,
    InvalidTransitionError,
    MalformedToolInputError,
    RetryLimitExceededError,
    TransportError,
    TurnInFlightError,
)
from .retry import RetryGovernor
from .sandbox import SandboxPolicy

__all__ = [
    # Controller (lazy import to avoid circular deps)
    "TurnController",
    # Models
    "AgentStatus",
    "ApprovalDecision",
    "CapabilityMode",
    "OutboundRequest",
    "PendingApproval",
    "SandboxVerdict",
    "ToolClass",
    "ToolEvent",
    "ToolPhase",
    "TurnOutcome",
    "TurnState",
    # Config
    "EngineConfig",
    # YAML config (lazy import)
    "PotatoConfig",
    "load_yaml_config",
    # Policy and workflows
    "SandboxPolicy",
    "RetryGovernor",
    "ApprovalWorkflow",
    "SubagentTracker",
    # Transports (lazy import)
    "ClaudeSdkTransport",
    # Errors
    "ApprovalStateError",
    "EngineError",
    "InvalidTransitionError",
    "MalformedToolInputError",
    "RetryLimitExceededError",
    "TransportError",
    "TurnInFlightError",
]


def __getattr__(name: str):
    if name == "TurnController":
        from .controller import TurnController
        return TurnController
    if name == "PotatoConfig":
        from .yaml_config import PotatoConfig
        return PotatoConfig
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "ApprovalWorkflow":
        from .approval import ApprovalWorkflow
        return ApprovalWorkflow
    if name == "SubagentTracker":
        from .subagents import SubagentTracker
        return SubagentTracker
    if name == "ClaudeSdkTransport":
        from .transport import ClaudeSdkTransport
        return ClaudeSdkTransport
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
