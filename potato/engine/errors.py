"""Exception hierarchy for the orchestration engine.

Every failure is scoped to the current turn; none of these is meant
to reach the host process uncaught.
"""
from __future__ import annotations


class EngineError(Exception):
    """Base exception for all engine errors."""


class TurnInFlightError(EngineError):
    """A turn was started while another one is still in flight."""
    def __init__(self, local_id: str):
        self.local_id = local_id
        super().__init__(f"Session {local_id} already has a turn in flight")


class ApprovalStateError(EngineError):
    """Approval decision issued in the wrong state."""


class MalformedToolInputError(EngineError):
    """A known tool arrived without a field it requires."""
    def __init__(self, tool_name: str, missing: str):
        self.tool_name = tool_name
        self.missing = missing
        super().__init__(
            f"Tool '{tool_name}' is missing required input '{missing}'"
        )


class InvalidTransitionError(EngineError, ValueError):
    """Illegal sub-agent status transition."""


class TransportError(EngineError):
    """Request could not be dispatched or the stream was dropped."""


class RetryLimitExceededError(EngineError):
    """Too many automatic rejections in one turn."""
    def __init__(self, tool_name: str, attempts: int, limit: int):
        self.tool_name = tool_name
        self.attempts = attempts
        self.limit = limit
        super().__init__(
            f"Tool '{tool_name}' rejected {attempts} times; "
            f"retry limit of {limit} reached"
        )
