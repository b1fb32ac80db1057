"""Sub-agent lifecycle state machine.

State Diagram:

    WORKING ──┬──> DONE
              ├──> ERROR
              └──> STOPPED

Terminal states never return to WORKING. Invalid transitions raise
InvalidTransitionError rather than silently proceeding.
"""
from __future__ import annotations

from .errors import InvalidTransitionError
from .models import AgentStatus

VALID_TRANSITIONS: dict[AgentStatus, set[AgentStatus]] = {
    AgentStatus.WORKING: {
        AgentStatus.DONE,
        AgentStatus.ERROR,
        AgentStatus.STOPPED,
    },
    AgentStatus.DONE: set(),
    AgentStatus.ERROR: set(),
    AgentStatus.STOPPED: set(),
}

TERMINAL_STATUSES: frozenset[AgentStatus] = frozenset({
    AgentStatus.DONE,
    AgentStatus.ERROR,
    AgentStatus.STOPPED,
})


def validate_transition(current: AgentStatus, target: AgentStatus) -> None:
    """Validate a status transition. Raises InvalidTransitionError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise InvalidTransitionError(
            f"Invalid status transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
