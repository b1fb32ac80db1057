"""Delegated sub-agent node model.

Status values come from potato.engine.models (single source of truth);
transitions are enforced by potato.engine.lifecycle.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from potato.engine.models import AgentStatus

__all__ = ["AgentNode", "AgentStatus"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AgentNode:
    """One delegated task, keyed by the tool id of its delegation call."""
    id: str
    name: str
    description: str = ""
    status: AgentStatus = AgentStatus.WORKING

    # Error flag of the most recent result-phase event for this node
    last_error: bool = False
    result_preview: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    last_active: datetime | None = None
    completed_at: datetime | None = None
