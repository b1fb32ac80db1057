"""Replay transport: plays back recorded event scripts, one per request.

Recording format (JSON), a list of responses, each a list of events:

    [
      [
        {"type": "session", "session_id": "s-1"},
        {"type": "text", "text": "Let me update it."},
        {"type": "tool", "phase": "approval", "tool_id": "t1",
         "tool_name": "Write", "input": {"file_path": "/vault/a.md", "content": "x"}},
        {"type": "done"}
      ],
      [...]
    ]
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Sequence
from pathlib import Path
from typing import Any

from potato.engine.errors import TransportError
from potato.engine.models import (
    OutboundRequest,
    SessionAssigned,
    TextDelta,
    ToolActivity,
    ToolEvent,
    ToolPhase,
    TransportEvent,
    TransportFailure,
    TurnDone,
)

logger = logging.getLogger(__name__)


def transport_event_from_dict(data: dict[str, Any], token: str | None = None) -> TransportEvent:
    """Parse one recorded event. Raises ValueError on unknown types."""
    kind = data.get("type", "")
    if kind == "session":
        return SessionAssigned(session_id=str(data.get("session_id", "")), token=token)
    if kind == "text":
        return TextDelta(text=str(data.get("text", "")), token=token)
    if kind == "tool":
        return ToolActivity(token=token, tool=ToolEvent(
            phase=ToolPhase(data.get("phase", "start")),
            tool_id=str(data.get("tool_id", "")),
            tool_name=str(data.get("tool_name", "")),
            input=dict(data.get("input") or {}),
            result_text=str(data.get("result", "")),
            is_error=bool(data.get("is_error", False)),
            parent_tool_id=data.get("parent_tool_id"),
        ))
    if kind == "done":
        return TurnDone(
            token=token,
            is_error=bool(data.get("is_error", False)),
            error=data.get("error"),
        )
    if kind == "failure":
        return TransportFailure(token=token, error=str(data.get("error", "stream dropped")))
    raise ValueError(f"Unknown recorded event type: {kind!r}")


class ReplayTransport:
    """Plays recorded responses in order and records every request."""

    def __init__(self, responses: Sequence[Sequence[dict[str, Any]]], delay: float = 0.0) -> None:
        self._responses = [list(r) for r in responses]
        self._delay = delay
        self.requests: list[OutboundRequest] = []
        self.cancelled = 0

    @classmethod
    def from_file(cls, path: str | Path, delay: float = 0.0) -> ReplayTransport:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("responses", [])
        if not isinstance(data, list):
            raise ValueError(f"Replay file {path} must hold a list of responses")
        return cls(data, delay=delay)

    @property
    def remaining(self) -> int:
        return len(self._responses)

    async def stream(self, request: OutboundRequest) -> AsyncIterator[TransportEvent]:
        self.requests.append(request)
        if not self._responses:
            raise TransportError("No recorded response left to replay")
        script = self._responses.pop(0)
        logger.debug("Replaying %d event(s) for request %d", len(script), len(self.requests))
        for raw in script:
            if self._delay:
                await asyncio.sleep(self._delay)
            yield transport_event_from_dict(raw, token=request.turn_token)

    async def cancel(self) -> None:
        self.cancelled += 1
