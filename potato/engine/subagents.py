"""Sub-agent lifecycle tracker.

A delegation call (``Task``) creates an AgentNode keyed by its tool id.
The event stream does not tell an intermediate progress report apart
from the final result of a sub-agent, so completion is inferred by
silence: once a result has been seen for a node, every further event
referencing it re-arms a per-node quiescence timer, and the node
finishes when the timer fires.

Timers go through a small scheduler interface so the tracker can run
on the asyncio loop in production and on a manual clock in tests.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Protocol

from potato.shared.models.agent import AgentNode

from .lifecycle import TERMINAL_STATUSES, validate_transition
from .models import AgentStatus, ToolEvent, ToolPhase

logger = logging.getLogger(__name__)

PREVIEW_LINES = 4

NodeListener = Callable[[AgentNode], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimerScheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Schedules timers on the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


def _preview(text: str) -> str:
    lines = (text or "").strip().splitlines()
    preview = "\n".join(lines[:PREVIEW_LINES])
    if len(lines) > PREVIEW_LINES:
        preview += "\n..."
    return preview


class SubagentTracker:
    """Tracks delegated sub-agent nodes for the current turn."""

    def __init__(
        self,
        quiescence_seconds: float = 5.0,
        scheduler: TimerScheduler | None = None,
        on_change: NodeListener | None = None,
    ) -> None:
        self.quiescence_seconds = quiescence_seconds
        self._scheduler: TimerScheduler = scheduler or LoopScheduler()
        self._on_change = on_change
        self._nodes: dict[str, AgentNode] = {}
        # node id -> pending quiescence timer
        self._timers: dict[str, TimerHandle] = {}

    @property
    def nodes(self) -> list[AgentNode]:
        return list(self._nodes.values())

    def get(self, node_id: str) -> AgentNode | None:
        return self._nodes.get(node_id)

    def is_tracked(self, node_id: str | None) -> bool:
        return node_id is not None and node_id in self._nodes

    def working_count(self) -> int:
        return sum(1 for n in self._nodes.values() if n.status == AgentStatus.WORKING)

    def _notify(self, node: AgentNode) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(node)
        except Exception:
            logger.debug("Agent node listener failed for %s", node.id, exc_info=True)

    def owner_of(self, event: ToolEvent) -> AgentNode | None:
        """The tracked node an event refers to, by its own or its parent id."""
        node = self._nodes.get(event.tool_id)
        if node is None and event.parent_tool_id:
            node = self._nodes.get(event.parent_tool_id)
        return node

    def on_agent_start(self, event: ToolEvent) -> AgentNode:
        """Create a WORKING node for a delegation call."""
        existing = self._nodes.get(event.tool_id)
        if existing is not None:
            self.on_agent_activity(event)
            return existing

        inp = event.input or {}
        node = AgentNode(
            id=event.tool_id,
            name=inp.get("subagent_type") or inp.get("description") or "Agent",
            description=(inp.get("description") or inp.get("prompt") or "")[:120],
        )
        node.last_active = node.created_at
        self._nodes[node.id] = node
        logger.info("Sub-agent %s started (%s)", node.id, node.name)
        self._notify(node)

        # A nested delegation counts as activity of its parent
        parent = self._nodes.get(event.parent_tool_id or "")
        if parent is not None and parent.status == AgentStatus.WORKING:
            parent.last_active = node.created_at
            if parent.id in self._timers:
                self._arm(parent.id)
        return node

    def on_agent_activity(self, event: ToolEvent) -> bool:
        """Record an event referencing a tracked node.

        Returns False when the event does not refer to a working node.
        A result for the node itself updates its error flag and arms the
        quiescence timer; any later event re-arms it.
        """
        node = self.owner_of(event)
        if node is None or node.status in TERMINAL_STATUSES:
            return False

        node.last_active = datetime.now(timezone.utc)
        if event.phase == ToolPhase.RESULT and event.tool_id == node.id:
            node.last_error = event.is_error
            if event.result_text:
                node.result_preview = _preview(event.result_text)
            self._arm(node.id)
            self._notify(node)
        elif node.id in self._timers:
            self._arm(node.id)
        return True

    def _arm(self, node_id: str) -> None:
        self._cancel_timer(node_id)
        self._timers[node_id] = self._scheduler.call_later(
            self.quiescence_seconds, lambda: self._on_quiescent(node_id),
        )

    def _cancel_timer(self, node_id: str) -> None:
        handle = self._timers.pop(node_id, None)
        if handle is not None:
            handle.cancel()

    def _on_quiescent(self, node_id: str) -> None:
        self._timers.pop(node_id, None)
        node = self._nodes.get(node_id)
        if node is None or node.status != AgentStatus.WORKING:
            return
        logger.debug("Sub-agent %s quiescent for %.1fs", node_id, self.quiescence_seconds)
        self._finish(node, AgentStatus.ERROR if node.last_error else AgentStatus.DONE)

    def _finish(self, node: AgentNode, status: AgentStatus) -> None:
        validate_transition(node.status, status)
        self._cancel_timer(node.id)
        node.status = status
        node.completed_at = datetime.now(timezone.utc)
        logger.info("Sub-agent %s -> %s", node.id, status.value)
        self._notify(node)

    def _finish_all(self, resolve: Callable[[AgentNode], AgentStatus]) -> None:
        for node in list(self._nodes.values()):
            if node.status == AgentStatus.WORKING:
                self._finish(node, resolve(node))
        for node_id in list(self._timers):
            self._cancel_timer(node_id)

    def on_turn_cancelled(self) -> None:
        """Force every working node to STOPPED."""
        self._finish_all(lambda node: AgentStatus.STOPPED)

    def on_turn_completed(self) -> None:
        """Force every working node terminal using its last error flag."""
        self._finish_all(
            lambda node: AgentStatus.ERROR if node.last_error else AgentStatus.DONE
        )

    def acknowledge(self, node_id: str) -> bool:
        """Remove a terminal node once the presentation layer has shown it."""
        node = self._nodes.get(node_id)
        if node is None or node.status not in TERMINAL_STATUSES:
            return False
        del self._nodes[node_id]
        return True

    def clear(self) -> None:
        """Drop all nodes and timers (new chat)."""
        for node_id in list(self._timers):
            self._cancel_timer(node_id)
        self._nodes.clear()
