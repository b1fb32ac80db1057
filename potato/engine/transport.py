"""Transports carry one request to the agent backend and stream back
ordered events.

ClaudeSdkTransport drives the Claude Agent SDK. The SDK asks for
permission (``can_use_tool``) whenever the agent wants a tool outside
the allowed list; the transport turns that into an ``approval`` (or
``ask``) ToolEvent and denies with interrupt so the backend pauses
while the engine decides.

Every emitted event is stamped with the request's turn token.
"""
from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import AsyncIterator, Iterable
from typing import Any, Protocol

from .errors import TransportError
from .models import (
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

PAUSE_MESSAGE = "Paused: waiting for the user to decide on this tool."


class Transport(Protocol):
    def stream(self, request: OutboundRequest) -> AsyncIterator[TransportEvent]: ...

    async def cancel(self) -> None: ...


def extract_result_text(content: Any) -> str:
    """Best-effort plain text from a tool result payload."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        if isinstance(content.get("text"), str):
            return content["text"]
        return extract_result_text(content.get("content"))
    if isinstance(content, Iterable):
        chunks = [extract_result_text(item) for item in content]
        return "\n".join(c for c in chunks if c)
    return str(content)


def map_sdk_message(
    message: Any,
    tool_names: dict[str, str],
    token: str | None = None,
) -> list[TransportEvent]:
    """Translate one SDK message into transport events.

    Duck-typed on the SDK message classes. ``tool_names`` maps tool ids
    seen in tool-use blocks to their names, so results can be labelled.
    """
    events: list[TransportEvent] = []

    if getattr(message, "subtype", None) == "init":
        data = getattr(message, "data", None) or {}
        session_id = data.get("session_id") if isinstance(data, dict) else None
        if session_id:
            events.append(SessionAssigned(session_id=session_id, token=token))
        return events

    content = getattr(message, "content", None)
    if isinstance(content, list):
        parent_id = getattr(message, "parent_tool_use_id", None)
        for block in content:
            if hasattr(block, "thinking"):
                continue
            if hasattr(block, "text"):
                if block.text:
                    events.append(TextDelta(text=block.text, token=token))
            elif hasattr(block, "name") and hasattr(block, "input"):
                tool_id = str(getattr(block, "id", ""))
                tool_names[tool_id] = block.name
                events.append(ToolActivity(token=token, tool=ToolEvent(
                    phase=ToolPhase.START,
                    tool_id=tool_id,
                    tool_name=block.name,
                    input=dict(block.input) if isinstance(block.input, dict) else {},
                    parent_tool_id=parent_id,
                )))
            elif hasattr(block, "tool_use_id"):
                tool_id = str(block.tool_use_id)
                events.append(ToolActivity(token=token, tool=ToolEvent(
                    phase=ToolPhase.RESULT,
                    tool_id=tool_id,
                    tool_name=tool_names.get(tool_id, ""),
                    result_text=extract_result_text(getattr(block, "content", "")),
                    is_error=bool(getattr(block, "is_error", False)),
                    parent_tool_id=parent_id,
                )))
        return events

    if hasattr(message, "result") or getattr(message, "subtype", None) in ("success", "error"):
        if getattr(message, "session_id", None):
            events.append(SessionAssigned(session_id=message.session_id, token=token))
        is_error = bool(getattr(message, "is_error", False))
        events.append(TurnDone(
            token=token,
            is_error=is_error,
            error=(getattr(message, "result", None) or "Agent run failed") if is_error else None,
        ))
    return events


_END = object()


class ClaudeSdkTransport:
    """Transport backed by ``claude_agent_sdk.query``."""

    def __init__(self, ask_tools: Iterable[str] = ("AskUserQuestion",)) -> None:
        self._ask_tools = frozenset(ask_tools)
        self._pump: asyncio.Task | None = None

    def _permission_handler(self, queue: asyncio.Queue, token: str):
        from claude_agent_sdk.types import PermissionResultDeny

        async def can_use_tool(tool_name: str, tool_input: dict, context: Any):
            phase = ToolPhase.ASK if tool_name in self._ask_tools else ToolPhase.APPROVAL
            tool_id = str(getattr(context, "tool_use_id", None) or f"perm-{uuid.uuid4().hex[:12]}")
            logger.info("Backend requested permission for %s (%s)", tool_name, phase.value)
            await queue.put(ToolActivity(token=token, tool=ToolEvent(
                phase=phase,
                tool_id=tool_id,
                tool_name=tool_name,
                input=dict(tool_input or {}),
            )))
            return PermissionResultDeny(message=PAUSE_MESSAGE, interrupt=True)

        return can_use_tool

    def _build_options(self, request: OutboundRequest, queue: asyncio.Queue):
        from claude_agent_sdk import ClaudeAgentOptions

        def _capture_stderr(line: str) -> None:
            logger.debug("claude stderr: %s", line.rstrip())

        options_kwargs: dict[str, Any] = dict(
            allowed_tools=list(request.allowed_tools),
            model=request.model,
            cwd=request.working_directory,
            can_use_tool=self._permission_handler(queue, request.turn_token),
            stderr=_capture_stderr,
        )
        if request.system_prompt is not None:
            options_kwargs["system_prompt"] = request.system_prompt
        if request.backend_session_id:
            options_kwargs["resume"] = request.backend_session_id
        if request.connector_config:
            options_kwargs["mcp_servers"] = request.connector_config
        # A nested launch is refused while this variable is set.
        os.environ.pop("CLAUDECODE", None)
        return ClaudeAgentOptions(**options_kwargs)

    async def _run_query(self, request: OutboundRequest, queue: asyncio.Queue) -> None:
        try:
            from claude_agent_sdk import query

            options = self._build_options(request, queue)

            # can_use_tool needs a streaming prompt rather than a plain string
            async def _prompt_stream():
                yield {
                    "type": "user",
                    "message": {"role": "user", "content": request.message},
                }

            tool_names: dict[str, str] = {}
            async for message in query(prompt=_prompt_stream(), options=options):
                for event in map_sdk_message(message, tool_names, request.turn_token):
                    await queue.put(event)
        except asyncio.CancelledError:
            raise
        except ImportError as exc:
            logger.error("claude_agent_sdk is not installed: %s", exc)
            await queue.put(TransportFailure(
                token=request.turn_token,
                error="claude-agent-sdk is not installed",
            ))
        except Exception as exc:
            logger.warning("Agent query failed: %s", exc, exc_info=True)
            await queue.put(TransportFailure(token=request.turn_token, error=str(exc)))
        finally:
            queue.put_nowait(_END)

    async def stream(self, request: OutboundRequest) -> AsyncIterator[TransportEvent]:
        if self._pump is not None and not self._pump.done():
            raise TransportError("A request is already streaming on this transport")

        queue: asyncio.Queue = asyncio.Queue()
        logger.info(
            "Dispatching request model=%s resume=%s tools=%d cwd=%s",
            request.model, request.backend_session_id,
            len(request.allowed_tools), request.working_directory,
        )
        self._pump = asyncio.create_task(self._run_query(request, queue))
        pump = self._pump
        try:
            while True:
                event = await queue.get()
                if event is _END:
                    return
                yield event
        finally:
            await self._stop(pump)

    @staticmethod
    async def _stop(pump: asyncio.Task) -> None:
        # Wait for the cancelled query to unwind so the next stream can start.
        if pump.done():
            return
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass

    async def cancel(self) -> None:
        pump = self._pump
        if pump is not None and not pump.done():
            logger.info("Cancelling in-flight agent request")
            await self._stop(pump)
