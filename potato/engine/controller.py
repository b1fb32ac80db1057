"""Turn controller: drives one request/response turn at a time.

State Diagram (per turn):

    IDLE ──> AWAITING_RESPONSE ──┬──> COMPLETED
                  ^              ├──> ABORTED
                  |              ├──> AWAITING_APPROVAL ──┐
                  |              └──> AWAITING_ANSWER ────┤
                  └───────────── approve/deny/answer ─────┘

Every request carries a fresh turn token. Events are applied only while
their token matches the active one; suspension and cancellation drop
the active token synchronously, so late events from an abandoned
stream are discarded instead of applied.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from potato.shared.models.agent import AgentNode
from potato.shared.models.session import ConversationSession
from potato.shared.services.history import HistoryStore

from .agent_catalog import AgentSpec, discover_agents
from .approval import APPROVAL_INSTRUCTIONS, ApprovalWorkflow
from .config import EngineConfig, EventCallback, fire_event
from .errors import ApprovalStateError, MalformedToolInputError, TransportError, TurnInFlightError
from .models import (
    CapabilityMode,
    OutboundRequest,
    SandboxVerdict,
    SessionAssigned,
    TextDelta,
    ToolActivity,
    ToolEvent,
    ToolPhase,
    TransportFailure,
    TurnDone,
    TurnOutcome,
    TurnState,
)
from .prompts import NoteContext, compose_message, context_prefix, system_prompt_for, working_directory
from .retry import RetryGovernor
from .sandbox import SandboxPolicy
from .subagents import SubagentTracker, TimerScheduler
from .transport import Transport

logger = logging.getLogger(__name__)

CANCELLED_ERROR = "Cancelled by user"
_ACTIVE_STATES = frozenset({
    TurnState.AWAITING_RESPONSE,
    TurnState.AWAITING_APPROVAL,
    TurnState.AWAITING_ANSWER,
})


@dataclass(frozen=True)
class _Step:
    """What to do after one streamed request: stop with *outcome* or resubmit."""
    outcome: TurnOutcome | None = None
    resubmit: str | None = None


def format_answers(answers: Mapping[str, str] | str) -> str:
    """Reply text for the ask primitive, one line per answered question.

    Raises ApprovalStateError when nothing was answered.
    """
    if isinstance(answers, str):
        if not answers.strip():
            raise ApprovalStateError("No answer given")
        return f"My answer: {answers}"
    items = [(q, a) for q, a in answers.items() if str(a).strip()]
    if not items:
        raise ApprovalStateError("No answer given")
    if len(items) == 1:
        return f"My answer: {items[0][1]}"
    lines = [f"- {question}: {answer}" for question, answer in items]
    return "My answers:\n" + "\n".join(lines)


class TurnController:
    """Owns the conversation session and drives its turns.

    Routes tool events to the sandbox policy, approval workflow, retry
    governor and sub-agent tracker, and fires notices for the UI via
    ``event_callback``.
    """

    def __init__(
        self,
        config: EngineConfig,
        transport: Transport,
        *,
        history: HistoryStore | None = None,
        event_callback: EventCallback | None = None,
        scheduler: TimerScheduler | None = None,
        agents: Sequence[AgentSpec] | None = None,
        session: ConversationSession | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.history = history
        self._event_callback = event_callback
        self.policy = SandboxPolicy(config)
        self.retry = RetryGovernor(config.max_auto_retries)
        self.approvals = ApprovalWorkflow(self.policy)
        self.tracker = SubagentTracker(
            config.agent_quiescence_seconds,
            scheduler=scheduler,
            on_change=self._on_node_changed,
        )
        self.session = session or ConversationSession(
            model=config.default_model, mode=config.mode,
        )
        if agents is None:
            agents = discover_agents(config.project_dir or config.vault_root)
        self.agents: list[AgentSpec] = list(agents)
        self.note: NoteContext | None = None

        self.state = TurnState.IDLE
        self._active_token: str | None = None
        self._segments: list[str] = []
        self._question: ToolEvent | None = None
        self._auto_resumes = 0
        self._background: set[asyncio.Task] = set()

    # ── Properties ──

    @property
    def busy(self) -> bool:
        """True while a turn is in flight or suspended on a decision."""
        return self.state in _ACTIVE_STATES

    @property
    def active_token(self) -> str | None:
        return self._active_token

    @property
    def pending_question(self) -> ToolEvent | None:
        return self._question

    def allowed_tools(self, grant_once: Sequence[str] = ()) -> list[str]:
        allowed = self.policy.allowed_tools(
            self.session.mode, self.session.session_approved_tools,
        )
        for name in grant_once:
            if name not in allowed:
                allowed.append(name)
        return allowed

    # ── Notices ──

    async def _fire(self, event: str, **data: Any) -> None:
        await fire_event(self._event_callback, {
            "event": event,
            "local_id": self.session.local_id,
            **data,
        })

    async def _set_state(self, state: TurnState) -> None:
        if state == self.state:
            return
        logger.debug("Turn state %s -> %s", self.state.value, state.value)
        self.state = state
        await self._fire("turn_state_changed", state=state.value)

    def _on_node_changed(self, node: AgentNode) -> None:
        # Quiescence timers fire outside any coroutine; schedule the notice.
        if self._event_callback is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop for agent notice %s", node.id)
            return
        task = loop.create_task(self._fire(
            "agent_node_changed",
            node_id=node.id,
            name=node.name,
            description=node.description,
            status=node.status.value,
            preview=node.result_preview,
        ))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ── Request construction ──

    def _build_request(self, message: str, grant_once: Sequence[str] = ()) -> OutboundRequest:
        mode = self.session.mode
        delegation_tool = (self.config.delegation_tools or ("Task",))[0]
        return OutboundRequest(
            message=message,
            backend_session_id=self.session.backend_session_id,
            model=self.session.model,
            working_directory=working_directory(
                mode, self.config.vault_root, self.config.project_dir,
            ),
            allowed_tools=self.allowed_tools(grant_once),
            system_prompt=system_prompt_for(mode, self.agents, delegation_tool),
            connector_config=self.config.connector_config,
        )

    def _original_request(self) -> str | None:
        last_user = self.session.last_user_message
        return last_user.content if last_user else None

    # ── Public operations ──

    async def send_message(self, text: str) -> TurnOutcome:
        """Start a turn with a user-authored message."""
        if self.busy:
            raise TurnInFlightError(self.session.local_id)
        self.session.start_turn(text)
        self._segments = []
        self._question = None
        self._auto_resumes = 0
        await self._set_state(TurnState.AWAITING_RESPONSE)
        prefix = context_prefix(
            self.session.mode, self.config.vault_root, self.config.project_dir, self.note,
        )
        return await self._run(compose_message(text, prefix))

    async def approve(self) -> TurnOutcome:
        if self.state != TurnState.AWAITING_APPROVAL:
            raise ApprovalStateError("No approval is pending")
        tool = self.approvals.pending.tool_event
        resumption = self.approvals.approve(self.session)
        await self._fire("approval_resolved", tool_name=tool.tool_name, decision="approved")
        await self._set_state(TurnState.AWAITING_RESPONSE)
        return await self._run(resumption.message, grant_once=resumption.grant_once)

    async def deny(self) -> TurnOutcome:
        if self.state != TurnState.AWAITING_APPROVAL:
            raise ApprovalStateError("No approval is pending")
        tool = self.approvals.pending.tool_event
        resumption = self.approvals.deny(self.session)
        await self._fire("approval_resolved", tool_name=tool.tool_name, decision="denied")
        await self._set_state(TurnState.AWAITING_RESPONSE)
        return await self._run(resumption.message)

    async def answer(self, answers: Mapping[str, str] | str) -> TurnOutcome:
        """Resume a turn suspended on a question from the agent."""
        if self.state != TurnState.AWAITING_ANSWER:
            raise ApprovalStateError("No question is pending")
        # The question stays pending when nothing was answered
        reply = format_answers(answers)
        self._question = None
        await self._set_state(TurnState.AWAITING_RESPONSE)
        return await self._run(reply)

    async def cancel(self) -> None:
        """Cancel the turn locally without waiting for the backend."""
        if not self.busy:
            return
        # Invalidate first: nothing may be applied past this point
        self._active_token = None
        self.approvals.clear()
        self._question = None
        self.tracker.on_turn_cancelled()
        logger.info("Turn cancelled for session %s", self.session.local_id)
        await self._finish(TurnState.ABORTED)
        await self.transport.cancel()

    async def new_chat(self) -> ConversationSession:
        """Save the current chat and start a fresh one."""
        await self.cancel()
        self._save()
        self._reset_turn()
        self.session = ConversationSession(
            model=self.session.model, mode=self.session.mode,
        )
        self.state = TurnState.IDLE
        await self._fire("session_changed", title=self.session.title(), mode=self.session.mode.value)
        return self.session

    async def load_session(self, local_id: str) -> ConversationSession | None:
        """Replace the current chat with one from history."""
        if self.history is None:
            return None
        loaded = self.history.load(local_id)
        if loaded is None:
            logger.warning("Session %s not found in history", local_id)
            return None
        await self.cancel()
        self._save()
        self._reset_turn()
        # Never carried over from another chat
        loaded.session_approved_tools.clear()
        loaded.retry_count = 0
        self.session = loaded
        self.state = TurnState.IDLE
        logger.info("Loaded session %s (%d messages)", local_id, len(loaded.messages))
        await self._fire(
            "session_changed",
            title=loaded.title(self.config.title_max_chars),
            mode=loaded.mode.value,
        )
        return loaded

    async def set_mode(self, mode: CapabilityMode) -> None:
        """Switch capability mode. A mode change starts a fresh chat."""
        if mode == self.session.mode:
            return
        await self.new_chat()
        self.session.mode = mode
        await self._fire("session_changed", title=self.session.title(), mode=mode.value)

    def acknowledge_agent(self, node_id: str) -> bool:
        return self.tracker.acknowledge(node_id)

    # ── Turn driving ──

    def _reset_turn(self) -> None:
        self._active_token = None
        self._segments = []
        self._question = None
        self._auto_resumes = 0
        self.approvals.clear()
        self.tracker.clear()

    async def _run(self, message: str, grant_once: Sequence[str] = ()) -> TurnOutcome:
        while True:
            request = self._build_request(message, grant_once)
            self._active_token = request.turn_token
            self._segments.append("")
            step = await self._drive(request)
            if step.resubmit is None:
                return step.outcome
            message, grant_once = step.resubmit, ()

    async def _drive(self, request: OutboundRequest) -> _Step:
        token = request.turn_token
        stream = self.transport.stream(request)
        try:
            async for event in stream:
                if self._active_token != token:
                    logger.debug("Request %s no longer active; stopping stream", token[:8])
                    break
                if event.token != token:
                    logger.debug(
                        "Discarding stale %s event (token %s)",
                        event.event_type, (event.token or "")[:8],
                    )
                    continue
                step = await self._apply(event)
                if step is not None:
                    return step
        except TransportError as exc:
            if self._active_token == token:
                return await self._abort(str(exc))
        except asyncio.CancelledError:
            if self._active_token == token:
                self._active_token = None
                self.tracker.on_turn_cancelled()
                self.state = TurnState.ABORTED
            raise
        except Exception as exc:
            logger.exception("Transport raised while streaming request %s", token[:8])
            if self._active_token == token:
                return await self._abort(f"Transport error: {exc}")
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if self._active_token != token:
            return _Step(outcome=TurnOutcome(TurnState.ABORTED, error=CANCELLED_ERROR))
        return await self._abort("Stream ended without a completion marker")

    async def _apply(self, event) -> _Step | None:
        if isinstance(event, SessionAssigned):
            if event.session_id and event.session_id != self.session.backend_session_id:
                logger.debug("Backend session assigned: %s", event.session_id)
                self.session.backend_session_id = event.session_id
            return None
        if isinstance(event, TextDelta):
            self._segments[-1] += event.text
            await self._fire("text_delta", text=event.text)
            return None
        if isinstance(event, ToolActivity) and event.tool is not None:
            return await self._on_tool(event.tool)
        if isinstance(event, TurnDone):
            return await self._complete(event)
        if isinstance(event, TransportFailure):
            logger.warning("Transport failure mid-turn: %s", event.error)
            return await self._abort(event.error or "Transport failure")
        logger.debug("Ignoring unknown transport event %r", event.event_type)
        return None

    async def _on_tool(self, tool: ToolEvent) -> _Step | None:
        if (
            tool.phase == ToolPhase.START
            and self.policy.is_delegation(tool.tool_name)
            and not self.tracker.is_tracked(tool.tool_id)
        ):
            self.tracker.on_agent_start(tool)
        else:
            self.tracker.on_agent_activity(tool)

        if tool.phase == ToolPhase.START:
            await self._fire(
                "tool_started",
                tool_id=tool.tool_id,
                tool_name=tool.tool_name,
                input=tool.input,
                parent_tool_id=tool.parent_tool_id,
            )
            return None
        if tool.phase == ToolPhase.RESULT:
            await self._fire(
                "tool_finished",
                tool_id=tool.tool_id,
                tool_name=tool.tool_name,
                result=tool.result_text,
                is_error=tool.is_error,
            )
            return None
        if tool.phase == ToolPhase.ASK:
            return await self._on_ask(tool)
        return await self._on_approval_request(tool)

    async def _on_ask(self, tool: ToolEvent) -> _Step | None:
        questions = tool.input.get("questions")
        if not isinstance(questions, list) or not questions:
            logger.warning("Ignoring %s without questions (%s)", tool.tool_name, tool.tool_id)
            return None
        self._question = tool
        self._active_token = None
        await self._set_state(TurnState.AWAITING_ANSWER)
        await self._fire("question_requested", tool_id=tool.tool_id, questions=questions)
        return _Step(outcome=TurnOutcome(TurnState.AWAITING_ANSWER, question=tool))

    async def _on_approval_request(self, tool: ToolEvent) -> _Step | None:
        session = self.session
        try:
            verdict = self.policy.decide(
                session.mode,
                tool.tool_name,
                tool.input,
                vault_root=self.config.vault_root,
                session_approved=session.session_approved_tools,
            )
        except MalformedToolInputError as exc:
            logger.warning("Ignoring malformed tool request: %s", exc)
            return None

        if verdict == SandboxVerdict.AUTO_ALLOW:
            # Paused on a tool the policy allows: let it go ahead, a bounded number of times
            self._auto_resumes += 1
            if self._auto_resumes > self.retry.max_retries:
                logger.warning(
                    "%s paused again after %d automatic resumes; giving up",
                    tool.tool_name, self.retry.max_retries,
                )
                return await self._abort(
                    f"Tool '{tool.tool_name}' kept pausing after being allowed; "
                    f"resume limit of {self.retry.max_retries} reached"
                )
            tool_class = self.policy.classify(tool.tool_name)
            logger.info(
                "%s auto-allowed after pause; resuming (%d/%d)",
                tool.tool_name, self._auto_resumes, self.retry.max_retries,
            )
            return _Step(resubmit=APPROVAL_INSTRUCTIONS[tool_class](tool, self._original_request()))

        if verdict == SandboxVerdict.AUTO_REJECT:
            decision = self.retry.on_auto_reject(
                session,
                tool.tool_name,
                self.allowed_tools(),
                self._original_request(),
            )
            await self._fire(
                "tool_rejected",
                tool_name=tool.tool_name,
                attempt=decision.attempt,
                limit=self.retry.max_retries,
            )
            if decision.resubmit:
                return _Step(resubmit=decision.reason)
            return await self._abort(str(decision.error))

        pending = self.approvals.request_approval(tool)
        self._active_token = None
        await self._set_state(TurnState.AWAITING_APPROVAL)
        await self._fire(
            "approval_requested",
            tool_id=tool.tool_id,
            tool_name=tool.tool_name,
            tool_class=self.policy.classify(tool.tool_name).value,
            input=tool.input,
        )
        return _Step(outcome=TurnOutcome(TurnState.AWAITING_APPROVAL, pending=pending))

    # ── Terminal outcomes ──

    def _assembled_text(self) -> str:
        return "\n\n".join(s.strip() for s in self._segments if s.strip())

    async def _record_partial_text(self) -> None:
        msg = self.session.record_assistant_text(self._assembled_text())
        self._segments = []
        if msg is not None:
            await self._fire("assistant_message", content=msg.content)

    async def _complete(self, done: TurnDone) -> _Step:
        if done.is_error:
            logger.warning("Backend reported an error: %s", done.error)
            return await self._abort(done.error or "Agent run failed")
        self._active_token = None
        self.tracker.on_turn_completed()
        await self._record_partial_text()
        await self._finish(TurnState.COMPLETED)
        return _Step(outcome=TurnOutcome(TurnState.COMPLETED))

    async def _abort(self, error: str) -> _Step:
        """End the turn with an inline error, keeping text already streamed."""
        self._active_token = None
        self.approvals.clear()
        self.tracker.on_turn_cancelled()
        await self._record_partial_text()
        self.session.record_error(error)
        logger.info("Turn aborted for session %s: %s", self.session.local_id, error)
        await self._fire("turn_error", error=error)
        await self._finish(TurnState.ABORTED)
        return _Step(outcome=TurnOutcome(TurnState.ABORTED, error=error))

    async def _finish(self, state: TurnState) -> None:
        if state == TurnState.ABORTED and self._segments:
            await self._record_partial_text()
        await self._set_state(state)
        self._save()

    def _save(self) -> None:
        if self.history is None:
            return
        try:
            self.history.save(self.session)
        except OSError as exc:
            logger.warning("Could not save session %s: %s", self.session.local_id, exc)
