"""Chat screen: message log, prompt input and the agent panel."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from rich.markdown import Markdown
from rich.text import Text
from textual import work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import Screen
from textual.widgets import Footer, Header, Input, RichLog, Static

from potato.adapters.event_bus import EventBus
from potato.adapters.events import (
    AgentNodeChanged,
    ApprovalRequested,
    AssistantMessage,
    EngineNotice,
    SessionChanged,
    TextDeltaNotice,
    ToolFinished,
    ToolRejected,
    ToolStarted,
    TurnError,
    TurnStateChanged,
)
from potato.engine.controller import TurnController
from potato.engine.models import TurnOutcome, TurnState
from potato.shared.formatters.tool_call import format_tool_call
from potato.shared.models.message import MessageRole
from potato.tui.screens.approval import ApprovalScreen
from potato.tui.screens.question import QuestionScreen
from potato.tui.widgets.agent_panel import AgentPanel, AgentRow

logger = logging.getLogger(__name__)

_STATE_LABELS = {
    TurnState.IDLE.value: "Ready",
    TurnState.AWAITING_RESPONSE.value: "Thinking...",
    TurnState.AWAITING_APPROVAL.value: "Waiting for your approval",
    TurnState.AWAITING_ANSWER.value: "Waiting for your answer",
    TurnState.COMPLETED.value: "Ready",
    TurnState.ABORTED.value: "Stopped",
}


class ChatScreen(Screen):
    """Drives the turn controller from user input and renders its notices."""

    DEFAULT_CSS = """
    #workspace {
        height: 1fr;
    }
    #chat-log {
        width: 1fr;
        padding: 0 1;
    }
    #status-line {
        height: 1;
        padding: 0 1;
        color: $text-muted;
    }
    #prompt {
        dock: bottom;
    }
    """

    def __init__(self, controller: TurnController, bus: EventBus, **kwargs) -> None:
        super().__init__(**kwargs)
        self.controller = controller
        self.bus = bus
        self._consumer: asyncio.Task | None = None
        self._typed_chars = 0

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="workspace"):
            yield RichLog(id="chat-log", wrap=True, markup=False)
            yield AgentPanel(id="agent-panel")
        with Vertical(id="bottom"):
            yield Static("Ready", id="status-line")
            yield Input(placeholder="Ask about your notes...", id="prompt")
        yield Footer()

    def on_mount(self) -> None:
        self._render_session()
        self._consumer = asyncio.create_task(self._consume(), name="notice-consumer")
        self.query_one("#prompt", Input).focus()

    def on_unmount(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()

    # ── Rendering ──

    @property
    def chat_log(self) -> RichLog:
        return self.query_one("#chat-log", RichLog)

    def _set_status(self, text: str) -> None:
        self.query_one("#status-line", Static).update(text)

    def _write_user(self, text: str) -> None:
        self.chat_log.write(Text.assemble(("You: ", "bold cyan"), text))

    def _write_assistant(self, text: str) -> None:
        self.chat_log.write(Text("Claude:", style="bold magenta"))
        self.chat_log.write(Markdown(text))

    def _write_error(self, text: str) -> None:
        self.chat_log.write(Text(f"Error: {text}", style="bold red"))

    def _render_session(self) -> None:
        self.chat_log.clear()
        self.query_one(AgentPanel).clear_rows()
        session = self.controller.session
        self.app.sub_title = f"{session.mode.value} · {session.title()}"
        for msg in session.messages:
            if msg.role == MessageRole.USER:
                self._write_user(msg.content)
            elif msg.role == MessageRole.ASSISTANT:
                self._write_assistant(msg.content)
            else:
                self._write_error(msg.content)

    def render_notice(self, notice: EngineNotice) -> None:
        if isinstance(notice, TurnStateChanged):
            self._typed_chars = 0
            self._set_status(_STATE_LABELS.get(notice.state, notice.state))
        elif isinstance(notice, TextDeltaNotice):
            self._typed_chars += len(notice.text)
            self._set_status(f"Writing... ({self._typed_chars} chars)")
        elif isinstance(notice, AssistantMessage):
            self._write_assistant(notice.content)
        elif isinstance(notice, ToolStarted):
            formatted = format_tool_call(notice.tool_name, notice.input)
            self.chat_log.write(Text(
                f"{formatted.icon} {notice.tool_name} {formatted.label}".rstrip(),
                style="dim",
            ))
        elif isinstance(notice, ToolFinished) and notice.is_error:
            self.chat_log.write(Text(f"  {notice.tool_name} failed", style="red dim"))
        elif isinstance(notice, ToolRejected):
            self.chat_log.write(Text(
                f"✗ {notice.tool_name} blocked, retrying ({notice.attempt}/{notice.limit})",
                style="red dim",
            ))
        elif isinstance(notice, ApprovalRequested):
            self._set_status(f"Approval needed for {notice.tool_name}")
        elif isinstance(notice, TurnError):
            self._write_error(notice.error)
        elif isinstance(notice, AgentNodeChanged):
            self.query_one(AgentPanel).upsert(AgentRow(
                node_id=notice.node_id,
                name=notice.name,
                description=notice.description,
                status=notice.status,
                preview=notice.preview,
            ))
        elif isinstance(notice, SessionChanged):
            self._render_session()

    async def _consume(self) -> None:
        async for notice in self.bus.consume():
            try:
                self.render_notice(notice)
            except Exception:
                logger.debug("Failed to render %s", notice.event_type, exc_info=True)

    # ── Turn driving ──

    def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        if not text:
            return
        if self.controller.busy:
            self.notify("A turn is already running", severity="warning")
            return
        event.input.value = ""
        self._write_user(text)
        self.run_turn(lambda: self.controller.send_message(text))

    @work(exclusive=True, group="turn")
    async def run_turn(self, operation: Callable[[], Awaitable[TurnOutcome]]) -> None:
        outcome = await operation()
        self._handle_outcome(outcome)

    def _handle_outcome(self, outcome: TurnOutcome) -> None:
        if outcome.state == TurnState.AWAITING_APPROVAL and outcome.pending is not None:
            tool = outcome.pending.tool_event
            self.app.push_screen(
                ApprovalScreen(
                    tool.tool_name,
                    tool.input,
                    tool_class=self.controller.policy.classify(tool.tool_name).value,
                    mode=self.controller.session.mode.value,
                ),
                callback=self._on_approval_choice,
            )
        elif outcome.state == TurnState.AWAITING_ANSWER and outcome.question is not None:
            self.app.push_screen(
                QuestionScreen(outcome.question.input.get("questions") or []),
                callback=self._on_answers,
            )

    def _on_approval_choice(self, choice: str | None) -> None:
        if choice == "approve":
            self.run_turn(self.controller.approve)
        else:
            self.run_turn(self.controller.deny)

    def _on_answers(self, answers: dict | None) -> None:
        if answers:
            self.run_turn(lambda: self.controller.answer(answers))
        else:
            self.run_worker(self.controller.cancel(), group="control")

    def on_agent_panel_dismissed(self, message: AgentPanel.Dismissed) -> None:
        if self.controller.acknowledge_agent(message.node_id):
            self.query_one(AgentPanel).remove_row(message.node_id)

    # ── Actions (bound at the app level) ──

    def request_stop(self) -> None:
        if self.controller.busy:
            self.run_worker(self.controller.cancel(), group="control")

    def request_new_chat(self) -> None:
        self.run_worker(self.controller.new_chat(), group="control")
