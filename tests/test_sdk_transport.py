"""Tests for potato.engine.transport: SDK message mapping and back-to-back requests."""

import asyncio
from types import SimpleNamespace

import pytest

from potato.engine.config import EngineConfig
from potato.engine.controller import TurnController
from potato.engine.errors import TransportError
from potato.engine.models import (
    CapabilityMode,
    OutboundRequest,
    SessionAssigned,
    TextDelta,
    ToolActivity,
    ToolPhase,
    TurnDone,
    TurnState,
)
from potato.engine.transport import ClaudeSdkTransport, extract_result_text, map_sdk_message


class TestMapSdkMessage:
    def test_init_assigns_session(self):
        message = SimpleNamespace(subtype="init", data={"session_id": "s1"})
        events = map_sdk_message(message, {}, token="tok")
        assert events == [SessionAssigned(session_id="s1", token="tok")]

    def test_assistant_blocks(self):
        names = {}
        message = SimpleNamespace(parent_tool_use_id="task-1", content=[
            SimpleNamespace(thinking="hmm", signature="x"),
            SimpleNamespace(text="Looking."),
            SimpleNamespace(id="t1", name="Grep", input={"pattern": "status"}),
        ])
        events = map_sdk_message(message, names, token="tok")

        assert isinstance(events[0], TextDelta) and events[0].text == "Looking."
        tool = events[1].tool
        assert tool.phase == ToolPhase.START
        assert tool.tool_name == "Grep"
        assert tool.parent_tool_id == "task-1"
        assert names == {"t1": "Grep"}

    def test_tool_result_is_labelled(self):
        message = SimpleNamespace(parent_tool_use_id=None, content=[
            SimpleNamespace(tool_use_id="t1", content=[{"type": "text", "text": "3 matches"}],
                            is_error=False),
        ])
        events = map_sdk_message(message, {"t1": "Grep"})
        assert isinstance(events[0], ToolActivity)
        assert events[0].tool.phase == ToolPhase.RESULT
        assert events[0].tool.tool_name == "Grep"
        assert events[0].tool.result_text == "3 matches"

    def test_result_message_ends_turn(self):
        message = SimpleNamespace(subtype="success", result="ok", session_id="s2", is_error=False)
        events = map_sdk_message(message, {}, token="tok")
        assert events == [
            SessionAssigned(session_id="s2", token="tok"),
            TurnDone(token="tok", is_error=False, error=None),
        ]

    def test_error_result_carries_text(self):
        message = SimpleNamespace(subtype="error", result="overloaded", session_id=None, is_error=True)
        done = map_sdk_message(message, {})[-1]
        assert done.is_error
        assert done.error == "overloaded"


class TestExtractResultText:
    def test_shapes(self):
        assert extract_result_text(None) == ""
        assert extract_result_text("plain") == "plain"
        assert extract_result_text({"content": [{"text": "a"}, {"text": "b"}]}) == "a\nb"


class TestClaudeSdkTransport:
    @pytest.mark.asyncio
    async def test_one_stream_at_a_time(self):
        transport = ClaudeSdkTransport()
        request = OutboundRequest(
            message="hi", backend_session_id=None, model="m",
            working_directory=None, allowed_tools=[],
        )

        class _Busy:
            def done(self):
                return False

        transport._pump = _Busy()
        with pytest.raises(TransportError):
            async for _ in transport.stream(request):
                pass


# ── Back-to-back requests against an SDK-shaped query ──


VAULT = "/vault"


class _NoTimers:
    def call_later(self, delay, callback):
        return self

    def cancel(self):
        pass


def _text(text):
    return SimpleNamespace(parent_tool_use_id=None, content=[SimpleNamespace(text=text)])


def _success(session_id="s1"):
    return SimpleNamespace(subtype="success", result="ok", session_id=session_id, is_error=False)


class ScriptedQuery:
    """Stands in for ``claude_agent_sdk.query``; one script per call."""

    def __init__(self, *scripts):
        self._scripts = list(scripts)
        self.calls = []
        self.denials = []

    async def __call__(self, *, prompt, options):
        self.calls.append(options)
        script = self._scripts.pop(0)
        async for message in script(self, options):
            yield message

    async def ask(self, options, tool_name, tool_input):
        context = SimpleNamespace(tool_use_id=f"perm-{len(self.calls)}")
        result = await options.can_use_tool(tool_name, tool_input, context)
        self.denials.append(result)


def _pause_on(tool_name, tool_input):
    async def script(fake, options):
        await fake.ask(options, tool_name, tool_input)
        # The backend keeps running until the transport stops it
        await asyncio.sleep(0.05)
        return
        yield
    return script


def _answer(text):
    async def script(fake, options):
        yield _text(text)
        yield _success()
    return script


@pytest.fixture
def scripted(monkeypatch):
    pytest.importorskip("claude_agent_sdk")

    def install(*scripts):
        fake = ScriptedQuery(*scripts)
        monkeypatch.setattr("claude_agent_sdk.query", fake)
        return fake

    return install


def _controller(mode=CapabilityMode.VAULT):
    return TurnController(
        EngineConfig(vault_root=VAULT, project_dir="/src/app", mode=mode),
        ClaudeSdkTransport(),
        scheduler=_NoTimers(),
        agents=[],
    )


class TestClaudeSdkTransportResubmits:
    @pytest.mark.asyncio
    async def test_approval_then_resume(self, scripted):
        fake = scripted(
            _pause_on("Write", {"file_path": "/vault/a.md", "content": "status: done"}),
            _answer("Updated."),
        )
        controller = _controller()

        outcome = await asyncio.wait_for(controller.send_message("update the status field"), 2)
        assert outcome.state == TurnState.AWAITING_APPROVAL
        assert fake.denials[0].interrupt is True

        outcome = await asyncio.wait_for(controller.approve(), 2)
        assert outcome.state == TurnState.COMPLETED
        assert len(fake.calls) == 2
        assert "Write" in fake.calls[1].allowed_tools
        assert controller.session.messages[-1].content == "Updated."

    @pytest.mark.asyncio
    async def test_auto_reject_resubmits_until_done(self, scripted):
        fake = scripted(_pause_on("Bash", {"command": "ls"}), _answer("Listed with Glob."))
        controller = _controller()

        outcome = await asyncio.wait_for(controller.send_message("run diagnostics"), 2)
        assert outcome.state == TurnState.COMPLETED
        assert len(fake.calls) == 2
        assert controller.session.retry_count == 1
        assert controller.session.backend_session_id == "s1"

    @pytest.mark.asyncio
    async def test_retry_ceiling_reaches_third_request(self, scripted):
        bash = _pause_on("Bash", {"command": "ls"})
        fake = scripted(bash, bash, bash)
        controller = _controller()

        outcome = await asyncio.wait_for(controller.send_message("run diagnostics"), 2)
        assert outcome.state == TurnState.ABORTED
        assert len(fake.calls) == 3
        assert "retry limit of 2" in outcome.error
        assert controller.session.retry_count == 2

    @pytest.mark.asyncio
    async def test_new_turn_right_after_cancel(self, scripted):
        started = asyncio.Event()

        async def hang(fake, options):
            yield _text("Working")
            started.set()
            await asyncio.Event().wait()

        fake = scripted(hang, _answer("Fresh start."))
        controller = _controller()

        turn = asyncio.create_task(controller.send_message("slow request"))
        await asyncio.wait_for(started.wait(), 2)
        await controller.cancel()
        outcome = await asyncio.wait_for(turn, 2)
        assert outcome.state == TurnState.ABORTED

        outcome = await asyncio.wait_for(controller.send_message("try again"), 2)
        assert outcome.state == TurnState.COMPLETED
        assert len(fake.calls) == 2
        assert controller.session.messages[-1].content == "Fresh start."
