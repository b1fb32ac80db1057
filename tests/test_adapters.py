"""Tests for the notice types, the event bus and the replay transport."""

import asyncio
import json

import pytest

from potato.adapters.event_bus import EventBus
from potato.adapters.events import (
    ApprovalRequested,
    EngineNotice,
    ToolRejected,
    dict_to_event,
    event_to_dict,
)
from potato.adapters.replay import ReplayTransport, transport_event_from_dict
from potato.engine.errors import TransportError
from potato.engine.models import (
    OutboundRequest,
    SessionAssigned,
    ToolActivity,
    ToolPhase,
    TurnDone,
)


def _request():
    return OutboundRequest(
        message="hi", backend_session_id=None, model="m",
        working_directory="/vault", allowed_tools=["Read"],
    )


class TestNotices:
    def test_dict_to_event_ignores_unknown_keys(self):
        notice = dict_to_event({
            "event": "approval_requested", "local_id": "chat-1", "tool_name": "Write",
            "tool_class": "write", "input": {"file_path": "/v/a.md"}, "extra": 1,
        })
        assert isinstance(notice, ApprovalRequested)
        assert notice.event_type == "approval_requested"
        assert notice.input == {"file_path": "/v/a.md"}

    def test_unknown_event_is_base_notice(self):
        notice = dict_to_event({"event": "something_new"})
        assert type(notice) is EngineNotice
        assert notice.event_type == "something_new"

    def test_event_to_dict_uses_event_key(self):
        data = event_to_dict(ToolRejected(local_id="chat-1", tool_name="Bash", attempt=1, limit=2))
        assert data == {
            "event": "tool_rejected", "local_id": "chat-1",
            "tool_name": "Bash", "attempt": 1, "limit": 2,
        }


class TestEventBus:
    @pytest.mark.asyncio
    async def test_callback_queues_typed_notices(self):
        bus = EventBus()
        callback = bus.make_callback()
        await callback({"event": "turn_error", "error": "boom"})
        await callback({"event": "text_delta", "text": "hi"})
        drained = bus.pending()
        assert [n.event_type for n in drained] == ["turn_error", "text_delta"]
        assert bus.pending() == []

    @pytest.mark.asyncio
    async def test_closed_bus_drops_notices(self):
        bus = EventBus()
        bus.close()
        await bus.make_callback()({"event": "text_delta", "text": "hi"})
        assert bus.pending() == []
        bus.reset()
        await bus.make_callback()({"event": "text_delta", "text": "hi"})
        assert len(bus.pending()) == 1

    @pytest.mark.asyncio
    async def test_consume_stops_on_close(self):
        bus = EventBus()
        await bus.make_callback()({"event": "text_delta", "text": "a"})
        seen = []

        async def consumer():
            async for notice in bus.consume():
                seen.append(notice.text)
                bus.close()

        await asyncio.wait_for(consumer(), timeout=2)
        assert seen == ["a"]

    @pytest.mark.asyncio
    async def test_full_queue_times_out(self):
        bus = EventBus(maxsize=1, put_timeout=0.01)
        callback = bus.make_callback()
        await callback({"event": "text_delta", "text": "a"})
        await callback({"event": "text_delta", "text": "b"})
        assert [n.text for n in bus.pending()] == ["a"]


class TestReplay:
    def test_parse_tool_event(self):
        event = transport_event_from_dict({
            "type": "tool", "phase": "result", "tool_id": "t1", "tool_name": "Task",
            "result": "done", "is_error": True, "parent_tool_id": "p1",
        }, token="tok")
        assert isinstance(event, ToolActivity)
        assert event.token == "tok"
        assert event.tool.phase == ToolPhase.RESULT
        assert event.tool.is_error
        assert event.tool.parent_tool_id == "p1"

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            transport_event_from_dict({"type": "weird"})

    @pytest.mark.asyncio
    async def test_stream_stamps_token_and_records_request(self):
        transport = ReplayTransport([[{"type": "session", "session_id": "s1"}, {"type": "done"}]])
        request = _request()
        events = [e async for e in transport.stream(request)]
        assert isinstance(events[0], SessionAssigned)
        assert isinstance(events[1], TurnDone)
        assert {e.token for e in events} == {request.turn_token}
        assert transport.requests == [request]
        assert transport.remaining == 0

    @pytest.mark.asyncio
    async def test_exhausted_raises(self):
        transport = ReplayTransport([])
        with pytest.raises(TransportError):
            async for _ in transport.stream(_request()):
                pass

    def test_from_file(self, tmp_path):
        path = tmp_path / "replay.json"
        path.write_text(json.dumps({"responses": [[{"type": "done"}], [{"type": "done"}]]}))
        assert ReplayTransport.from_file(path).remaining == 2
