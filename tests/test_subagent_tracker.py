"""Tests for potato.engine.subagents: quiescence-based completion."""

import pytest

from potato.engine.errors import InvalidTransitionError
from potato.engine.lifecycle import validate_transition
from potato.engine.models import AgentStatus, ToolEvent, ToolPhase
from potato.engine.subagents import SubagentTracker


class ManualClock:
    """Deterministic stand-in for the event loop's call_later."""

    def __init__(self):
        self.now = 0.0
        self._timers = []

    def call_later(self, delay, callback):
        timer = _Timer(self.now + delay, callback)
        self._timers.append(timer)
        return timer

    def advance_to(self, t):
        while True:
            due = [x for x in self._timers if not x.cancelled and x.when <= t]
            if not due:
                break
            timer = min(due, key=lambda x: x.when)
            self._timers.remove(timer)
            self.now = timer.when
            timer.callback()
        self.now = t


class _Timer:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


def _start(tool_id="task-1", **inp):
    inp.setdefault("subagent_type", "researcher")
    inp.setdefault("description", "Find notes about pricing")
    return ToolEvent(phase=ToolPhase.START, tool_id=tool_id, tool_name="Task", input=inp)


def _result(tool_id="task-1", is_error=False, text="partial"):
    return ToolEvent(
        phase=ToolPhase.RESULT, tool_id=tool_id, tool_name="Task",
        result_text=text, is_error=is_error,
    )


def _child(parent="task-1", phase=ToolPhase.START):
    return ToolEvent(phase=phase, tool_id="grep-1", tool_name="Grep", parent_tool_id=parent)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def tracker(clock):
    return SubagentTracker(5.0, scheduler=clock)


class TestQuiescence:
    def test_repeated_results_extend_the_window(self, clock, tracker):
        tracker.on_agent_start(_start())
        tracker.on_agent_activity(_result())
        clock.advance_to(2)
        tracker.on_agent_activity(_result())
        clock.advance_to(4)
        tracker.on_agent_activity(_result(text="final answer"))

        clock.advance_to(5)
        assert tracker.get("task-1").status == AgentStatus.WORKING
        clock.advance_to(8.9)
        assert tracker.get("task-1").status == AgentStatus.WORKING
        clock.advance_to(9)
        node = tracker.get("task-1")
        assert node.status == AgentStatus.DONE
        assert node.result_preview == "final answer"

    def test_no_timer_before_first_result(self, clock, tracker):
        tracker.on_agent_start(_start())
        tracker.on_agent_activity(_child())
        clock.advance_to(60)
        assert tracker.get("task-1").status == AgentStatus.WORKING

    def test_child_activity_rearms_after_result(self, clock, tracker):
        tracker.on_agent_start(_start())
        tracker.on_agent_activity(_result())
        clock.advance_to(3)
        assert tracker.on_agent_activity(_child())
        clock.advance_to(7)
        assert tracker.get("task-1").status == AgentStatus.WORKING
        clock.advance_to(8)
        assert tracker.get("task-1").status == AgentStatus.DONE

    def test_error_flag_of_last_result_wins(self, clock, tracker):
        tracker.on_agent_start(_start())
        tracker.on_agent_activity(_result(is_error=True))
        clock.advance_to(1)
        tracker.on_agent_activity(_result(is_error=False))
        clock.advance_to(10)
        assert tracker.get("task-1").status == AgentStatus.DONE

    def test_error_result_ends_in_error(self, clock, tracker):
        tracker.on_agent_start(_start())
        tracker.on_agent_activity(_result(is_error=True, text="boom"))
        clock.advance_to(5)
        assert tracker.get("task-1").status == AgentStatus.ERROR

    def test_late_event_for_terminal_node_is_ignored(self, clock, tracker):
        tracker.on_agent_start(_start())
        tracker.on_agent_activity(_result())
        clock.advance_to(5)
        assert tracker.on_agent_activity(_result()) is False
        assert tracker.get("task-1").status == AgentStatus.DONE


class TestTurnEnd:
    def test_cancel_stops_working_nodes(self, clock, tracker):
        tracker.on_agent_start(_start("a"))
        tracker.on_agent_start(_start("b"))
        tracker.on_agent_activity(_result("b"))
        tracker.on_turn_cancelled()
        assert {n.status for n in tracker.nodes} == {AgentStatus.STOPPED}
        # Timers are gone with the turn
        clock.advance_to(100)
        assert {n.status for n in tracker.nodes} == {AgentStatus.STOPPED}

    def test_completion_uses_error_flag(self, tracker):
        tracker.on_agent_start(_start("a"))
        tracker.on_agent_start(_start("b"))
        tracker.on_agent_activity(_result("b", is_error=True))
        tracker.on_turn_completed()
        assert tracker.get("a").status == AgentStatus.DONE
        assert tracker.get("b").status == AgentStatus.ERROR
        assert tracker.working_count() == 0


class TestNodes:
    def test_name_and_description(self, tracker):
        node = tracker.on_agent_start(_start(description="x" * 200))
        assert node.name == "researcher"
        assert len(node.description) == 120

    def test_name_falls_back(self, tracker):
        node = tracker.on_agent_start(
            ToolEvent(phase=ToolPhase.START, tool_id="t", tool_name="Task"),
        )
        assert node.name == "Agent"

    def test_acknowledge_only_terminal(self, tracker):
        tracker.on_agent_start(_start())
        assert not tracker.acknowledge("task-1")
        tracker.on_turn_cancelled()
        assert tracker.acknowledge("task-1")
        assert tracker.get("task-1") is None

    def test_listener_sees_changes(self, clock):
        seen = []
        tracker = SubagentTracker(5.0, scheduler=clock, on_change=lambda n: seen.append(n.status))
        tracker.on_agent_start(_start())
        tracker.on_agent_activity(_result())
        clock.advance_to(5)
        assert seen == [AgentStatus.WORKING, AgentStatus.WORKING, AgentStatus.DONE]


class TestTransitions:
    def test_terminal_never_returns_to_working(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(AgentStatus.DONE, AgentStatus.WORKING)

    def test_working_to_stopped(self):
        validate_transition(AgentStatus.WORKING, AgentStatus.STOPPED)
