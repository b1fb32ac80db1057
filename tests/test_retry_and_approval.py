"""Tests for the retry governor and the approval workflow."""

import pytest

from potato.engine.approval import (
    APPROVAL_INSTRUCTIONS,
    DENIAL_INSTRUCTIONS,
    ApprovalWorkflow,
)
from potato.engine.config import EngineConfig
from potato.engine.errors import ApprovalStateError, RetryLimitExceededError
from potato.engine.models import CapabilityMode, ToolClass, ToolEvent, ToolPhase
from potato.engine.retry import RetryGovernor
from potato.engine.sandbox import SandboxPolicy
from potato.shared.models.session import ConversationSession

VAULT = "/home/me/notes"


def _session(mode=CapabilityMode.VAULT):
    session = ConversationSession(model="m", mode=mode, backend_session_id="s1")
    session.start_turn("update the status field in tasks.md")
    return session


def _event(name, **inp):
    return ToolEvent(phase=ToolPhase.APPROVAL, tool_id="t1", tool_name=name, input=inp)


@pytest.fixture
def workflow():
    return ApprovalWorkflow(SandboxPolicy(EngineConfig(vault_root=VAULT)))


# ── Retry governor ──


class TestRetryGovernor:
    def test_two_resubmits_then_abort(self):
        governor = RetryGovernor(2)
        session = _session()
        first = governor.on_auto_reject(session, "Bash", ["Read"], "run diagnostics")
        second = governor.on_auto_reject(session, "Bash", ["Read"], "run diagnostics")
        third = governor.on_auto_reject(session, "Bash", ["Read"], "run diagnostics")

        assert first.resubmit and second.resubmit
        assert not third.resubmit
        assert isinstance(third.error, RetryLimitExceededError)
        assert session.retry_count == 2

    def test_instruction_restates_request_and_tools(self):
        decision = RetryGovernor(2).on_auto_reject(
            _session(), "Bash", ["Read", "Glob"], "run diagnostics",
        )
        assert "Bash" in decision.reason
        assert "Read, Glob" in decision.reason
        assert decision.reason.rstrip().endswith("run diagnostics")

    def test_ceiling_is_shared_across_tools(self):
        governor = RetryGovernor(2)
        session = _session()
        governor.on_auto_reject(session, "Bash", [])
        governor.on_auto_reject(session, "Write", [])
        assert not governor.on_auto_reject(session, "NotebookEdit", []).resubmit

    def test_new_user_message_resets_counter(self):
        governor = RetryGovernor(2)
        session = _session()
        governor.on_auto_reject(session, "Bash", [])
        governor.on_auto_reject(session, "Bash", [])
        session.start_turn("something else")
        assert session.retry_count == 0
        assert governor.on_auto_reject(session, "Bash", []).resubmit


# ── Approval workflow ──


class TestApprove:
    def test_vault_write_is_granted_once_only(self, workflow):
        session = _session()
        workflow.request_approval(_event("Write", file_path=f"{VAULT}/tasks.md", content="x"))
        resumption = workflow.approve(session)

        assert resumption.grant_once == ("Write",)
        assert not resumption.fresh_session
        assert session.session_approved_tools == set()
        assert session.backend_session_id == "s1"
        assert resumption.message.startswith(f'APPROVED. Create the file "{VAULT}/tasks.md"')

    def test_project_tool_joins_allow_list(self, workflow):
        session = _session(CapabilityMode.PROJECT)
        workflow.request_approval(_event("Bash", command="make test"))
        resumption = workflow.approve(session)

        assert session.session_approved_tools == {"Bash"}
        assert resumption.message == "APPROVED. Run this command:\nmake test"
        assert workflow.pending is None

    def test_connector_resets_backend_session(self, workflow):
        session = _session()
        session.approve_tool("Something")
        workflow.request_approval(_event("mcp__calendar__list_events", day="today"))
        resumption = workflow.approve(session)

        assert resumption.fresh_session
        assert session.backend_session_id is None
        assert session.session_approved_tools == set()
        assert resumption.grant_once == ("mcp__calendar__list_events",)
        assert resumption.message.startswith("update the status field in tasks.md")
        assert "[APPROVED:" in resumption.message

    def test_project_connector_joins_fresh_allow_list(self, workflow):
        session = _session(CapabilityMode.PROJECT)
        workflow.request_approval(_event("mcp__jira__create"))
        resumption = workflow.approve(session)
        assert session.session_approved_tools == {"mcp__jira__create"}
        assert resumption.grant_once == ()

    def test_edit_instruction_carries_replacement(self, workflow):
        workflow.request_approval(_event(
            "Edit", file_path=f"{VAULT}/tasks.md", old_string="status: todo", new_string="status: done",
        ))
        message = workflow.approve(_session()).message
        assert "Replace:\nstatus: todo" in message
        assert "With:\nstatus: done" in message


class TestDeny:
    def test_vault_write_asks_to_show_content(self, workflow):
        workflow.request_approval(_event("Write", file_path=f"{VAULT}/a.md", content="x"))
        message = workflow.deny(_session()).message
        assert "Show the content" in message

    def test_vault_restricted_lists_allowed_tools(self, workflow):
        workflow.request_approval(_event("mcp__calendar__list_events"))
        message = workflow.deny(_session()).message
        assert "NOT available in vault mode" in message
        assert "Read, Glob, Grep" in message

    def test_project_denial_is_generic(self, workflow):
        workflow.request_approval(_event("Bash", command="rm -rf build"))
        session = _session(CapabilityMode.PROJECT)
        message = workflow.deny(session).message
        assert message.startswith("REJECTED: do NOT use Bash")
        assert session.session_approved_tools == set()


class TestPending:
    def test_second_request_raises(self, workflow):
        workflow.request_approval(_event("Bash", command="ls"))
        with pytest.raises(ApprovalStateError):
            workflow.request_approval(_event("Bash", command="pwd"))

    def test_decision_without_pending_raises(self, workflow):
        with pytest.raises(ApprovalStateError):
            workflow.approve(_session())

    def test_instruction_tables_cover_every_class(self):
        assert set(APPROVAL_INSTRUCTIONS) == set(ToolClass)
        assert set(DENIAL_INSTRUCTIONS) == set(ToolClass)
