"""Approval workflow: one pending tool request, a user decision, and the
instruction that resumes the turn.

Resumption wording is chosen per tool class. Both instruction tables are
checked at import time to cover every ToolClass, so adding a class
without its instructions fails loudly instead of falling through.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .errors import ApprovalStateError
from .models import (
    ApprovalDecision,
    CapabilityMode,
    PendingApproval,
    ToolClass,
    ToolEvent,
)
from .sandbox import SandboxPolicy, target_path

logger = logging.getLogger(__name__)

PARAMS_PREVIEW_CHARS = 500


@dataclass(frozen=True)
class Resumption:
    """How to resubmit after a decision.

    ``fresh_session`` means the backend session was reset and the message
    restates the original request. ``grant_once`` lists tools allowed for
    the resubmitted request only; they are not added to the session
    allow-list.
    """
    message: str
    fresh_session: bool = False
    grant_once: tuple[str, ...] = ()


# ── Approval instructions, one per tool class ──


def _approve_write(event: ToolEvent, original_request: str | None) -> str:
    inp = event.input
    path = target_path(inp) or ""
    if "content" in inp:
        return (
            f'APPROVED. Create the file "{path}" with exactly the same content '
            "you were going to write. Do it now."
        )
    if inp.get("old_string"):
        return (
            f'APPROVED. Edit the file "{path}". Replace:\n{inp["old_string"]}\n'
            f'With:\n{inp.get("new_string", "")}'
        )
    return f'APPROVED. Edit the file "{path}". Apply the change you were going to make.'


def _approve_shell(event: ToolEvent, original_request: str | None) -> str:
    return f"APPROVED. Run this command:\n{event.input.get('command', '')}"


def _approve_connector(event: ToolEvent, original_request: str | None) -> str:
    note = (
        f"[APPROVED: the user allowed {event.tool_name} for this request. "
        "Plan the task again from the start and use it.]"
    )
    if original_request:
        return f"{original_request}\n\n{note}"
    return note


def _approve_generic(event: ToolEvent, original_request: str | None) -> str:
    details = f"APPROVED. Use {event.tool_name} with the parameters you had planned."
    if event.input:
        params = json.dumps(event.input, ensure_ascii=False, default=str)
        details += "\nParameters: " + params[:PARAMS_PREVIEW_CHARS]
    return details


APPROVAL_INSTRUCTIONS: dict[ToolClass, Callable[[ToolEvent, str | None], str]] = {
    ToolClass.WRITE: _approve_write,
    ToolClass.SHELL: _approve_shell,
    ToolClass.CONNECTOR: _approve_connector,
    ToolClass.GENERIC: _approve_generic,
}


# ── Denial instructions, one per tool class ──


def _deny_generic(event: ToolEvent, mode: CapabilityMode, vault_tools: Sequence[str]) -> str:
    return (
        f"REJECTED: do NOT use {event.tool_name}. Find another way to solve "
        "the task without that tool."
    )


def _deny_vault_restricted(
    event: ToolEvent, mode: CapabilityMode, vault_tools: Sequence[str],
) -> str:
    if mode != CapabilityMode.VAULT:
        return _deny_generic(event, mode, vault_tools)
    return (
        f"REJECTED: {event.tool_name} is NOT available in vault mode. You may ONLY "
        f"use {', '.join(vault_tools)}. Search the markdown notes of the vault "
        "(pattern **/*.md) for the information instead."
    )


def _deny_write(event: ToolEvent, mode: CapabilityMode, vault_tools: Sequence[str]) -> str:
    if mode != CapabilityMode.VAULT:
        return _deny_generic(event, mode, vault_tools)
    return (
        "REJECTED: the user did not approve writing that file. Show the content "
        "in your reply so the user can copy it manually if they want."
    )


DENIAL_INSTRUCTIONS: dict[
    ToolClass, Callable[[ToolEvent, CapabilityMode, Sequence[str]], str]
] = {
    ToolClass.WRITE: _deny_write,
    ToolClass.SHELL: _deny_vault_restricted,
    ToolClass.CONNECTOR: _deny_vault_restricted,
    ToolClass.GENERIC: _deny_vault_restricted,
}


for _table in (APPROVAL_INSTRUCTIONS, DENIAL_INSTRUCTIONS):
    _missing = set(ToolClass) - set(_table)
    if _missing:
        raise RuntimeError(
            "Resumption instructions missing for tool classes: "
            + ", ".join(sorted(c.value for c in _missing))
        )


class ApprovalWorkflow:
    """Holds at most one pending approval and resolves it."""

    def __init__(self, policy: SandboxPolicy) -> None:
        self._policy = policy
        self._pending: PendingApproval | None = None

    @property
    def pending(self) -> PendingApproval | None:
        return self._pending

    def request_approval(self, event: ToolEvent) -> PendingApproval:
        if self._pending is not None:
            raise ApprovalStateError(
                f"Approval for {self._pending.tool_event.tool_name} "
                f"({self._pending.tool_event.tool_id}) is still pending"
            )
        self._pending = PendingApproval(tool_event=event)
        logger.info("Approval requested for %s (%s)", event.tool_name, event.tool_id)
        return self._pending

    def clear(self) -> None:
        """Drop the pending request without a decision (cancel, new chat)."""
        self._pending = None

    def _resolve(self, decision: ApprovalDecision) -> ToolEvent:
        if self._pending is None:
            raise ApprovalStateError("No approval is pending")
        pending = self._pending
        pending.decision = decision
        self._pending = None
        return pending.tool_event

    def approve(self, session) -> Resumption:
        """Resolve the pending request as approved.

        Connector tools reset the backend session and replay the original
        request. Other tools join the session allow-list, except
        write-class tools in vault mode, which need approval every time.
        """
        event = self._resolve(ApprovalDecision.APPROVED)
        tool_class = self._policy.classify(event.tool_name)
        last_user = session.last_user_message
        original_request = last_user.content if last_user else None
        message = APPROVAL_INSTRUCTIONS[tool_class](event, original_request)

        if tool_class == ToolClass.CONNECTOR:
            session.reset_session()
            if session.mode == CapabilityMode.PROJECT:
                session.approve_tool(event.tool_name)
                grant: tuple[str, ...] = ()
            else:
                grant = (event.tool_name,)
            logger.info("Connector %s approved; backend session reset", event.tool_name)
            return Resumption(message=message, fresh_session=True, grant_once=grant)

        if session.mode == CapabilityMode.VAULT and tool_class == ToolClass.WRITE:
            logger.info("Vault write %s approved once", event.tool_name)
            return Resumption(message=message, grant_once=(event.tool_name,))

        session.approve_tool(event.tool_name)
        logger.info("%s approved for the rest of session %s", event.tool_name, session.local_id)
        return Resumption(message=message)

    def deny(self, session) -> Resumption:
        event = self._resolve(ApprovalDecision.DENIED)
        tool_class = self._policy.classify(event.tool_name)
        message = DENIAL_INSTRUCTIONS[tool_class](
            event, session.mode, self._policy.base_tools(CapabilityMode.VAULT),
        )
        logger.info("%s denied in %s mode", event.tool_name, session.mode.value)
        return Resumption(message=message)
