"""Retry governor: bounds automatic reject-and-resubmit cycles per turn.

Counts every auto-reject in the turn against one shared ceiling,
whichever tool triggered it.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .errors import RetryLimitExceededError
from .models import CapabilityMode

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2


@dataclass(frozen=True)
class RetryDecision:
    """Either resubmit with *reason* as the message, or abort with *error*."""
    resubmit: bool
    attempt: int
    reason: str | None = None
    error: RetryLimitExceededError | None = None


def rejection_instruction(
    tool_name: str,
    allowed_tools: Sequence[str],
    mode: CapabilityMode,
    original_request: str | None,
) -> str:
    """Self-correction note sent back to the agent after an auto-reject."""
    lines = [
        f"REJECTED AUTOMATICALLY: {tool_name} is not available in {mode.value} mode "
        "and was blocked without asking the user.",
        f"The only tools you may use are: {', '.join(allowed_tools)}.",
    ]
    if mode == CapabilityMode.VAULT:
        lines.append(
            "File writes are only possible inside the vault and must use an "
            "absolute path under the vault root."
        )
    if original_request:
        lines.append("")
        lines.append("Complete the original request with the allowed tools:")
        lines.append(original_request)
    return "\n".join(lines)


class RetryGovernor:
    """Per-turn auto-reject counter stored on the session."""

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        self.max_retries = max_retries

    def on_auto_reject(
        self,
        session,
        tool_name: str,
        allowed_tools: Sequence[str],
        original_request: str | None = None,
    ) -> RetryDecision:
        """Count one auto-reject and decide whether to resubmit.

        The session's ``retry_count`` never exceeds the ceiling: the
        attempt that would cross it aborts instead of being recorded.
        """
        attempt = session.retry_count + 1
        if attempt > self.max_retries:
            logger.info(
                "Retry ceiling reached for session %s (tool=%s, limit=%d)",
                session.local_id, tool_name, self.max_retries,
            )
            return RetryDecision(
                resubmit=False,
                attempt=attempt,
                error=RetryLimitExceededError(tool_name, attempt, self.max_retries),
            )

        session.retry_count = attempt
        logger.info(
            "Auto-rejected %s; resubmitting (%d/%d)",
            tool_name, attempt, self.max_retries,
        )
        return RetryDecision(
            resubmit=True,
            attempt=attempt,
            reason=rejection_instruction(
                tool_name, allowed_tools, session.mode, original_request,
            ),
        )
