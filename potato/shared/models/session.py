"""Conversation session state: identifiers, message log and session allow-list."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from potato.engine.models import CapabilityMode
from potato.shared.models.message import Message, MessageRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_local_id() -> str:
    return f"chat-{uuid.uuid4().hex[:12]}"


UNTITLED = "Untitled chat"


@dataclass
class ConversationSession:
    """Holds all conversation state for one chat.

    ``local_id`` is stable for persistence. ``backend_session_id`` is
    assigned by the transport and cleared to force a fresh backend session.
    The message log is append-only.
    """

    model: str
    mode: CapabilityMode = CapabilityMode.VAULT
    local_id: str = field(default_factory=new_local_id)
    backend_session_id: str | None = None
    messages: list[Message] = field(default_factory=list)
    session_approved_tools: set[str] = field(default_factory=set)
    retry_count: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def start_turn(self, user_text: str) -> Message:
        """Record a user-authored message and reset the retry counter."""
        self.retry_count = 0
        return self._append(MessageRole.USER, user_text)

    def record_assistant_text(self, text: str) -> Message | None:
        """Append the assembled assistant reply if it has content."""
        if not text or not text.strip():
            return None
        return self._append(MessageRole.ASSISTANT, text)

    def record_error(self, text: str) -> Message:
        return self._append(MessageRole.ERROR, text)

    def approve_tool(self, tool_name: str) -> None:
        self.session_approved_tools.add(tool_name)

    def reset_session(self) -> None:
        """Force a fresh backend session with an empty allow-list."""
        self.backend_session_id = None
        self.session_approved_tools.clear()

    def _append(self, role: MessageRole, content: str) -> Message:
        msg = Message(role=role, content=content)
        self.messages.append(msg)
        self.updated_at = msg.timestamp
        return msg

    @property
    def last_user_message(self) -> Message | None:
        for msg in reversed(self.messages):
            if msg.role == MessageRole.USER:
                return msg
        return None

    def title(self, max_chars: int = 60) -> str:
        """Title derived from the first user message."""
        for msg in self.messages:
            if msg.role == MessageRole.USER:
                return msg.content[:max_chars].replace("\n", " ").strip() or UNTITLED
        return UNTITLED
