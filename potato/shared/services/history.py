"""Bounded chat history store.

Storage layout:
    ~/.potato/history.json   a JSON list, most recent session first

Holds at most ``limit`` sessions; saving a new one evicts the oldest.
Session-approved tools and the retry counter are never persisted, so a
loaded session always starts with an empty allow-list.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from potato.engine.config import parse_mode
from potato.shared.models.message import Message, MessageRole
from potato.shared.models.session import ConversationSession, UNTITLED
from potato.shared.services.durable_write import atomic_write_json

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
DEFAULT_TITLE_CHARS = 60


def default_history_path() -> Path:
    # Re-evaluated per call so a patched HOME is respected
    return Path.home() / ".potato" / "history.json"


@dataclass(frozen=True)
class HistoryEntry:
    """Summary row for listing past chats."""
    local_id: str
    title: str
    model: str
    mode: str
    message_count: int
    updated_at: datetime | None


def _ensure_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return _ensure_aware(datetime.fromisoformat(value))


def session_to_dict(session: ConversationSession, title_max_chars: int = DEFAULT_TITLE_CHARS) -> dict:
    return {
        "local_id": session.local_id,
        "backend_session_id": session.backend_session_id,
        "title": session.title(title_max_chars),
        "model": session.model,
        "mode": session.mode.value,
        "messages": [
            {
                "role": msg.role.value,
                "content": msg.content,
                "timestamp": msg.timestamp.isoformat(),
            }
            for msg in session.messages
        ],
        "created_at": session.created_at.isoformat(),
        "updated_at": session.updated_at.isoformat(),
    }


def dict_to_session(data: dict) -> ConversationSession:
    """Rebuild a session. Raises KeyError/ValueError on malformed data."""
    messages = []
    for raw in data.get("messages", []):
        kwargs = dict(role=MessageRole(raw["role"]), content=raw["content"])
        ts = _parse_timestamp(raw.get("timestamp"))
        if ts:
            kwargs["timestamp"] = ts
        messages.append(Message(**kwargs))

    session = ConversationSession(
        model=data["model"],
        mode=parse_mode(data.get("mode")),
        local_id=data["local_id"],
        backend_session_id=data.get("backend_session_id"),
        messages=messages,
    )
    created_at = _parse_timestamp(data.get("created_at"))
    if created_at:
        session.created_at = created_at
    updated_at = _parse_timestamp(data.get("updated_at"))
    if updated_at:
        session.updated_at = updated_at
    return session


class HistoryStore:
    """JSON-file store of the most recent chat sessions."""

    def __init__(
        self,
        path: Path | None = None,
        limit: int = DEFAULT_LIMIT,
        title_max_chars: int = DEFAULT_TITLE_CHARS,
    ) -> None:
        self._path = Path(path) if path is not None else default_history_path()
        self.limit = limit
        self.title_max_chars = title_max_chars

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> list[dict]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("History store %s unreadable, treating as empty: %s", self._path, exc)
            return []
        if not isinstance(data, list):
            logger.warning("History store %s is not a list, treating as empty", self._path)
            return []
        return [entry for entry in data if isinstance(entry, dict) and entry.get("local_id")]

    def _write(self, entries: list[dict]) -> None:
        atomic_write_json(self._path, entries)

    def save(self, session: ConversationSession) -> bool:
        """Upsert *session* at the front of the store.

        Sessions without messages are skipped. The first ``created_at``
        recorded for a local id is kept.
        """
        if not session.messages:
            return False

        entries = self._read()
        record = session_to_dict(session, self.title_max_chars)
        remaining = []
        for entry in entries:
            if entry.get("local_id") == session.local_id:
                record["created_at"] = entry.get("created_at") or record["created_at"]
            else:
                remaining.append(entry)

        evicted = max(0, len(remaining) + 1 - self.limit)
        entries = [record] + remaining
        self._write(entries[: self.limit])
        if evicted:
            logger.info("History store full, evicted %d oldest session(s)", evicted)
        logger.debug("Saved session %s (%d messages)", session.local_id, len(session.messages))
        return True

    def list(self) -> list[HistoryEntry]:
        rows = []
        for entry in self._read():
            try:
                updated_at = _parse_timestamp(entry.get("updated_at"))
            except ValueError:
                updated_at = None
            rows.append(HistoryEntry(
                local_id=entry["local_id"],
                title=entry.get("title") or UNTITLED,
                model=entry.get("model", ""),
                mode=entry.get("mode", "vault"),
                message_count=len(entry.get("messages") or []),
                updated_at=updated_at,
            ))
        return rows

    def load(self, local_id: str) -> ConversationSession | None:
        for entry in self._read():
            if entry.get("local_id") != local_id:
                continue
            try:
                return dict_to_session(entry)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("History entry %s is malformed: %s", local_id, exc)
                return None
        return None

    def delete(self, local_id: str) -> bool:
        entries = self._read()
        kept = [e for e in entries if e.get("local_id") != local_id]
        if len(kept) == len(entries):
            return False
        self._write(kept)
        return True
