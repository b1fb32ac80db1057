"""Agent panel: delegated sub-agents of the current turn with status icons.

Selecting a finished node dismisses it; the screen then acknowledges it
with the tracker so it is forgotten.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from rich.text import Text
from textual.message import Message
from textual.widgets import Label, ListItem, ListView

from potato.engine.models import AgentStatus

STATUS_ICONS: dict[str, str] = {
    AgentStatus.WORKING.value: "●",
    AgentStatus.DONE.value: "✓",
    AgentStatus.ERROR.value: "✗",
    AgentStatus.STOPPED.value: "■",
}

STATUS_STYLES: dict[str, str] = {
    AgentStatus.WORKING.value: "yellow",
    AgentStatus.DONE.value: "green",
    AgentStatus.ERROR.value: "red",
    AgentStatus.STOPPED.value: "dim",
}


@dataclass
class AgentRow:
    node_id: str
    name: str
    description: str = ""
    status: str = AgentStatus.WORKING.value
    preview: str = ""

    @property
    def terminal(self) -> bool:
        return self.status != AgentStatus.WORKING.value


def render_row(row: AgentRow) -> Text:
    icon = STATUS_ICONS.get(row.status, "?")
    text = Text()
    text.append(f"{icon} ", style=STATUS_STYLES.get(row.status, ""))
    text.append(row.name, style="bold")
    text.append(f"  {row.status}", style="dim")
    if row.description:
        text.append(f"\n  {row.description[:80]}", style="dim")
    if row.preview:
        first = row.preview.splitlines()[0] if row.preview.splitlines() else ""
        text.append(f"\n  {first[:80]}", style="italic")
    return text


class AgentPanel(ListView):
    """Lists sub-agent nodes; Enter on a finished node dismisses it."""

    DEFAULT_CSS = """
    AgentPanel {
        width: 40;
        border-left: solid $primary-darken-2;
    }
    AgentPanel > ListItem {
        padding: 0 1;
    }
    """

    class Dismissed(Message):
        def __init__(self, node_id: str) -> None:
            super().__init__()
            self.node_id = node_id

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._rows: dict[str, AgentRow] = {}

    @property
    def rows(self) -> list[AgentRow]:
        return list(self._rows.values())

    def _item_id(self, node_id: str) -> str:
        return "agent-" + re.sub(r"[^A-Za-z0-9_-]", "-", node_id)

    def upsert(self, row: AgentRow) -> None:
        existing = self._rows.get(row.node_id)
        self._rows[row.node_id] = row
        if existing is None:
            self.append(ListItem(Label(render_row(row)), id=self._item_id(row.node_id)))
            return
        for item in self.query(ListItem):
            if item.id == self._item_id(row.node_id):
                item.query_one(Label).update(render_row(row))
                break

    def remove_row(self, node_id: str) -> None:
        if self._rows.pop(node_id, None) is None:
            return
        for item in self.query(ListItem):
            if item.id == self._item_id(node_id):
                item.remove()
                break

    def clear_rows(self) -> None:
        self._rows.clear()
        self.clear()

    def on_list_view_selected(self, event: ListView.Selected) -> None:
        event.stop()
        item_id = event.item.id or ""
        for node_id, row in self._rows.items():
            if self._item_id(node_id) == item_id and row.terminal:
                self.post_message(self.Dismissed(node_id))
                break
