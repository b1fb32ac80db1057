"""Approval modal: asks the user to approve or deny one tool call."""

from __future__ import annotations

from rich.syntax import Syntax
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Static

from potato.shared.formatters.tool_call import format_tool_call


class ApprovalScreen(ModalScreen[str]):
    """Modal dialog for a pending tool approval.

    Returns "approve" or "deny". Escape denies.
    """

    BINDINGS = [
        ("y", "choose('approve')", "Approve"),
        ("n", "choose('deny')", "Deny"),
        ("escape", "choose('deny')", "Deny"),
    ]

    DEFAULT_CSS = """
    ApprovalScreen {
        align: center middle;
    }
    #approval-dialog {
        width: 90;
        height: auto;
        max-height: 90%;
        border: thick $warning;
        background: $surface;
        padding: 1 2;
    }
    #approval-preview {
        height: auto;
        max-height: 20;
        margin: 1 0;
    }
    #approval-buttons {
        height: auto;
        align-horizontal: right;
    }
    #approval-buttons Button {
        margin-left: 1;
    }
    """

    def __init__(
        self,
        tool_name: str,
        tool_input: dict | None = None,
        tool_class: str = "",
        mode: str = "",
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.tool_name = tool_name
        self.tool_input = dict(tool_input or {})
        self.tool_class = tool_class
        self.mode = mode

    def compose(self) -> ComposeResult:
        formatted = format_tool_call(self.tool_name, self.tool_input)
        with Vertical(id="approval-dialog"):
            yield Static("[bold $warning]Approval Request[/bold $warning]", id="approval-title")
            yield Static(
                f"The agent wants to use [cyan]{self.tool_name}[/cyan]"
                + (f" ({self.tool_class})" if self.tool_class else "")
                + (f" in {self.mode} mode" if self.mode else ""),
                id="approval-summary",
            )
            if formatted.label:
                yield Static(f"{formatted.icon} {formatted.label}", id="approval-label", markup=False)
            if formatted.preview:
                with VerticalScroll(id="approval-preview"):
                    yield Static(Syntax(
                        formatted.preview,
                        formatted.preview_language,
                        word_wrap=True,
                        theme="ansi_dark",
                    ))
            with Horizontal(id="approval-buttons"):
                yield Button("Approve", variant="success", id="btn-approve")
                yield Button("Deny", variant="error", id="btn-deny")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        result_map = {
            "btn-approve": "approve",
            "btn-deny": "deny",
        }
        self.dismiss(result_map.get(event.button.id, "deny"))

    def action_choose(self, choice: str) -> None:
        self.dismiss(choice)
