"""Question modal: collects answers to the agent's structured questions."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import Horizontal, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Static


def resolve_answer(raw: str, options: list[dict]) -> str:
    """Map an option number to its label; anything else is a free answer."""
    value = raw.strip()
    if value.isdigit():
        index = int(value) - 1
        if 0 <= index < len(options):
            return str(options[index].get("label", value))
    return value


class QuestionScreen(ModalScreen[dict | None]):
    """Returns {question: answer} for every question, or None on escape."""

    BINDINGS = [("escape", "cancel", "Cancel")]

    DEFAULT_CSS = """
    QuestionScreen {
        align: center middle;
    }
    #question-dialog {
        width: 90;
        height: auto;
        max-height: 90%;
        border: round $warning;
        background: $surface;
        padding: 1 2;
    }
    .question-text {
        color: $warning;
        text-style: bold;
        margin-top: 1;
    }
    .question-options {
        color: $text-muted;
    }
    #question-buttons {
        height: auto;
        align-horizontal: right;
        margin-top: 1;
    }
    """

    def __init__(self, questions: list[dict], **kwargs) -> None:
        super().__init__(**kwargs)
        self.questions = [q for q in questions if isinstance(q, dict)]

    def compose(self) -> ComposeResult:
        with VerticalScroll(id="question-dialog"):
            yield Static("[bold $warning]The agent asks[/bold $warning]")
            for i, q in enumerate(self.questions):
                yield Static(str(q.get("question", "")), classes="question-text", markup=False)
                options = q.get("options") or []
                if options:
                    lines = []
                    for n, opt in enumerate(options, start=1):
                        desc = opt.get("description", "")
                        lines.append(f"{n}. {opt.get('label', '')}" + (f" - {desc}" if desc else ""))
                    yield Static("\n".join(lines), classes="question-options", markup=False)
                yield Input(placeholder="Option number or your own answer", id=f"answer-{i}")
            with Horizontal(id="question-buttons"):
                yield Button("Send", variant="primary", id="btn-send")

    def _collect(self) -> dict[str, str]:
        answers: dict[str, str] = {}
        for i, q in enumerate(self.questions):
            raw = self.query_one(f"#answer-{i}", Input).value
            answer = resolve_answer(raw, q.get("options") or [])
            if answer:
                answers[str(q.get("question", f"Question {i + 1}"))] = answer
        return answers

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "btn-send":
            answers = self._collect()
            if answers:
                self.dismiss(answers)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        answers = self._collect()
        if len(answers) == len(self.questions):
            self.dismiss(answers)

    def action_cancel(self) -> None:
        self.dismiss(None)
