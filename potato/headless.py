"""Headless console mode: run one turn, ask for decisions on stdin."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.syntax import Syntax

from potato.adapters.events import (
    AgentNodeChanged,
    AssistantMessage,
    ToolFinished,
    ToolRejected,
    ToolStarted,
    TurnError,
    dict_to_event,
)
from potato.engine.controller import TurnController
from potato.engine.models import TurnOutcome, TurnState
from potato.shared.formatters.tool_call import format_tool_call
from potato.tui.screens.question import resolve_answer

console = Console()


async def print_notice(data: dict[str, Any]) -> None:
    """Event callback rendering engine notices on the console."""
    notice = dict_to_event(data)
    if isinstance(notice, AssistantMessage):
        console.print(Markdown(notice.content))
    elif isinstance(notice, ToolStarted):
        formatted = format_tool_call(notice.tool_name, notice.input)
        console.print(f"[dim]{formatted.icon} {escape(notice.tool_name)} {escape(formatted.label)}[/dim]")
    elif isinstance(notice, ToolFinished) and notice.is_error:
        console.print(f"[red dim]  {escape(notice.tool_name)} failed[/red dim]")
    elif isinstance(notice, ToolRejected):
        console.print(
            f"[red dim]✗ {escape(notice.tool_name)} blocked, retrying "
            f"({notice.attempt}/{notice.limit})[/red dim]"
        )
    elif isinstance(notice, AgentNodeChanged):
        console.print(f"[magenta dim]agent {escape(notice.name)}: {notice.status}[/magenta dim]")
    elif isinstance(notice, TurnError):
        console.print(f"[bold red]Error:[/bold red] {escape(notice.error)}")


async def _ask(fn, *args, **kwargs):
    # rich prompts block on stdin; keep the event loop responsive
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))


async def _decide_approval(controller: TurnController, outcome: TurnOutcome) -> TurnOutcome:
    tool = outcome.pending.tool_event
    formatted = format_tool_call(tool.tool_name, tool.input)
    body = formatted.preview or json.dumps(tool.input, indent=2, ensure_ascii=False)
    console.print(Panel(
        Syntax(body, formatted.preview_language, word_wrap=True),
        title=f"Approve {tool.tool_name}? {formatted.label}",
        border_style="yellow",
    ))
    if await _ask(Confirm.ask, "Approve this tool call?", default=False):
        return await controller.approve()
    return await controller.deny()


async def _answer_questions(controller: TurnController, outcome: TurnOutcome) -> TurnOutcome:
    answers: dict[str, str] = {}
    for q in outcome.question.input.get("questions") or []:
        question = str(q.get("question", ""))
        options = q.get("options") or []
        console.print(f"[bold cyan]{escape(question)}[/bold cyan]")
        for n, opt in enumerate(options, start=1):
            console.print(f"  {n}. {escape(str(opt.get('label', '')))}")
        raw = await _ask(Prompt.ask, "[bold cyan]>[/bold cyan]")
        answers[question] = resolve_answer(raw, options) or "(no answer)"
    return await controller.answer(answers)


async def run_headless(controller: TurnController, prompt: str) -> int:
    """Run one prompt to a terminal outcome. Returns a process exit code."""
    outcome = await controller.send_message(prompt)
    while outcome.suspended:
        if outcome.state == TurnState.AWAITING_APPROVAL:
            outcome = await _decide_approval(controller, outcome)
        else:
            outcome = await _answer_questions(controller, outcome)
    return 0 if outcome.state == TurnState.COMPLETED else 1
