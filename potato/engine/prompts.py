"""Mode-specific request construction: working directory, message
context prefix and the vault system prompt."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .agent_catalog import AgentSpec
from .models import CapabilityMode


@dataclass(frozen=True)
class NoteContext:
    """The note open in the editor, attached to outbound messages."""
    title: str
    path: str
    content: str


def working_directory(
    mode: CapabilityMode,
    vault_root: str | None,
    project_dir: str | None,
) -> str | None:
    if mode == CapabilityMode.PROJECT:
        return project_dir or vault_root
    return vault_root


def context_prefix(
    mode: CapabilityMode,
    vault_root: str | None,
    project_dir: str | None,
    note: NoteContext | None = None,
) -> str:
    """Context lines prepended to the outbound message text."""
    parts: list[str] = []
    if mode == CapabilityMode.PROJECT and (project_dir or vault_root):
        directory = project_dir or vault_root
        parts.append(f"[PROJECT MODE - Directory: {directory}]")
        parts.append(
            f"[Your working directory is {directory}. You may review source "
            "code and write documentation here. Use Glob, Grep, Read, Bash and "
            "any other tool you need.]"
        )
        if note is not None:
            parts.append(
                f'[Reference note: "{note.title}"]\n```markdown\n{note.content}\n```'
            )
    else:
        if vault_root:
            parts.append(f"[Vault: {vault_root}]")
        if note is not None:
            parts.append(
                f'[Open note: "{note.title}" ({note.path})]\n'
                f"```markdown\n{note.content}\n```"
            )
    return "\n".join(parts)


def compose_message(text: str, prefix: str) -> str:
    if not prefix:
        return text
    return f"{prefix}\n\n{text}"


def vault_system_prompt(
    agents: Sequence[AgentSpec] = (),
    delegation_tool: str = "Task",
) -> str:
    parts = [
        "You are an assistant working inside a vault of markdown notes.",
        "Your job is to understand what the user needs and use the right tools or agents.",
    ]

    if agents:
        parts.append("")
        parts.append(
            f"SPECIALIZED AGENTS AVAILABLE (invoke them with the {delegation_tool} "
            'tool, subagent_type="general-purpose"):'
        )
        for agent in agents:
            parts.append(f"- @{agent.name}: {agent.description}")
        parts.append("")
        parts.append("HOW TO CHOOSE:")
        parts.append("- Questions about notes or documentation: search directly with Glob/Grep/Read or delegate to a locator agent.")
        parts.append("- Research on the internet: use WebSearch/WebFetch or delegate to a research agent.")
        parts.append("- Simple tasks (find a file, read a note): do them yourself without delegating.")
        parts.append("- Complex or specialized tasks: delegate to the most suitable agent.")

    parts.append("")
    parts.append("DIRECT TOOLS:")
    parts.append("- Glob, Grep, Read: search and read files in the vault.")
    parts.append("- WebSearch, WebFetch: research on the internet.")
    parts.append(f"- {delegation_tool}: delegate to specialized agents.")
    parts.append("")
    parts.append("RULES:")
    parts.append("1. NEVER use Bash, Write, Edit, MCP connectors or tools not listed here.")
    parts.append("2. ALWAYS include the FULL ABSOLUTE PATH when you mention a file.")
    parts.append("3. Be concise and useful.")
    return "\n".join(parts)


def system_prompt_for(
    mode: CapabilityMode,
    agents: Sequence[AgentSpec] = (),
    delegation_tool: str = "Task",
) -> str | None:
    """Vault mode carries its rules in the system prompt; project mode sends none."""
    if mode == CapabilityMode.VAULT:
        return vault_system_prompt(agents, delegation_tool)
    return None
