"""Rich console rendering and markdown transcript persistence for debate sessions."""

import logging
import re
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from config.config_loader import DebateTemplate
from colloquy.costs import format_cost
from colloquy.models import CostSnapshot, DebateMessage, DebateSession, SessionStatus
from colloquy.prompts import INTERJECTION_LABELS, role_label

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _heading(msg: DebateMessage) -> str:
    if msg.is_interjection:
        label = INTERJECTION_LABELS[msg.interjection_type] if msg.interjection_type else "User"
        return f"Turn {msg.turn_number}: User ({label})"
    return f"Turn {msg.turn_number}: {msg.author_name} ({role_label(msg.role)})"


def print_turn_header(msg_author: str, role: str, turn_number: int, color: str | None = None) -> None:
    style = f"bold {color}" if color else "bold cyan"
    console.print(Rule(f"[{style}]Turn {turn_number}: {msg_author}[/{style}] [dim]({role_label(role)})[/dim]"))


def print_interjection(msg: DebateMessage) -> None:
    console.print(Panel(msg.content, title=_heading(msg), border_style="yellow"))


def print_consensus(session: DebateSession, *, streamed: bool = False) -> None:
    """Print the consensus (or the failure) using Rich markdown.

    With ``streamed`` the summary already reached the console chunk by chunk,
    so only the closing stats line is printed.
    """
    if session.status == SessionStatus.ERROR:
        console.print(Rule("[bold red]Debate Failed[/bold red]"))
        console.print(f"[red]{session.error_kind}: {session.error_reason}[/red]")
        return
    if session.consensus is None:
        return

    if not streamed:
        console.print(Rule("[bold green]Consensus[/bold green]"))
    stats = Text(
        f"Synthesized by: {session.consensus.synthesizer_id} | "
        f"Turns: {len(session.messages)} | "
        f"Style: {session.style}",
        style="dim",
    )
    console.print(stats)
    if not streamed:
        console.print(Markdown(session.consensus.summary))


def cost_table(cost: CostSnapshot) -> Table:
    table = Table(title="Cost", show_footer=True)
    table.add_column("Backend", footer="Total")
    table.add_column("Input", justify="right", footer=f"{cost.total_input_tokens:,}")
    table.add_column("Output", justify="right", footer=f"{cost.total_output_tokens:,}")
    table.add_column("Cost", justify="right", footer=format_cost(cost.total_cost))
    for row in cost.rows:
        table.add_row(row.display_name, f"{row.input_tokens:,}", f"{row.output_tokens:,}", format_cost(row.cost))
    return table


def print_cost_table(cost: CostSnapshot) -> None:
    console.print(cost_table(cost))


def templates_table(templates: dict[str, DebateTemplate]) -> Table:
    table = Table(title="Debate templates")
    table.add_column("Name", style="bold")
    table.add_column("Participants")
    table.add_column("Style")
    table.add_column("Turns", justify="right")
    table.add_column("Description", style="dim")
    for name, template in templates.items():
        participants = ", ".join(f"{p.backend} ({role_label(p.role)})" for p in template.participants)
        table.add_row(
            name,
            participants,
            template.style or "-",
            str(template.max_turns) if template.max_turns else "-",
            template.description,
        )
    return table


def render_markdown(session: DebateSession) -> str:
    """Full session as markdown: header, transcript, consensus and costs."""
    lines: list[str] = [
        f"# Debate: {session.question[:80]}",
        "",
        f"**Date:** {session.created_at.strftime('%Y-%m-%d %H:%M:%S')} UTC",
        f"**Participants:** {', '.join(f'{p.display_name} ({role_label(p.role)})' for p in session.participants)}",
        f"**Style:** {session.style}",
        f"**Status:** {session.status}",
    ]
    if session.error_kind:
        lines.append(f"**Error:** {session.error_kind}: {session.error_reason}")
    lines += ["", "## Question", "", session.question, ""]
    if session.app_context:
        lines += ["## Context", "", session.app_context, ""]
    lines += ["---", ""]

    for msg in session.messages:
        lines += [f"## {_heading(msg)}", "", msg.content, ""]
        if msg.usage is not None:
            lines += [f"*Tokens: {msg.usage.input_tokens} in / {msg.usage.output_tokens} out*", ""]

    if session.consensus is not None:
        lines += [f"## Consensus (by {session.consensus.synthesizer_id})", "", session.consensus.summary, ""]

    if session.cost.rows:
        lines += ["## Cost", "", "| Backend | Input | Output | Cost |", "|---|---:|---:|---:|"]
        for row in session.cost.rows:
            lines.append(f"| {row.display_name} | {row.input_tokens} | {row.output_tokens} | {format_cost(row.cost)} |")
        lines.append(
            f"| **Total** | {session.cost.total_input_tokens} | {session.cost.total_output_tokens} "
            f"| {format_cost(session.cost.total_cost)} |"
        )
        lines.append("")
    return "\n".join(lines)


class MarkdownTranscriptStore:
    """Save hook writing one markdown file per session, rewritten on every save."""

    def __init__(self, output_dir: Path, slug_override: str | None = None) -> None:
        self._output_dir = output_dir
        self._slug_override = slug_override
        self._paths: dict[str, Path] = {}

    def path_for(self, session: DebateSession) -> Path:
        path = self._paths.get(session.id)
        if path is None:
            timestamp = session.created_at.strftime("%Y%m%d_%H%M%S")
            slug = self._slug_override if self._slug_override is not None else _slug(session.question)
            path = self._output_dir / f"{timestamp}_{slug}.md"
            self._paths[session.id] = path
        return path

    def __call__(self, session: DebateSession, reason: str) -> None:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(session)
        path.write_text(render_markdown(session), encoding="utf-8")
        if reason != "message":
            logger.info("Debate saved to: %s", path)
