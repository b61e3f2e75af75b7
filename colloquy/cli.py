"""Click CLI: loads config, checks backends, runs a debate with live output, saves the transcript."""

import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import AsyncIterator
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.rule import Rule

from config.config_loader import AppConfig, DebateTemplate, load_config
from colloquy.healthcheck import HealthResult, run_health_checks
from colloquy.inbox import archive_file, ensure_dirs, parse_file, scan_inbox
from colloquy.models import DebateEvent, DebateSession, SessionStatus
from colloquy.orchestrator import DebateOrchestrator, InsufficientParticipants
from colloquy.output import (
    MarkdownTranscriptStore,
    print_consensus,
    print_cost_table,
    print_interjection,
    print_turn_header,
    templates_table,
)
from colloquy.providers.base import ErrorKind, ModelAdapter
from colloquy.registry import BackendRegistry, UnknownBackend
from colloquy.service import DebateHub

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")
    sys.exit(1)


def _print_templates(config: AppConfig) -> None:
    if not config.templates:
        console.print("No debate templates configured.")
        return
    console.print(templates_table(config.templates))


def _parse_models(models_arg: str | None) -> list[str] | None:
    if not models_arg:
        return None
    return [m.strip() for m in models_arg.split(",") if m.strip()]


def _candidates(
    registry: BackendRegistry, backend_ids: list[str] | None, template: DebateTemplate | None = None
) -> dict[str, ModelAdapter]:
    """Adapters that would take part: the --models list, else the template or configured roster."""
    if backend_ids is None:
        roster = registry.usable_roster(template.participants) if template else registry.default_roster()
        return {a.backend_id: a for a in roster}
    adapters: dict[str, ModelAdapter] = {}
    for backend_id in backend_ids:
        adapter = registry.resolve(backend_id)
        if adapter.is_available():
            adapters[backend_id] = adapter
        else:
            logger.warning("Backend '%s' has no API key, skipping", backend_id)
    return adapters


async def _run_checks(adapters: dict[str, ModelAdapter]) -> dict[str, HealthResult]:
    """Health checks with Ctrl-C abandoning every ping still in flight."""
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    try:
        return await run_health_checks(adapters, cancel_event)
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)


def _check_and_filter(adapters: dict[str, ModelAdapter]) -> list[str]:
    """Run health checks, print results, and ask what to do on failures.

    Returns the ids of the working backends. Exits if the user declines to
    continue or fewer than two backends pass.
    """
    console.print("\n[bold]Checking backends...[/bold]")
    results = asyncio.run(_run_checks(adapters))

    failed: list[str] = []
    for backend_id in adapters:
        result = results[backend_id]
        if result.ok:
            console.print(f"  [green]OK  [/green] {result.describe()}")
        else:
            console.print(f"  [red]FAIL[/red] {result.describe()}")
            failed.append(backend_id)
    if any(r.error_kind == ErrorKind.CANCELLED for r in results.values()):
        _fail("Health check interrupted.")

    working = [b for b in adapters if b not in failed]
    if not failed:
        console.print()
        return working

    if len(working) < 2:
        _fail(f"Only {len(working)} backend(s) passed the health check; a debate needs 2.")

    console.print(f"\n[yellow]{len(failed)} backend(s) failed:[/yellow] {', '.join(failed)}")
    console.print(f"Working backends: {', '.join(working)}")
    if not click.confirm("Continue with working backends only?", default=True):
        sys.exit(0)
    console.print()
    return working


async def _render_events(events: AsyncIterator[DebateEvent], session: DebateSession) -> bool:
    """Print the debate live from the orchestrator's event stream.

    Returns True if the consensus text was streamed to the console.
    """
    participants = {p.backend_id: p for p in session.participants}
    synthesis_attempts = 0
    async for event in events:
        if event.type == "turn_started" and event.turn_number is None:
            synthesis_attempts += 1
            console.print()
            if synthesis_attempts == 1:
                console.print(Rule("[bold green]Consensus[/bold green]"))
            else:
                console.print("[yellow]Synthesis failed, retrying...[/yellow]")
        elif event.type == "turn_started":
            participant = participants[event.backend_id]
            console.print()
            print_turn_header(participant.display_name, participant.role, event.turn_number, participant.color)
        elif event.type == "chunk" and event.chunk_type == "text":
            console.print(event.content, end="", markup=False, highlight=False)
        elif event.type == "message_appended" and event.message is not None:
            if event.message.is_interjection:
                print_interjection(event.message)
            else:
                console.print()
        elif event.type == "agreement_detected":
            console.print("\n[green]Participants agree, moving to synthesis.[/green]")
        elif event.type == "status_changed" and event.status == SessionStatus.SYNTHESIZING:
            console.print("\n[dim]Synthesizing consensus...[/dim]")
    return synthesis_attempts > 0


async def _run_single(
    config: AppConfig,
    registry: BackendRegistry,
    question: str,
    output_dir: Path,
    *,
    style: str | None = None,
    max_turns: int | None = None,
    backend_ids: list[str] | None = None,
    synthesizer: str | None = None,
    context: str | None = None,
    template: str | None = None,
    slug_override: str | None = None,
) -> DebateSession:
    """Run one debate to completion and return the finished session.

    Ctrl-C cancels the session instead of killing the process, so the
    partial transcript is still saved.
    """
    store = MarkdownTranscriptStore(output_dir, slug_override=slug_override)
    hub = DebateHub(config, registry, save_hook=store)
    orchestrator: DebateOrchestrator = await hub.start_debate(
        question,
        style,
        context,
        template=template,
        backend_ids=backend_ids,
        max_turns=max_turns,
        synthesizer_id=synthesizer,
    )
    session = orchestrator.session
    assert session is not None
    renderer = asyncio.create_task(_render_events(orchestrator.subscribe(), session))

    names = ", ".join(p.display_name for p in session.participants)
    console.print(f"\n[bold cyan]Colloquy[/bold cyan] {names} [{session.style}]")
    console.print(f"Question: [italic]{question[:80]}{'...' if len(question) > 80 else ''}[/italic]")

    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
    try:
        await orchestrator.wait()
        streamed = await renderer
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)

    console.print()
    print_consensus(session, streamed=streamed)
    if session.cost.rows:
        print_cost_table(session.cost)
    if session.messages or session.consensus:
        console.print(f"\n[dim]Saved to: {store.path_for(session)}[/dim]")
    return session


async def _run_inbox(
    config: AppConfig,
    registry: BackendRegistry,
    inbox_dir: Path,
    archive_dir: Path,
    output_dir: Path,
    *,
    style_cli: str | None,
    max_turns_cli: int | None,
    models_cli: list[str] | None,
    synthesizer: str | None,
    context_cli: str | None,
    template_cli: str | None = None,
) -> None:
    """Process all .md files in the inbox folder.

    Precedence for per-file settings: CLI flag > frontmatter > config default.
    """
    ensure_dirs(inbox_dir, archive_dir)
    files = scan_inbox(inbox_dir)
    if not files:
        click.echo("No files in inbox.")
        return

    for file_path in files:
        try:
            item = parse_file(file_path)
            session = await _run_single(
                config,
                registry,
                item.question,
                output_dir,
                style=style_cli or item.style,
                max_turns=max_turns_cli if max_turns_cli is not None else item.max_turns,
                backend_ids=models_cli or item.models,
                synthesizer=synthesizer,
                context=context_cli or item.context,
                template=template_cli or item.template,
                slug_override=file_path.stem,
            )
        except (InsufficientParticipants, UnknownBackend, ValueError) as exc:
            logger.error("Failed: %s -- %s", file_path.name, exc)
            archive_file(file_path, archive_dir, failed=True)
            continue

        failed = session.status != SessionStatus.COMPLETE
        archived = archive_file(file_path, archive_dir, failed=failed)
        if failed:
            logger.error("Failed: %s -- %s: %s", file_path.name, session.error_kind, session.error_reason)
        else:
            click.echo(f"Processed: {file_path.name} (archived: {archived.name})")


@click.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True), help="Read question from .md file")
@click.option("--style", default=None, help="Debate style (default: from config)")
@click.option("--template", default=None, help="Debate preset from settings.yaml (roster, roles, style, turns)")
@click.option("--list-templates", is_flag=True, default=False, help="List configured debate templates and exit")
@click.option("--max-turns", default=None, type=click.IntRange(min=1), help="Participant turn limit")
@click.option("--models", default=None, help="Comma-separated backend ids, overrides the configured roster")
@click.option("--synthesizer", default=None, help="Backend that writes the consensus (default: from config)")
@click.option("--context", "context_text", default=None, help="Application context prepended to the opening prompt")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--inbox", "use_inbox", is_flag=True, default=False, help="Process all .md files in inbox folder")
@click.option("--inbox-dir", "inbox_dir_override", default=None, help="Override inbox folder path")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the API connectivity check at startup")
def main(
    question: str | None,
    question_file: str | None,
    style: str | None,
    template: str | None,
    list_templates: bool,
    max_turns: int | None,
    models: str | None,
    synthesizer: str | None,
    context_text: str | None,
    output_path: str | None,
    verbose: bool,
    use_inbox: bool,
    inbox_dir_override: str | None,
    skip_health_check: bool,
) -> None:
    """Colloquy -- turn-based debate between AI models, ending in a consensus.

    \b
    Examples:
      colloquy "Should we use REST or GraphQL?"
      colloquy "Monorepo vs polyrepo?" --style adversarial --max-turns 4
      colloquy "SQL or NoSQL?" --models claude-opus,gemini-pro
      colloquy "Is this endpoint safe?" --template red-team
      colloquy --file question.md
      colloquy --inbox
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    if list_templates:
        _print_templates(config)
        return

    question_text = question
    if question_file and not use_inbox:
        try:
            item = parse_file(Path(question_file))
        except ValueError as exc:
            _fail(str(exc))
        question_text = item.question
        style = style or item.style
        template = template or item.template
        max_turns = max_turns if max_turns is not None else item.max_turns
        models = models or (",".join(item.models) if item.models else None)
        context_text = context_text or item.context
    elif not question_text and not use_inbox:
        _fail("Provide a QUESTION argument, --file, or --inbox.")

    preset = None
    if template:
        preset = config.templates.get(template)
        if preset is None:
            _fail(f"Unknown debate template '{template}'. Available: {', '.join(config.templates) or 'none'}")

    registry = BackendRegistry(config)
    output_dir = Path(output_path) if output_path else config.defaults.output_dir
    backend_ids = _parse_models(models)

    if backend_ids is not None or not skip_health_check:
        try:
            candidates = _candidates(registry, backend_ids, preset)
        except UnknownBackend as exc:
            _fail(f"{exc}. Configured: {', '.join(registry.backend_ids)}")
        if len(candidates) < 2:
            _fail(f"Need at least 2 available backends, got {len(candidates)}. Check API keys in .env or adjust --models.")
        if not skip_health_check:
            backend_ids = _check_and_filter(candidates)

    if use_inbox:
        asyncio.run(
            _run_inbox(
                config,
                registry,
                Path(inbox_dir_override) if inbox_dir_override else config.inbox.dir,
                config.inbox.archive_dir,
                output_dir,
                style_cli=style,
                max_turns_cli=max_turns,
                models_cli=backend_ids,
                synthesizer=synthesizer,
                context_cli=context_text,
                template_cli=template,
            )
        )
        return

    try:
        session = asyncio.run(
            _run_single(
                config,
                registry,
                question_text,
                output_dir,
                style=style,
                max_turns=max_turns,
                backend_ids=backend_ids,
                synthesizer=synthesizer,
                context=context_text,
                template=template,
            )
        )
    except (InsufficientParticipants, UnknownBackend, ValueError) as exc:
        _fail(str(exc))

    if session.status != SessionStatus.COMPLETE:
        sys.exit(1)


if __name__ == "__main__":
    main()
