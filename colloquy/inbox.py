"""Inbox folder scanning, frontmatter parsing, and archive logic."""

import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import frontmatter


@dataclass
class InboxQuestion:
    """A queued question plus the per-file overrides from its frontmatter."""

    path: Path
    question: str
    style: str | None = None
    max_turns: int | None = None
    models: list[str] | None = None
    context: str | None = None
    template: str | None = None


def ensure_dirs(inbox_dir: Path, archive_dir: Path) -> None:
    """Create inbox and archive directories if they don't exist."""
    inbox_dir.mkdir(parents=True, exist_ok=True)
    archive_dir.mkdir(parents=True, exist_ok=True)


def scan_inbox(inbox_dir: Path) -> list[Path]:
    """Return all .md files in inbox_dir, oldest first."""
    return sorted(inbox_dir.glob("*.md"), key=lambda p: p.stat().st_mtime)


def parse_file(file_path: Path) -> InboxQuestion:
    """Parse a markdown question with optional YAML frontmatter.

    Recognized keys: ``style``, ``max_turns``, ``models`` (list or
    comma-separated string), ``context`` and ``template``. Unknown keys are
    ignored.

    Raises:
        ValueError: If the body is empty or max_turns is not an integer.
    """
    post = frontmatter.load(str(file_path))
    question = post.content.strip()
    if not question:
        raise ValueError(f"{file_path.name} has no question text")

    meta = post.metadata
    models = meta.get("models")
    if isinstance(models, str):
        models = [m.strip() for m in models.split(",") if m.strip()]
    elif models is not None:
        models = [str(m) for m in models]

    max_turns = meta.get("max_turns")
    return InboxQuestion(
        path=file_path,
        question=question,
        style=meta.get("style"),
        max_turns=int(max_turns) if max_turns is not None else None,
        models=models or None,
        context=meta.get("context"),
        template=meta.get("template"),
    )


def archive_file(file_path: Path, archive_dir: Path, *, failed: bool = False) -> Path:
    """Move file to archive_dir with a timestamp prefix, plus "FAILED_" on failure."""
    timestamp = datetime.now().strftime("%Y-%m-%dT%H%M")
    prefix = "FAILED_" if failed else ""
    dest = archive_dir / f"{prefix}{timestamp}_{file_path.name}"
    shutil.move(str(file_path), str(dest))
    return dest
