"""Tests for colloquy/output.py."""

from pathlib import Path

import pytest

from colloquy.models import (
    HUMAN_AUTHOR_ID,
    Consensus,
    CostRow,
    CostSnapshot,
    DebateMessage,
    DebateSession,
    InterjectionType,
    Participant,
    SessionStatus,
)
from colloquy.output import MarkdownTranscriptStore, _slug, cost_table, print_consensus, render_markdown


@pytest.fixture
def session(sample_message) -> DebateSession:
    participants = [
        Participant(backend_id="alpha", role="strategic-architect", display_name="Alpha", system_prompt="..."),
        Participant(backend_id="beta", role="builder", display_name="Beta", system_prompt="..."),
    ]
    interjection = DebateMessage(
        author_id=HUMAN_AUTHOR_ID,
        author_name="User",
        role="user",
        turn_number=1,
        content="What about TOML?",
        interjection_type=InterjectionType.CHALLENGE,
    )
    row = CostRow(backend_id="alpha", display_name="Alpha", input_tokens=100, output_tokens=50, cost=0.002)
    return DebateSession(
        question="Should we use YAML or JSON for config?",
        participants=participants,
        messages=[sample_message, interjection],
        status=SessionStatus.COMPLETE,
        cost=CostSnapshot(rows=(row,), total_input_tokens=100, total_output_tokens=50, total_cost=0.002),
        consensus=Consensus(summary="Use YAML.\n\n## Action Items\n- Convert files", synthesizer_id="alpha"),
    )


def test_slug_basic():
    assert _slug("Should we use YAML or JSON?") == "should-we-use-yaml-or-json"


def test_slug_max_len():
    assert len(_slug("a " * 100)) <= 40


def test_render_markdown_sections(session):
    text = render_markdown(session)
    assert text.startswith("# Debate: Should we use YAML or JSON for config?")
    assert "**Participants:** Alpha (Strategic Architect), Beta (Builder)" in text
    assert "## Turn 0: Alpha (Architect)" in text
    assert "## Turn 1: User (User Challenge)" in text
    assert "## Consensus (by alpha)" in text
    assert "| Alpha | 100 | 50 | $0.0020 |" in text
    assert "**Status:** complete" in text


def test_render_markdown_error(session):
    session.status = SessionStatus.ERROR
    session.consensus = None
    session.error_kind = "Upstream"
    session.error_reason = "beta failed twice"
    text = render_markdown(session)
    assert "**Error:** Upstream: beta failed twice" in text
    assert "## Consensus" not in text


def test_store_writes_one_file_per_session(tmp_path: Path, session):
    store = MarkdownTranscriptStore(tmp_path / "out")

    store(session, "message")
    session.messages.append(
        DebateMessage(author_id="beta", author_name="Beta", role="builder", turn_number=2, content="TOML is fine.")
    )
    store(session, "synthesis")

    files = list((tmp_path / "out").glob("*.md"))
    assert len(files) == 1
    assert files[0].name.endswith("_should-we-use-yaml-or-json-for-config.md")
    assert "TOML is fine." in files[0].read_text(encoding="utf-8")


def test_store_slug_override(tmp_path: Path, session):
    store = MarkdownTranscriptStore(tmp_path, slug_override="my-question")
    store(session, "synthesis")
    assert store.path_for(session).name.endswith("_my-question.md")
    assert store.path_for(session).exists()


def test_cost_table_rows(session):
    table = cost_table(session.cost)
    assert table.row_count == 1
    assert [c.header for c in table.columns] == ["Backend", "Input", "Output", "Cost"]


def test_print_consensus_error_does_not_raise(session, capsys):
    session.status = SessionStatus.ERROR
    session.error_kind = "Cancelled"
    session.error_reason = "Debate cancelled by user"
    print_consensus(session)


def test_print_consensus_streamed_skips_summary(session, capsys):
    print_consensus(session, streamed=True)
    out = capsys.readouterr().out
    assert "Synthesized by: alpha" in out
    assert "Use YAML." not in out


def test_print_consensus_prints_summary(session, capsys):
    print_consensus(session)
    out = capsys.readouterr().out
    assert "Consensus" in out
    assert "Use YAML." in out
