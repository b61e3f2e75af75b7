"""Dataclasses for the debate engine. No logic beyond trivial derived fields."""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

from config.config_loader import PricingConfig

HUMAN_AUTHOR_ID = "human"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class SessionStatus(StrEnum):
    IDLE = "idle"
    STARTING = "starting"
    DEBATING = "debating"
    SYNTHESIZING = "synthesizing"
    COMPLETE = "complete"
    ERROR = "error"


class InterjectionType(StrEnum):
    CLARIFICATION = "clarification"
    CHALLENGE = "challenge"
    REDIRECT = "redirect"
    COMMENT = "comment"


@dataclass(frozen=True)
class BackendDescriptor:
    backend_id: str
    display_name: str
    model: str
    vendor: str            # "anthropic", "openai", "google", "xai"
    pricing: PricingConfig


@dataclass(frozen=True)
class ChatMessage:
    role: str              # "user", "assistant", "system"
    content: str


@dataclass
class GenerationOptions:
    max_tokens: int | None = None
    temperature: float | None = None
    system_prompt: str | None = None
    reasoning_budget: int | None = None
    cancel_event: asyncio.Event | None = None


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class GenerationResult:
    text: str
    usage: TokenUsage
    finish_reason: str = "complete"    # "complete", "truncated", "error"
    reasoning: str | None = None


@dataclass(frozen=True)
class StreamChunk:
    type: str                          # "text", "reasoning", "error", "done"
    content: str = ""
    usage: TokenUsage | None = None    # set on "done"
    finish_reason: str | None = None   # set on "done"
    error_kind: str | None = None      # set on "error"

    @property
    def is_terminal(self) -> bool:
        return self.type in ("done", "error")


@dataclass(frozen=True)
class Participant:
    backend_id: str
    role: str
    display_name: str
    system_prompt: str
    color: str = "#64748B"


@dataclass
class DebateMessage:
    author_id: str                     # participant backend id or "human"
    author_name: str
    role: str
    turn_number: int
    content: str
    is_agreement: bool = False
    reasoning: str | None = None
    usage: TokenUsage | None = None
    interjection_type: InterjectionType | None = None
    target_message_id: str | None = None
    id: str = field(default_factory=lambda: new_id("msg"))
    timestamp: datetime = field(default_factory=_now)

    @property
    def is_interjection(self) -> bool:
        return self.author_id == HUMAN_AUTHOR_ID


@dataclass
class Consensus:
    summary: str
    action_items: list[str] = field(default_factory=list)
    synthesizer_id: str = ""
    created_at: datetime = field(default_factory=_now)
    implemented_at: datetime | None = None

    def mark_implemented(self, when: datetime | None = None) -> None:
        self.implemented_at = when or _now()


@dataclass(frozen=True)
class CostRow:
    backend_id: str
    display_name: str
    input_tokens: int
    output_tokens: int
    cost: float

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class CostSnapshot:
    rows: tuple[CostRow, ...] = ()
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    def row(self, backend_id: str) -> CostRow | None:
        return next((r for r in self.rows if r.backend_id == backend_id), None)


@dataclass
class DebateSession:
    question: str
    participants: list[Participant]
    style: str = "cooperative"
    app_context: str | None = None
    messages: list[DebateMessage] = field(default_factory=list)
    status: SessionStatus = SessionStatus.IDLE
    cost: CostSnapshot = field(default_factory=CostSnapshot)
    consensus: Consensus | None = None
    error_kind: str | None = None      # "Upstream", "Unconfigured", "Cancelled", "SynthesisFailed", "Internal"
    error_reason: str | None = None
    id: str = field(default_factory=lambda: new_id("debate"))
    created_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None

    def message(self, message_id: str) -> DebateMessage | None:
        return next((m for m in self.messages if m.id == message_id), None)


@dataclass
class DebateEvent:
    type: str   # "status_changed", "turn_started", "chunk", "message_appended",
                # "agreement_detected", "cost_updated", "error"
    session_id: str
    status: SessionStatus | None = None
    turn_number: int | None = None
    backend_id: str | None = None
    content: str = ""
    chunk_type: str | None = None
    message: DebateMessage | None = None
    cost: CostSnapshot | None = None
    error_kind: str | None = None
    timestamp: datetime = field(default_factory=_now)
