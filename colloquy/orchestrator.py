"""Debate orchestration: session state machine, turn loop, interjections, synthesis."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from config.config_loader import DefaultsConfig, RosterEntry
from colloquy.agreement import AgreementPredicate, is_agreement_signal
from colloquy.costs import CostAggregator
from colloquy.models import (
    HUMAN_AUTHOR_ID,
    DebateEvent,
    DebateMessage,
    DebateSession,
    GenerationOptions,
    InterjectionType,
    Participant,
    SessionStatus,
    StreamChunk,
    TokenUsage,
)
from colloquy.prompts import PromptBuilder
from colloquy.providers.base import BackendError, ErrorKind, ModelAdapter, estimate_prompt_tokens, estimate_tokens
from colloquy.registry import BackendRegistry
from colloquy.synthesis import ConsensusSynthesizer, SynthesisError

logger = logging.getLogger(__name__)

SaveHook = Callable[[DebateSession, str], None]

_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.IDLE: frozenset({SessionStatus.STARTING, SessionStatus.ERROR}),
    SessionStatus.STARTING: frozenset({SessionStatus.DEBATING, SessionStatus.ERROR}),
    SessionStatus.DEBATING: frozenset({SessionStatus.SYNTHESIZING, SessionStatus.ERROR}),
    SessionStatus.SYNTHESIZING: frozenset({SessionStatus.COMPLETE, SessionStatus.ERROR}),
    SessionStatus.COMPLETE: frozenset(),
    SessionStatus.ERROR: frozenset(),
}

_TERMINAL = frozenset({SessionStatus.COMPLETE, SessionStatus.ERROR})

_ERROR_KINDS = {
    ErrorKind.UPSTREAM: "Upstream",
    ErrorKind.UNCONFIGURED: "Unconfigured",
    ErrorKind.CANCELLED: "Cancelled",
}


class InsufficientParticipants(Exception):
    """Raised by start() when fewer than two backends are usable."""

    def __init__(self, available: list[str]) -> None:
        self.available = available
        super().__init__(
            f"Need at least 2 available backends, got {len(available)}"
            + (f" ({', '.join(available)})" if available else "")
        )


class InvalidTransition(RuntimeError):
    def __init__(self, current: SessionStatus, target: SessionStatus) -> None:
        super().__init__(f"Illegal status transition {current} -> {target}")


class SessionNotActive(RuntimeError):
    """Raised when steering a session that is not debating."""


class _TurnInterrupted(Exception):
    """The in-flight turn was aborted by end_debate() or cancel()."""


@dataclass
class DebateSettings:
    max_turns: int = 6
    style: str = "cooperative"
    retry_delay_sec: float = 1.0
    opening_max_tokens: int = 4096
    turn_max_tokens: int = 3072
    temperature: float = 0.7
    reasoning_budget: int | None = None
    synthesis_max_tokens: int = 4096
    synthesis_temperature: float = 0.5

    @classmethod
    def from_defaults(cls, defaults: DefaultsConfig) -> "DebateSettings":
        return cls(
            max_turns=defaults.max_turns,
            style=defaults.style,
            retry_delay_sec=defaults.retry_delay_sec,
            opening_max_tokens=defaults.opening_max_tokens,
            turn_max_tokens=defaults.turn_max_tokens,
            temperature=defaults.temperature,
            synthesis_max_tokens=defaults.synthesis_max_tokens,
            synthesis_temperature=defaults.synthesis_temperature,
        )


class DebateOrchestrator:
    """Runs exactly one debate session.

    The session, its message log and its cost aggregator are mutated only
    here. Turns run sequentially in roster order; interjections, end and
    cancel requests are recorded synchronously and acted on by the run task
    between (or by aborting) turns, so they never interleave with an append.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        prompts: PromptBuilder,
        settings: DebateSettings | None = None,
        *,
        agreement: AgreementPredicate = is_agreement_signal,
        save_hook: SaveHook | None = None,
        synthesizer_id: str | None = None,
        backend_ids: list[str] | None = None,
        roster: list[RosterEntry] | None = None,
    ) -> None:
        self._registry = registry
        self._prompts = prompts
        self._settings = settings or DebateSettings()
        self._agreement = agreement
        self._save_hook = save_hook
        self._synthesizer_id = synthesizer_id
        self._backend_ids = backend_ids
        self._roster = roster

        self._costs = CostAggregator(registry.resolve)
        self._session: DebateSession | None = None
        self._adapters: dict[str, ModelAdapter] = {}
        self._synthesizer: ConsensusSynthesizer | None = None

        self._turn_counter = 0
        self._participant_turns = 0
        self._next_speaker = 0
        self._pending: list[DebateMessage] = []

        self._subscribers: list[asyncio.Queue[DebateEvent | None]] = []
        self._run_task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task | None = None
        self._cancel_event = asyncio.Event()
        self._cancel_requested = False
        self._end_requested = False

    # --- read-only views -------------------------------------------------

    @property
    def session(self) -> DebateSession | None:
        return self._session

    @property
    def costs(self) -> CostAggregator:
        return self._costs

    @property
    def status(self) -> SessionStatus:
        return self._session.status if self._session else SessionStatus.IDLE

    @property
    def next_participant(self) -> Participant | None:
        if self._session is None:
            return None
        return self._session.participants[self._next_speaker]

    # --- inbound operations ----------------------------------------------

    async def start(self, question: str, style: str | None = None, app_context: str | None = None) -> DebateSession:
        """Validate the roster, create the session and launch the turn loop.

        Raises:
            InsufficientParticipants: fewer than two usable backends. No
                session is created.
            ValueError: empty question or unknown style.
        """
        if self._session is not None:
            raise RuntimeError("This orchestrator already ran a session")
        if not question.strip():
            raise ValueError("Question must not be empty")
        style = style or self._settings.style
        if self._prompts.styles and style not in self._prompts.styles:
            raise ValueError(f"Unknown debate style '{style}'. Valid styles: {', '.join(self._prompts.styles)}")

        participants = self._build_participants(style)
        self._synthesizer = ConsensusSynthesizer(
            self._pick_synthesizer(participants),
            self._prompts,
            max_tokens=self._settings.synthesis_max_tokens,
            temperature=self._settings.synthesis_temperature,
            retry_delay_sec=self._settings.retry_delay_sec,
        )

        self._session = DebateSession(
            question=question.strip(),
            participants=participants,
            style=style,
            app_context=app_context,
        )
        logger.info(
            "Debate %s: %s [%s], synthesizer %s",
            self._session.id,
            ", ".join(p.backend_id for p in participants),
            style,
            self._synthesizer.backend_id,
        )
        self._transition(SessionStatus.STARTING)
        self._run_task = asyncio.create_task(self._run(), name=f"debate-{self._session.id}")
        return self._session

    async def wait(self) -> DebateSession:
        """Wait for the session to reach complete or error and return it."""
        if self._run_task is None or self._session is None:
            raise RuntimeError("Debate has not been started")
        await asyncio.shield(self._run_task)
        return self._session

    async def run(self, question: str, style: str | None = None, app_context: str | None = None) -> DebateSession:
        await self.start(question, style, app_context)
        return await self.wait()

    def interject(
        self,
        content: str,
        interjection_type: InterjectionType | str = InterjectionType.COMMENT,
        target_message_id: str | None = None,
    ) -> DebateMessage:
        """Queue a human message; it is appended before the next participant turn.

        The returned message gets its turn number when it is applied.
        """
        session = self._require_active()
        if not content.strip():
            raise ValueError("Interjection content must not be empty")
        kind = InterjectionType(interjection_type)
        if target_message_id is not None and session.message(target_message_id) is None:
            raise ValueError(f"Unknown target message: {target_message_id}")

        message = DebateMessage(
            author_id=HUMAN_AUTHOR_ID,
            author_name="User",
            role="user",
            turn_number=-1,
            content=content.strip(),
            interjection_type=kind,
            target_message_id=target_message_id,
        )
        self._pending.append(message)
        logger.info("Debate %s: %s interjection queued", session.id, kind)
        return message

    def end_debate(self) -> None:
        """Stop debating now and synthesize whatever has been appended."""
        if self._end_requested and self.status in (SessionStatus.STARTING, SessionStatus.DEBATING):
            return
        session = self._require_active()
        self._end_requested = True
        logger.info("Debate %s: end requested after %d messages", session.id, len(session.messages))
        self._abort_inflight()

    def cancel(self) -> None:
        """Abort the in-flight call and fail the session with kind Cancelled."""
        if self._session is None or self._session.status in _TERMINAL or self._cancel_requested:
            return
        self._cancel_requested = True
        self._cancel_event.set()
        logger.info("Debate %s: cancel requested", self._session.id)
        self._abort_inflight()

    def subscribe(self) -> AsyncIterator[DebateEvent]:
        """Events in emission order, ending after the session's terminal status."""
        queue: asyncio.Queue[DebateEvent | None] = asyncio.Queue()
        if self._session is not None and self._session.status in _TERMINAL:
            queue.put_nowait(None)
        else:
            self._subscribers.append(queue)
        return self._drain(queue)

    # --- run loop --------------------------------------------------------

    async def _run(self) -> None:
        session = self._require_session()
        try:
            if self._cancel_requested:
                self._fail("Cancelled", "Debate cancelled before the first turn")
                return
            self._transition(SessionStatus.DEBATING)
            if not await self._debate():
                return
            self._apply_interjections()
            self._transition(SessionStatus.SYNTHESIZING)
            await self._synthesize()
        except Exception as exc:
            logger.exception("Debate %s failed unexpectedly", session.id)
            if session.status not in _TERMINAL:
                self._fail("Internal", f"Unexpected error: {exc}")
        finally:
            self._close_subscribers()

    async def _debate(self) -> bool:
        """Turn loop. Returns True to synthesize, False if the session failed."""
        session = self._require_session()
        while True:
            if self._cancel_requested:
                self._fail("Cancelled", "Debate cancelled by user")
                return False
            if self._end_requested:
                return True

            self._apply_interjections()
            index = self._next_speaker
            participant = session.participants[index]

            try:
                message = await self._run_turn(participant)
            except _TurnInterrupted:
                continue
            except BackendError as exc:
                if exc.kind == ErrorKind.CANCELLED or self._cancel_requested:
                    self._fail("Cancelled", "Debate cancelled by user")
                else:
                    self._fail(_ERROR_KINDS[exc.kind], f"{participant.display_name} failed twice on turn "
                               f"{self._turn_counter}: {exc}")
                return False

            if self._cancel_requested:
                # Cancellation accepted after the stream finished: discard.
                continue

            if message.usage is not None:
                self._costs.record(participant.backend_id, message.usage.input_tokens, message.usage.output_tokens)
            self._append(message)
            self._emit("cost_updated", cost=session.cost)
            self._participant_turns += 1
            self._next_speaker = (index + 1) % len(session.participants)

            previous = session.messages[-2] if len(session.messages) >= 2 else None
            if message.is_agreement and previous is not None and previous.is_agreement:
                logger.info("Debate %s: mutual agreement at turn %d", session.id, message.turn_number)
                self._emit("agreement_detected", turn_number=message.turn_number, backend_id=message.author_id)
                return True
            if self._participant_turns >= self._settings.max_turns:
                logger.info("Debate %s: turn limit %d reached", session.id, self._settings.max_turns)
                return True

    async def _run_turn(self, participant: Participant) -> DebateMessage:
        """One participant turn, retried once with the same participant."""
        session = self._require_session()
        for attempt in (1, 2):
            self._emit("turn_started", turn_number=self._turn_counter, backend_id=participant.backend_id)
            try:
                return await self._interruptible(self._stream_turn(participant, self._turn_counter))
            except BackendError as exc:
                if exc.kind == ErrorKind.CANCELLED or attempt == 2:
                    raise
                logger.warning(
                    "Debate %s: %s failed on turn %d, retrying in %.1fs: %s",
                    session.id,
                    participant.backend_id,
                    self._turn_counter,
                    self._settings.retry_delay_sec,
                    exc,
                )
                await self._interruptible(asyncio.sleep(self._settings.retry_delay_sec))
        raise AssertionError("unreachable")

    async def _interruptible(self, coro):
        self._inflight = asyncio.ensure_future(coro)
        try:
            return await self._inflight
        except asyncio.CancelledError:
            if self._cancel_requested or self._end_requested:
                raise _TurnInterrupted() from None
            raise
        finally:
            self._inflight = None

    async def _stream_turn(self, participant: Participant, turn_number: int) -> DebateMessage:
        session = self._require_session()
        adapter = self._adapters[participant.backend_id]
        messages = self._prompts.turn_messages(participant, session.question, session.messages, session.app_context)
        opening = self._participant_turns == 0
        options = GenerationOptions(
            max_tokens=self._settings.opening_max_tokens if opening else self._settings.turn_max_tokens,
            temperature=self._settings.temperature,
            reasoning_budget=self._settings.reasoning_budget,
            cancel_event=self._cancel_event,
        )

        text_parts: list[str] = []
        reasoning_parts: list[str] = []
        terminal: StreamChunk | None = None
        async with contextlib.aclosing(adapter.stream(messages, options)) as chunks:
            async for chunk in chunks:
                if chunk.is_terminal:
                    terminal = chunk
                    break
                if chunk.type == "text":
                    text_parts.append(chunk.content)
                elif chunk.type == "reasoning":
                    reasoning_parts.append(chunk.content)
                self._emit(
                    "chunk",
                    turn_number=turn_number,
                    backend_id=participant.backend_id,
                    content=chunk.content,
                    chunk_type=chunk.type,
                )

        if terminal is None:
            raise BackendError(participant.backend_id, "Stream ended without a terminal chunk")
        if terminal.type == "error":
            raise BackendError(participant.backend_id, terminal.content, ErrorKind(terminal.error_kind or "upstream"))

        content = "".join(text_parts).strip()
        if not content:
            raise BackendError(participant.backend_id, "Empty response content")

        usage = terminal.usage or TokenUsage(
            input_tokens=estimate_prompt_tokens(messages),
            output_tokens=estimate_tokens(content),
        )
        return DebateMessage(
            author_id=participant.backend_id,
            author_name=participant.display_name,
            role=participant.role,
            turn_number=turn_number,
            content=content,
            is_agreement=self._agreement(content),
            reasoning="".join(reasoning_parts) or None,
            usage=usage,
        )

    async def _synthesize(self) -> None:
        session = self._require_session()
        assert self._synthesizer is not None
        try:
            consensus = await self._interruptible(
                self._synthesizer.synthesize(
                    session.question,
                    list(session.messages),
                    self._costs,
                    self._cancel_event,
                    on_chunk=self._emit_synthesis_chunk,
                    on_attempt=self._emit_synthesis_started,
                )
            )
        except (_TurnInterrupted, BackendError) as exc:
            if isinstance(exc, BackendError) and exc.kind != ErrorKind.CANCELLED and not self._cancel_requested:
                self._fail("SynthesisFailed", str(exc))
            else:
                self._fail("Cancelled", "Debate cancelled during synthesis")
            return
        except SynthesisError as exc:
            self._fail("SynthesisFailed", str(exc))
            return

        if self._cancel_requested:
            self._fail("Cancelled", "Debate cancelled during synthesis")
            return

        session.consensus = consensus
        session.cost = self._costs.snapshot()
        self._emit("cost_updated", cost=session.cost)
        session.completed_at = datetime.now(timezone.utc)
        self._transition(SessionStatus.COMPLETE)
        self._save("synthesis")

    def _emit_synthesis_started(self, attempt: int) -> None:
        assert self._synthesizer is not None
        self._emit("turn_started", backend_id=self._synthesizer.backend_id)

    def _emit_synthesis_chunk(self, chunk: StreamChunk) -> None:
        assert self._synthesizer is not None
        self._emit("chunk", backend_id=self._synthesizer.backend_id, content=chunk.content, chunk_type=chunk.type)

    # --- helpers ---------------------------------------------------------

    def _build_participants(self, style: str) -> list[Participant]:
        if self._backend_ids is not None:
            adapters = [self._registry.resolve(b) for b in self._backend_ids]
            adapters = [a for a in adapters if a.is_available()]
        elif self._roster is not None:
            adapters = self._registry.usable_roster(self._roster)
        else:
            adapters = self._registry.default_roster()

        if len(adapters) < 2:
            raise InsufficientParticipants([a.backend_id for a in adapters])

        roles = self._prompts.roles
        participants: list[Participant] = []
        for i, adapter in enumerate(adapters):
            entry = self._roster_entry(adapter.backend_id)
            role = entry.role if entry else roles[i % len(roles)]
            participants.append(
                Participant(
                    backend_id=adapter.backend_id,
                    role=role,
                    display_name=adapter.display_name,
                    system_prompt=self._prompts.system_prompt_for(
                        role, style, entry.system_prompt if entry else None
                    ),
                    color=entry.color if entry else Participant.color,
                )
            )
            self._adapters[adapter.backend_id] = adapter
        return participants

    def _roster_entry(self, backend_id: str) -> RosterEntry | None:
        if self._roster is not None:
            return next((e for e in self._roster if e.backend == backend_id), None)
        return self._registry.roster_entry(backend_id)

    def _pick_synthesizer(self, participants: list[Participant]) -> ModelAdapter:
        if self._synthesizer_id:
            adapter = self._registry.resolve(self._synthesizer_id)
            if adapter.is_available():
                return adapter
            logger.warning("Synthesizer '%s' unavailable, using first participant", self._synthesizer_id)
        return self._adapters[participants[0].backend_id]

    def _apply_interjections(self) -> None:
        while self._pending:
            message = self._pending.pop(0)
            message.turn_number = self._turn_counter
            self._append(message)

    def _append(self, message: DebateMessage) -> None:
        session = self._require_session()
        if message.turn_number != self._turn_counter:
            raise RuntimeError(f"Turn number {message.turn_number} does not match counter {self._turn_counter}")
        session.messages.append(message)
        self._turn_counter += 1
        session.cost = self._costs.snapshot()
        self._emit("message_appended", turn_number=message.turn_number, backend_id=message.author_id, message=message)
        self._save("message")

    def _transition(self, target: SessionStatus) -> None:
        session = self._require_session()
        if target not in _TRANSITIONS[session.status]:
            raise InvalidTransition(session.status, target)
        logger.debug("Debate %s: %s -> %s", session.id, session.status, target)
        session.status = target
        self._emit("status_changed", status=target)

    def _fail(self, kind: str, reason: str) -> None:
        session = self._require_session()
        self._pending.clear()
        session.error_kind = kind
        session.error_reason = reason
        session.cost = self._costs.snapshot()
        session.completed_at = datetime.now(timezone.utc)
        logger.error("Debate %s failed (%s): %s", session.id, kind, reason)
        self._transition(SessionStatus.ERROR)
        self._emit("error", content=reason, error_kind=kind)
        self._save("error")

    def _save(self, reason: str) -> None:
        if self._save_hook is None or self._session is None:
            return
        try:
            self._save_hook(self._session, reason)
        except Exception as exc:
            logger.warning("Debate %s: save hook failed on %s: %s", self._session.id, reason, exc)

    def _abort_inflight(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

    def _emit(self, event_type: str, **fields) -> None:
        if not self._subscribers:
            return
        session_id = self._session.id if self._session else ""
        event = DebateEvent(type=event_type, session_id=session_id, **fields)
        for queue in self._subscribers:
            queue.put_nowait(event)

    def _close_subscribers(self) -> None:
        for queue in self._subscribers:
            queue.put_nowait(None)
        self._subscribers.clear()

    @staticmethod
    async def _drain(queue: "asyncio.Queue[DebateEvent | None]") -> AsyncIterator[DebateEvent]:
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event

    def _require_session(self) -> DebateSession:
        if self._session is None:
            raise RuntimeError("Debate has not been started")
        return self._session

    def _require_active(self) -> DebateSession:
        session = self._require_session()
        if session.status not in (SessionStatus.STARTING, SessionStatus.DEBATING) or self._end_requested:
            raise SessionNotActive(f"Debate {session.id} is {session.status}, not debating")
        return session
