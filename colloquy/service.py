"""DebateHub: the inbound surface hosting layers call to run and steer debates."""

import dataclasses
import logging

from config.config_loader import AppConfig, DebateTemplate
from colloquy.agreement import DEFAULT_AGREEMENT_PHRASES, AgreementPredicate, PhraseAgreementDetector
from colloquy.models import DebateMessage, DebateSession, InterjectionType, SessionStatus
from colloquy.orchestrator import DebateOrchestrator, DebateSettings, SaveHook
from colloquy.prompts import PromptBuilder
from colloquy.registry import BackendRegistry
from colloquy.votes import VoteLedger, VoteTally

logger = logging.getLogger(__name__)

_FINISHED = frozenset({SessionStatus.COMPLETE, SessionStatus.ERROR})


class UnknownSession(LookupError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Unknown debate session: {session_id}")


class DebateHub:
    """Owns the shared registry and prompt builder and one orchestrator per session.

    Sessions never share an orchestrator or a cost aggregator; the registry's
    adapters are stateless and shared. Finished sessions stay inspectable
    until more than ``max_finished`` have piled up, then the oldest are
    discarded when the next debate starts.
    """

    def __init__(
        self,
        config: AppConfig,
        registry: BackendRegistry | None = None,
        *,
        save_hook: SaveHook | None = None,
        agreement: AgreementPredicate | None = None,
        max_finished: int = 50,
    ) -> None:
        self._config = config
        self._registry = registry or BackendRegistry(config)
        self._prompts = PromptBuilder(config.prompts)
        self._agreement = agreement or PhraseAgreementDetector(
            config.agreement_phrases or DEFAULT_AGREEMENT_PHRASES
        )
        self._settings = DebateSettings.from_defaults(config.defaults)
        self._save_hook = save_hook
        self._sessions: dict[str, DebateOrchestrator] = {}
        self._max_finished = max_finished
        self.votes = VoteLedger()

    @property
    def registry(self) -> BackendRegistry:
        return self._registry

    @property
    def prompts(self) -> PromptBuilder:
        return self._prompts

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)

    @property
    def templates(self) -> dict[str, DebateTemplate]:
        return dict(self._config.templates)

    def template(self, name: str) -> DebateTemplate:
        preset = self._config.templates.get(name)
        if preset is None:
            known = ", ".join(self._config.templates) or "none"
            raise ValueError(f"Unknown debate template '{name}'. Available: {known}")
        return preset

    def create(
        self,
        *,
        template: str | None = None,
        backend_ids: list[str] | None = None,
        max_turns: int | None = None,
        synthesizer_id: str | None = None,
        reasoning_budget: int | None = None,
    ) -> DebateOrchestrator:
        """Build an unstarted orchestrator with per-debate overrides applied.

        A template supplies the roster (roles, colours, prompt overrides) and
        max_turns; explicit arguments win over it.
        """
        roster = None
        if template is not None:
            preset = self.template(template)
            roster = preset.participants
            if max_turns is None:
                max_turns = preset.max_turns

        settings = self._settings
        if max_turns is not None:
            if max_turns < 1:
                raise ValueError("max_turns must be at least 1")
            settings = dataclasses.replace(settings, max_turns=max_turns)
        if reasoning_budget is not None:
            settings = dataclasses.replace(settings, reasoning_budget=reasoning_budget)
        return DebateOrchestrator(
            self._registry,
            self._prompts,
            settings,
            agreement=self._agreement,
            save_hook=self._save_hook,
            synthesizer_id=synthesizer_id or self._config.defaults.synthesizer,
            backend_ids=backend_ids,
            roster=roster,
        )

    async def start_debate(
        self,
        question: str,
        style: str | None = None,
        app_context: str | None = None,
        *,
        template: str | None = None,
        **overrides,
    ) -> DebateOrchestrator:
        """Start a new session. Raises InsufficientParticipants before registering anything."""
        if template is not None and style is None:
            style = self.template(template).style
        orchestrator = self.create(template=template, **overrides)
        session = await orchestrator.start(question, style, app_context)
        self._prune_finished()
        self._sessions[session.id] = orchestrator
        return orchestrator

    def get(self, session_id: str) -> DebateOrchestrator:
        orchestrator = self._sessions.get(session_id)
        if orchestrator is None:
            raise UnknownSession(session_id)
        return orchestrator

    def session(self, session_id: str) -> DebateSession:
        session = self.get(session_id).session
        assert session is not None
        return session

    def interject(
        self,
        session_id: str,
        content: str,
        interjection_type: InterjectionType | str = InterjectionType.COMMENT,
        target_message_id: str | None = None,
    ) -> DebateMessage:
        return self.get(session_id).interject(content, interjection_type, target_message_id)

    def end_debate(self, session_id: str) -> None:
        self.get(session_id).end_debate()

    def cancel(self, session_id: str) -> None:
        self.get(session_id).cancel()

    def vote(self, session_id: str, message_id: str, user_id: str, vote: str) -> VoteTally:
        if self.session(session_id).message(message_id) is None:
            raise ValueError(f"Message {message_id} is not part of debate {session_id}")
        return self.votes.cast(message_id, user_id, vote)

    def discard(self, session_id: str) -> None:
        """Forget a session and its votes. Running sessions are cancelled first."""
        orchestrator = self._sessions.pop(session_id, None)
        if orchestrator is None:
            return
        orchestrator.cancel()
        if orchestrator.session is not None:
            self.votes.forget([m.id for m in orchestrator.session.messages])
        logger.debug("Discarded debate %s", session_id)

    def _prune_finished(self) -> None:
        """Drop the oldest finished sessions beyond ``max_finished``."""
        finished = [sid for sid, orch in self._sessions.items() if orch.status in _FINISHED]
        for session_id in finished[: max(0, len(finished) - self._max_finished)]:
            self.discard(session_id)
