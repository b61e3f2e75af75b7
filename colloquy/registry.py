"""Backend registry: resolves adapters by id and exposes the default roster."""

import logging

from config.config_loader import AppConfig, ModelConfig, RosterEntry
from colloquy.providers.anthropic import AnthropicAdapter
from colloquy.providers.base import BackendError, ModelAdapter
from colloquy.providers.gemini import GeminiAdapter
from colloquy.providers.openai_provider import OpenAIAdapter
from colloquy.providers.xai import XAIAdapter

logger = logging.getLogger(__name__)

ADAPTER_CLASSES: dict[str, type[ModelAdapter]] = {
    "anthropic": AnthropicAdapter,
    "openai": OpenAIAdapter,
    "google-genai": GeminiAdapter,
    "xai": XAIAdapter,
}


class UnknownBackend(LookupError):
    """Raised when an adapter is requested for an unrecognized backend id."""

    def __init__(self, backend_id: str) -> None:
        self.backend_id = backend_id
        super().__init__(f"Unknown backend: {backend_id}")


class BackendRegistry:
    """Lazily builds one adapter per backend id and caches it for the process lifetime."""

    def __init__(
        self,
        config: AppConfig,
        adapter_classes: dict[str, type[ModelAdapter]] | None = None,
    ) -> None:
        self._models: dict[str, ModelConfig] = dict(config.models)
        self._roster: list[RosterEntry] = list(config.roster)
        self._adapter_classes = adapter_classes if adapter_classes is not None else ADAPTER_CLASSES
        self._instances: dict[str, ModelAdapter] = {}

    @property
    def backend_ids(self) -> list[str]:
        return list(self._models)

    def resolve(self, backend_id: str) -> ModelAdapter:
        instance = self._instances.get(backend_id)
        if instance is not None:
            return instance
        model_cfg = self._models.get(backend_id)
        if model_cfg is None:
            raise UnknownBackend(backend_id)
        adapter_cls = self._adapter_classes.get(model_cfg.sdk)
        if adapter_cls is None:
            raise UnknownBackend(backend_id)
        instance = adapter_cls(model_cfg)
        self._instances[backend_id] = instance
        return instance

    def _usable(self, backend_id: str) -> ModelAdapter | None:
        try:
            adapter = self.resolve(backend_id)
        except BackendError as exc:
            logger.warning("Backend '%s' could not be built, skipping: %s", backend_id, exc)
            return None
        return adapter if adapter.is_available() else None

    def available_backends(self) -> list[ModelAdapter]:
        """All configured backends with credentials, in configuration order."""
        return [a for a in (self._usable(b) for b in self._models) if a is not None]

    def roster_entry(self, backend_id: str) -> RosterEntry | None:
        return next((e for e in self._roster if e.backend == backend_id), None)

    def default_roster(self) -> list[ModelAdapter]:
        """Configured debate roster, filtered to backends usable right now.

        Fewer than two entries means a debate cannot start.
        """
        return self.usable_roster(self._roster)

    def usable_roster(self, entries: list[RosterEntry]) -> list[ModelAdapter]:
        roster: list[ModelAdapter] = []
        for entry in entries:
            adapter = self._usable(entry.backend)
            if adapter is None:
                logger.info("Roster backend '%s' unavailable, excluded", entry.backend)
                continue
            roster.append(adapter)
        return roster
