"""xAI Grok adapter using the openai SDK (OpenAI-compatible API)."""

import logging

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from colloquy.providers.base import BackendError, ErrorKind
from colloquy.providers.openai_provider import OpenAIAdapter

logger = logging.getLogger(__name__)


class XAIAdapter(OpenAIAdapter):
    """xAI Grok adapter via OpenAI-compatible API."""

    def __init__(self, config: ModelConfig) -> None:
        if not config.base_url:
            raise BackendError(config.name, "base_url is required for xAI backend", ErrorKind.UNCONFIGURED)
        super().__init__(config)

    def _make_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=api_key,
            base_url=self._config.base_url,
            timeout=float(self._config.timeout_sec),
        )
