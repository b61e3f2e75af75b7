"""Abstract base for all model backend adapters."""

import asyncio
import logging
import math
import os
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable
from enum import StrEnum
from typing import Any, TypeVar

from config.config_loader import ModelConfig
from colloquy.models import (
    BackendDescriptor,
    ChatMessage,
    GenerationOptions,
    GenerationResult,
    StreamChunk,
    TokenUsage,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_COST_PRECISION = 4
_CHARS_PER_TOKEN = 4


class ErrorKind(StrEnum):
    UNCONFIGURED = "unconfigured"
    UPSTREAM = "upstream"
    CANCELLED = "cancelled"


class BackendError(Exception):
    """Raised when a backend call fails."""

    def __init__(self, backend_id: str, message: str, kind: ErrorKind = ErrorKind.UPSTREAM) -> None:
        self.backend_id = backend_id
        self.kind = kind
        super().__init__(f"[{backend_id}] {message}")


def estimate_tokens(text: str) -> int:
    """Conservative token estimate for text the vendor did not count."""
    return math.ceil(len(text) / _CHARS_PER_TOKEN)


def estimate_prompt_tokens(messages: list[ChatMessage], system_prompt: str | None = None) -> int:
    chars = sum(len(m.content) for m in messages)
    if system_prompt and not any(m.role == "system" for m in messages):
        chars += len(system_prompt)
    return math.ceil(chars / _CHARS_PER_TOKEN)


def split_system(messages: list[ChatMessage], override: str | None) -> tuple[str | None, list[ChatMessage]]:
    """Separate system messages from the conversation. An explicit override wins."""
    system_parts = [m.content for m in messages if m.role == "system"]
    conversation = [m for m in messages if m.role != "system"]
    system = override if override is not None else ("\n\n".join(system_parts) or None)
    return system, conversation


class ModelAdapter(ABC):
    """Uniform generate / stream / cost surface over one vendor model.

    Subclasses implement ``_complete`` and ``_stream_deltas``. The public
    ``generate`` and ``stream`` wrap them with credential checks, timeouts,
    cancellation and error wrapping, so every vendor shares the same
    termination guarantees.
    """

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        self._api_key = os.environ.get(config.api_key_env, "").strip()
        self._client: Any = self._make_client(self._api_key) if self._api_key else None

    @abstractmethod
    def _make_client(self, api_key: str) -> Any:
        """Build the vendor SDK client. Only called when a key is present."""
        ...

    @abstractmethod
    async def _complete(self, messages: list[ChatMessage], options: GenerationOptions) -> GenerationResult:
        """Run a full completion against the vendor API."""
        ...

    @abstractmethod
    def _stream_deltas(
        self, messages: list[ChatMessage], options: GenerationOptions
    ) -> AsyncIterator[StreamChunk | TokenUsage]:
        """Yield ``text``/``reasoning`` chunks, then optionally one TokenUsage.

        A ``done`` chunk may be yielded to report the finish reason; its usage
        is merged with any TokenUsage seen.
        """
        ...

    @property
    def backend_id(self) -> str:
        return self._config.name

    @property
    def display_name(self) -> str:
        return self._config.display_name or self._config.name

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def descriptor(self) -> BackendDescriptor:
        return BackendDescriptor(
            backend_id=self._config.name,
            display_name=self.display_name,
            model=self._config.model,
            vendor=self._config.vendor,
            pricing=self._config.pricing,
        )

    def is_available(self) -> bool:
        return bool(self._api_key)

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        pricing = self._config.pricing
        cost = (input_tokens / 1000) * pricing.input_per_1k + (output_tokens / 1000) * pricing.output_per_1k
        return round(cost, _COST_PRECISION)

    def _max_tokens(self, options: GenerationOptions) -> int:
        return options.max_tokens or self._config.max_tokens

    async def _with_cancel(self, awaitable: Awaitable[T], cancel_event: asyncio.Event | None) -> T:
        """Await ``awaitable`` unless ``cancel_event`` fires first."""
        if cancel_event is None:
            return await awaitable
        call = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            waiter.cancel()
        if call not in done:
            call.cancel()
            raise BackendError(self.backend_id, "Cancelled by caller", ErrorKind.CANCELLED)
        return call.result()

    async def generate(
        self, messages: list[ChatMessage], options: GenerationOptions | None = None
    ) -> GenerationResult:
        """Full (non-streaming) completion.

        Raises:
            BackendError: UNCONFIGURED without credentials, CANCELLED when the
                caller's cancel_event fires first, UPSTREAM on any vendor
                failure or timeout.
        """
        options = options or GenerationOptions()
        if self._client is None:
            raise BackendError(self.backend_id, f"Missing API key: {self._config.api_key_env}", ErrorKind.UNCONFIGURED)
        if options.cancel_event is not None and options.cancel_event.is_set():
            raise BackendError(self.backend_id, "Cancelled before request", ErrorKind.CANCELLED)

        start = time.monotonic()
        try:
            result = await self._with_cancel(
                asyncio.wait_for(self._complete(messages, options), timeout=self._config.timeout_sec),
                options.cancel_event,
            )
        except BackendError:
            raise
        except TimeoutError as exc:
            raise BackendError(self.backend_id, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise BackendError(self.backend_id, f"API call failed: {exc}") from exc

        logger.info(
            "%s generate: %.2fs, %d tokens (%s)",
            self.backend_id,
            time.monotonic() - start,
            result.usage.total_tokens,
            result.finish_reason,
        )
        return result

    async def stream(
        self, messages: list[ChatMessage], options: GenerationOptions | None = None
    ) -> AsyncIterator[StreamChunk]:
        """Incremental completion ending in exactly one ``done`` or ``error`` chunk."""
        options = options or GenerationOptions()
        if self._client is None:
            yield StreamChunk(
                type="error",
                content=f"Missing API key: {self._config.api_key_env}",
                error_kind=ErrorKind.UNCONFIGURED,
            )
            return

        start = time.monotonic()
        text_parts: list[str] = []
        usage: TokenUsage | None = None
        finish_reason = "complete"
        cancel_event = options.cancel_event

        try:
            async for item in self._stream_deltas(messages, options):
                if cancel_event is not None and cancel_event.is_set():
                    yield StreamChunk(type="error", content="Cancelled by caller", error_kind=ErrorKind.CANCELLED)
                    return
                if isinstance(item, TokenUsage):
                    usage = item
                elif item.type == "done":
                    finish_reason = item.finish_reason or finish_reason
                    usage = item.usage or usage
                elif item.type in ("text", "reasoning"):
                    if item.type == "text":
                        text_parts.append(item.content)
                    yield item
        except BackendError as exc:
            logger.warning("%s stream failed: %s", self.backend_id, exc)
            yield StreamChunk(type="error", content=str(exc), error_kind=exc.kind)
            return
        except Exception as exc:
            logger.warning("%s stream failed: %s", self.backend_id, exc)
            yield StreamChunk(type="error", content=f"API call failed: {exc}", error_kind=ErrorKind.UPSTREAM)
            return

        if cancel_event is not None and cancel_event.is_set():
            yield StreamChunk(type="error", content="Cancelled by caller", error_kind=ErrorKind.CANCELLED)
            return

        if usage is None or usage.input_tokens == 0 or usage.output_tokens == 0:
            estimated_in = estimate_prompt_tokens(messages, options.system_prompt)
            estimated_out = estimate_tokens("".join(text_parts))
            usage = TokenUsage(
                input_tokens=usage.input_tokens if usage and usage.input_tokens else estimated_in,
                output_tokens=usage.output_tokens if usage and usage.output_tokens else estimated_out,
            )

        logger.info(
            "%s stream: %.2fs, %d tokens (%s)",
            self.backend_id,
            time.monotonic() - start,
            usage.total_tokens,
            finish_reason,
        )
        yield StreamChunk(type="done", usage=usage, finish_reason=finish_reason)
