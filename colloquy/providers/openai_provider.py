"""OpenAI adapter using the openai SDK with native async."""

import logging
from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from colloquy.models import ChatMessage, GenerationOptions, GenerationResult, StreamChunk, TokenUsage
from colloquy.providers.base import BackendError, ModelAdapter, split_system

logger = logging.getLogger(__name__)

_DEFAULT_TEMPERATURE = 0.7


class OpenAIAdapter(ModelAdapter):
    """OpenAI adapter via openai SDK (chat completions)."""

    def _make_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=api_key, timeout=float(self._config.timeout_sec))

    def _request_kwargs(self, messages: list[ChatMessage], options: GenerationOptions) -> dict[str, Any]:
        system, conversation = split_system(messages, options.system_prompt)
        if not conversation:
            raise BackendError(self.backend_id, "No user message provided")

        wire_messages = [{"role": m.role, "content": m.content} for m in conversation]
        if system:
            wire_messages.insert(0, {"role": "system", "content": system})

        if options.reasoning_budget:
            logger.debug("%s ignores reasoning_budget=%d", self.backend_id, options.reasoning_budget)

        kwargs: dict[str, Any] = {"model": self._config.model, "messages": wire_messages}
        if self._config.reasoning_model:
            # Reasoning models reject max_tokens and any non-default temperature.
            kwargs["max_completion_tokens"] = self._max_tokens(options)
            if options.temperature is not None:
                logger.debug("%s ignores temperature=%s", self.backend_id, options.temperature)
        else:
            kwargs["max_tokens"] = self._max_tokens(options)
            kwargs["temperature"] = options.temperature if options.temperature is not None else _DEFAULT_TEMPERATURE
        return kwargs

    @staticmethod
    def _finish_reason(reason: str | None) -> str:
        return "truncated" if reason == "length" else "complete"

    async def _complete(self, messages: list[ChatMessage], options: GenerationOptions) -> GenerationResult:
        response = await self._client.chat.completions.create(**self._request_kwargs(messages, options))

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise BackendError(self.backend_id, "Empty response content")

        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )

        return GenerationResult(
            text=choice.message.content,
            usage=usage,
            finish_reason=self._finish_reason(choice.finish_reason),
        )

    async def _stream_deltas(
        self, messages: list[ChatMessage], options: GenerationOptions
    ) -> AsyncIterator[StreamChunk | TokenUsage]:
        stream = await self._client.chat.completions.create(
            **self._request_kwargs(messages, options),
            stream=True,
            stream_options={"include_usage": True},
        )
        finish_reason: str | None = None
        async for chunk in stream:
            if chunk.choices:
                choice = chunk.choices[0]
                if choice.delta and choice.delta.content:
                    yield StreamChunk(type="text", content=choice.delta.content)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
            # Usage arrives on the final chunk, which has no choices.
            if chunk.usage:
                yield TokenUsage(
                    input_tokens=chunk.usage.prompt_tokens,
                    output_tokens=chunk.usage.completion_tokens,
                )
        yield StreamChunk(type="done", finish_reason=self._finish_reason(finish_reason))
