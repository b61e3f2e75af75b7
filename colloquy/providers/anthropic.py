"""Anthropic Claude adapter using the anthropic SDK with native async."""

import logging
from collections.abc import AsyncIterator
from typing import Any

import anthropic as anthropic_sdk

from colloquy.models import ChatMessage, GenerationOptions, GenerationResult, StreamChunk, TokenUsage
from colloquy.providers.base import BackendError, ModelAdapter, split_system

logger = logging.getLogger(__name__)

_DEFAULT_TEMPERATURE = 0.7
_TRUNCATED_STOP_REASONS = {"max_tokens"}


class AnthropicAdapter(ModelAdapter):
    """Anthropic Claude adapter via anthropic SDK."""

    def _make_client(self, api_key: str) -> anthropic_sdk.AsyncAnthropic:
        return anthropic_sdk.AsyncAnthropic(api_key=api_key, timeout=float(self._config.timeout_sec))

    def _request_kwargs(self, messages: list[ChatMessage], options: GenerationOptions) -> dict[str, Any]:
        system, conversation = split_system(messages, options.system_prompt)
        if not conversation:
            raise BackendError(self.backend_id, "No user message provided")

        max_tokens = self._max_tokens(options)
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "max_tokens": max_tokens,
            "messages": [{"role": m.role, "content": m.content} for m in conversation],
        }
        if system:
            kwargs["system"] = system
        if options.reasoning_budget:
            # Extended thinking requires temperature 1 and a budget below max_tokens.
            budget = min(options.reasoning_budget, max_tokens - 1)
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": budget}
            kwargs["temperature"] = 1
        else:
            kwargs["temperature"] = options.temperature if options.temperature is not None else _DEFAULT_TEMPERATURE
        return kwargs

    @staticmethod
    def _finish_reason(stop_reason: str | None) -> str:
        return "truncated" if stop_reason in _TRUNCATED_STOP_REASONS else "complete"

    async def _complete(self, messages: list[ChatMessage], options: GenerationOptions) -> GenerationResult:
        response = await self._client.messages.create(**self._request_kwargs(messages, options))

        if not response.content:
            raise BackendError(self.backend_id, "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        thinking_blocks = [b.thinking for b in response.content if b.type == "thinking"]
        if not text_blocks:
            raise BackendError(self.backend_id, "No text blocks in response")

        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )

        return GenerationResult(
            text="\n".join(text_blocks),
            reasoning="\n".join(thinking_blocks) or None,
            usage=usage,
            finish_reason=self._finish_reason(response.stop_reason),
        )

    async def _stream_deltas(
        self, messages: list[ChatMessage], options: GenerationOptions
    ) -> AsyncIterator[StreamChunk | TokenUsage]:
        async with self._client.messages.stream(**self._request_kwargs(messages, options)) as stream:
            async for event in stream:
                if event.type != "content_block_delta":
                    continue
                delta = event.delta
                if delta.type == "text_delta":
                    yield StreamChunk(type="text", content=delta.text)
                elif delta.type == "thinking_delta":
                    yield StreamChunk(type="reasoning", content=delta.thinking)

            final = await stream.get_final_message()

        usage = None
        if final.usage:
            usage = TokenUsage(input_tokens=final.usage.input_tokens, output_tokens=final.usage.output_tokens)
        yield StreamChunk(type="done", usage=usage, finish_reason=self._finish_reason(final.stop_reason))
