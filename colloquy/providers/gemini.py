"""Gemini adapter using the google-genai SDK with native async."""

import logging
from collections.abc import AsyncIterator
from typing import Any

from google import genai
from google.genai import types as genai_types

from colloquy.models import ChatMessage, GenerationOptions, GenerationResult, StreamChunk, TokenUsage
from colloquy.providers.base import BackendError, ModelAdapter, split_system

logger = logging.getLogger(__name__)

_DEFAULT_TEMPERATURE = 0.7


def _to_contents(conversation: list[ChatMessage]) -> list[genai_types.Content]:
    return [
        genai_types.Content(
            role="model" if m.role == "assistant" else "user",
            parts=[genai_types.Part(text=m.content)],
        )
        for m in conversation
    ]


def _usage(metadata: Any) -> TokenUsage | None:
    if metadata is None:
        return None
    output = (metadata.candidates_token_count or 0) + (getattr(metadata, "thoughts_token_count", None) or 0)
    return TokenUsage(input_tokens=metadata.prompt_token_count or 0, output_tokens=output)


def _split_parts(response: Any) -> tuple[list[str], list[str]]:
    """Return (text_parts, thought_parts) from the first candidate."""
    texts: list[str] = []
    thoughts: list[str] = []
    if not response.candidates or not response.candidates[0].content:
        return texts, thoughts
    for part in response.candidates[0].content.parts or []:
        if not part.text:
            continue
        if getattr(part, "thought", False):
            thoughts.append(part.text)
        else:
            texts.append(part.text)
    return texts, thoughts


def _finish_reason(response: Any) -> str | None:
    if not response.candidates or response.candidates[0].finish_reason is None:
        return None
    if response.candidates[0].finish_reason == genai_types.FinishReason.MAX_TOKENS:
        return "truncated"
    return "complete"


class GeminiAdapter(ModelAdapter):
    """Google Gemini adapter via google-genai SDK."""

    def _make_client(self, api_key: str) -> genai.Client:
        return genai.Client(
            api_key=api_key,
            http_options=genai_types.HttpOptions(timeout=self._config.timeout_sec * 1000),
        )

    def _request(self, messages: list[ChatMessage], options: GenerationOptions) -> dict[str, Any]:
        system, conversation = split_system(messages, options.system_prompt)
        if not conversation:
            raise BackendError(self.backend_id, "No user message provided")

        thinking = None
        if options.reasoning_budget:
            thinking = genai_types.ThinkingConfig(thinking_budget=options.reasoning_budget, include_thoughts=True)

        return {
            "model": self._config.model,
            "contents": _to_contents(conversation),
            "config": genai_types.GenerateContentConfig(
                system_instruction=system,
                max_output_tokens=self._max_tokens(options),
                temperature=options.temperature if options.temperature is not None else _DEFAULT_TEMPERATURE,
                thinking_config=thinking,
            ),
        }

    async def _complete(self, messages: list[ChatMessage], options: GenerationOptions) -> GenerationResult:
        response = await self._client.aio.models.generate_content(**self._request(messages, options))

        texts, thoughts = _split_parts(response)
        if not texts:
            raise BackendError(self.backend_id, "Empty response text")

        return GenerationResult(
            text="".join(texts),
            reasoning="".join(thoughts) or None,
            usage=_usage(response.usage_metadata) or TokenUsage(),
            finish_reason=_finish_reason(response) or "complete",
        )

    async def _stream_deltas(
        self, messages: list[ChatMessage], options: GenerationOptions
    ) -> AsyncIterator[StreamChunk | TokenUsage]:
        finish_reason: str | None = None
        usage: TokenUsage | None = None
        async for chunk in await self._client.aio.models.generate_content_stream(**self._request(messages, options)):
            texts, thoughts = _split_parts(chunk)
            for thought in thoughts:
                yield StreamChunk(type="reasoning", content=thought)
            for text in texts:
                yield StreamChunk(type="text", content=text)
            finish_reason = _finish_reason(chunk) or finish_reason
            # Each chunk reports cumulative usage; keep the latest.
            usage = _usage(chunk.usage_metadata) or usage
        if usage is not None:
            yield usage
        yield StreamChunk(type="done", finish_reason=finish_reason or "complete")
