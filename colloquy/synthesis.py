"""Final synthesis: reduce the transcript into a consensus with action items."""

import asyncio
import contextlib
import logging
import re
from collections.abc import Callable

from colloquy.costs import CostAggregator
from colloquy.models import ChatMessage, Consensus, DebateMessage, GenerationOptions, StreamChunk, TokenUsage
from colloquy.prompts import PromptBuilder
from colloquy.providers.base import BackendError, ErrorKind, ModelAdapter, estimate_prompt_tokens, estimate_tokens

logger = logging.getLogger(__name__)

_SYNTHESIZER_SYSTEM = (
    "You are a neutral moderator summarizing a discussion between AI experts. "
    "You did not take part in it. Report agreements faithfully and settle open "
    "disagreements with a clear recommendation."
)

_ACTION_HEADING = re.compile(r"^\s*(?:#{1,6}\s*|\*\*)?action items?\b", re.IGNORECASE)
_ANY_HEADING = re.compile(r"^\s*(?:#{1,6}\s+\S|\*\*[^*]+\*\*\s*:?\s*$)")
_BULLET = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(?:\[[ xX]\]\s+)?(.+?)\s*$")


class SynthesisError(Exception):
    """Raised when the synthesizer fails on both attempts."""

    def __init__(self, backend_id: str, message: str) -> None:
        self.backend_id = backend_id
        super().__init__(f"[{backend_id}] {message}")


def extract_action_items(text: str) -> list[str]:
    """Bullets under the first "Action Items" heading, up to the next heading."""
    items: list[str] = []
    in_section = False
    for line in text.splitlines():
        if _ACTION_HEADING.match(line):
            in_section = True
            continue
        if not in_section:
            continue
        if _ANY_HEADING.match(line):
            break
        bullet = _BULLET.match(line)
        if bullet:
            items.append(bullet.group(1))
    return items


class ConsensusSynthesizer:
    """Non-participant generation pass over the full transcript."""

    def __init__(
        self,
        adapter: ModelAdapter,
        prompts: PromptBuilder,
        *,
        max_tokens: int = 4096,
        temperature: float = 0.5,
        retry_delay_sec: float = 1.0,
    ) -> None:
        self._adapter = adapter
        self._prompts = prompts
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._retry_delay_sec = retry_delay_sec

    @property
    def backend_id(self) -> str:
        return self._adapter.backend_id

    async def synthesize(
        self,
        question: str,
        transcript: list[DebateMessage],
        costs: CostAggregator,
        cancel_event: asyncio.Event | None = None,
        on_chunk: Callable[[StreamChunk], None] | None = None,
        on_attempt: Callable[[int], None] | None = None,
    ) -> Consensus:
        """Stream synthesis, retrying once on vendor failure.

        ``on_attempt`` is called with the attempt number before each call and
        ``on_chunk`` with every text or reasoning chunk as it arrives, so a
        host can discard partial output when the retry starts.
        Usage from every completed call is recorded into ``costs``.

        Raises:
            SynthesisError: If both attempts fail or return empty content.
            BackendError: CANCELLED if ``cancel_event`` fires; never retried.
        """
        messages = [
            ChatMessage(role="system", content=_SYNTHESIZER_SYSTEM),
            ChatMessage(role="user", content=self._prompts.synthesis_prompt(question, transcript)),
        ]
        options = GenerationOptions(
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            cancel_event=cancel_event,
        )

        logger.info("Running synthesis via %s over %d messages", self.backend_id, len(transcript))

        failure = ""
        for attempt in (1, 2):
            if on_attempt is not None:
                on_attempt(attempt)
            try:
                text, usage = await self._stream_once(messages, options, on_chunk)
            except BackendError as exc:
                if exc.kind == ErrorKind.CANCELLED:
                    raise
                failure = str(exc)
            else:
                costs.record(self.backend_id, usage.input_tokens, usage.output_tokens)
                summary = text.strip()
                if summary:
                    return Consensus(
                        summary=summary,
                        action_items=extract_action_items(summary),
                        synthesizer_id=self.backend_id,
                    )
                failure = "Synthesizer returned empty content"

            if attempt == 1:
                logger.warning("Synthesis attempt failed, retrying in %.1fs: %s", self._retry_delay_sec, failure)
                await asyncio.sleep(self._retry_delay_sec)

        raise SynthesisError(self.backend_id, f"Synthesis failed after retry: {failure}")

    async def _stream_once(
        self,
        messages: list[ChatMessage],
        options: GenerationOptions,
        on_chunk: Callable[[StreamChunk], None] | None,
    ) -> tuple[str, TokenUsage]:
        text_parts: list[str] = []
        terminal: StreamChunk | None = None
        async with contextlib.aclosing(self._adapter.stream(messages, options)) as chunks:
            async for chunk in chunks:
                if chunk.is_terminal:
                    terminal = chunk
                    break
                if chunk.type == "text":
                    text_parts.append(chunk.content)
                if on_chunk is not None:
                    on_chunk(chunk)

        if terminal is None:
            raise BackendError(self.backend_id, "Stream ended without a terminal chunk")
        if terminal.type == "error":
            raise BackendError(self.backend_id, terminal.content, ErrorKind(terminal.error_kind or "upstream"))

        text = "".join(text_parts)
        usage = terminal.usage or TokenUsage(
            input_tokens=estimate_prompt_tokens(messages),
            output_tokens=estimate_tokens(text),
        )
        return text, usage
