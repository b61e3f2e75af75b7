"""Persona and prompt templating. Pure functions of their inputs; no I/O."""

from config.config_loader import PromptsConfig
from colloquy.models import ChatMessage, DebateMessage, InterjectionType, Participant

INTERJECTION_LABELS: dict[InterjectionType, str] = {
    InterjectionType.CLARIFICATION: "Clarification Request",
    InterjectionType.CHALLENGE: "User Challenge",
    InterjectionType.REDIRECT: "User Direction",
    InterjectionType.COMMENT: "User Comment",
}


def role_label(role: str) -> str:
    return role.replace("-", " ").replace("_", " ").title()


class PromptBuilder:
    """Builds system prompts and message lists from the configured templates."""

    def __init__(self, prompts: PromptsConfig) -> None:
        self._prompts = prompts

    @property
    def roles(self) -> list[str]:
        return list(self._prompts.personas)

    @property
    def styles(self) -> list[str]:
        return list(self._prompts.styles)

    def system_prompt_for(self, role: str, style: str | None = None, override: str | None = None) -> str:
        """Persona text for ``role`` (or ``override``), then the style directive."""
        persona = override or self._prompts.personas.get(role)
        if persona is None:
            raise KeyError(f"No persona configured for role '{role}'")
        directive = self._prompts.styles.get(style, "") if style else ""
        return "\n\n".join(part.strip() for part in (persona, directive) if part.strip())

    def context_frame(self, other_name: str, other_role: str, other_message: str) -> str:
        return self._prompts.context_frame.format(
            name=other_name,
            role=role_label(other_role),
            content=other_message,
        ).strip()

    def opening_prompt(self, question: str, app_context: str | None = None) -> str:
        prompt = self._prompts.opening.format(question=question).strip()
        if app_context:
            return f"{app_context.strip()}\n\n{prompt}"
        return prompt

    def interjection_frame(self, message: DebateMessage, target: DebateMessage | None = None) -> str:
        kind = message.interjection_type or InterjectionType.COMMENT
        target_text = ""
        if target is not None:
            target_text = f" (re: {target.author_name}, turn {target.turn_number})"
        elif message.target_message_id:
            target_text = " (re: previous message)"
        return self._prompts.interjection.format(
            label=INTERJECTION_LABELS[kind],
            target=target_text,
            content=message.content,
        ).strip()

    def format_transcript(self, messages: list[DebateMessage]) -> str:
        parts: list[str] = []
        for msg in messages:
            if msg.is_interjection:
                label = INTERJECTION_LABELS[msg.interjection_type or InterjectionType.COMMENT]
                parts.append(f"**User** ({label}):\n{msg.content}")
            else:
                parts.append(f"**{msg.author_name}** ({role_label(msg.role)}):\n{msg.content}")
        return "\n\n---\n\n".join(parts)

    def synthesis_prompt(self, question: str, transcript: list[DebateMessage]) -> str:
        return self._prompts.synthesis.format(
            question=question,
            transcript=self.format_transcript(transcript),
        ).strip()

    def turn_messages(
        self,
        participant: Participant,
        question: str,
        transcript: list[DebateMessage],
        app_context: str | None = None,
    ) -> list[ChatMessage]:
        """Message list for ``participant``'s next turn.

        The speaker's own earlier messages become assistant turns; everything
        else is framed as user input. Adjacent entries with the same role are
        merged so vendors that require alternation accept the list.
        """
        by_id = {m.id: m for m in transcript}
        entries: list[ChatMessage] = [
            ChatMessage(role="system", content=participant.system_prompt),
            ChatMessage(role="user", content=self.opening_prompt(question, app_context)),
        ]
        for msg in transcript:
            if msg.is_interjection:
                target = by_id.get(msg.target_message_id) if msg.target_message_id else None
                entries.append(ChatMessage(role="user", content=self.interjection_frame(msg, target)))
            elif msg.author_id == participant.backend_id:
                entries.append(ChatMessage(role="assistant", content=msg.content))
            else:
                entries.append(
                    ChatMessage(role="user", content=self.context_frame(msg.author_name, msg.role, msg.content))
                )

        if entries[-1].role == "assistant":
            entries.append(ChatMessage(role="user", content="Continue the discussion."))
        return _merge_adjacent(entries)


def _merge_adjacent(entries: list[ChatMessage]) -> list[ChatMessage]:
    merged: list[ChatMessage] = []
    for entry in entries:
        if merged and merged[-1].role == entry.role and entry.role != "system":
            merged[-1] = ChatMessage(role=entry.role, content=f"{merged[-1].content}\n\n{entry.content}")
        else:
            merged.append(entry)
    return merged
