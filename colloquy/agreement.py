"""Agreement signal detection. Phrase matching, swappable via any str -> bool callable."""

from collections.abc import Callable, Iterable

AgreementPredicate = Callable[[str], bool]

DEFAULT_AGREEMENT_PHRASES: tuple[str, ...] = (
    "i agree",
    "that works",
    "good approach",
    "let's go with",
    "i think we're aligned",
    "that covers it",
    "nothing to add",
    "well said",
    "exactly right",
    "i'm on board",
    "sounds good",
    "that makes sense",
    "i concur",
)


class PhraseAgreementDetector:
    """Flags a message as agreement if it contains any configured phrase."""

    def __init__(self, phrases: Iterable[str] = DEFAULT_AGREEMENT_PHRASES) -> None:
        # Curly apostrophes are common in model output.
        self._phrases = tuple(_normalize(p) for p in phrases if p.strip())

    @property
    def phrases(self) -> tuple[str, ...]:
        return self._phrases

    def __call__(self, text: str) -> bool:
        lowered = _normalize(text)
        return any(phrase in lowered for phrase in self._phrases)


def _normalize(text: str) -> str:
    return text.lower().replace("’", "'")


is_agreement_signal: AgreementPredicate = PhraseAgreementDetector()
