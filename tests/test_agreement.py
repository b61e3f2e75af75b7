"""Tests for colloquy/agreement.py."""

import pytest

from colloquy.agreement import PhraseAgreementDetector, is_agreement_signal


@pytest.mark.parametrize(
    "text",
    [
        "I agree with this approach.",
        "That makes sense, I'm on board.",
        "I think we’re aligned on the rollout plan.",
        "Let's go with Postgres.",
        "SOUNDS GOOD to me",
    ],
)
def test_default_phrases_detected(text):
    assert is_agreement_signal(text)


@pytest.mark.parametrize(
    "text",
    [
        "I disagree strongly.",
        "We should reconsider the caching layer.",
        "",
    ],
)
def test_non_agreement(text):
    assert not is_agreement_signal(text)


def test_custom_phrases_replace_defaults():
    detector = PhraseAgreementDetector(["ship it"])
    assert detector("OK, ship it.")
    assert not detector("I agree.")


def test_blank_phrases_ignored():
    detector = PhraseAgreementDetector(["", "  ", "Agreed"])
    assert detector.phrases == ("agreed",)
    assert not detector("Nothing here")
