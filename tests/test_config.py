"""Tests for config/config_loader.py."""

from pathlib import Path

import pytest
import yaml

from config.config_loader import AppConfig, ModelConfig, PromptsConfig, RosterEntry, load_config
from colloquy.models import ChatMessage, GenerationOptions
from colloquy.providers.openai_provider import OpenAIAdapter


def _settings() -> dict:
    return {
        "defaults": {
            "max_turns": 4,
            "output_dir": "./output",
            "synthesizer": "claude",
            "retry_delay_sec": 0.5,
        },
        "models": {
            "claude": {
                "display_name": "Claude",
                "sdk": "anthropic",
                "model": "claude-opus-4-1",
                "api_key_env": "TEST_CLAUDE_KEY",
                "timeout_sec": 120,
                "max_tokens": 8192,
                "pricing": {"input_per_1k": 0.015, "output_per_1k": 0.075},
            },
            "grok": {
                "sdk": "xai",
                "model": "grok-4",
                "api_key_env": "TEST_GROK_KEY",
                "base_url": "https://api.x.ai/v1",
                "timeout_sec": 60,
                "max_tokens": 4096,
            },
        },
        "roster": [
            {"backend": "claude", "role": "architect", "color": "#8B5CF6"},
            {"backend": "grok", "role": "builder"},
        ],
        "agreement_phrases": ["I Agree", "sounds good"],
        "prompts": {
            "opening": "Q: {question}",
            "context_frame": "{name} ({role}): {content}",
            "synthesis": "Q: {question}\n{transcript}",
            "interjection": "[{label}{target}] {content}",
            "styles": {"cooperative": "Be nice."},
            "personas": {"architect": "You are an architect.", "builder": "You are a builder."},
        },
    }


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(_settings()), encoding="utf-8")
    return path


def _write(tmp_path: Path, settings: dict) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    return path


def test_load_config_returns_app_config(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config, AppConfig)


def test_load_config_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.defaults.max_turns == 4
    assert config.defaults.synthesizer == "claude"
    assert config.defaults.retry_delay_sec == 0.5
    assert config.defaults.style == "cooperative"
    assert config.defaults.synthesis_temperature == 0.5
    assert isinstance(config.defaults.output_dir, Path)


def test_load_config_models(minimal_settings):
    config = load_config(minimal_settings)
    claude = config.models["claude"]
    assert isinstance(claude, ModelConfig)
    assert claude.model == "claude-opus-4-1"
    assert claude.display_name == "Claude"
    assert claude.pricing.input_per_1k == 0.015
    assert claude.pricing.currency == "USD"
    assert claude.base_url is None


def test_model_defaults_fill_in(minimal_settings):
    config = load_config(minimal_settings)
    grok = config.models["grok"]
    assert grok.display_name == "grok"
    assert grok.vendor == "xai"
    assert grok.pricing.output_per_1k == 0.0
    assert grok.base_url == "https://api.x.ai/v1"


def test_load_config_roster(minimal_settings):
    config = load_config(minimal_settings)
    assert config.roster == [
        RosterEntry(backend="claude", role="architect", color="#8B5CF6"),
        RosterEntry(backend="grok", role="builder"),
    ]


def test_load_config_prompts(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config.prompts, PromptsConfig)
    assert "{question}" in config.prompts.opening
    assert config.prompts.styles == {"cooperative": "Be nice."}
    assert set(config.prompts.personas) == {"architect", "builder"}


def test_agreement_phrases_lowercased(minimal_settings):
    config = load_config(minimal_settings)
    assert config.agreement_phrases == ["i agree", "sounds good"]


def test_inbox_defaults_when_missing(minimal_settings):
    config = load_config(minimal_settings)
    assert config.inbox.dir == Path("./inbox")
    assert config.inbox.archive_dir == Path("./inbox/archive")


def test_available_providers_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_CLAUDE_KEY", "sk-test-key")
    monkeypatch.delenv("TEST_GROK_KEY", raising=False)
    config = load_config(minimal_settings)
    assert config.available_providers == {"claude"}


def test_blank_key_counts_as_missing(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_CLAUDE_KEY", "   ")
    config = load_config(minimal_settings)
    assert "claude" not in config.available_providers


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_unknown_sdk_rejected(tmp_path):
    settings = _settings()
    settings["models"]["claude"]["sdk"] = "carrier-pigeon"
    with pytest.raises(ValueError, match="unknown sdk"):
        load_config(_write(tmp_path, settings))


def test_roster_with_unconfigured_model_rejected(tmp_path):
    settings = _settings()
    settings["roster"].append({"backend": "llama", "role": "builder"})
    with pytest.raises(ValueError, match="llama"):
        load_config(_write(tmp_path, settings))


def test_styles_and_personas_optional(tmp_path):
    settings = _settings()
    del settings["prompts"]["styles"]
    del settings["prompts"]["personas"]
    settings["roster"] = []
    config = load_config(_write(tmp_path, settings))
    assert config.prompts.styles == {}
    assert config.prompts.personas == {}


def test_bundled_settings_load():
    config = load_config()
    assert len(config.roster) >= 2
    assert {entry.role for entry in config.roster} <= set(config.prompts.personas)
    assert config.defaults.style in config.prompts.styles


def test_reasoning_model_flag(tmp_path):
    settings = _settings()
    settings["models"]["grok"]["reasoning_model"] = True
    config = load_config(_write(tmp_path, settings))
    assert config.models["grok"].reasoning_model is True
    assert config.models["claude"].reasoning_model is False


def test_bundled_openai_backends_send_accepted_parameters(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    config = load_config()
    options = GenerationOptions(max_tokens=1024, temperature=0.7)
    for model in config.models.values():
        if model.sdk != "openai":
            continue
        kwargs = OpenAIAdapter(model)._request_kwargs([ChatMessage(role="user", content="Q?")], options)
        if model.model.startswith(("gpt-5", "o1", "o3", "o4")):
            assert model.reasoning_model
            assert "temperature" not in kwargs
            assert "max_tokens" not in kwargs
        else:
            assert kwargs["temperature"] == 0.7


def test_roster_role_without_persona_rejected(tmp_path):
    settings = _settings()
    settings["roster"][1]["role"] = "oracle"
    with pytest.raises(ValueError, match="oracle"):
        load_config(_write(tmp_path, settings))


def test_roster_prompt_override_allows_unknown_role(tmp_path):
    settings = _settings()
    settings["roster"][1].update(role="oracle", system_prompt="  You see the future.\n")
    config = load_config(_write(tmp_path, settings))
    assert config.roster[1].system_prompt == "You see the future."


def _with_template(**template) -> dict:
    settings = _settings()
    settings["templates"] = {
        "review": {
            "description": "Two reviewers.",
            "style": "cooperative",
            "max_turns": 3,
            "participants": [
                {"backend": "claude", "role": "architect"},
                {"backend": "grok", "role": "critic", "system_prompt": "You criticise."},
            ],
            **template,
        }
    }
    return settings


def test_templates_loaded(tmp_path):
    config = load_config(_write(tmp_path, _with_template()))
    review = config.templates["review"]
    assert review.name == "review"
    assert review.description == "Two reviewers."
    assert (review.style, review.max_turns) == ("cooperative", 3)
    assert [p.backend for p in review.participants] == ["claude", "grok"]
    assert review.participants[1].system_prompt == "You criticise."


def test_templates_optional(minimal_settings):
    assert load_config(minimal_settings).templates == {}


@pytest.mark.parametrize(
    "template, message",
    [
        ({"style": "shouting"}, "unknown style"),
        ({"max_turns": 0}, "max_turns"),
        ({"participants": [{"backend": "claude", "role": "architect"}]}, "at least 2"),
        ({"participants": [{"backend": "claude", "role": "architect"}, {"backend": "llama", "role": "builder"}]}, "llama"),
        ({"participants": [{"backend": "claude", "role": "architect"}, {"backend": "grok", "role": "critic"}]}, "critic"),
    ],
)
def test_invalid_template_rejected(tmp_path, template, message):
    with pytest.raises(ValueError, match=message):
        load_config(_write(tmp_path, _with_template(**template)))


def test_bundled_templates_valid():
    config = load_config()
    assert config.templates
    for template in config.templates.values():
        assert len(template.participants) >= 2
        assert template.style is None or template.style in config.prompts.styles
