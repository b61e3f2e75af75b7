"""Shared pytest fixtures."""

from pathlib import Path

import pytest

from config.config_loader import (
    AppConfig,
    DefaultsConfig,
    ModelConfig,
    PromptsConfig,
    RosterEntry,
)
from colloquy.models import DebateMessage
from colloquy.orchestrator import DebateOrchestrator, DebateSettings
from colloquy.prompts import PromptBuilder
from colloquy.registry import BackendRegistry
from tests.mocks import MOCK_USAGE, MockAdapter, make_model_config


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return make_model_config("alpha")


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        opening="Question: {question}",
        context_frame="{name} ({role}) said:\n{content}",
        synthesis="Question: {question}\n\nTranscript:\n{transcript}\n\nSynthesize, then list ## Action Items.",
        interjection="[{label}{target}] {content}",
        styles={
            "cooperative": "Build consensus.",
            "adversarial": "Push back hard.",
        },
        personas={
            "architect": "You are a Strategic Architect.",
            "builder": "You are an Implementation Specialist.",
        },
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        max_turns=6,
        output_dir=tmp_path / "output",
        retry_delay_sec=0.0,
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
) -> AppConfig:
    models = {name: make_model_config(name) for name in ("alpha", "beta", "gamma")}
    return AppConfig(
        defaults=sample_defaults_config,
        models=models,
        prompts=sample_prompts_config,
        roster=[
            RosterEntry(backend="alpha", role="architect", color="#8B5CF6"),
            RosterEntry(backend="beta", role="builder", color="#10B981"),
        ],
        agreement_phrases=["i agree", "sounds good"],
    )


@pytest.fixture
def api_keys(monkeypatch) -> None:
    for name in ("alpha", "beta", "gamma"):
        monkeypatch.setenv(f"{name.upper()}_API_KEY", f"sk-{name}")


@pytest.fixture
def registry(sample_app_config: AppConfig, api_keys) -> BackendRegistry:
    return BackendRegistry(sample_app_config, adapter_classes={"mock": MockAdapter})


@pytest.fixture
def prompt_builder(sample_prompts_config: PromptsConfig) -> PromptBuilder:
    return PromptBuilder(sample_prompts_config)


@pytest.fixture
def fast_settings() -> DebateSettings:
    return DebateSettings(max_turns=6, retry_delay_sec=0.0)


@pytest.fixture
def orchestrator(registry, prompt_builder, fast_settings) -> DebateOrchestrator:
    return DebateOrchestrator(registry, prompt_builder, fast_settings)


@pytest.fixture
def sample_message() -> DebateMessage:
    return DebateMessage(
        author_id="alpha",
        author_name="Alpha",
        role="architect",
        turn_number=0,
        content="Use YAML for human-edited config, JSON for machine interchange.",
        usage=MOCK_USAGE,
    )
