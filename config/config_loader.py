"""Load settings.yaml into typed dataclasses. Reports which backends have credentials."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

KNOWN_SDKS = frozenset({"anthropic", "openai", "google-genai", "xai"})


@dataclass(frozen=True)
class PricingConfig:
    input_per_1k: float
    output_per_1k: float
    currency: str = "USD"


@dataclass
class ModelConfig:
    name: str                  # backend id, e.g. "claude-opus"
    sdk: str                   # "anthropic", "openai", "google-genai", "xai"
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    pricing: PricingConfig
    display_name: str = ""
    vendor: str = ""
    base_url: str | None = None
    reasoning_model: bool = False     # OpenAI o-series/gpt-5: max_completion_tokens, fixed temperature


@dataclass(frozen=True)
class RosterEntry:
    backend: str
    role: str
    color: str = "#64748B"
    system_prompt: str | None = None    # replaces the role persona for this backend


@dataclass
class PromptsConfig:
    opening: str
    context_frame: str
    synthesis: str
    interjection: str
    styles: dict[str, str] = field(default_factory=dict)
    personas: dict[str, str] = field(default_factory=dict)


@dataclass
class DebateTemplate:
    """Named preset: who debates, in which roles, how, and for how long."""

    name: str
    participants: list[RosterEntry]
    description: str = ""
    style: str | None = None
    max_turns: int | None = None


@dataclass
class DefaultsConfig:
    max_turns: int
    output_dir: Path
    style: str = "cooperative"
    synthesizer: str | None = None
    retry_delay_sec: float = 1.0
    opening_max_tokens: int = 4096
    turn_max_tokens: int = 3072
    synthesis_max_tokens: int = 4096
    temperature: float = 0.7
    synthesis_temperature: float = 0.5


@dataclass
class InboxConfig:
    dir: Path
    archive_dir: Path


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    roster: list[RosterEntry] = field(default_factory=list)
    inbox: InboxConfig = field(
        default_factory=lambda: InboxConfig(dir=Path("./inbox"), archive_dir=Path("./inbox/archive"))
    )
    agreement_phrases: list[str] = field(default_factory=list)
    templates: dict[str, DebateTemplate] = field(default_factory=dict)
    available_providers: set[str] = field(default_factory=set)


def _load_model(name: str, model_raw: dict) -> ModelConfig:
    sdk = str(model_raw["sdk"])
    if sdk not in KNOWN_SDKS:
        raise ValueError(f"Model '{name}' uses unknown sdk '{sdk}'. Known: {', '.join(sorted(KNOWN_SDKS))}")
    pricing_raw = model_raw.get("pricing", {})
    return ModelConfig(
        name=name,
        sdk=sdk,
        model=model_raw["model"],
        api_key_env=model_raw["api_key_env"],
        timeout_sec=int(model_raw["timeout_sec"]),
        max_tokens=int(model_raw["max_tokens"]),
        pricing=PricingConfig(
            input_per_1k=float(pricing_raw.get("input_per_1k", 0.0)),
            output_per_1k=float(pricing_raw.get("output_per_1k", 0.0)),
            currency=str(pricing_raw.get("currency", "USD")),
        ),
        display_name=str(model_raw.get("display_name", name)),
        vendor=str(model_raw.get("vendor", sdk)),
        base_url=model_raw.get("base_url"),
        reasoning_model=bool(model_raw.get("reasoning_model", False)),
    )


def _load_entry(entry_raw: dict, models: dict[str, ModelConfig], prompts: PromptsConfig, where: str) -> RosterEntry:
    system_prompt = entry_raw.get("system_prompt")
    entry = RosterEntry(
        backend=str(entry_raw["backend"]),
        role=str(entry_raw["role"]),
        color=str(entry_raw.get("color", "#64748B")),
        system_prompt=str(system_prompt).strip() if system_prompt else None,
    )
    if entry.backend not in models:
        raise ValueError(f"{where} references unconfigured model '{entry.backend}'")
    if entry.system_prompt is None and entry.role not in prompts.personas:
        known = ", ".join(prompts.personas) or "none"
        raise ValueError(f"{where} role '{entry.role}' has no persona in prompts.personas. Known: {known}")
    return entry


def _load_template(
    name: str, template_raw: dict, models: dict[str, ModelConfig], prompts: PromptsConfig
) -> DebateTemplate:
    where = f"Template '{name}'"
    participants = [_load_entry(e, models, prompts, where) for e in template_raw.get("participants", [])]
    if len(participants) < 2:
        raise ValueError(f"{where} needs at least 2 participants")

    style = template_raw.get("style")
    if style is not None and prompts.styles and style not in prompts.styles:
        raise ValueError(f"{where} uses unknown style '{style}'")

    max_turns = template_raw.get("max_turns")
    if max_turns is not None and int(max_turns) < 1:
        raise ValueError(f"{where} max_turns must be at least 1")

    return DebateTemplate(
        name=name,
        participants=participants,
        description=str(template_raw.get("description", "")).strip(),
        style=str(style) if style is not None else None,
        max_turns=int(max_turns) if max_turns is not None else None,
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError if a model
    names an unknown sdk, a roster or template entry references an
    unconfigured model or a role without a persona, or a template is
    malformed.
    Logs missing API keys but does not raise: callers check
    available_providers (or the registry) before starting a debate.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    synthesizer = defaults_raw.get("synthesizer")
    defaults = DefaultsConfig(
        max_turns=int(defaults_raw["max_turns"]),
        output_dir=Path(defaults_raw.get("output_dir", "./output")),
        style=str(defaults_raw.get("style", "cooperative")),
        synthesizer=str(synthesizer) if synthesizer else None,
        retry_delay_sec=float(defaults_raw.get("retry_delay_sec", 1.0)),
        opening_max_tokens=int(defaults_raw.get("opening_max_tokens", 4096)),
        turn_max_tokens=int(defaults_raw.get("turn_max_tokens", 3072)),
        synthesis_max_tokens=int(defaults_raw.get("synthesis_max_tokens", 4096)),
        temperature=float(defaults_raw.get("temperature", 0.7)),
        synthesis_temperature=float(defaults_raw.get("synthesis_temperature", 0.5)),
    )

    inbox_raw = raw.get("inbox", {})
    inbox = InboxConfig(
        dir=Path(inbox_raw.get("dir", "./inbox")),
        archive_dir=Path(inbox_raw.get("archive_dir", "./inbox/archive")),
    )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        opening=prompts_raw["opening"],
        context_frame=prompts_raw["context_frame"],
        synthesis=prompts_raw["synthesis"],
        interjection=prompts_raw["interjection"],
        styles={k: str(v) for k, v in prompts_raw.get("styles", {}).items()},
        personas={k: str(v) for k, v in prompts_raw.get("personas", {}).items()},
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = _load_model(provider_name, model_raw)
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_cfg.api_key_env, "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Backend available: %s", provider_name)
        else:
            logger.info(
                "Backend unavailable (no API key): %s, set %s in .env",
                provider_name,
                model_cfg.api_key_env,
            )

    roster = [_load_entry(e, models, prompts, "Roster") for e in raw.get("roster", [])]

    templates: dict[str, DebateTemplate] = {}
    for template_name, template_raw in (raw.get("templates") or {}).items():
        templates[template_name] = _load_template(template_name, template_raw, models, prompts)

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        roster=roster,
        inbox=inbox,
        agreement_phrases=[str(p).lower() for p in raw.get("agreement_phrases", [])],
        templates=templates,
        available_providers=available_providers,
    )
