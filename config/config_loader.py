"""Load settings.yaml into typed dataclasses. Collects API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

DEFAULT_LANGUAGE_DIRECTIVE = (
    "IMPORTANT: You MUST respond ONLY in {language}. "
    "Do not use any other language in your answer."
)
DEFAULT_TURN = "Topic: {topic}\n\n{context}As {persona_name}, provide your input now."
DEFAULT_ITERATION_SUMMARY = (
    'Summarize the key points of the following discussion on the topic "{topic}".\n\n'
    "{transcript}"
)
DEFAULT_VOTE = (
    "Topic: {topic}\n\nProposed summary:\n\n{summary}\n\n"
    'As {persona_name}, start your answer with exactly "{accept}" or "{reject}", '
    "followed by a short justification."
)
DEFAULT_FINAL_REPORT = (
    'Based on the topic "{topic}" and the following summaries, create a comprehensive '
    "final output.\n\nSummaries:\n{summaries}"
)


@dataclass
class ProviderConfig:
    name: str
    base_url: str | None
    api_key_envs: list[str] = field(default_factory=list)
    timeout_sec: int = 60


@dataclass
class DefaultsConfig:
    model: str
    temperature: float = 0.7
    max_tokens: int = 1024
    language: str = "English"
    iterations: int = 2
    max_iterations: int = 10
    personas: list[str] = field(default_factory=lambda: ["analytical", "creative"])
    output_dir: Path = Path("./output")
    max_custom_personas: int = 10


@dataclass
class RetryConfig:
    min_attempts: int = 3
    extra_attempts: int = 2
    rate_limit_wait_sec: float = 20.0
    backoff_sec: float = 2.0
    token_safety_margin: int = 10
    turn_delay_sec: float = 1.0


@dataclass
class PromptsConfig:
    language_directive: str = DEFAULT_LANGUAGE_DIRECTIVE
    turn: str = DEFAULT_TURN
    iteration_summary: str = DEFAULT_ITERATION_SUMMARY
    vote: str = DEFAULT_VOTE
    final_report: str = DEFAULT_FINAL_REPORT


@dataclass(frozen=True)
class VoteKeywords:
    accept: str
    reject: str


ENGLISH_KEYWORDS = VoteKeywords(accept="accept", reject="reject")


@dataclass
class AppConfig:
    provider: ProviderConfig
    models: dict[str, str]
    fallback_model: str
    defaults: DefaultsConfig
    retry: RetryConfig = field(default_factory=RetryConfig)
    prompts: PromptsConfig = field(default_factory=PromptsConfig)
    vote_keywords: dict[str, VoteKeywords] = field(default_factory=dict)
    api_keys: list[str] = field(default_factory=list)


def load_api_keys(env_names: list[str]) -> list[str]:
    """Collect keys from the given environment variables, in order, without duplicates.

    A variable may carry a single key or a comma-separated list.
    """
    keys: list[str] = []
    for env_name in env_names:
        raw = os.environ.get(env_name, "")
        found = [k.strip() for k in raw.split(",") if k.strip()]
        for key in found:
            if key not in keys:
                keys.append(key)
        if found:
            logger.info("Loaded %d API key(s) from %s", len(found), env_name)
    return keys


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs a warning when no API key is set but does not raise; callers check
    api_keys.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    provider_raw = raw["provider"]
    provider = ProviderConfig(
        name=str(provider_raw["name"]),
        base_url=provider_raw.get("base_url"),
        api_key_envs=list(provider_raw["api_key_envs"]),
        timeout_sec=int(provider_raw.get("timeout_sec", 60)),
    )

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        model=str(defaults_raw["model"]),
        temperature=float(defaults_raw["temperature"]),
        max_tokens=int(defaults_raw["max_tokens"]),
        language=str(defaults_raw["language"]),
        iterations=int(defaults_raw["iterations"]),
        max_iterations=int(defaults_raw["max_iterations"]),
        personas=list(defaults_raw["personas"]),
        output_dir=Path(defaults_raw["output_dir"]),
        max_custom_personas=int(defaults_raw.get("max_custom_personas", 10)),
    )

    retry_raw = raw.get("retry", {})
    retry = RetryConfig(**{k: v for k, v in retry_raw.items() if k in RetryConfig.__dataclass_fields__})

    prompts_raw = raw.get("prompts", {})
    prompts = PromptsConfig(**{k: str(v) for k, v in prompts_raw.items() if k in PromptsConfig.__dataclass_fields__})

    vote_keywords = {
        language: VoteKeywords(accept=str(words["accept"]), reject=str(words["reject"]))
        for language, words in raw.get("vote_keywords", {}).items()
    }

    models = {str(k): str(v) for k, v in raw["models"].items()}
    if defaults.model not in models:
        logger.warning("Default model '%s' is not in the models table", defaults.model)

    api_keys = load_api_keys(provider.api_key_envs)
    if not api_keys:
        logger.warning(
            "No API keys found for %s; set one of %s in .env",
            provider.name,
            ", ".join(provider.api_key_envs),
        )

    return AppConfig(
        provider=provider,
        models=models,
        fallback_model=str(raw["fallback_model"]),
        defaults=defaults,
        retry=retry,
        prompts=prompts,
        vote_keywords=vote_keywords,
        api_keys=api_keys,
    )
