"""Shared pytest fixtures."""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    DefaultsConfig,
    ProviderConfig,
    PromptsConfig,
    RetryConfig,
    VoteKeywords,
)
from src.credentials import CredentialRotator
from src.discussion import DiscussionOrchestrator
from src.models import CompletionRequest, CompletionResponse, ConversationSettings
from src.personas import PersonaRegistry
from src.providers.base import CompletionClient
from src.requester import ResilientRequester

Outcome = str | BaseException
Handler = Callable[[CompletionRequest, str], Outcome]


def default_handler(request: CompletionRequest, api_key: str) -> Outcome:
    """Answer by prompt kind, using the markers of the sample_prompts_config templates."""
    prompt = request.user_prompt
    if prompt.startswith("VOTE"):
        return "accept - this captures the discussion well."
    if prompt.startswith("SUMMARIZE"):
        return "Iteration summary."
    if prompt.startswith("FINAL"):
        return "Final report."
    return "My input on the topic."


class FakeClient(CompletionClient):
    """Test double CompletionClient.

    Outcomes are taken from script first, then from handler. An outcome that
    is an exception is raised instead of returned.
    """

    def __init__(self, handler: Handler | None = None, script: list[Outcome] | None = None) -> None:
        self.calls: list[tuple[CompletionRequest, str]] = []
        self._handler = handler or default_handler
        self._script = list(script or [])

    def name(self) -> str:
        return "fake"

    async def complete(self, request: CompletionRequest, api_key: str) -> CompletionResponse:
        self.calls.append((request, api_key))
        outcome = self._script.pop(0) if self._script else self._handler(request, api_key)
        if isinstance(outcome, BaseException):
            raise outcome
        return CompletionResponse(content=outcome, model=request.model, latency_sec=0.01, token_count=5)

    @property
    def user_prompts(self) -> list[str]:
        return [request.user_prompt for request, _ in self.calls]


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        language_directive="Answer only in {language}.",
        turn="TURN {topic}\n\n{context}As {persona_name}, provide your input now.",
        iteration_summary="SUMMARIZE {topic}\n\n{transcript}",
        vote="VOTE {persona_name}: {summary} ({accept}/{reject})",
        final_report="FINAL {topic}\n\n{summaries}",
    )


@pytest.fixture
def sample_retry_config() -> RetryConfig:
    return RetryConfig(
        min_attempts=3,
        extra_attempts=2,
        rate_limit_wait_sec=20,
        backoff_sec=2,
        token_safety_margin=10,
        turn_delay_sec=0,
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        model="test-model",
        temperature=0.7,
        max_tokens=500,
        language="English",
        iterations=2,
        max_iterations=5,
        personas=["analytical", "creative"],
        output_dir=tmp_path / "output",
        max_custom_personas=3,
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
    sample_retry_config: RetryConfig,
) -> AppConfig:
    return AppConfig(
        provider=ProviderConfig(name="fake", base_url="http://localhost", api_key_envs=["TEST_KEYS"]),
        models={"test-model": "vendor/test-model", "other-model": "vendor/other-model"},
        fallback_model="vendor/fallback",
        defaults=sample_defaults_config,
        retry=sample_retry_config,
        prompts=sample_prompts_config,
        vote_keywords={
            "English": VoteKeywords(accept="accept", reject="reject"),
            "Russian": VoteKeywords(accept="принять", reject="отклонить"),
        },
        api_keys=["key-a", "key-b", "key-c"],
    )


@pytest.fixture
def sample_settings() -> ConversationSettings:
    return ConversationSettings(
        model="test-model",
        temperature=0.7,
        max_tokens=500,
        language="English",
        iteration_count=2,
        enabled_persona_order=["analytical", "creative"],
    )


@pytest.fixture
def registry() -> PersonaRegistry:
    return PersonaRegistry(max_custom=3)


@pytest.fixture
def rotator(sample_app_config: AppConfig) -> CredentialRotator:
    return CredentialRotator(sample_app_config.api_keys)


@pytest.fixture
def fake_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def make_requester(
    rotator: CredentialRotator,
    registry: PersonaRegistry,
    sample_app_config: AppConfig,
    fake_sleep: AsyncMock,
) -> Callable[[CompletionClient], ResilientRequester]:
    def build(client: CompletionClient) -> ResilientRequester:
        return ResilientRequester(
            client=client,
            rotator=rotator,
            registry=registry,
            models=sample_app_config.models,
            fallback_model=sample_app_config.fallback_model,
            retry=sample_app_config.retry,
            prompts=sample_app_config.prompts,
            sleep=fake_sleep,
        )

    return build


@pytest.fixture
def announcements() -> list[str]:
    return []


@pytest.fixture
def make_orchestrator(
    make_requester,
    registry: PersonaRegistry,
    sample_app_config: AppConfig,
    announcements: list[str],
    fake_sleep: AsyncMock,
) -> Callable[[CompletionClient], DiscussionOrchestrator]:
    def build(client: CompletionClient) -> DiscussionOrchestrator:
        return DiscussionOrchestrator(
            requester=make_requester(client),
            registry=registry,
            announce=announcements.append,
            prompts=sample_app_config.prompts,
            vote_keywords=sample_app_config.vote_keywords,
            turn_delay_sec=0,
            sleep=fake_sleep,
        )

    return build
