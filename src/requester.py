"""Resilient request layer: retries, key rotation, token shrinking, model fallback.

Every persona request in a discussion passes through ResilientRequester.complete().
Provider quirks never reach the orchestrator: they are either recovered from
here (and narrated through announce) or surface as a single RequestFailedError.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from config.config_loader import PromptsConfig, RetryConfig
from src.announce import Announce, emit
from src.cancellation import CancellationToken
from src.credentials import CredentialRotator
from src.errors import ConfigurationError
from src.models import CompletionRequest, ConversationSettings
from src.personas import PersonaRegistry
from src.prompts import with_language_directive
from src.providers.base import CompletionClient, CompletionError, ErrorKind, ProviderError

logger = logging.getLogger(__name__)


class CredentialPolicy(str, Enum):
    ADVANCE = "advance"
    PIN = "pin"


@dataclass
class RecoveryPlan:
    """What the next attempt changes after a failure."""

    credential: CredentialPolicy
    model: str
    max_tokens: int
    delay_sec: float = 0.0
    notice: str | None = None


class RequestFailedError(Exception):
    """Raised once every attempt for a persona request has failed."""

    def __init__(self, persona_name: str, message: str, attempts: int) -> None:
        self.persona_name = persona_name
        self.attempts = attempts
        super().__init__(
            f"Failed to get a response from '{persona_name}' after {attempts} attempts: {message}"
        )


class ResilientRequester:
    """Wraps a CompletionClient with the recovery strategies of the discussion core."""

    def __init__(
        self,
        client: CompletionClient,
        rotator: CredentialRotator,
        registry: PersonaRegistry,
        models: dict[str, str],
        fallback_model: str,
        retry: RetryConfig | None = None,
        prompts: PromptsConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._rotator = rotator
        self._registry = registry
        self._models = models
        self._fallback_model = fallback_model
        self._retry = retry or RetryConfig()
        self._prompts = prompts or PromptsConfig()
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return max(self._retry.min_attempts, len(self._rotator) + self._retry.extra_attempts)

    def resolve_model(self, name: str) -> str:
        """Map a display name to the provider model id; raw ids from the table pass through."""
        if name in self._models:
            return self._models[name]
        if name in self._models.values():
            return name
        raise ConfigurationError(f"Unknown model '{name}'. Available: {', '.join(self._models)}")

    def plan_recovery(
        self,
        error: CompletionError,
        *,
        persona_name: str,
        model: str,
        max_tokens: int,
        key_index: int,
        attempt: int,
    ) -> RecoveryPlan:
        """Decide how the next attempt differs from the failed one."""
        key_label = f"#{key_index + 1}"
        kind = error.kind

        if kind is ErrorKind.TOKEN_LIMIT and error.affordable_tokens is not None:
            shrunk = min(error.affordable_tokens - self._retry.token_safety_margin, max_tokens - 1)
            if shrunk >= 1:
                return RecoveryPlan(
                    credential=CredentialPolicy.PIN,
                    model=model,
                    max_tokens=shrunk,
                    notice=(
                        f"Key {key_label} can only afford {error.affordable_tokens} tokens; "
                        f"retrying '{persona_name}' with max_tokens={shrunk}."
                    ),
                )
            kind = ErrorKind.CREDENTIAL_EXHAUSTED

        if kind is ErrorKind.CREDENTIAL_EXHAUSTED:
            return RecoveryPlan(
                credential=CredentialPolicy.ADVANCE,
                model=model,
                max_tokens=max_tokens,
                notice=f"Key {key_label} has insufficient credits; switching to the next key.",
            )

        if kind is ErrorKind.MODEL_UNAVAILABLE and model != self._fallback_model:
            return RecoveryPlan(
                credential=CredentialPolicy.ADVANCE,
                model=self._fallback_model,
                max_tokens=max_tokens,
                notice=f"Model {model} is unavailable; switching to fallback model {self._fallback_model}.",
            )

        if kind is ErrorKind.RATE_LIMITED:
            wait = error.retry_after_sec if error.retry_after_sec is not None else self._retry.rate_limit_wait_sec
            return RecoveryPlan(
                credential=CredentialPolicy.ADVANCE,
                model=model,
                max_tokens=max_tokens,
                delay_sec=wait,
                notice=f"Rate limited on key {key_label}; waiting {wait:g}s before retrying '{persona_name}'.",
            )

        delay = self._retry.backoff_sec * attempt
        return RecoveryPlan(
            credential=CredentialPolicy.ADVANCE,
            model=model,
            max_tokens=max_tokens,
            delay_sec=delay,
            notice=(
                f"Attempt {attempt}/{self.max_attempts} for '{persona_name}' failed: {error.detail}. "
                f"Retrying in {delay:g}s."
            ),
        )

    async def complete(
        self,
        persona_id: str,
        user_prompt: str,
        settings: ConversationSettings,
        announce: Announce | None = None,
        token: CancellationToken | None = None,
    ) -> str:
        """Return the persona's trimmed answer to user_prompt.

        Raises:
            ConfigurationError: Unknown persona or model, before any remote call.
            DiscussionCancelled: The token was cancelled between attempts.
            RequestFailedError: Every attempt failed.
        """
        persona = self._registry.resolve(persona_id, settings)
        model = self.resolve_model(settings.model)
        system_prompt = with_language_directive(persona.system_prompt, settings.language, self._prompts)
        max_tokens = persona.max_tokens
        attempts = self.max_attempts

        pinned: int | None = None
        last_error: CompletionError | None = None

        for attempt in range(1, attempts + 1):
            if token is not None:
                token.raise_if_cancelled()

            if pinned is None:
                key_index, api_key = self._rotator.next()
            else:
                key_index, api_key = pinned, self._rotator.get(pinned)
                pinned = None

            request = CompletionRequest(
                model=model,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                temperature=persona.temperature,
                max_tokens=max_tokens,
            )
            logger.debug(
                "Persona %s attempt %d/%d: model=%s max_tokens=%d key=#%d",
                persona.name, attempt, attempts, model, max_tokens, key_index + 1,
            )

            try:
                response = await self._client.complete(request, api_key)
                return response.content.strip()
            except CompletionError as exc:
                error = exc
            except ProviderError as exc:
                error = CompletionError(exc.provider_name, ErrorKind.OTHER, exc.detail)

            last_error = error
            logger.warning(
                "Persona %s attempt %d/%d failed on key #%d (%s): %s",
                persona.name, attempt, attempts, key_index + 1, error.kind.value, error.detail,
            )
            if attempt == attempts:
                break

            plan = self.plan_recovery(
                error,
                persona_name=persona.name,
                model=model,
                max_tokens=max_tokens,
                key_index=key_index,
                attempt=attempt,
            )
            if plan.notice:
                await emit(announce, plan.notice)
            model, max_tokens = plan.model, plan.max_tokens
            if plan.credential is CredentialPolicy.PIN:
                pinned = key_index
            if plan.delay_sec > 0:
                await self._sleep(plan.delay_sec)

        message = last_error.detail if last_error is not None else "no attempts made"
        raise RequestFailedError(persona.name, message, attempts)
