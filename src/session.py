"""Per-caller conversation sessions and the store that owns them."""

import logging
from collections.abc import Callable
from threading import Lock

from config.config_loader import AppConfig, DefaultsConfig
from src.announce import Announce
from src.discussion import DiscussionOrchestrator
from src.errors import ConfigurationError
from src.models import ConversationSettings, DiscussionResult, Persona
from src.personas import SYNTHESIZER_ID, PersonaCapture, PersonaRegistry, validate_overrides
from src.requester import ResilientRequester

logger = logging.getLogger(__name__)


def default_settings(defaults: DefaultsConfig) -> ConversationSettings:
    return ConversationSettings(
        model=defaults.model,
        temperature=defaults.temperature,
        max_tokens=defaults.max_tokens,
        language=defaults.language,
        iteration_count=defaults.iterations,
        enabled_persona_order=list(defaults.personas),
    )


class ConversationSession:
    """Settings, persona configuration and the orchestrator of one external caller.

    Settings are validated here, when they are mutated; the orchestrator
    only reads them.
    """

    def __init__(
        self,
        caller_id: str,
        requester: ResilientRequester,
        registry: PersonaRegistry,
        config: AppConfig,
        announce: Announce,
    ) -> None:
        self.caller_id = caller_id
        self._requester = requester
        self._registry = registry
        self._config = config
        self.settings = default_settings(config.defaults)
        self.orchestrator = DiscussionOrchestrator(
            requester=requester,
            registry=registry,
            announce=announce,
            prompts=config.prompts,
            vote_keywords=config.vote_keywords,
            turn_delay_sec=config.retry.turn_delay_sec,
        )
        self.last_result: DiscussionResult | None = None

    @property
    def is_running(self) -> bool:
        return self.orchestrator.is_running

    async def start_collaboration(self, topic: str, attached_context: str | None = None) -> DiscussionResult | None:
        result = await self.orchestrator.start_collaboration(topic, self.settings, attached_context)
        if result is not None:
            self.last_result = result
        return result

    def stop(self) -> bool:
        return self.orchestrator.stop()

    # --- settings -------------------------------------------------------

    def set_model(self, name: str) -> None:
        self._requester.resolve_model(name)
        self.settings.model = name

    def set_temperature(self, value: float) -> None:
        validate_overrides(value, None)
        self.settings.temperature = value

    def set_max_tokens(self, value: int) -> None:
        validate_overrides(None, value)
        self.settings.max_tokens = value

    def set_language(self, language: str) -> None:
        language = language.strip()
        if not language:
            raise ConfigurationError("Language cannot be empty")
        self.settings.language = language

    def set_iteration_count(self, count: int) -> None:
        limit = self._config.defaults.max_iterations
        if not 1 <= count <= limit:
            raise ConfigurationError(f"Iteration count must be between 1 and {limit}, got {count}")
        self.settings.iteration_count = count

    # --- persona order ----------------------------------------------------

    def enable_persona(self, persona_id: str) -> None:
        """Append persona_id to the speaking order. The same id may appear twice."""
        if persona_id == SYNTHESIZER_ID:
            raise ConfigurationError("The synthesizer cannot take part in the discussion")
        self._registry.lookup(persona_id, self.settings)
        self.settings.enabled_persona_order.append(persona_id)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.settings.enabled_persona_order):
            raise ConfigurationError(f"No persona at position {index}")

    def remove_persona(self, index: int) -> str:
        self._check_index(index)
        return self.settings.enabled_persona_order.pop(index)

    def move_persona(self, index: int, offset: int) -> None:
        """Move the persona at index up (offset=-1) or down (offset=+1)."""
        self._check_index(index)
        target = index + offset
        self._check_index(target)
        order = self.settings.enabled_persona_order
        order[index], order[target] = order[target], order[index]

    def duplicate_persona(self, index: int) -> None:
        self._check_index(index)
        order = self.settings.enabled_persona_order
        order.insert(index + 1, order[index])

    def set_system_prompt_override(self, persona_id: str, prompt: str) -> None:
        self._registry.lookup(persona_id, self.settings)
        if not prompt.strip():
            raise ConfigurationError("System prompt cannot be empty")
        self.settings.system_prompt_overrides[persona_id] = prompt.strip()

    def clear_system_prompt_override(self, persona_id: str) -> None:
        self.settings.system_prompt_overrides.pop(persona_id, None)

    # --- custom personas --------------------------------------------------

    def begin_persona_capture(self) -> PersonaCapture:
        if len(self.settings.custom_personas) >= self._registry.max_custom:
            raise ConfigurationError(f"At most {self._registry.max_custom} custom personas are allowed")
        return PersonaCapture()

    def add_custom_persona(self, capture: PersonaCapture, enable: bool = True) -> Persona:
        persona = self._registry.add_custom(self.settings, capture.build())
        if enable:
            self.settings.enabled_persona_order.append(persona.id)
        return persona

    def delete_custom_persona(self, persona_id: str) -> None:
        self._registry.remove_custom(self.settings, persona_id)


class SessionStore:
    """Caller id -> ConversationSession, created lazily by the injected factory."""

    def __init__(self, factory: Callable[[str], ConversationSession]) -> None:
        self._factory = factory
        self._sessions: dict[str, ConversationSession] = {}
        self._lock = Lock()

    def get(self, caller_id: str) -> ConversationSession:
        with self._lock:
            session = self._sessions.get(caller_id)
            if session is None:
                session = self._factory(caller_id)
                self._sessions[caller_id] = session
                logger.info("Created session for caller %s", caller_id)
            return session

    def peek(self, caller_id: str) -> ConversationSession | None:
        with self._lock:
            return self._sessions.get(caller_id)

    def reset(self, caller_id: str) -> bool:
        """Stop any running discussion and forget the caller's session."""
        with self._lock:
            session = self._sessions.pop(caller_id, None)
        if session is None:
            return False
        session.stop()
        logger.info("Reset session for caller %s", caller_id)
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, caller_id: str) -> bool:
        with self._lock:
            return caller_id in self._sessions


def session_factory(
    config: AppConfig,
    requester: ResilientRequester,
    registry: PersonaRegistry,
    announce_for: Callable[[str], Announce],
) -> Callable[[str], ConversationSession]:
    """Build a SessionStore factory; announce_for maps a caller id to its output callback."""

    def create(caller_id: str) -> ConversationSession:
        return ConversationSession(caller_id, requester, registry, config, announce_for(caller_id))

    return create
