"""Built-in persona catalog, per-conversation custom personas, and resolution."""

import logging
import re
import uuid
from dataclasses import dataclass

from src.errors import ConfigurationError, PersonaNotFoundError
from src.models import ConversationSettings, Persona

logger = logging.getLogger(__name__)

SYNTHESIZER_ID = "synthesizer"

BUILTIN_PERSONAS: dict[str, Persona] = {
    "analytical": Persona(
        id="analytical",
        name="Analyst",
        system_prompt=(
            "You are a pragmatic and analytical thinker. You focus on logic, data, and "
            "structured reasoning. Provide concise and clear arguments."
        ),
    ),
    "creative": Persona(
        id="creative",
        name="Creative Thinker",
        system_prompt=(
            "You are a creative and imaginative thinker. You explore unconventional ideas, "
            "possibilities, and novel perspectives."
        ),
    ),
    "implementation": Persona(
        id="implementation",
        name="Implementation Specialist",
        system_prompt=(
            "You are a hands-on implementation specialist. You turn ideas into concrete "
            "steps, estimate effort, and point out practical obstacles and dependencies."
        ),
    ),
    "data_science": Persona(
        id="data_science",
        name="Data Scientist",
        system_prompt=(
            "You are a data scientist. You ask what can be measured, propose metrics and "
            "experiments, and challenge claims that lack evidence."
        ),
    ),
    "ethics": Persona(
        id="ethics",
        name="Ethicist",
        system_prompt=(
            "You are an ethicist. You examine fairness, privacy, safety and societal impact, "
            "and name the stakeholders who could be harmed."
        ),
    ),
    "ux": Persona(
        id="ux",
        name="UX Designer",
        system_prompt=(
            "You are a user experience designer. You argue from the perspective of the end "
            "user: clarity, accessibility, friction and delight."
        ),
    ),
    "systems": Persona(
        id="systems",
        name="Systems Thinker",
        system_prompt=(
            "You are a systems thinker. You look for feedback loops, second-order effects, "
            "and how the parts of the problem interact over time."
        ),
    ),
    "contrarian": Persona(
        id="contrarian",
        name="Devil's Advocate",
        system_prompt=(
            "You are a constructive contrarian. You deliberately challenge the emerging "
            "consensus, expose weak assumptions, and propose alternatives."
        ),
    ),
    SYNTHESIZER_ID: Persona(
        id=SYNTHESIZER_ID,
        name="Synthesizer",
        system_prompt=(
            "You are a master synthesizer. Your role is to read a discussion and create a "
            "concise, neutral summary of the key points."
        ),
        temperature=0.5,
    ),
}

_OVERRIDE_RE = re.compile(r"(temperature|temp|max_tokens|tokens)\s*[=:]\s*([\d.]+)", re.IGNORECASE)
_SKIP_WORDS = {"", "skip", "-", "no", "none", "default"}


@dataclass(frozen=True)
class BuiltInRef:
    id: str


@dataclass(frozen=True)
class CustomRef:
    id: str


PersonaRef = BuiltInRef | CustomRef


@dataclass(frozen=True)
class ResolvedPersona:
    id: str
    name: str
    system_prompt: str
    temperature: float
    max_tokens: int


def validate_overrides(temperature: float | None, max_tokens: int | None) -> None:
    if temperature is not None and not 0 <= temperature <= 2:
        raise ConfigurationError(f"Temperature must be between 0 and 2, got {temperature}")
    if max_tokens is not None and max_tokens <= 0:
        raise ConfigurationError(f"max_tokens must be positive, got {max_tokens}")


class PersonaRegistry:
    """Resolves persona ids against the built-in catalog and a conversation's custom map."""

    def __init__(self, max_custom: int = 10) -> None:
        self.max_custom = max_custom

    def builtin_ids(self) -> list[str]:
        return list(BUILTIN_PERSONAS)

    def lookup(self, persona_id: str, settings: ConversationSettings) -> PersonaRef:
        if persona_id in settings.custom_personas:
            return CustomRef(persona_id)
        if persona_id in BUILTIN_PERSONAS:
            return BuiltInRef(persona_id)
        raise PersonaNotFoundError(persona_id)

    def exists(self, persona_id: str, settings: ConversationSettings) -> bool:
        return persona_id in settings.custom_personas or persona_id in BUILTIN_PERSONAS

    def resolve(self, persona_id: str, settings: ConversationSettings) -> ResolvedPersona:
        """Return the effective name, prompt, temperature and token budget for persona_id.

        Custom personas shadow built-ins; a per-conversation system prompt
        override replaces the persona's own prompt.
        """
        ref = self.lookup(persona_id, settings)
        match ref:
            case CustomRef(id=ref_id):
                persona = settings.custom_personas[ref_id]
            case BuiltInRef(id=ref_id):
                persona = BUILTIN_PERSONAS[ref_id]

        system_prompt = settings.system_prompt_overrides.get(persona_id, persona.system_prompt)
        return ResolvedPersona(
            id=persona_id,
            name=persona.name,
            system_prompt=system_prompt,
            temperature=persona.temperature if persona.temperature is not None else settings.temperature,
            max_tokens=persona.max_tokens if persona.max_tokens is not None else settings.max_tokens,
        )

    def add_custom(self, settings: ConversationSettings, persona: Persona) -> Persona:
        """Store a custom persona in the conversation settings.

        Raises:
            ConfigurationError: If the per-conversation limit is reached or the
                persona is incomplete.
        """
        if len(settings.custom_personas) >= self.max_custom:
            raise ConfigurationError(f"At most {self.max_custom} custom personas are allowed")
        if not persona.name.strip() or not persona.system_prompt.strip():
            raise ConfigurationError("A custom persona needs a name and a system prompt")
        validate_overrides(persona.temperature, persona.max_tokens)
        settings.custom_personas[persona.id] = persona
        logger.info("Custom persona added: %s (%s)", persona.name, persona.id)
        return persona

    def remove_custom(self, settings: ConversationSettings, persona_id: str) -> None:
        if persona_id not in settings.custom_personas:
            raise PersonaNotFoundError(persona_id)
        del settings.custom_personas[persona_id]
        settings.system_prompt_overrides.pop(persona_id, None)
        settings.enabled_persona_order[:] = [p for p in settings.enabled_persona_order if p != persona_id]


def new_custom_id() -> str:
    return f"custom_{uuid.uuid4().hex[:8]}"


class PersonaCapture:
    """Guided three-step capture of a custom persona.

    Steps: name -> system prompt -> optional overrides. feed() accepts raw
    chat text for each step and returns the next instruction to show the user.
    """

    STEPS = ("name", "system_prompt", "overrides", "done")

    def __init__(self) -> None:
        self.step = "name"
        self.name: str | None = None
        self.system_prompt: str | None = None
        self.temperature: float | None = None
        self.max_tokens: int | None = None

    @property
    def done(self) -> bool:
        return self.step == "done"

    def set_name(self, name: str) -> None:
        name = name.strip()
        if not name:
            raise ConfigurationError("Persona name cannot be empty")
        self.name = name
        self.step = "system_prompt"

    def set_system_prompt(self, prompt: str) -> None:
        prompt = prompt.strip()
        if not prompt:
            raise ConfigurationError("System prompt cannot be empty")
        self.system_prompt = prompt
        self.step = "overrides"

    def set_overrides(self, temperature: float | None = None, max_tokens: int | None = None) -> None:
        validate_overrides(temperature, max_tokens)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.step = "done"

    def feed(self, text: str) -> str:
        """Consume one user reply and return the prompt for the next step."""
        if self.step == "name":
            self.set_name(text)
            return f"Now send the system prompt for '{self.name}'."
        if self.step == "system_prompt":
            self.set_system_prompt(text)
            return (
                "Optionally send a temperature and/or max tokens "
                "(e.g. '0.9 800' or 'temperature=0.9 max_tokens=800'), or 'skip'."
            )
        if self.step == "overrides":
            temperature, max_tokens = parse_overrides(text)
            self.set_overrides(temperature, max_tokens)
            return f"Persona '{self.name}' is ready."
        raise ConfigurationError("Persona capture is already complete")

    def build(self, persona_id: str | None = None) -> Persona:
        if self.name is None or self.system_prompt is None:
            raise ConfigurationError(f"Persona capture incomplete at step '{self.step}'")
        return Persona(
            id=persona_id or new_custom_id(),
            name=self.name,
            system_prompt=self.system_prompt,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )


def parse_overrides(text: str) -> tuple[float | None, int | None]:
    """Parse the optional overrides step: 'skip', '0.9', '0.9 800' or key=value pairs."""
    cleaned = text.strip()
    if cleaned.lower() in _SKIP_WORDS:
        return None, None

    temperature: float | None = None
    max_tokens: int | None = None
    try:
        named = _OVERRIDE_RE.findall(cleaned)
        if named:
            for key, value in named:
                if key.lower() in ("temperature", "temp"):
                    temperature = float(value)
                else:
                    max_tokens = int(float(value))
            return temperature, max_tokens

        parts = cleaned.replace(",", " ").split()
        if len(parts) > 2:
            raise ConfigurationError(f"Could not parse overrides: '{text}'")
        temperature = float(parts[0])
        if len(parts) == 2:
            max_tokens = int(parts[1])
    except ValueError as exc:
        raise ConfigurationError(f"Could not parse overrides: '{text}'") from exc
    return temperature, max_tokens
