"""Configuration-level errors surfaced before any remote call is made."""


class ConfigurationError(Exception):
    """Raised when settings cannot support a request or a discussion run."""


class PersonaNotFoundError(ConfigurationError):
    """Raised when a persona id resolves to neither a custom nor a built-in persona."""

    def __init__(self, persona_id: str) -> None:
        self.persona_id = persona_id
        super().__init__(f"Persona '{persona_id}' not found")
