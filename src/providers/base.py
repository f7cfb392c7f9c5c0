"""Abstract completion client and the closed error taxonomy it reports."""

from abc import ABC, abstractmethod
from enum import Enum

from src.models import CompletionRequest, CompletionResponse


class ErrorKind(str, Enum):
    CREDENTIAL_EXHAUSTED = "credential_exhausted"
    TOKEN_LIMIT = "token_limit"
    MODEL_UNAVAILABLE = "model_unavailable"
    RATE_LIMITED = "rate_limited"
    EMPTY_RESPONSE = "empty_response"
    TIMEOUT = "timeout"
    NETWORK = "network"
    OTHER = "other"


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        self.detail = message
        super().__init__(f"[{provider_name}] {message}")


class CompletionError(ProviderError):
    """A provider failure already mapped onto ErrorKind.

    affordable_tokens is set for TOKEN_LIMIT, retry_after_sec for RATE_LIMITED
    when the provider suggested a wait.
    """

    def __init__(
        self,
        provider_name: str,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        affordable_tokens: int | None = None,
        retry_after_sec: float | None = None,
    ) -> None:
        self.kind = kind
        self.status_code = status_code
        self.affordable_tokens = affordable_tokens
        self.retry_after_sec = retry_after_sec
        super().__init__(provider_name, message)


class CompletionClient(ABC):
    """Issues one chat-completion request against a remote endpoint."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'openrouter')."""
        ...

    @abstractmethod
    async def complete(self, request: CompletionRequest, api_key: str) -> CompletionResponse:
        """Send a system + user message pair with the given credential.

        Returns:
            CompletionResponse with trimmed, validated content.

        Raises:
            CompletionError: On API failure, timeout, or an empty/corrupt payload.
        """
        ...
