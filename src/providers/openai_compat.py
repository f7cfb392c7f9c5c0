"""OpenAI-compatible chat-completion client (OpenRouter, Groq, ...) using the openai SDK."""

import asyncio
import logging
import math
import re
import time

import openai
from openai import AsyncOpenAI

from config.config_loader import ProviderConfig
from src.models import CompletionRequest, CompletionResponse
from src.providers.base import CompletionClient, CompletionError, ErrorKind

logger = logging.getLogger(__name__)

REPLACEMENT_CHAR = "�"

_AFFORD_RE = re.compile(r"can only afford\s+(\d+)", re.IGNORECASE)
_RETRY_IN_RE = re.compile(
    r"try again in\s+(?:(\d+)\s*m(?!s))?\s*(?:(\d+(?:\.\d+)?)\s*(ms|s)\b)?", re.IGNORECASE
)
_EXHAUSTED_MARKERS = (
    "insufficient credits",
    "insufficient balance",
    "insufficient funds",
    "insufficient_quota",
    "exceeded your current quota",
    "out of credits",
)
_UNAVAILABLE_MARKERS = (
    "no endpoints found",
    "model_not_found",
    "model not found",
    "does not exist",
    "is not a valid model",
    "decommissioned",
)


def parse_retry_after(message: str, header: str | None = None) -> float | None:
    """Extract a suggested wait in seconds from a rate-limit message or header."""
    if header:
        try:
            return max(0.0, float(header))
        except ValueError:
            pass
    match = _RETRY_IN_RE.search(message)
    if not match:
        return None
    minutes, amount, unit = match.groups()
    if minutes is None and amount is None:
        return None
    seconds = 0.0
    if amount is not None:
        seconds = float(amount) / 1000 if unit.lower() == "ms" else float(amount)
    if minutes:
        seconds += int(minutes) * 60
    return float(math.ceil(seconds))


def classify_provider_message(
    provider_name: str,
    status_code: int | None,
    message: str,
    retry_after_header: str | None = None,
) -> CompletionError:
    """Map a provider status code + human-readable message onto ErrorKind."""
    lowered = message.lower()

    if any(marker in lowered for marker in _EXHAUSTED_MARKERS):
        return CompletionError(provider_name, ErrorKind.CREDENTIAL_EXHAUSTED, message, status_code=status_code)

    afford = _AFFORD_RE.search(message)
    if afford:
        return CompletionError(
            provider_name,
            ErrorKind.TOKEN_LIMIT,
            message,
            status_code=status_code,
            affordable_tokens=int(afford.group(1)),
        )

    if status_code == 402:
        return CompletionError(provider_name, ErrorKind.CREDENTIAL_EXHAUSTED, message, status_code=status_code)

    if any(marker in lowered for marker in _UNAVAILABLE_MARKERS):
        return CompletionError(provider_name, ErrorKind.MODEL_UNAVAILABLE, message, status_code=status_code)

    if status_code == 429 or "rate limit" in lowered:
        return CompletionError(
            provider_name,
            ErrorKind.RATE_LIMITED,
            message,
            status_code=status_code,
            retry_after_sec=parse_retry_after(message, retry_after_header),
        )

    return CompletionError(provider_name, ErrorKind.OTHER, message, status_code=status_code)


def _status_error_message(exc: openai.APIStatusError) -> str:
    """Prefer the provider's own error text over the SDK's generic wrapper."""
    body = exc.body
    if isinstance(body, dict):
        parts: list[str] = []
        message = body.get("message")
        if isinstance(message, str) and message:
            parts.append(message)
        metadata = body.get("metadata")
        if isinstance(metadata, dict) and isinstance(metadata.get("raw"), str):
            parts.append(metadata["raw"])
        if parts:
            return " | ".join(parts)
    return exc.message


def classify_error(provider_name: str, exc: BaseException) -> CompletionError:
    """Convert an SDK / transport exception into a CompletionError."""
    if isinstance(exc, CompletionError):
        return exc
    if isinstance(exc, openai.APITimeoutError):
        return CompletionError(provider_name, ErrorKind.TIMEOUT, f"Request timed out: {exc}")
    if isinstance(exc, openai.APIConnectionError):
        return CompletionError(provider_name, ErrorKind.NETWORK, f"Connection failed: {exc}")
    if isinstance(exc, openai.APIStatusError):
        header = exc.response.headers.get("retry-after") if exc.response is not None else None
        return classify_provider_message(provider_name, exc.status_code, _status_error_message(exc), header)
    return classify_provider_message(provider_name, None, f"API call failed: {exc}")


class OpenAICompatibleClient(CompletionClient):
    """Chat-completion client for any OpenAI-compatible endpoint.

    One AsyncOpenAI instance is kept per API key. SDK-level retries are
    disabled; ResilientRequester owns the retry policy.
    """

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        self._clients: dict[str, AsyncOpenAI] = {}

    def name(self) -> str:
        return self._config.name

    def _client_for(self, api_key: str) -> AsyncOpenAI:
        client = self._clients.get(api_key)
        if client is None:
            client = AsyncOpenAI(api_key=api_key, base_url=self._config.base_url, max_retries=0)
            self._clients[api_key] = client
        return client

    async def complete(self, request: CompletionRequest, api_key: str) -> CompletionResponse:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client_for(api_key).chat.completions.create(
                    model=request.model,
                    messages=[
                        {"role": "system", "content": request.system_prompt},
                        {"role": "user", "content": request.user_prompt},
                    ],
                    temperature=request.temperature,
                    max_tokens=request.max_tokens,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise CompletionError(
                self._config.name, ErrorKind.TIMEOUT, f"Request timed out after {self._config.timeout_sec}s"
            ) from exc
        except Exception as exc:
            raise classify_error(self._config.name, exc) from exc

        latency = time.monotonic() - start

        # Some gateways answer 200 with an error object instead of choices.
        embedded_error = getattr(response, "error", None)
        if not response.choices and isinstance(embedded_error, dict):
            code = embedded_error.get("code")
            raise classify_provider_message(
                self._config.name,
                code if isinstance(code, int) else None,
                str(embedded_error.get("message", embedded_error)),
            )

        choice = response.choices[0] if response.choices else None
        content = (choice.message.content or "").strip() if choice else ""
        if not content:
            raise CompletionError(self._config.name, ErrorKind.EMPTY_RESPONSE, "Empty response content")
        if REPLACEMENT_CHAR in content:
            raise CompletionError(self._config.name, ErrorKind.EMPTY_RESPONSE, "Corrupt response content")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.info(
            "%s %s: %.2fs, %s tokens",
            self._config.name,
            request.model,
            latency,
            token_count,
        )

        return CompletionResponse(
            content=content,
            model=request.model,
            latency_sec=latency,
            token_count=token_count,
        )
