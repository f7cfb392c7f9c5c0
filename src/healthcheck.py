"""Credential health checks: ping the endpoint once per API key before a discussion."""

import asyncio
import logging

from src.models import CompletionRequest
from src.providers.base import CompletionClient, CompletionError, ErrorKind

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


def _ping_request(model: str) -> CompletionRequest:
    return CompletionRequest(
        model=model,
        system_prompt="You are a health check.",
        user_prompt=_PING_PROMPT,
        temperature=0.0,
        max_tokens=5,
    )


async def _check_one(
    client: CompletionClient,
    index: int,
    api_key: str,
    models: list[str],
) -> tuple[int, bool, str]:
    """Ping with a single key, moving to the next model only when one is unavailable.

    Returns (index, ok, error_message).
    """
    error = ""
    for model in models:
        try:
            await asyncio.wait_for(client.complete(_ping_request(model), api_key), timeout=_TIMEOUT_SEC)
            return index, True, ""
        except CompletionError as exc:
            error = str(exc)
            if exc.kind is not ErrorKind.MODEL_UNAVAILABLE:
                break
            logger.debug("Key #%d: model %s unavailable during health check", index + 1, model)
        except Exception as exc:
            error = str(exc)
            break
    logger.debug("Key #%d failed health check: %s", index + 1, error)
    return index, False, error


async def run_key_checks(
    client: CompletionClient,
    keys: list[str],
    model: str,
    fallback_model: str | None = None,
) -> dict[int, tuple[bool, str]]:
    """Ping every key in parallel.

    When model has no endpoint for a key, the ping is repeated with
    fallback_model, the same way a discussion request would recover.

    Returns:
        Dict mapping key index -> (ok, error_message).
        error_message is "" when ok is True.
    """
    models = [model]
    if fallback_model and fallback_model != model:
        models.append(fallback_model)
    results = await asyncio.gather(*(_check_one(client, i, k, models) for i, k in enumerate(keys)))
    return {index: (ok, err) for index, ok, err in results}
