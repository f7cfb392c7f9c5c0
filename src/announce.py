"""The announce callback: the core's only output channel."""

import inspect
from collections.abc import Awaitable, Callable

Announce = Callable[[str], Awaitable[None] | None]


async def emit(announce: Announce | None, text: str) -> None:
    """Invoke announce with text, awaiting it when it is a coroutine function."""
    if announce is None:
        return
    result = announce(text)
    if inspect.isawaitable(result):
        await result
