"""Cooperative cancellation shared by the orchestrator and the request layer."""


class DiscussionCancelled(Exception):
    """Raised at a checkpoint once a stop has been requested."""


class CancellationToken:
    """One-way stop flag checked at every safe point of a discussion run."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise DiscussionCancelled("Discussion stopped")
