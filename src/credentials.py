"""Round-robin API key dispenser shared by every conversation in the process."""

import logging
from threading import Lock

logger = logging.getLogger(__name__)


class CredentialRotator:
    """Hands out API keys round-robin.

    The cursor advances on every call to next() regardless of the outcome of
    the request that uses the key. Access is serialised so concurrent
    conversations never observe a torn cursor.
    """

    def __init__(self, keys: list[str]) -> None:
        if not keys:
            raise ValueError("CredentialRotator needs at least one API key")
        self._keys = list(keys)
        self._index = 0
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def index(self) -> int:
        return self._index

    def next(self) -> tuple[int, str]:
        """Return (index, key) for the current cursor and advance it."""
        with self._lock:
            index = self._index
            self._index = (self._index + 1) % len(self._keys)
            return index, self._keys[index]

    def get(self, index: int) -> str:
        """Return the key at index without moving the cursor."""
        with self._lock:
            return self._keys[index % len(self._keys)]

    def remove(self, indices: set[int]) -> None:
        """Drop keys by index; the cursor restarts at the first remaining key."""
        with self._lock:
            remaining = [k for i, k in enumerate(self._keys) if i not in indices]
            if not remaining:
                raise ValueError("Cannot remove every API key")
            self._keys = remaining
            self._index = 0
        logger.info("Credential rotator now holds %d key(s)", len(remaining))

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._keys)
