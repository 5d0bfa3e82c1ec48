"""Counter store interfaces.

The request gates depend on this abstraction (not the concrete implementation)
so the storage backend can be swapped with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class CounterEntry:
    """Request count attributed to one admission key.

    Attributes:
        key: Admission key the entry belongs to.
        count: Requests counted in the current window (never negative).
        window_start: UNIX time in seconds when the window opened.
        reset_at: UNIX time in seconds when the window expires.
    """

    key: str
    count: int
    window_start: float
    reset_at: float

    def is_expired(self, now: float) -> bool:
        return self.reset_at <= now


@dataclass(frozen=True)
class CounterStats:
    """Observability snapshot of a counter store."""

    total_keys: int
    active_keys: int


class AbstractCounterStore(ABC):
    """Interface for admission counter stores."""

    @abstractmethod
    def get(self, key: str) -> CounterEntry | None:
        """Return the live entry for key, evicting it if expired."""
        raise NotImplementedError

    @abstractmethod
    def increment(self, key: str, window_seconds: float) -> CounterEntry:
        """Count one request for key, opening a new window when needed."""
        raise NotImplementedError

    @abstractmethod
    def decrement(self, key: str) -> CounterEntry | None:
        """Take back one request from a live entry, floored at zero."""
        raise NotImplementedError

    @abstractmethod
    def reset(self, key: str) -> None:
        """Evict the entry for key."""
        raise NotImplementedError

    @abstractmethod
    def reset_all(self) -> None:
        """Evict every entry."""
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> CounterStats:
        """Return key counts for observability."""
        raise NotImplementedError

    def start(self) -> None:
        """Start background maintenance, if the backend needs any."""

    async def close(self) -> None:
        """Stop background maintenance and release resources."""
