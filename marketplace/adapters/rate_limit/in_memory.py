"""In-memory admission counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Expiry is enforced on read; the background sweep only reclaims memory.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable

from marketplace.adapters.rate_limit.base import AbstractCounterStore, CounterEntry, CounterStats

logger = logging.getLogger(__name__)


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping one fixed window per key.

    A window opens on the first request for a key and lasts ``window_seconds``
    from that moment. Once ``reset_at`` has passed the entry is treated as
    absent, and the next increment opens a fresh window.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        name: str = "default",
        sweep_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            name: Namespace label used in logs and stats.
            sweep_interval_seconds: Delay between background sweeps.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If sweep_interval_seconds is not positive.
        """
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")

        self.name = name
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, CounterEntry] = {}
        self._sweep_task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryCounterStore(name={self.name!r}, keys={len(self._entries)})"

    def _get_live_locked(self, key: str, now: float) -> CounterEntry | None:
        entry = self._entries.get(key)
        if entry is not None and entry.is_expired(now):
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> CounterEntry | None:
        """Return the entry for key if its window is still open.

        Args:
            key: Admission key.

        Returns:
            The live entry, or None when absent or expired (expired entries
            are evicted on the spot).
        """
        with self._lock:
            return self._get_live_locked(key, self._clock())

    def increment(self, key: str, window_seconds: float) -> CounterEntry:
        """Count one request for key.

        Creates ``{count: 1, reset_at: now + window_seconds}`` when no live
        entry exists; otherwise increments in place and leaves ``reset_at``
        untouched.

        Args:
            key: Admission key (e.g., ``user:42`` or ``ip:10.0.0.1``).
            window_seconds: Window length for a newly created entry.

        Returns:
            The entry after this request was counted.

        Raises:
            ValueError: If key is empty or window_seconds is invalid.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        with self._lock:
            now = self._clock()
            entry = self._get_live_locked(key, now)
            if entry is None:
                entry = CounterEntry(
                    key=key,
                    count=1,
                    window_start=now,
                    reset_at=now + window_seconds,
                )
                self._entries[key] = entry
            else:
                entry.count += 1
            return entry

    def decrement(self, key: str) -> CounterEntry | None:
        """Take back one request from the live entry for key.

        Never resurrects an expired or evicted entry and never drives the
        count below zero. The entry is looked up by key only, so under
        contention the decrement may land on a newer window than the one the
        original request was counted in.

        Args:
            key: Admission key.

        Returns:
            The adjusted entry, or None when there was nothing to adjust.
        """
        with self._lock:
            entry = self._get_live_locked(key, self._clock())
            if entry is None:
                return None
            if entry.count > 0:
                entry.count -= 1
            return entry

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def reset_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CounterStats:
        with self._lock:
            now = self._clock()
            active = sum(1 for entry in self._entries.values() if not entry.is_expired(now))
            return CounterStats(total_keys=len(self._entries), active_keys=active)

    def sweep(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            expired_keys = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._entries[key]

        if expired_keys:
            logger.debug(
                "rate_limit.sweep",
                extra={"store": self.name, "removed": len(expired_keys)},
            )
        return len(expired_keys)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def start(self) -> None:
        """Start the background sweep on the running event loop.

        Calling start() again while the sweep is running is a no-op.

        Raises:
            RuntimeError: If called outside a running event loop.
        """
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(
            self._sweep_loop(), name=f"counter-sweep:{self.name}"
        )
        logger.debug(
            "rate_limit.sweep_started",
            extra={"store": self.name, "interval_s": self._sweep_interval},
        )

    @property
    def sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def close(self) -> None:
        """Cancel the background sweep and wait for it to finish.

        Safe to call more than once, and safe to call when start() never ran.
        """
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("rate_limit.sweep_stopped", extra={"store": self.name})
