"""
Expiring key-value store for chathost.

Backs command cooldowns and other short-lived flags:
- Optional per-entry TTL (zero/None never expires)
- Lazy expiry on every read
- Per-key eviction timers while an event loop is running
- Periodic background sweep
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from loguru import logger


_MISSING = object()


@dataclass
class StoreEntry:
    """A single stored value."""
    value: Any
    created_at: float
    ttl: float | None = None
    access_count: int = 0
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    def is_expired(self, now: float) -> bool:
        """Check if this entry has outlived its TTL."""
        if not self.ttl:
            return False
        return now - self.created_at > self.ttl

    def expires_at(self) -> float | None:
        if not self.ttl:
            return None
        return self.created_at + self.ttl


@dataclass
class StoreStats:
    """Store statistics."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "hit_rate": f"{self.hit_rate:.1%}",
        }


class ExpiringStore:
    """
    In-memory key-value store with TTL support.

    All operations are synchronous, so each one is atomic with respect to
    other coroutines on the same event loop.
    """

    def __init__(
        self,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the store.

        Args:
            sweep_interval: Seconds between background sweeps.
            clock: Monotonic time source, in seconds.
        """
        self.sweep_interval = sweep_interval
        self.clock = clock

        self._entries: dict[str, StoreEntry] = {}
        self._stats = StoreStats()
        self._sweep_task: asyncio.Task | None = None

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """
        Store a value.

        Args:
            key: Entry key.
            value: Any value.
            ttl: Time-to-live in seconds; 0 or None means never expires.
        """
        existing = self._entries.get(key)
        if existing is not None:
            self._cancel_timer(existing)

        entry = StoreEntry(value=value, created_at=self.clock(), ttl=ttl or None)
        self._entries[key] = entry
        self._stats.sets += 1

        if entry.ttl:
            entry.timer = self._schedule_eviction(key, entry)

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for key, or default when absent or expired."""
        entry = self._live_entry(key)
        if entry is None:
            self._stats.misses += 1
            return default

        entry.access_count += 1
        self._stats.hits += 1
        return entry.value

    def has(self, key: str) -> bool:
        """Check whether key holds an unexpired value."""
        return self._live_entry(key) is not None

    def delete(self, key: str) -> bool:
        """Remove key. Returns True if something was removed."""
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._cancel_timer(entry)
        self._stats.deletes += 1
        return True

    def remaining(self, key: str) -> float | None:
        """
        Seconds until key expires.

        Returns None when the key is absent, expired, or has no TTL.
        """
        entry = self._live_entry(key)
        if entry is None:
            return None
        expires_at = entry.expires_at()
        if expires_at is None:
            return None
        return max(0.0, expires_at - self.clock())

    def clear(self) -> None:
        """Remove every entry."""
        for entry in self._entries.values():
            self._cancel_timer(entry)
        self._entries.clear()

    def keys(self) -> list[str]:
        """Keys of all unexpired entries."""
        now = self.clock()
        return [k for k, e in self._entries.items() if not e.is_expired(now)]

    def __len__(self) -> int:
        return len(self.keys())

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def cleanup(self) -> int:
        """Evict all expired entries. Returns the number evicted."""
        now = self.clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            self._evict(key)
        if expired:
            logger.debug(f"Store sweep evicted {len(expired)} entries")
        return len(expired)

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._sweep_task:
            return

        async def sweep_loop():
            while True:
                await asyncio.sleep(self.sweep_interval)
                self.cleanup()

        self._sweep_task = asyncio.create_task(sweep_loop())

    async def stop(self) -> None:
        """Stop the background sweep task and cancel pending timers."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        for entry in self._entries.values():
            self._cancel_timer(entry)

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        return {
            "size": len(self.keys()),
            "sweep_running": self._sweep_task is not None,
            **self._stats.to_dict(),
        }

    def _live_entry(self, key: str) -> StoreEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self.clock()):
            self._evict(key)
            return None
        return entry

    def _evict(self, key: str, expected: StoreEntry | None = None) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        # A timer scheduled for a replaced entry must not evict its successor
        if expected is not None and entry is not expected:
            return
        self._cancel_timer(entry)
        del self._entries[key]
        self._stats.evictions += 1

    def _schedule_eviction(self, key: str, entry: StoreEntry) -> asyncio.TimerHandle | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: lazy expiry and cleanup() cover it
            return None
        return loop.call_later(entry.ttl, self._evict, key, entry)

    @staticmethod
    def _cancel_timer(entry: StoreEntry) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
