"""
Bounded in-process fallback store.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from shared.logging import get_logger


@dataclass(frozen=True)
class CacheEntry:
    """One stored value with its lifetime."""
    key: str
    value: bytes
    inserted_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class LocalFallbackStore:
    """Ephemeral key -> entry map with lazy + periodic expiry and FIFO eviction.

    Eviction uses insertion order only. Reads do not refresh an entry's
    position, so a hot key inserted early is still the first to go.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
        on_evict: Optional[Callable[[str], None]] = None,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.logger = get_logger("planner.cache.local")

        self._clock = clock
        self._on_evict = on_evict
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        # Includes expired entries the sweeper has not removed yet
        return len(self._entries)

    def live_count(self) -> int:
        """Number of entries that have not expired."""
        with self._lock:
            now = self._clock()
            return sum(1 for entry in self._entries.values() if not entry.is_expired(now))

    def now(self) -> float:
        """Current reading of the store clock."""
        return self._clock()

    def get(self, key: str) -> Optional[bytes]:
        """Return the live value for ``key`` or None (expired entries are dropped)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._expirations += 1
                return None
            return entry.value

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for ``key`` without side effects on others."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None
            return entry

    def set(self, key: str, value: bytes, ttl_seconds: float) -> bool:
        """Store ``value`` for ``ttl_seconds``; evicts the oldest entry when full."""
        if ttl_seconds <= 0:
            return False

        evicted: Optional[str] = None
        with self._lock:
            now = self._clock()
            if key in self._entries:
                # Overwrite re-inserts at the tail
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                evicted = next(iter(self._entries))
                del self._entries[evicted]
                self._evictions += 1
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                inserted_at=now,
                expires_at=now + ttl_seconds,
            )

        if evicted is not None:
            self.logger.debug("Evicted oldest local cache entry", key=evicted, max_entries=self.max_entries)
            if self._on_evict:
                self._on_evict(evicted)
        return True

    def delete(self, key: str) -> bool:
        """Remove ``key``; True when a live entry was removed."""
        with self._lock:
            entry = self._entries.pop(key, None)
            return entry is not None and not entry.is_expired(self._clock())

    def contains(self, key: str) -> bool:
        """Whether ``key`` holds a live entry."""
        return self.get_entry(key) is not None

    def expire(self, key: str, ttl_seconds: float) -> bool:
        """Give a live entry a new deadline by replacing it wholesale."""
        with self._lock:
            entry = self._entries.get(key)
            now = self._clock()
            if entry is None or entry.is_expired(now):
                return False
            if ttl_seconds <= 0:
                del self._entries[key]
                return True
            self._entries[key] = CacheEntry(
                key=key,
                value=entry.value,
                inserted_at=entry.inserted_at,
                expires_at=now + ttl_seconds,
            )
            return True

    def delete_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``."""
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def purge_expired(self) -> int:
        """Delete all expired entries; returns how many were removed."""
        with self._lock:
            now = self._clock()
            doomed = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in doomed:
                del self._entries[key]
            self._expirations += len(doomed)
            return len(doomed)

    def clear(self) -> int:
        """Drop everything."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def stats(self) -> Dict[str, Any]:
        """Size and lifetime counters."""
        return {
            "entries": len(self._entries),
            "live_entries": self.live_count(),
            "max_entries": self.max_entries,
            "evictions": self._evictions,
            "expirations": self._expirations,
            "sweeper_running": self.sweeper_running,
        }

    @property
    def sweeper_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start_sweeper(self, interval_seconds: float) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        if self.sweeper_running:
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop(interval_seconds))
        self.logger.info("Local cache sweeper started", interval_seconds=interval_seconds)

    async def stop_sweeper(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.purge_expired()
            if removed:
                self.logger.debug("Swept expired local cache entries", removed=removed, remaining=len(self))
