"""
Tiered cache facade: Redis when healthy, bounded local memory otherwise.
"""

import asyncio
import functools
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, TypeVar

from pydantic import BaseModel

from shared.config import BaseConfig
from shared.errors import CacheSerializationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig

from .local_store import LocalFallbackStore
from .remote_client import UNAVAILABLE, RemoteCacheClient
from .serialization import JsonSerializer

T = TypeVar("T")

DEFAULT_TTL_MS = 5 * 60 * 1000


class CacheStats(BaseModel):
    """Which tier is authoritative right now."""
    tier: Literal["remote", "local"]
    connected: bool
    entry_count: int


class CacheService:
    """Facade over RemoteCacheClient + LocalFallbackStore.

    Reads try the remote tier first and fall through to the local tier on a
    miss or when the remote is unavailable. Writes go to the remote tier on a
    best-effort basis and are always mirrored locally with the same TTL, so a
    later outage still serves recently cached data.

    No public method raises because of a cache failure: backend and
    serialization problems become misses or no-ops, and are logged. Errors
    raised by a ``get_or_set`` compute function are the caller's and do
    propagate.

    ``get_or_set`` invokes ``compute`` once per cold call. Two concurrent
    callers racing on the same cold key both compute unless
    ``single_flight`` is enabled, in which case they share one in-flight
    computation within this process.
    """

    def __init__(
        self,
        remote: Optional[RemoteCacheClient],
        local: LocalFallbackStore,
        *,
        key_prefix: str = "routewise",
        default_ttl_ms: int = DEFAULT_TTL_MS,
        sweep_interval_seconds: Optional[float] = 300.0,
        single_flight: bool = False,
        serializer: Optional[JsonSerializer] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.remote = remote
        self.local = local
        self.key_prefix = key_prefix
        self.default_ttl_ms = default_ttl_ms
        self.sweep_interval_seconds = sweep_interval_seconds
        self.single_flight = single_flight
        self.serializer = serializer or JsonSerializer()
        self.metrics = metrics
        self.logger = get_logger("planner.cache")

        self._inflight: Dict[str, asyncio.Future] = {}
        self._counters: Dict[str, int] = {
            "remote_hits": 0,
            "local_hits": 0,
            "misses": 0,
            "sets": 0,
            "fallbacks": 0,
            "serialization_errors": 0,
            "computes": 0,
            "shared_computes": 0,
        }

    @classmethod
    def from_settings(
        cls,
        config: BaseConfig,
        *,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "CacheService":
        """Build the service from environment-driven configuration."""
        remote = None
        if config.has_redis_target:
            remote = RemoteCacheClient(
                config.redis_url,
                host=config.redis_host,
                port=config.redis_port,
                password=config.redis_password,
                db=config.redis_db,
                connect_timeout=config.redis_connect_timeout_seconds,
                op_timeout=config.redis_op_timeout_seconds,
                reconnect_interval=config.redis_reconnect_interval_seconds,
                retry=RetryConfig(
                    max_attempts=config.redis_connect_max_attempts,
                    base_delay=config.redis_backoff_base_seconds,
                    max_delay=config.redis_backoff_max_seconds,
                ),
                metrics=metrics,
            )

        def _on_evict(key: str) -> None:
            if metrics:
                metrics.record_cache_eviction()

        local = LocalFallbackStore(config.local_cache_max_entries, clock=clock, on_evict=_on_evict)
        return cls(
            remote,
            local,
            key_prefix=config.cache_key_prefix,
            default_ttl_ms=config.cache_default_ttl_ms,
            sweep_interval_seconds=config.local_cache_sweep_interval_seconds,
            single_flight=config.cache_single_flight,
            metrics=metrics,
        )

    async def start(self) -> None:
        """Connect the remote tier and start the local sweeper."""
        if self.remote is not None:
            await self.remote.start()
        else:
            self.logger.warning("Redis URL not configured, using in-memory cache fallback")
        if self.sweep_interval_seconds:
            self.local.start_sweeper(self.sweep_interval_seconds)
        self._publish_state()
        self.logger.info("Cache service started", **self.get_stats().model_dump())

    async def close(self) -> None:
        """Stop background tasks and close the remote connection."""
        await self.local.stop_sweeper()
        if self.remote is not None:
            await self.remote.close()
        self.logger.info("Cache service stopped")

    async def __aenter__(self) -> "CacheService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _qualify(self, key: str) -> str:
        return f"{self.key_prefix}:{key}" if self.key_prefix else key

    def _resolve_ttl(self, ttl_ms: Optional[int]) -> int:
        return self.default_ttl_ms if ttl_ms is None else int(ttl_ms)

    def _decode(self, key: str, payload: Any, tier: str) -> Any:
        """Decode a stored payload; None (and a log record) when it is corrupt."""
        try:
            return self.serializer.loads(payload)
        except CacheSerializationError as exc:
            self._counters["serialization_errors"] += 1
            self.logger.warning("Discarding undecodable cache value", key=key, tier=tier, error=exc.message)
            self._record("get", tier, "error")
            return None

    async def get(self, key: str) -> Optional[Any]:
        """Value for ``key`` from whichever tier has it, else None."""
        full_key = self._qualify(key)

        if self.remote is not None:
            payload = await self.remote.get(full_key)
            if payload is UNAVAILABLE:
                self._fallback("get")
            elif payload is not None:
                value = self._decode(key, payload, "remote")
                if value is not None:
                    self._counters["remote_hits"] += 1
                    self._record("get", "remote", "hit")
                    self.logger.debug("Cache hit", key=key, tier="remote")
                    return value
            else:
                self._record("get", "remote", "miss")

        payload = self.local.get(full_key)
        if payload is not None:
            value = self._decode(key, payload, "local")
            if value is not None:
                self._counters["local_hits"] += 1
                self._record("get", "local", "hit")
                self.logger.debug("Cache hit", key=key, tier="local")
                return value

        self._counters["misses"] += 1
        self._record("get", "local", "miss")
        self.logger.debug("Cache miss", key=key)
        return None

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> bool:
        """Write to Redis (best effort) and always to the local mirror."""
        ttl = self._resolve_ttl(ttl_ms)
        if ttl <= 0:
            self.logger.debug("Skipping cache write with non-positive TTL", key=key, ttl_ms=ttl)
            return False

        try:
            payload = self.serializer.dumps(value)
        except CacheSerializationError as exc:
            self._counters["serialization_errors"] += 1
            self.logger.error("Cache set skipped, value not serializable", key=key, error=exc.message, **exc.details)
            self._record("set", "local", "error")
            return False

        full_key = self._qualify(key)
        if self.remote is not None:
            stored = await self.remote.set(full_key, payload, ttl)
            if stored is UNAVAILABLE:
                self._fallback("set")
            else:
                self._record("set", "remote", "ok" if stored else "error")

        self.local.set(full_key, payload, ttl / 1000.0)
        self._counters["sets"] += 1
        self._record("set", "local", "ok")
        self._publish_state()
        self.logger.debug("Cache set", key=key, ttl_ms=ttl)
        return True

    async def get_or_set(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        ttl_ms: Optional[int] = None,
    ) -> T:
        """Read-through: return the cached value or compute, store and return it."""
        cached = await self.get(key)
        if cached is not None:
            return cached

        if self.single_flight:
            return await self._compute_shared(key, compute, ttl_ms)
        return await self._compute_and_store(key, compute, ttl_ms)

    async def _compute_and_store(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        ttl_ms: Optional[int],
    ) -> T:
        self._counters["computes"] += 1
        value = await compute()
        if value is not None:
            await self.set(key, value, ttl_ms)
        return value

    async def _compute_shared(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        ttl_ms: Optional[int],
    ) -> T:
        task = self._inflight.get(key)
        if task is None:
            # Detached from every caller; cancelling one caller leaves it running
            task = asyncio.ensure_future(self._compute_and_store(key, compute, ttl_ms))
            self._inflight[key] = task
            task.add_done_callback(functools.partial(self._finish_inflight, key))
        else:
            self._counters["shared_computes"] += 1
        return await asyncio.shield(task)

    def _finish_inflight(self, key: str, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark the exception retrieved; every caller may have gone away
            task.exception()

    async def delete(self, key: str) -> bool:
        """Remove ``key`` from both tiers; True when either held it."""
        full_key = self._qualify(key)
        removed_remote = False
        if self.remote is not None:
            result = await self.remote.delete(full_key)
            if result is UNAVAILABLE:
                self._fallback("delete")
            else:
                removed_remote = result > 0

        removed_local = self.local.delete(full_key)
        self._publish_state()
        return removed_remote or removed_local

    async def exists(self, key: str) -> bool:
        """True when either tier holds a live entry for ``key``."""
        full_key = self._qualify(key)
        if self.remote is not None:
            result = await self.remote.exists(full_key)
            if result is UNAVAILABLE:
                self._fallback("exists")
            elif result:
                return True
        return self.local.contains(full_key)

    async def incr(self, key: str, ttl_ms: Optional[int] = None) -> int:
        """Increment a counter; ``ttl_ms`` applies when the counter is created."""
        full_key = self._qualify(key)
        ttl = self._resolve_ttl(ttl_ms)

        if self.remote is not None:
            result = await self.remote.incr(full_key)
            if result is not UNAVAILABLE:
                count = int(result)
                if count == 1 and ttl > 0:
                    await self.remote.expire(full_key, ttl)
                self.local.set(full_key, self.serializer.dumps(count), max(ttl, 1) / 1000.0)
                return count
            self._fallback("incr")

        current = self.local.get_entry(full_key)
        count = 1
        ttl_seconds = max(ttl, 1) / 1000.0
        if current is not None:
            previous = self._decode(key, current.value, "local")
            if isinstance(previous, int) and not isinstance(previous, bool):
                count = previous + 1
                # Keep the original window
                ttl_seconds = max(current.expires_at - self.local.now(), 0.001)
        self.local.set(full_key, self.serializer.dumps(count), ttl_seconds)
        self._publish_state()
        return count

    async def expire(self, key: str, ttl_ms: int) -> bool:
        """Set a new TTL on an existing key in both tiers."""
        full_key = self._qualify(key)
        updated_remote = False
        if self.remote is not None:
            result = await self.remote.expire(full_key, ttl_ms)
            if result is UNAVAILABLE:
                self._fallback("expire")
            else:
                updated_remote = bool(result)
        updated_local = self.local.expire(full_key, ttl_ms / 1000.0)
        return updated_remote or updated_local

    async def set_expire_at(self, key: str, value: Any, expire_at: datetime) -> bool:
        """Store ``value`` until the absolute time ``expire_at``."""
        if expire_at.tzinfo is None:
            expire_at = expire_at.replace(tzinfo=timezone.utc)
        ttl_ms = int((expire_at - datetime.now(timezone.utc)).total_seconds() * 1000)
        if ttl_ms <= 0:
            self.logger.debug("Skipping cache write, expiry already passed", key=key)
            return False
        return await self.set(key, value, ttl_ms)

    async def clear(self, prefix: str = "") -> int:
        """Delete every key under ``prefix`` (all keys of this deployment by default).

        Returns the number of remote keys removed, or the local count when the
        remote tier is unavailable.
        """
        local_prefix = self._qualify(prefix)
        removed_local = self.local.delete_prefix(local_prefix)
        self._publish_state()

        if self.remote is not None:
            removed = await self.remote.scan_delete(_glob_escape(local_prefix) + "*")
            if removed is not UNAVAILABLE:
                self.logger.info("Cache cleared", prefix=prefix, remote=removed, local=removed_local)
                return int(removed)
            self._fallback("clear")

        self.logger.info("Cache cleared", prefix=prefix, local=removed_local)
        return removed_local

    def get_stats(self) -> CacheStats:
        """Current authoritative tier, connection health and local entry count."""
        connected = self.remote is not None and self.remote.is_connected
        return CacheStats(
            tier="remote" if connected else "local",
            connected=connected,
            entry_count=self.local.live_count(),
        )

    async def describe(self) -> Dict[str, Any]:
        """Detailed statistics for diagnostics endpoints."""
        stats = self.get_stats().model_dump()
        remote_info: Optional[Dict[str, Any]] = None
        if self.remote is not None:
            remote_info = self.remote.describe()
            size = await self.remote.dbsize()
            remote_info["keys"] = None if size is UNAVAILABLE else int(size)

        stats.update({
            "key_prefix": self.key_prefix,
            "default_ttl_ms": self.default_ttl_ms,
            "single_flight": self.single_flight,
            "counters": dict(self._counters),
            "local": self.local.stats(),
            "remote": remote_info,
        })
        return stats

    def _fallback(self, operation: str) -> None:
        self._counters["fallbacks"] += 1
        if self.metrics:
            self.metrics.record_cache_fallback(operation)

    def _record(self, operation: str, tier: str, result: str) -> None:
        if self.metrics:
            self.metrics.record_cache_operation(operation, tier, result)

    def _publish_state(self) -> None:
        if self.metrics:
            stats = self.get_stats()
            self.metrics.set_cache_state(stats.connected, stats.entry_count)


def _glob_escape(text: str) -> str:
    """Escape Redis glob metacharacters."""
    return "".join("\\" + ch if ch in "*?[]\\" else ch for ch in text)
