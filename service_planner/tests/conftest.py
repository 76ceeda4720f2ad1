"""
Shared fixtures for planner cache tests.
"""

import fnmatch
from typing import Any, Dict, Optional, Tuple

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from shared.retry import RetryConfig
from service_planner.app.caching.cache_service import CacheService
from service_planner.app.caching.local_store import LocalFallbackStore
from service_planner.app.caching.remote_client import RemoteCacheClient


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis with PX expiry.

    Set ``fail = True`` to make every command raise a connection error.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.fail = False
        self.closed = False
        self.calls = []
        self._data: Dict[str, Tuple[bytes, Optional[float]]] = {}

    @staticmethod
    def _key(key: Any) -> str:
        return key.decode("utf-8") if isinstance(key, bytes) else str(key)

    def _check(self, command: str) -> None:
        self.calls.append(command)
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def _live(self, key: str) -> Optional[Tuple[bytes, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            del self._data[key]
            return None
        return entry

    async def ping(self):
        self._check("ping")
        return True

    async def get(self, key):
        self._check("get")
        entry = self._live(self._key(key))
        return entry[0] if entry else None

    async def set(self, key, value, px=None):
        self._check("set")
        expires_at = self.clock() + px / 1000.0 if px else None
        if isinstance(value, str):
            value = value.encode("utf-8")
        self._data[self._key(key)] = (value, expires_at)
        return True

    async def delete(self, *keys):
        self._check("delete")
        removed = 0
        for key in keys:
            if self._live(self._key(key)) is not None:
                del self._data[self._key(key)]
                removed += 1
        return removed

    async def exists(self, key):
        self._check("exists")
        return 1 if self._live(self._key(key)) else 0

    async def incr(self, key):
        self._check("incr")
        name = self._key(key)
        entry = self._live(name)
        count = int(entry[0]) + 1 if entry else 1
        self._data[name] = (str(count).encode("utf-8"), entry[1] if entry else None)
        return count

    async def pexpire(self, key, ttl_ms):
        self._check("pexpire")
        name = self._key(key)
        entry = self._live(name)
        if entry is None:
            return False
        self._data[name] = (entry[0], self.clock() + ttl_ms / 1000.0)
        return True

    async def scan_iter(self, match=None, count=None):
        self._check("scan")
        for key in list(self._data):
            if self._live(key) is not None and (match is None or fnmatch.fnmatchcase(key, match)):
                yield key.encode("utf-8")

    async def dbsize(self):
        self._check("dbsize")
        return sum(1 for key in list(self._data) if self._live(key) is not None)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def clock():
    """Controllable clock shared by the fake backend and the local store."""
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    """Fake Redis backend."""
    return FakeRedis(clock)


@pytest.fixture
def fast_retry():
    """Connection retry policy without real sleeps."""
    return RetryConfig(max_attempts=2, base_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def remote_client(fake_redis, fast_retry):
    """RemoteCacheClient wired to the fake backend (not yet connected)."""
    return RemoteCacheClient(
        client_factory=lambda: fake_redis,
        reconnect_interval=3600,
        retry=fast_retry,
    )


@pytest.fixture
def local_store(clock):
    """Small local store on the fake clock."""
    return LocalFallbackStore(max_entries=3, clock=clock)


@pytest.fixture
async def cache_service(remote_client, clock):
    """CacheService with a healthy remote tier."""
    service = CacheService(
        remote_client,
        LocalFallbackStore(max_entries=100, clock=clock),
        sweep_interval_seconds=None,
    )
    await remote_client.connect()
    yield service
    await service.close()


@pytest.fixture
def local_only_cache(clock):
    """CacheService with no remote tier configured."""
    return CacheService(
        None,
        LocalFallbackStore(max_entries=100, clock=clock),
        sweep_interval_seconds=None,
    )
