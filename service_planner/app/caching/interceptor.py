"""
Response caching for /api handlers.

Handlers opt in with ``@cached_endpoint``; nothing patches the response
machinery. The wrapped handler runs only on a miss and its JSON-able result
is stored under a key built from the request.
"""

import functools
import hashlib
import inspect
import json
from urllib.parse import urlencode
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder

from shared.config import BaseConfig
from shared.logging import get_logger

from .cache_service import CacheService
from .keyspace import CacheKeyspace, default_keyspace

RESPONSE_DOMAIN = "response"

DEFAULT_RESPONSE_TTL_MS = 5 * 60 * 1000

# Path prefix -> TTL in ms; the longest matching prefix wins
RESPONSE_TTLS_MS: Dict[str, int] = {
    "/api/health": 30 * 1000,
    "/api/maps-key": 10 * 60 * 1000,
    "/api/places/autocomplete": 5 * 60 * 1000,
    "/api/pois": 5 * 60 * 1000,
    "/api/route": 10 * 60 * 1000,
}

_BODY_METHODS = {"POST", "PUT", "PATCH"}


class ResponseCache:
    """Caches handler results keyed by method, path, query and body."""

    def __init__(
        self,
        cache: CacheService,
        *,
        enabled: bool = True,
        ttl_table: Optional[Mapping[str, int]] = None,
        default_ttl_ms: int = DEFAULT_RESPONSE_TTL_MS,
        path_prefix: str = "/api",
        keyspace: Optional[CacheKeyspace] = None,
    ):
        self.cache = cache
        self.enabled = enabled
        self.default_ttl_ms = default_ttl_ms
        self.path_prefix = path_prefix
        self.keyspace = keyspace or default_keyspace
        self.logger = get_logger("planner.cache.responses")

        table = RESPONSE_TTLS_MS if ttl_table is None else ttl_table
        self._ttl_table = sorted(table.items(), key=lambda item: len(item[0]), reverse=True)

    @classmethod
    def from_settings(cls, cache: CacheService, config: BaseConfig) -> "ResponseCache":
        enabled = config.response_cache_enabled
        if enabled is None:
            enabled = config.is_development
        return cls(cache, enabled=enabled)

    def ttl_for(self, path: str) -> int:
        """TTL for ``path`` in milliseconds."""
        for prefix, ttl_ms in self._ttl_table:
            if path.startswith(prefix):
                return ttl_ms
        return self.default_ttl_ms

    def applies_to(self, request: Request) -> bool:
        return self.enabled and request.url.path.startswith(self.path_prefix)

    async def make_key(self, request: Request) -> str:
        """Deterministic key for a request; query parameters are sorted and re-encoded."""
        args: Dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
            "query": urlencode(sorted(request.query_params.multi_items())),
        }
        if request.method in _BODY_METHODS:
            args["body"] = _canonical_body(await request.body())
        return self.keyspace.build(RESPONSE_DOMAIN, args)

    async def fetch(self, request: Request, compute: Callable[[], Awaitable[Any]]) -> Any:
        """Serve ``request`` from cache or run ``compute`` and store its result."""
        if not self.applies_to(request):
            return await compute()

        path = request.url.path
        key = await self.make_key(request)
        produced: Dict[str, Any] = {}

        async def _compute() -> Any:
            result = await compute()
            produced["result"] = result
            # Handlers that build their own Response (status codes, headers) are not cached
            if isinstance(result, Response):
                return None
            return jsonable_encoder(result)

        value = await self.cache.get_or_set(key, _compute, self.ttl_for(path))
        if "result" in produced:
            self.logger.debug("Response cache miss", method=request.method, path=path)
            return produced["result"]
        if value is None:
            # Shared an in-flight computation that produced nothing cacheable
            return await compute()

        self.logger.debug("Response cache hit", method=request.method, path=path)
        return value


def _canonical_body(raw: bytes) -> str:
    if not raw:
        return ""
    try:
        return json.dumps(json.loads(raw), sort_keys=True, separators=(",", ":"))
    except ValueError:
        return "#" + hashlib.sha256(raw).hexdigest()


def _request_parameter(func: Callable) -> str:
    for name, parameter in inspect.signature(func).parameters.items():
        if parameter.annotation is Request or parameter.annotation == "Request":
            return name
    raise TypeError(f"{func.__name__} needs a 'request: Request' parameter to use @cached_endpoint")


def cached_endpoint(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """Serve a FastAPI handler through the app's ``ResponseCache``.

    The handler must declare a ``Request`` parameter. The cache is looked up
    on ``request.app.state.response_cache``; without one the handler runs
    unchanged. Exceptions raised by the handler are never cached.

    Example:
        @router.get("/api/pois")
        @cached_endpoint
        async def list_pois(request: Request, city: str):
            ...
    """
    request_param = _request_parameter(func)

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        request: Request = kwargs[request_param]
        response_cache: Optional[ResponseCache] = getattr(request.app.state, "response_cache", None)
        if response_cache is None:
            return await func(*args, **kwargs)
        return await response_cache.fetch(request, lambda: func(*args, **kwargs))

    return wrapper
