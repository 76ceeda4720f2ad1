"""
Planner caching package.

A tiered cache for expensive geo lookups: Redis when reachable, a bounded
in-process store otherwise. Consumers normally go through
``TieredCachePolicy``; ``CacheService`` is the generic facade underneath.
"""

from .cache_service import CacheService, CacheStats
from .interceptor import ResponseCache, cached_endpoint
from .keyspace import CacheKeyspace, build_key
from .local_store import CacheEntry, LocalFallbackStore
from .policy import CacheDomain, TieredCachePolicy
from .remote_client import UNAVAILABLE, ConnectionState, RemoteCacheClient
from .serialization import JsonSerializer

__all__ = [
    "CacheService",
    "CacheStats",
    "ResponseCache",
    "cached_endpoint",
    "CacheKeyspace",
    "build_key",
    "CacheEntry",
    "LocalFallbackStore",
    "CacheDomain",
    "TieredCachePolicy",
    "UNAVAILABLE",
    "ConnectionState",
    "RemoteCacheClient",
    "JsonSerializer",
]
