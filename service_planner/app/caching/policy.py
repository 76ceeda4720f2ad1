"""
Domain cache policy for geo lookups, directions, places and static assets.
"""

import re
import unicodedata
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

from shared.config import BaseConfig
from shared.logging import get_logger

from .cache_service import CacheService
from .keyspace import CacheKeyspace, default_keyspace, round_coordinate

T = TypeVar("T")

HOUR_MS = 60 * 60 * 1000


class CacheDomain(str, Enum):
    """Named cache domains, each with its own TTL."""
    GEOCODE = "geocode"
    DIRECTIONS = "directions"
    PLACES = "places"
    STATIC_ASSET = "static-asset"


# Production TTLs, tuned to how often the underlying data changes
DEFAULT_DOMAIN_TTLS_MS: Dict[CacheDomain, int] = {
    CacheDomain.GEOCODE: 24 * HOUR_MS,
    CacheDomain.DIRECTIONS: 30 * 60 * 1000,
    CacheDomain.PLACES: 5 * 60 * 1000,
    CacheDomain.STATIC_ASSET: 7 * 24 * HOUR_MS,
}

# Any run of non-word characters in any script (punctuation, spaces, "_")
_SEPARATORS = re.compile(r"[\W_]+")


def normalize_place_name(name: str) -> str:
    """Case-fold a place name and collapse punctuation: "Austin, TX" -> "austin-tx".

    Letters of every script are kept, so "東京" and "Москва" stay distinct.
    """
    folded = unicodedata.normalize("NFKC", str(name)).casefold()
    return _SEPARATORS.sub("-", folded).strip("-")


def normalize_travel_mode(mode: Optional[str]) -> str:
    return (mode or "driving").strip().lower()


def join_places(places: Iterable[str], *, sort: bool = False) -> str:
    """Normalize and join a multi-value place list deterministically."""
    names = [normalize_place_name(place) for place in places]
    if sort:
        names.sort()
    return "|".join(names)


class TieredCachePolicy:
    """Domain-specific helpers over one CacheService.

    Each helper normalizes its own arguments before building a key, so callers
    can pass raw user input. All TTLs are multiplied by ``ttl_multiplier``
    (x10 in development) to cut metered API traffic during iteration.
    """

    def __init__(
        self,
        cache: CacheService,
        *,
        domain_ttls_ms: Optional[Mapping[CacheDomain, int]] = None,
        ttl_multiplier: int = 1,
        development: bool = False,
        keyspace: Optional[CacheKeyspace] = None,
    ):
        self.cache = cache
        self.domain_ttls_ms = dict(DEFAULT_DOMAIN_TTLS_MS)
        if domain_ttls_ms:
            self.domain_ttls_ms.update(domain_ttls_ms)
        self.ttl_multiplier = max(1, ttl_multiplier)
        self.development = development
        self.keyspace = keyspace or default_keyspace
        self.logger = get_logger("planner.cache.policy")

        self.logger.info(
            "Tiered cache policy initialized",
            development=self.development,
            ttl_multiplier=self.ttl_multiplier
        )

    @classmethod
    def from_settings(cls, cache: CacheService, config: BaseConfig) -> "TieredCachePolicy":
        return cls(
            cache,
            domain_ttls_ms={
                CacheDomain.GEOCODE: config.geocode_ttl_ms,
                CacheDomain.DIRECTIONS: config.directions_ttl_ms,
                CacheDomain.PLACES: config.places_ttl_ms,
                CacheDomain.STATIC_ASSET: config.static_asset_ttl_ms,
            },
            ttl_multiplier=config.ttl_multiplier,
            development=config.is_development,
        )

    def ttl_for(self, domain: CacheDomain) -> int:
        """Effective TTL in milliseconds for ``domain``."""
        return self.domain_ttls_ms[domain] * self.ttl_multiplier

    def key(self, domain: CacheDomain, **args: Any) -> str:
        return self.keyspace.build(domain.value, args)

    async def _get(self, key: str) -> Optional[Any]:
        return await self.cache.get(key)

    async def _set(self, domain: CacheDomain, key: str, value: Any) -> bool:
        return await self.cache.set(key, value, self.ttl_for(domain))

    async def _read_through(self, domain: CacheDomain, key: str, compute: Callable[[], Awaitable[T]]) -> T:
        return await self.cache.get_or_set(key, compute, self.ttl_for(domain))

    # Geocoding (city -> coordinates)

    def geocode_key(self, city: str) -> str:
        return self.key(CacheDomain.GEOCODE, city=normalize_place_name(city))

    async def cache_geocode(self, city: str, coordinates: Mapping[str, float]) -> bool:
        return await self._set(CacheDomain.GEOCODE, self.geocode_key(city), dict(coordinates))

    async def get_cached_geocode(self, city: str) -> Optional[Dict[str, float]]:
        return await self._get(self.geocode_key(city))

    async def geocode(self, city: str, compute: Callable[[], Awaitable[T]]) -> T:
        """Read-through geocode lookup."""
        return await self._read_through(CacheDomain.GEOCODE, self.geocode_key(city), compute)

    # Directions

    def route_key(
        self,
        origin: str,
        destination: str,
        travel_mode: Optional[str] = None,
        waypoints: Optional[Iterable[str]] = None,
        optimize_waypoints: bool = False,
    ) -> str:
        """Key for a route; waypoint order matters unless the provider optimizes it."""
        return self.key(
            CacheDomain.DIRECTIONS,
            kind="route",
            origin=normalize_place_name(origin),
            destination=normalize_place_name(destination),
            mode=normalize_travel_mode(travel_mode),
            waypoints=join_places(waypoints or [], sort=optimize_waypoints),
            optimize=optimize_waypoints,
        )

    async def cache_route(
        self,
        origin: str,
        destination: str,
        travel_mode: Optional[str],
        route: Any,
        waypoints: Optional[Iterable[str]] = None,
        optimize_waypoints: bool = False,
    ) -> bool:
        key = self.route_key(origin, destination, travel_mode, waypoints, optimize_waypoints)
        return await self._set(CacheDomain.DIRECTIONS, key, route)

    async def get_cached_route(
        self,
        origin: str,
        destination: str,
        travel_mode: Optional[str] = None,
        waypoints: Optional[Iterable[str]] = None,
        optimize_waypoints: bool = False,
    ) -> Optional[Any]:
        return await self._get(self.route_key(origin, destination, travel_mode, waypoints, optimize_waypoints))

    async def route(
        self,
        origin: str,
        destination: str,
        compute: Callable[[], Awaitable[T]],
        travel_mode: Optional[str] = None,
        waypoints: Optional[Iterable[str]] = None,
        optimize_waypoints: bool = False,
    ) -> T:
        """Read-through route computation."""
        key = self.route_key(origin, destination, travel_mode, waypoints, optimize_waypoints)
        return await self._read_through(CacheDomain.DIRECTIONS, key, compute)

    def distance_matrix_key(self, origins: Iterable[str], destinations: Iterable[str], travel_mode: Optional[str] = None) -> str:
        # Row/column order is part of the answer, so lists are not sorted
        return self.key(
            CacheDomain.DIRECTIONS,
            kind="matrix",
            origins=join_places(origins),
            destinations=join_places(destinations),
            mode=normalize_travel_mode(travel_mode),
        )

    async def cache_distance_matrix(
        self,
        origins: Iterable[str],
        destinations: Iterable[str],
        travel_mode: Optional[str],
        matrix: Any,
    ) -> bool:
        key = self.distance_matrix_key(origins, destinations, travel_mode)
        return await self._set(CacheDomain.DIRECTIONS, key, matrix)

    async def get_cached_distance_matrix(
        self,
        origins: Iterable[str],
        destinations: Iterable[str],
        travel_mode: Optional[str] = None,
    ) -> Optional[Any]:
        return await self._get(self.distance_matrix_key(origins, destinations, travel_mode))

    # Places

    def nearby_key(self, lat: float, lng: float, radius: int, place_type: Optional[str] = None) -> str:
        return self.key(
            CacheDomain.PLACES,
            kind="nearby",
            lat=round_coordinate(lat),
            lng=round_coordinate(lng),
            radius=int(radius),
            type=(place_type or "all").lower(),
        )

    async def cache_nearby_places(
        self,
        lat: float,
        lng: float,
        radius: int,
        place_type: Optional[str],
        places: List[Any],
    ) -> bool:
        return await self._set(CacheDomain.PLACES, self.nearby_key(lat, lng, radius, place_type), places)

    async def get_cached_nearby_places(
        self,
        lat: float,
        lng: float,
        radius: int,
        place_type: Optional[str] = None,
    ) -> Optional[List[Any]]:
        return await self._get(self.nearby_key(lat, lng, radius, place_type))

    async def nearby_places(
        self,
        lat: float,
        lng: float,
        radius: int,
        compute: Callable[[], Awaitable[T]],
        place_type: Optional[str] = None,
    ) -> T:
        """Read-through nearby search."""
        return await self._read_through(CacheDomain.PLACES, self.nearby_key(lat, lng, radius, place_type), compute)

    def route_pois_key(self, start_city: str, end_city: str) -> str:
        return self.key(
            CacheDomain.PLACES,
            kind="route-pois",
            start=normalize_place_name(start_city),
            end=normalize_place_name(end_city),
        )

    async def cache_route_pois(self, start_city: str, end_city: str, pois: List[Any]) -> bool:
        return await self._set(CacheDomain.PLACES, self.route_pois_key(start_city, end_city), pois)

    async def get_cached_route_pois(self, start_city: str, end_city: str) -> Optional[List[Any]]:
        return await self._get(self.route_pois_key(start_city, end_city))

    async def route_pois(self, start_city: str, end_city: str, compute: Callable[[], Awaitable[T]]) -> T:
        """Read-through POIs along a route."""
        return await self._read_through(CacheDomain.PLACES, self.route_pois_key(start_city, end_city), compute)

    # Static assets

    def photo_key(self, photo_reference: str, max_width: int) -> str:
        return self.key(CacheDomain.STATIC_ASSET, kind="photo", ref=photo_reference, width=int(max_width))

    async def cache_photo_url(self, photo_reference: str, max_width: int, url: str) -> bool:
        return await self._set(CacheDomain.STATIC_ASSET, self.photo_key(photo_reference, max_width), url)

    async def get_cached_photo_url(self, photo_reference: str, max_width: int) -> Optional[str]:
        return await self._get(self.photo_key(photo_reference, max_width))

    def static_map_key(self, params: Mapping[str, Any]) -> str:
        # Map parameters can be long (paths, markers); the keyspace hashes them if so
        return self.keyspace.build(f"{CacheDomain.STATIC_ASSET.value}:static-map", params)

    async def cache_static_map(self, params: Mapping[str, Any], image_url: str) -> bool:
        return await self._set(CacheDomain.STATIC_ASSET, self.static_map_key(params), image_url)

    async def get_cached_static_map(self, params: Mapping[str, Any]) -> Optional[str]:
        return await self._get(self.static_map_key(params))

    def route_polyline_key(self, start_city: str, end_city: str) -> str:
        return self.key(
            CacheDomain.STATIC_ASSET,
            kind="route-polyline",
            start=normalize_place_name(start_city),
            end=normalize_place_name(end_city),
        )

    async def cache_route_polyline(self, start_city: str, end_city: str, polyline: Any) -> bool:
        return await self._set(CacheDomain.STATIC_ASSET, self.route_polyline_key(start_city, end_city), polyline)

    async def get_cached_route_polyline(self, start_city: str, end_city: str) -> Optional[Any]:
        return await self._get(self.route_polyline_key(start_city, end_city))

    # Development helpers

    async def dev_stats(self) -> Dict[str, Any]:
        """Cache statistics plus the effective policy, for the dev dashboard."""
        return {
            "development": self.development,
            "ttl_multiplier": self.ttl_multiplier,
            "domain_ttls_ms": {domain.value: self.ttl_for(domain) for domain in CacheDomain},
            "cache": await self.cache.describe(),
            "suggestions": self._suggestions(),
        }

    async def clear_dev_cache(self) -> bool:
        """Clear every domain; refused outside development."""
        if not self.development:
            self.logger.warning("clear_dev_cache() called in production - ignoring")
            return False

        removed = 0
        for domain in CacheDomain:
            removed += await self.cache.clear(f"{domain.value}:")
        self.logger.info("Development cache cleared", removed=removed)
        return True

    def _suggestions(self) -> List[str]:
        if self.development:
            return [
                f"Development mode: domain TTLs extended x{self.ttl_multiplier}",
                f"Geocoding cached for {self.ttl_for(CacheDomain.GEOCODE) // HOUR_MS} hours",
                "Use DELETE /api/cache/clear to reset during development",
            ]
        return [
            "Production mode: using standard domain TTLs",
            "Consider warming the cache for popular routes",
        ]
