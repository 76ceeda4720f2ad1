"""
Trip planner service for RouteWise.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request

from shared.base_service import BaseService
from shared.config import ServiceConfig

from service_planner.app.caching import (
    CacheService,
    ResponseCache,
    TieredCachePolicy,
    cached_endpoint,
)
from service_planner.app.caching.routes import PoiLoader, router as cache_router


class PlannerService(BaseService):
    """Planner service: owns the cache and exposes its admin API.

    The cache is built here and handed to everything that needs it through
    ``app.state``; there is no module-level cache instance.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        cache: Optional[CacheService] = None,
        poi_loader: Optional[PoiLoader] = None,
    ):
        super().__init__("planner", 8000, config=config)
        self.cache = cache or CacheService.from_settings(self.config, metrics=self.metrics)
        self.policy = TieredCachePolicy.from_settings(self.cache, self.config)
        self.response_cache = ResponseCache.from_settings(self.cache, self.config)

        self.app.state.cache = self.cache
        self.app.state.cache_policy = self.policy
        self.app.state.response_cache = self.response_cache
        self.app.state.poi_loader = poi_loader

        self.app.include_router(cache_router)
        self._setup_planner_routes()

    async def on_startup(self) -> None:
        await self.cache.start()

    async def on_shutdown(self) -> None:
        await self.cache.close()

    async def _check_dependencies(self) -> Dict[str, Any]:
        stats = self.cache.get_stats()
        if self.cache.remote is None:
            redis_status = "not_configured"
        else:
            redis_status = "ok" if stats.connected else "degraded"
        return {
            "redis": redis_status,
            "cache": stats.model_dump(),
        }

    def _setup_planner_routes(self):
        """Set up planner API routes."""

        @self.app.get("/api/health")
        @cached_endpoint
        async def api_health(request: Request):
            """Lightweight API health summary."""
            stats = self.cache.get_stats()
            return {
                "status": "ok",
                "cache_tier": stats.tier,
                "development": self.config.is_development,
            }


def create_app(
    config: Optional[ServiceConfig] = None,
    *,
    cache: Optional[CacheService] = None,
    poi_loader: Optional[PoiLoader] = None,
) -> FastAPI:
    """Create FastAPI application."""
    service = PlannerService(config, cache=cache, poi_loader=poi_loader)
    return service.app


if __name__ == "__main__":
    service = PlannerService()
    service.run()
