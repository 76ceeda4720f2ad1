"""
Cache administration endpoints under /api/cache.
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.errors import ValidationError
from shared.logging import get_logger

from .policy import TieredCachePolicy

# (start_city, end_city) -> list of POI dicts
PoiLoader = Callable[[str, str], Awaitable[List[Dict[str, Any]]]]

logger = get_logger("planner.cache.routes")

router = APIRouter(prefix="/api/cache", tags=["cache"])


class WarmRoute(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None
    force: bool = False


class WarmRequest(BaseModel):
    routes: Optional[List[WarmRoute]] = None


def get_cache_policy(request: Request) -> TieredCachePolicy:
    return request.app.state.cache_policy


def get_poi_loader(request: Request) -> Optional[PoiLoader]:
    return getattr(request.app.state, "poi_loader", None)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/stats")
async def cache_stats(policy: TieredCachePolicy = Depends(get_cache_policy)):
    """Cache statistics and effective TTL policy."""
    return {
        "success": True,
        "data": await policy.dev_stats(),
        "timestamp": _now(),
    }


@router.delete("/clear")
async def clear_cache(policy: TieredCachePolicy = Depends(get_cache_policy)):
    """Clear every cache domain (development only)."""
    if not await policy.clear_dev_cache():
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Cache clear not available in production"}
        )
    return {"success": True, "message": "Development cache cleared successfully"}


@router.post("/warm")
async def warm_cache(
    body: WarmRequest,
    policy: TieredCachePolicy = Depends(get_cache_policy),
    loader: Optional[PoiLoader] = Depends(get_poi_loader),
):
    """Pre-populate route POIs for popular routes."""
    if body.routes is None:
        raise ValidationError("routes array is required")

    results = []
    for route in body.routes:
        label = f"{route.start} → {route.end}"
        if not route.start or not route.end:
            results.append({"route": label, "status": "skipped", "reason": "Missing start or end city"})
            continue

        if not route.force:
            cached = await policy.get_cached_route_pois(route.start, route.end)
            if cached is not None:
                results.append({"route": label, "status": "already_cached", "pois_count": len(cached)})
                continue

        if loader is None:
            results.append({"route": label, "status": "no_loader", "reason": "No POI loader registered"})
            continue

        try:
            pois = await loader(route.start, route.end)
        except Exception as e:
            logger.error("Cache warming failed", route=label, error=str(e))
            results.append({"route": label, "status": "failed", "error": str(e)})
            continue

        await policy.cache_route_pois(route.start, route.end, pois)
        results.append({"route": label, "status": "warmed", "pois_count": len(pois)})

    logger.info("Cache warming processed", routes=len(body.routes))
    return {
        "success": True,
        "message": f"Processed {len(body.routes)} routes for cache warming",
        "results": results,
    }


@router.get("/route/{start}/{end}")
async def route_cache_info(start: str, end: str, policy: TieredCachePolicy = Depends(get_cache_policy)):
    """Report which parts of a route are cached."""
    pois = await policy.get_cached_route_pois(start, end)
    polyline = await policy.get_cached_route_polyline(start, end)
    directions = await policy.get_cached_route(start, end, "driving")

    directions_info: Dict[str, Any] = {"found": directions is not None}
    if isinstance(directions, dict):
        directions_info.update(distance=directions.get("distance"), duration=directions.get("duration"))

    return {
        "success": True,
        "route": f"{start} → {end}",
        "cached": {
            "pois": {
                "found": True,
                "count": len(pois),
                "preview": [poi.get("name") for poi in pois[:3] if isinstance(poi, dict)],
            } if pois is not None else {"found": False},
            "polyline": {"found": polyline is not None},
            "directions": directions_info,
        },
    }
