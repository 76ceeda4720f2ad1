"""
Tests for the planner app and the cache admin endpoints.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from shared.config import get_config
from service_planner.app.main import create_app


def make_config(env="development", **overrides):
    return get_config("planner", 8000, env=env, redis_url=None, redis_host=None, **overrides)


@pytest.fixture
def poi_loader():
    """POI loader returning two stops."""
    return AsyncMock(return_value=[
        {"name": "Magnolia Market"},
        {"name": "Dr Pepper Museum"},
    ])


@pytest.fixture
def app(local_only_cache, poi_loader):
    return create_app(make_config(), cache=local_only_cache, poi_loader=poi_loader)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


class TestPlannerApp:
    """Service wiring."""

    def test_health_reports_cache_tier(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["service"] == "planner"
        assert body["dependencies"]["redis"] == "not_configured"
        assert body["dependencies"]["cache"] == {"tier": "local", "connected": False, "entry_count": 0}

    def test_api_health_is_cached(self, client):
        first = client.get("/api/health")
        assert first.json()["cache_tier"] == "local"

        assert client.get("/api/cache/stats").json()["data"]["cache"]["entry_count"] == 1

    def test_request_id_header(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    def test_metrics_endpoint_exposes_cache_metrics(self):
        app = create_app(make_config())

        with TestClient(app) as client:
            client.get("/api/health")
            response = client.get("/metrics")

        assert response.status_code == 200
        assert "cache_operations_total" in response.text
        assert "http_requests_total" in response.text

    def test_apps_do_not_share_metric_registries(self):
        create_app(make_config())
        create_app(make_config())


class TestCacheRoutes:
    """Test cases for /api/cache endpoints."""

    def test_stats(self, client):
        response = client.get("/api/cache/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["development"] is True
        assert body["data"]["ttl_multiplier"] == 10
        assert "timestamp" in body

    def test_clear_in_development(self, client, app):
        policy = app.state.cache_policy
        client.portal.call(policy.cache_geocode, "Austin", {"lat": 1.0, "lng": 2.0})

        response = client.delete("/api/cache/clear")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert client.portal.call(policy.get_cached_geocode, "Austin") is None

    def test_clear_refused_in_production(self, local_only_cache):
        app = create_app(make_config(env="production"), cache=local_only_cache)

        with TestClient(app) as client:
            response = client.delete("/api/cache/clear")

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_warm_requires_routes(self, client):
        response = client.post("/api/cache/warm", json={})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_warm_statuses(self, client, app, poi_loader):
        policy = app.state.cache_policy
        client.portal.call(policy.cache_route_pois, "Austin", "Waco", [{"name": "cached"}])

        response = client.post("/api/cache/warm", json={"routes": [
            {"start": "Austin", "end": ""},
            {"start": "Austin", "end": "Waco"},
            {"start": "Austin", "end": "Dallas"},
            {"start": "Austin", "end": "Waco", "force": True},
        ]})

        assert response.status_code == 200
        statuses = [result["status"] for result in response.json()["results"]]
        assert statuses == ["skipped", "already_cached", "warmed", "warmed"]
        assert response.json()["results"][2]["pois_count"] == 2
        assert poi_loader.await_count == 2
        assert client.portal.call(policy.get_cached_route_pois, "Austin", "Dallas") == [
            {"name": "Magnolia Market"},
            {"name": "Dr Pepper Museum"},
        ]

    def test_warm_without_loader(self, local_only_cache):
        app = create_app(make_config(), cache=local_only_cache)

        with TestClient(app) as client:
            response = client.post("/api/cache/warm", json={"routes": [{"start": "Austin", "end": "Dallas"}]})

        assert response.json()["results"][0]["status"] == "no_loader"

    def test_warm_loader_failure(self, local_only_cache):
        loader = AsyncMock(side_effect=RuntimeError("places API quota exceeded"))
        app = create_app(make_config(), cache=local_only_cache, poi_loader=loader)

        with TestClient(app) as client:
            response = client.post("/api/cache/warm", json={"routes": [{"start": "Austin", "end": "Dallas"}]})

        result = response.json()["results"][0]
        assert result["status"] == "failed"
        assert "quota" in result["error"]

    def test_route_cache_info(self, client, app):
        policy = app.state.cache_policy
        client.portal.call(policy.cache_route_pois, "Austin", "Dallas", [
            {"name": "A"}, {"name": "B"}, {"name": "C"}, {"name": "D"},
        ])
        client.portal.call(policy.cache_route, "Austin", "Dallas", "driving", {"distance": "195 mi", "duration": "3 h"})

        response = client.get("/api/cache/route/Austin/Dallas")

        assert response.status_code == 200
        cached = response.json()["cached"]
        assert cached["pois"] == {"found": True, "count": 4, "preview": ["A", "B", "C"]}
        assert cached["polyline"] == {"found": False}
        assert cached["directions"] == {"found": True, "distance": "195 mi", "duration": "3 h"}
