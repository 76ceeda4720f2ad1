"""
Unit tests for the response cache interceptor.
"""

import pytest
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from shared.config import BaseConfig
from service_planner.app.caching.interceptor import (
    DEFAULT_RESPONSE_TTL_MS,
    ResponseCache,
    cached_endpoint,
)


def build_app(response_cache=None):
    """Small app with counting handlers."""
    app = FastAPI()
    app.state.response_cache = response_cache
    app.state.calls = 0

    def bump():
        app.state.calls += 1
        return app.state.calls

    @app.get("/api/pois")
    @cached_endpoint
    async def list_pois(request: Request, city: str = "austin"):
        return {"city": city, "call": bump()}

    @app.post("/api/route")
    @cached_endpoint
    async def plan_route(request: Request, body: dict):
        return {"body": body, "call": bump()}

    @app.get("/api/health")
    @cached_endpoint
    async def api_health(request: Request):
        return {"call": bump()}

    @app.get("/api/flaky")
    @cached_endpoint
    async def flaky(request: Request):
        bump()
        raise HTTPException(status_code=503, detail="upstream down")

    @app.get("/api/custom")
    @cached_endpoint
    async def custom(request: Request):
        return JSONResponse({"call": bump()}, headers={"X-Custom": "1"})

    @app.get("/internal/stats")
    @cached_endpoint
    async def internal(request: Request):
        return {"call": bump()}

    return app


@pytest.fixture
def response_cache(local_only_cache):
    """Enabled response cache over a local-only CacheService."""
    return ResponseCache(local_only_cache, enabled=True)


@pytest.fixture
def client(response_cache):
    return TestClient(build_app(response_cache))


class TestResponseCache:
    """Test cases for ResponseCache and cached_endpoint."""

    def test_second_request_is_served_from_cache(self, client):
        first = client.get("/api/pois", params={"city": "austin"})
        second = client.get("/api/pois", params={"city": "austin"})

        assert first.status_code == second.status_code == 200
        assert first.json() == second.json() == {"city": "austin", "call": 1}

    def test_query_parameters_distinguish_entries(self, client):
        client.get("/api/pois", params={"city": "austin"})
        response = client.get("/api/pois", params={"city": "dallas"})

        assert response.json() == {"city": "dallas", "call": 2}

    def test_query_order_is_irrelevant(self, client):
        client.get("/api/pois?city=austin&radius=5")
        response = client.get("/api/pois?radius=5&city=austin")

        assert response.json()["call"] == 1

    def test_separators_inside_values_do_not_alias(self, client):
        client.get("/api/pois?city=austin&radius=5")
        response = client.get("/api/pois", params={"city": "austin&radius=5"})

        assert response.json() == {"city": "austin&radius=5", "call": 2}

    def test_make_key_reencodes_query_values(self, response_cache):
        app = build_app(response_cache)

        @app.get("/api/key")
        async def show_key(request: Request):
            return {"key": await response_cache.make_key(request)}

        client = TestClient(app)
        plain = client.get("/api/key?a=1&b=2").json()["key"]
        packed = client.get("/api/key", params={"a": "1&b=2"}).json()["key"]

        assert plain != packed

    def test_post_body_is_part_of_the_key(self, client):
        client.post("/api/route", json={"start": "Austin", "end": "Dallas"})
        same = client.post("/api/route", json={"end": "Dallas", "start": "Austin"})
        other = client.post("/api/route", json={"start": "Austin", "end": "Houston"})

        assert same.json()["call"] == 1
        assert other.json()["call"] == 2

    def test_errors_are_not_cached(self, client):
        assert client.get("/api/flaky").status_code == 503
        assert client.get("/api/flaky").status_code == 503

        assert client.app.state.calls == 2

    def test_custom_responses_pass_through(self, client):
        first = client.get("/api/custom")
        second = client.get("/api/custom")

        assert first.headers["X-Custom"] == "1"
        assert second.json() == {"call": 2}

    def test_only_api_paths_are_cached(self, client):
        client.get("/internal/stats")
        response = client.get("/internal/stats")

        assert response.json() == {"call": 2}

    def test_disabled_cache_always_computes(self, local_only_cache):
        client = TestClient(build_app(ResponseCache(local_only_cache, enabled=False)))

        client.get("/api/pois")
        assert client.get("/api/pois").json()["call"] == 2

    def test_missing_response_cache_runs_handler(self):
        client = TestClient(build_app(None))

        client.get("/api/pois")
        assert client.get("/api/pois").json()["call"] == 2

    def test_health_entries_expire_quickly(self, client, clock):
        client.get("/api/health")

        clock.advance(29)
        assert client.get("/api/health").json() == {"call": 1}

        clock.advance(2)
        assert client.get("/api/health").json() == {"call": 2}

    @pytest.mark.parametrize("path,ttl_ms", [
        ("/api/health", 30 * 1000),
        ("/api/maps-key", 10 * 60 * 1000),
        ("/api/places/autocomplete", 5 * 60 * 1000),
        ("/api/pois/nearby", 5 * 60 * 1000),
        ("/api/route/austin/dallas", 10 * 60 * 1000),
        ("/api/trips", DEFAULT_RESPONSE_TTL_MS),
    ])
    def test_ttl_table(self, response_cache, path, ttl_ms):
        assert response_cache.ttl_for(path) == ttl_ms

    def test_longest_prefix_wins(self, local_only_cache):
        cache = ResponseCache(local_only_cache, ttl_table={"/api": 1000, "/api/pois": 2000})

        assert cache.ttl_for("/api/pois/42") == 2000
        assert cache.ttl_for("/api/trips") == 1000

    @pytest.mark.parametrize("env,override,expected", [
        ("development", None, True),
        ("production", None, False),
        ("production", True, True),
        ("development", False, False),
    ])
    def test_enabled_from_settings(self, local_only_cache, env, override, expected):
        config = BaseConfig(env=env, response_cache_enabled=override)

        assert ResponseCache.from_settings(local_only_cache, config).enabled is expected

    def test_decorator_requires_request_parameter(self):
        with pytest.raises(TypeError):
            @cached_endpoint
            async def handler(city: str):
                return {}
