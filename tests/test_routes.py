# tests/test_routes.py
# @ai-rules:
# 1. [Pattern]: TestClient WITHOUT the lifespan context -- no cluster, no record store. The cache is injected via set_spec_cache().
"""Serving layer tests: health, API listing, spec retrieval."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from apidoc_hub.cache.refresh import RefreshEngine, RefreshReport
from apidoc_hub.cache.spec_cache import SpecCacheStore
from apidoc_hub.dependencies import get_refresh_engine, set_refresh_engine, set_spec_cache
from apidoc_hub.main import app
from apidoc_hub.models import CacheEntry, CacheStatus
from apidoc_hub.state.record_store import FileRecordStore

SPEC_YAML = b"openapi: 3.0.0\ninfo:\n  title: Orders\n  version: '1'\npaths: {}\n"


@pytest.fixture
def cache(tmp_path):
    store = SpecCacheStore(tmp_path / "cache")
    store.initialize()
    store.put(CacheEntry(
        name="orders",
        spec_body=SPEC_YAML,
        status=CacheStatus.AVAILABLE,
        display_name="Orders",
        description="Order management",
        spec_url="http://orders.shop.svc.cluster.local:8080/swagger/openapi.yml",
    ))
    store.put(CacheEntry(
        name="broken",
        spec_body=b"{not json",
        status=CacheStatus.UNAVAILABLE,
        last_error="Invalid spec: does not parse",
    ))
    set_spec_cache(store)
    yield store
    set_spec_cache(None)
    set_refresh_engine(None)


@pytest.fixture
def api():
    return TestClient(app)


class TestHealth:
    def test_not_initialized(self, api):
        set_spec_cache(None)
        assert api.get("/health").status_code == 503

    def test_counts_cached_apis(self, api, cache):
        body = api.get("/health").json()
        assert body == {"status": "healthy", "cachedApis": 2, "lastRefresh": None}

    def test_reports_last_refresh(self, api, cache, tmp_path):
        engine = RefreshEngine(FileRecordStore(tmp_path / "discovery.json"), cache)
        finished = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        engine.last_report = RefreshReport(finished_at=finished)
        set_refresh_engine(engine)
        body = api.get("/health").json()
        assert body["lastRefresh"].startswith("2024-05-01T12:00:00")

    def test_refresh_engine_is_injected(self, api, cache, tmp_path):
        engine = RefreshEngine(FileRecordStore(tmp_path / "discovery.json"), cache)
        engine.last_report = RefreshReport(finished_at=datetime(2024, 6, 2, 8, 30, tzinfo=timezone.utc))
        app.dependency_overrides[get_refresh_engine] = lambda: engine
        try:
            body = api.get("/health").json()
        finally:
            app.dependency_overrides.clear()
        assert body["lastRefresh"].startswith("2024-06-02T08:30:00")


class TestApis:
    def test_list(self, api, cache):
        rows = api.get("/apis").json()
        assert [r["name"] for r in rows] == ["broken", "orders"]
        orders = rows[1]
        assert orders["displayName"] == "Orders"
        assert orders["status"] == "available"
        assert orders["specUrl"] == "/specs/orders"
        assert rows[0]["lastError"] == "Invalid spec: does not parse"

    def test_names(self, api, cache):
        assert api.get("/apis/names").json() == ["broken", "orders"]

    def test_metadata(self, api, cache):
        meta = api.get("/apis/orders").json()
        assert meta["name"] == "orders"
        assert meta["contentHash"]
        assert meta["specUrl"].startswith("http://orders.shop")

    def test_unknown(self, api, cache):
        assert api.get("/apis/nope").status_code == 404


class TestSpecs:
    def test_parsed_spec_is_json(self, api, cache):
        response = api.get("/specs/orders")
        assert response.status_code == 200
        assert response.json()["info"]["title"] == "Orders"

    def test_raw_spec_keeps_original_bytes(self, api, cache):
        response = api.get("/specs/orders/raw")
        assert response.status_code == 200
        assert response.content == SPEC_YAML
        assert response.headers["content-type"].startswith("application/yaml")

    def test_unknown(self, api, cache):
        assert api.get("/specs/nope").status_code == 404
        assert api.get("/specs/nope/raw").status_code == 404

    def test_unparsable_cached_body(self, api, cache):
        response = api.get("/specs/broken")
        assert response.status_code == 502
        assert api.get("/specs/broken/raw").content == b"{not json"
