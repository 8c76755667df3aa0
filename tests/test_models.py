# tests/test_models.py
"""Unit tests for discovery and cache models."""
from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from apidoc_hub.models import (
    ApiDescriptor,
    CacheEntry,
    CacheStatus,
    DiscoverySet,
    SourceIdentity,
    content_digest,
)


def _descriptor(name: str, namespace: str = "shop", **kwargs) -> ApiDescriptor:
    return ApiDescriptor(
        name=name,
        base_address=f"http://{name}.{namespace}.svc.cluster.local:8080",
        source=SourceIdentity(namespace=namespace, name=name),
        **kwargs,
    )


class TestApiDescriptor:
    def test_display_name_defaults(self):
        assert _descriptor("orders").display_name == "orders API"

    def test_record_payload_uses_wire_names_and_drops_source(self):
        payload = _descriptor("orders", description="Orders").record_payload()
        assert payload == {
            "name": "orders",
            "displayName": "orders API",
            "description": "Orders",
            "specPath": "/swagger/openapi.yml",
            "baseAddress": "http://orders.shop.svc.cluster.local:8080",
        }

    def test_parse_from_wire_names(self):
        descriptor = ApiDescriptor.model_validate({
            "name": "orders",
            "displayName": "Orders",
            "specPath": "/openapi.json",
            "baseAddress": "http://orders:80/",
        })
        assert descriptor.spec_url == "http://orders:80/openapi.json"

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            ApiDescriptor(name="", base_address="http://x")


class TestDiscoverySet:
    def test_sorted_by_name_and_later_wins(self):
        first = _descriptor("b", namespace="one")
        second = _descriptor("b", namespace="two")
        discovery_set = DiscoverySet([second, _descriptor("a"), first])
        assert discovery_set.names() == ["a", "b"]
        assert discovery_set.get("b").base_address == first.base_address

    def test_equality_ignores_source_and_order(self):
        left = DiscoverySet([_descriptor("a"), _descriptor("b")])
        right = DiscoverySet([
            ApiDescriptor.model_validate(_descriptor("b").record_payload()),
            ApiDescriptor.model_validate(_descriptor("a").record_payload()),
        ])
        assert left == right
        assert left != DiscoverySet([_descriptor("a")])

    def test_json_round_trip(self):
        original = DiscoverySet([_descriptor("a"), _descriptor("b", description="B")])
        raw = original.to_json()
        document = json.loads(raw)
        assert [api["name"] for api in document["apis"]] == ["a", "b"]
        assert "lastUpdated" in document
        assert "source" not in document["apis"][0]
        assert DiscoverySet.from_json(raw) == original

    def test_from_json_rejects_garbage(self):
        with pytest.raises(ValidationError):
            DiscoverySet.from_json('{"apis": [{"displayName": "no name"}]}')

    def test_container_protocol(self):
        discovery_set = DiscoverySet([_descriptor("a")])
        assert "a" in discovery_set
        assert len(discovery_set) == 1
        assert [d.name for d in discovery_set] == ["a"]
        assert len(DiscoverySet.empty()) == 0


class TestCacheEntry:
    def test_content_hash_is_computed(self):
        entry = CacheEntry(name="a", spec_body=b"openapi: 3.0.0", status=CacheStatus.AVAILABLE)
        assert entry.content_hash == content_digest(b"openapi: 3.0.0")
        assert entry.available

    def test_metadata_excludes_body(self):
        entry = CacheEntry(name="a", spec_body=b"{}", status=CacheStatus.UNAVAILABLE, last_error="boom")
        meta = entry.metadata()
        assert "specBody" not in meta
        assert meta["status"] == "unavailable"
        assert meta["lastError"] == "boom"
        restored = CacheEntry.model_validate_json(json.dumps(meta))
        assert restored.content_hash == entry.content_hash
        assert restored.spec_body == b""
