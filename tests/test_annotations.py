# tests/test_annotations.py
# @ai-rules:
# 1. [Pattern]: Services are plain dicts shaped like watch payloads. One V1Service case proves attribute access works.
"""Unit tests for the annotation extractor."""
from __future__ import annotations

from kubernetes import client

from apidoc_hub.discovery.annotations import (
    API_DOC_DESCRIPTION,
    API_DOC_ENABLED,
    API_DOC_NAME,
    API_DOC_PATH,
    DEFAULT_SERVICE_PORT,
    extract_descriptor,
    normalize_spec_path,
    source_identity,
)
from apidoc_hub.models import DEFAULT_SPEC_PATH, SourceIdentity


def _service(
    name: str = "payments",
    namespace: str = "shop",
    annotations: dict | None = None,
    port=8000,
) -> dict:
    if annotations is None:
        annotations = {API_DOC_ENABLED: "true"}
    spec = {"ports": [{"port": port}]} if port is not None else {}
    return {
        "metadata": {"name": name, "namespace": namespace, "annotations": annotations},
        "spec": spec,
    }


class TestExtractDescriptor:
    def test_defaults_from_service_identity(self):
        descriptor = extract_descriptor(_service())
        assert descriptor is not None
        assert descriptor.name == "payments"
        assert descriptor.display_name == "payments API"
        assert descriptor.description is None
        assert descriptor.spec_path == DEFAULT_SPEC_PATH
        assert descriptor.base_address == "http://payments.shop.svc.cluster.local:8000"
        assert descriptor.source == SourceIdentity(namespace="shop", name="payments")

    def test_annotations_override_name_description_and_path(self):
        descriptor = extract_descriptor(_service(annotations={
            API_DOC_ENABLED: "true",
            API_DOC_NAME: "Payments",
            API_DOC_DESCRIPTION: "Card payments",
            API_DOC_PATH: "/v3/api-docs",
        }))
        assert descriptor.name == "Payments"
        assert descriptor.display_name == "Payments"
        assert descriptor.description == "Card payments"
        assert descriptor.spec_url == "http://payments.shop.svc.cluster.local:8000/v3/api-docs"

    def test_path_without_leading_slash_is_normalized(self):
        descriptor = extract_descriptor(_service(annotations={API_DOC_ENABLED: "true", API_DOC_PATH: "openapi.json"}))
        assert descriptor.spec_path == "/openapi.json"

    def test_missing_port_uses_default(self):
        descriptor = extract_descriptor(_service(port=None))
        assert descriptor.base_address.endswith(f":{DEFAULT_SERVICE_PORT}")

    def test_invalid_port_uses_default(self):
        descriptor = extract_descriptor(_service(port="http"))
        assert descriptor.base_address.endswith(f":{DEFAULT_SERVICE_PORT}")

    def test_not_enabled_is_not_documented(self):
        assert extract_descriptor(_service(annotations={})) is None
        assert extract_descriptor(_service(annotations={API_DOC_ENABLED: "True"})) is None
        assert extract_descriptor(_service(annotations={API_DOC_ENABLED: "yes"})) is None

    def test_missing_metadata_is_not_documented(self):
        assert extract_descriptor({}) is None
        assert extract_descriptor({"metadata": {"annotations": {API_DOC_ENABLED: "true"}}}) is None
        assert extract_descriptor(None) is None

    def test_malformed_path_is_not_documented(self):
        for bad in ("http://evil.example.com/spec", "/with space"):
            assert extract_descriptor(_service(annotations={API_DOC_ENABLED: "true", API_DOC_PATH: bad})) is None

    def test_blank_name_annotation_falls_back_to_service_name(self):
        descriptor = extract_descriptor(_service(annotations={API_DOC_ENABLED: "true", API_DOC_NAME: "   "}))
        assert descriptor.name == "payments"

    def test_kubernetes_client_model(self):
        svc = client.V1Service(
            metadata=client.V1ObjectMeta(
                name="orders",
                namespace="shop",
                annotations={API_DOC_ENABLED: "true", API_DOC_DESCRIPTION: "Orders"},
            ),
            spec=client.V1ServiceSpec(ports=[client.V1ServicePort(port=9090)]),
        )
        descriptor = extract_descriptor(svc)
        assert descriptor.name == "orders"
        assert descriptor.description == "Orders"
        assert descriptor.base_address == "http://orders.shop.svc.cluster.local:9090"


class TestHelpers:
    def test_source_identity(self):
        assert str(source_identity(_service())) == "shop/payments"
        assert source_identity({"metadata": {"name": "x"}}) is None

    def test_normalize_spec_path(self):
        assert normalize_spec_path(None) == DEFAULT_SPEC_PATH
        assert normalize_spec_path("/a") == "/a"
        assert normalize_spec_path("a/b") == "/a/b"
        assert normalize_spec_path("a b") is None
