# apidoc_hub/discovery/annotations.py
# @ai-rules:
# 1. [Constraint]: Pure and total. No I/O, never raises on malformed objects -- returns None instead.
# 2. [Pattern]: Accepts kubernetes client models (V1Service) AND plain dicts (watch payloads, tests).
# 3. [Gotcha]: baseAddress comes from namespace/name/port only. Never from annotation text (spoofing).
"""
Annotation extractor: Service object -> ApiDescriptor or None.

Annotation schema (api-doc.io/*):
    api-doc.io/enabled       required, must be exactly "true"
    api-doc.io/name          optional, API name and display label
    api-doc.io/description   optional, free text
    api-doc.io/path          optional, spec path (default /swagger/openapi.yml)
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError

from ..models import DEFAULT_SPEC_PATH, ApiDescriptor, SourceIdentity

logger = logging.getLogger(__name__)

API_DOC_ANNOTATION_PREFIX = "api-doc.io/"
API_DOC_ENABLED = f"{API_DOC_ANNOTATION_PREFIX}enabled"
API_DOC_NAME = f"{API_DOC_ANNOTATION_PREFIX}name"
API_DOC_DESCRIPTION = f"{API_DOC_ANNOTATION_PREFIX}description"
API_DOC_PATH = f"{API_DOC_ANNOTATION_PREFIX}path"

ENABLED_VALUE = "true"
DEFAULT_SERVICE_PORT = 8080
CLUSTER_DOMAIN = "svc.cluster.local"


def _get(obj: Any, key: str) -> Any:
    """Attribute-or-key access. K8s API objects have attributes, watch dicts have keys."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _optional_text(annotations: dict, key: str) -> Optional[str]:
    value = annotations.get(key)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def source_identity(obj: Any) -> Optional[SourceIdentity]:
    """namespace/name of a Service object, or None when either is missing."""
    metadata = _get(obj, "metadata")
    name = _get(metadata, "name")
    namespace = _get(metadata, "namespace")
    if not isinstance(name, str) or not isinstance(namespace, str) or not name or not namespace:
        return None
    return SourceIdentity(namespace=namespace, name=name)


def service_port(obj: Any) -> int:
    """First declared Service port, falling back to DEFAULT_SERVICE_PORT."""
    ports = _get(_get(obj, "spec"), "ports")
    if not isinstance(ports, (list, tuple)) or not ports:
        return DEFAULT_SERVICE_PORT
    port = _get(ports[0], "port")
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        return DEFAULT_SERVICE_PORT
    return port


def base_address(identity: SourceIdentity, port: int) -> str:
    return f"http://{identity.name}.{identity.namespace}.{CLUSTER_DOMAIN}:{port}"


def normalize_spec_path(raw: Optional[str]) -> Optional[str]:
    """Return a path safe to append to baseAddress, or None when malformed."""
    if raw is None:
        return DEFAULT_SPEC_PATH
    if "://" in raw or any(c.isspace() for c in raw):
        return None
    return raw if raw.startswith("/") else f"/{raw}"


def is_documented(obj: Any) -> bool:
    annotations = _get(_get(obj, "metadata"), "annotations")
    return isinstance(annotations, dict) and annotations.get(API_DOC_ENABLED) == ENABLED_VALUE


def extract_descriptor(obj: Any) -> Optional[ApiDescriptor]:
    """
    Map one Service-like object to an ApiDescriptor.

    Returns None when the object is not documented: enabled annotation
    absent or not exactly "true", identity incomplete, or annotation
    values malformed.
    """
    if not is_documented(obj):
        return None

    identity = source_identity(obj)
    if identity is None:
        return None

    annotations = _get(_get(obj, "metadata"), "annotations")

    spec_path = normalize_spec_path(_optional_text(annotations, API_DOC_PATH))
    if spec_path is None:
        logger.debug(f"Service {identity} has malformed {API_DOC_PATH}={annotations.get(API_DOC_PATH)!r}")
        return None

    override = _optional_text(annotations, API_DOC_NAME)
    name = override or identity.name
    display_name = override or f"{identity.name} API"

    try:
        return ApiDescriptor(
            name=name,
            display_name=display_name,
            description=_optional_text(annotations, API_DOC_DESCRIPTION),
            spec_path=spec_path,
            base_address=base_address(identity, service_port(obj)),
            source=identity,
        )
    except ValidationError as e:
        logger.debug(f"Service {identity} produced an invalid descriptor: {e}")
        return None
