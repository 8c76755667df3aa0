# apidoc_hub/cache/spec_utils.py
"""Helpers for working with OpenAPI/Swagger documents."""
from __future__ import annotations

import json
from typing import Any

import yaml

from ..errors import SpecValidationError

SPEC_VERSION_KEYS = ("openapi", "swagger")


def create_default_spec(title: str, description: str) -> bytes:
    """Placeholder document served for an API whose spec has never been fetched."""
    return json.dumps({
        "openapi": "3.0.0",
        "info": {
            "title": title,
            "version": "1.0.0",
            "description": description,
        },
        "paths": {},
    }).encode("utf-8")


def parse_spec(body: bytes | str) -> Any:
    """Parse spec content (JSON or YAML) into Python objects. Raises SpecValidationError."""
    if isinstance(body, bytes):
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SpecValidationError(f"Spec body is not UTF-8: {e}") from e
    else:
        text = body
    if not text.strip():
        raise SpecValidationError("Spec body is empty")
    try:
        if text.lstrip().startswith("{"):
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise SpecValidationError(f"Spec body does not parse: {e}") from e


def validate_spec(body: bytes) -> dict:
    """Parse and check that the document looks like an OpenAPI/Swagger spec."""
    document = parse_spec(body)
    if not isinstance(document, dict):
        raise SpecValidationError(f"Spec root must be a mapping, got {type(document).__name__}")
    if not any(key in document for key in SPEC_VERSION_KEYS):
        raise SpecValidationError("Spec has neither an 'openapi' nor a 'swagger' version field")
    return document


def media_type_for(body: bytes) -> str:
    return "application/json" if body.lstrip().startswith(b"{") else "application/yaml"
