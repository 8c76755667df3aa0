# tests/test_spec_utils.py
"""Unit tests for spec parsing and validation helpers."""
from __future__ import annotations

import json

import pytest

from apidoc_hub.cache.spec_utils import create_default_spec, media_type_for, parse_spec, validate_spec
from apidoc_hub.errors import SpecValidationError


class TestValidateSpec:
    def test_openapi_json(self):
        assert validate_spec(b'{"openapi": "3.1.0", "paths": {}}')["openapi"] == "3.1.0"

    def test_swagger_yaml(self):
        assert validate_spec(b"swagger: '2.0'\npaths: {}\n")["swagger"] == "2.0"

    @pytest.mark.parametrize("body", [
        b"",
        b"   \n",
        b"\xff\xfe",
        b"{broken",
        b"- a\n- b\n",
        b'{"info": {"title": "no version field"}}',
        b"key: [unterminated",
    ])
    def test_rejected(self, body):
        with pytest.raises(SpecValidationError):
            validate_spec(body)


class TestHelpers:
    def test_default_spec(self):
        document = json.loads(create_default_spec("Orders API", "API documentation not available"))
        assert document["openapi"] == "3.0.0"
        assert document["info"]["title"] == "Orders API"
        assert document["paths"] == {}

    def test_parse_accepts_text(self):
        assert parse_spec("a: 1") == {"a": 1}

    def test_media_type(self):
        assert media_type_for(b'  {"openapi": "3.0.0"}') == "application/json"
        assert media_type_for(b"openapi: 3.0.0") == "application/yaml"
