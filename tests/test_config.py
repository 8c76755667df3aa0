# tests/test_config.py
"""Unit tests for environment configuration."""
from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from apidoc_hub.__main__ import main
from apidoc_hub.config import NamespaceScope, RecordBackend, ScopeMode, Settings, validate_name
from apidoc_hub.errors import ConfigurationError


class TestNamespaceScope:
    def test_blank_means_current_namespace(self):
        for value in (None, "", "   "):
            scope = NamespaceScope.parse(value, "team-a")
            assert scope.mode == ScopeMode.SINGLE
            assert scope.targets() == ["team-a"]

    def test_current_means_pod_namespace(self):
        scope = NamespaceScope.parse("current", "shop")
        assert scope.mode == ScopeMode.SINGLE
        assert scope.targets() == ["shop"]
        assert NamespaceScope.parse(" CURRENT ", "shop").targets() == ["shop"]

    def test_current_in_a_list(self):
        scope = NamespaceScope.parse("current,billing,shop", "shop")
        assert scope.mode == ScopeMode.LIST
        assert scope.targets() == ["shop", "billing"]

    def test_all_means_cluster_wide(self):
        scope = NamespaceScope.parse("all", "team-a")
        assert scope.mode == ScopeMode.CLUSTER
        assert scope.targets() == [None]
        assert scope.includes("anything")

    def test_explicit_list_is_deduplicated(self):
        scope = NamespaceScope.parse("a, b,a", "default")
        assert scope.mode == ScopeMode.LIST
        assert scope.targets() == ["a", "b"]
        assert not scope.includes("c")
        assert str(scope) == "a,b"

    def test_single_entry_list_is_single_mode(self):
        assert NamespaceScope.parse("a", "default").mode == ScopeMode.SINGLE

    def test_empty_list_element_is_rejected(self):
        with pytest.raises(ConfigurationError):
            NamespaceScope.parse("a,,b", "default")

    def test_invalid_namespace_is_rejected(self):
        with pytest.raises(ConfigurationError):
            NamespaceScope.parse("Team_A", "default")


class TestValidateName:
    def test_valid(self):
        assert validate_name("openapi-discovery", "ConfigMap") == "openapi-discovery"

    @pytest.mark.parametrize("value", ["", "UPPER", "-leading", "trailing-", "a" * 64, "dots.not.allowed"])
    def test_invalid(self, value):
        with pytest.raises(ConfigurationError):
            validate_name(value, "ConfigMap")


class TestSettings:
    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.scope.targets() == ["default"]
        assert settings.record_backend == RecordBackend.CONFIGMAP
        assert settings.discovery_configmap == "openapi-discovery"
        assert settings.cache_dir == Path("/tmp/openapi-cache")
        assert settings.refresh_interval_seconds == 30.0
        assert settings.fetch_concurrency == 8
        assert settings.reconciler_enabled and settings.refresh_enabled

    def test_environment_overrides(self):
        settings = Settings.from_env({
            "POD_NAMESPACE": "docs",
            "DISCOVERY_BACKEND": "FILE",
            "DISCOVERY_PATH": "/data/discovery.json",
            "REFRESH_INTERVAL_SECONDS": "5",
            "FETCH_CONCURRENCY": "2",
            "RECONCILER_ENABLED": "false",
            "LABEL_SELECTOR": "team=payments",
        })
        assert settings.scope.targets() == ["docs"]
        assert settings.record_backend == RecordBackend.FILE
        assert settings.discovery_path == Path("/data/discovery.json")
        assert settings.refresh_interval_seconds == 5.0
        assert settings.fetch_concurrency == 2
        assert settings.reconciler_enabled is False
        assert settings.label_selector == "team=payments"

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            Settings.from_env({"DISCOVERY_BACKEND": "etcd"})

    def test_non_positive_numbers(self):
        with pytest.raises(ConfigurationError):
            Settings.from_env({"REFRESH_INTERVAL_SECONDS": "0"})
        with pytest.raises(ConfigurationError):
            Settings.from_env({"FETCH_CONCURRENCY": "-1"})

    def test_non_numeric(self):
        with pytest.raises(ConfigurationError):
            Settings.from_env({"FETCH_TIMEOUT_SECONDS": "soon"})

    def test_invalid_configmap_name(self):
        with pytest.raises(ConfigurationError):
            Settings.from_env({"DISCOVERY_CONFIGMAP": "Not_Valid"})


class TestEntryPoint:
    def test_serves_on_configured_host_and_port(self, monkeypatch):
        monkeypatch.setenv("HOST", "127.0.0.1")
        monkeypatch.setenv("PORT", "9000")
        with patch("apidoc_hub.__main__.uvicorn.run") as run:
            main()
        _, kwargs = run.call_args
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 9000

    def test_invalid_port_fails_before_serving(self, monkeypatch):
        monkeypatch.setenv("PORT", "http")
        with patch("apidoc_hub.__main__.uvicorn.run") as run:
            with pytest.raises(ConfigurationError):
                main()
        run.assert_not_called()
