# apidoc_hub/config.py
# @ai-rules:
# 1. [Constraint]: Settings.from_env() is the only place that reads the environment for pipeline config.
# 2. [Pattern]: Invalid namespace scope / resource names raise ConfigurationError at startup, before any watch.
# 3. [Gotcha]: WATCH_NAMESPACES unset or blank means "current namespace" (POD_NAMESPACE), NOT cluster-wide.
"""Environment-driven configuration for the discovery pipeline."""
from __future__ import annotations

import os
import re
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from .errors import ConfigurationError

# RFC 1123 label: what Kubernetes accepts for namespace and ConfigMap names
_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_MAX_NAME_LENGTH = 63

WATCH_ALL = "all"
WATCH_CURRENT = "current"


class ScopeMode(str, Enum):
    SINGLE = "single"
    LIST = "list"
    CLUSTER = "cluster"


class NamespaceScope(BaseModel):
    """Which namespaces the reconciler watches. Fixed for the process lifetime."""
    model_config = {"frozen": True}

    mode: ScopeMode
    namespaces: tuple[str, ...] = ()

    @classmethod
    def single(cls, namespace: str) -> "NamespaceScope":
        return cls(mode=ScopeMode.SINGLE, namespaces=(validate_name(namespace, "namespace"),))

    @classmethod
    def of(cls, namespaces: list[str]) -> "NamespaceScope":
        names = tuple(dict.fromkeys(validate_name(n, "namespace") for n in namespaces))
        if len(names) == 1:
            return cls(mode=ScopeMode.SINGLE, namespaces=names)
        return cls(mode=ScopeMode.LIST, namespaces=names)

    @classmethod
    def cluster(cls) -> "NamespaceScope":
        return cls(mode=ScopeMode.CLUSTER)

    @classmethod
    def parse(cls, value: Optional[str], current_namespace: str = "default") -> "NamespaceScope":
        """
        Parse a WATCH_NAMESPACES value.

        - None / blank      -> current namespace only
        - "all"             -> cluster-wide
        - "current"         -> current namespace, also usable as a list element
        - "a, b, c"         -> explicit list (single mode when only one)
        """
        if value is None or not value.strip():
            return cls.single(current_namespace)
        if value.strip().lower() == WATCH_ALL:
            return cls.cluster()
        parts = value.split(",")
        if any(not p.strip() for p in parts):
            raise ConfigurationError(f"Empty namespace in WATCH_NAMESPACES={value!r}")
        names = [p.strip() for p in parts]
        return cls.of([current_namespace if n.lower() == WATCH_CURRENT else n for n in names])

    def targets(self) -> list[Optional[str]]:
        """Namespaces to list/watch. None means all namespaces."""
        if self.mode == ScopeMode.CLUSTER:
            return [None]
        return list(self.namespaces)

    def includes(self, namespace: str) -> bool:
        return self.mode == ScopeMode.CLUSTER or namespace in self.namespaces

    def __str__(self) -> str:
        if self.mode == ScopeMode.CLUSTER:
            return "cluster-wide"
        return ",".join(self.namespaces)


def validate_name(value: str, kind: str) -> str:
    """Validate a namespace/ConfigMap name against Kubernetes naming rules."""
    if not value:
        raise ConfigurationError(f"{kind} cannot be empty")
    if len(value) > _MAX_NAME_LENGTH:
        raise ConfigurationError(f"{kind} name too long ({len(value)} > {_MAX_NAME_LENGTH}): {value}")
    if not _DNS_LABEL.match(value):
        raise ConfigurationError(f"Invalid {kind} name: {value!r}")
    return value


class RecordBackend(str, Enum):
    CONFIGMAP = "configmap"
    REDIS = "redis"
    FILE = "file"


class Settings(BaseModel):
    """Resolved process configuration."""

    scope: NamespaceScope
    label_selector: Optional[str] = None
    record_backend: RecordBackend = RecordBackend.CONFIGMAP
    discovery_namespace: str = "default"
    discovery_configmap: str = "openapi-discovery"
    discovery_path: Path = Path("/etc/config/discovery.json")
    cache_dir: Path = Path("/tmp/openapi-cache")
    refresh_interval_seconds: float = Field(30.0, gt=0)
    fetch_timeout_seconds: float = Field(10.0, gt=0)
    fetch_concurrency: int = Field(8, ge=1)
    debounce_seconds: float = Field(2.0, gt=0)
    commit_max_attempts: int = Field(5, ge=1)
    reconciler_enabled: bool = True
    refresh_enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from the environment. Raises ConfigurationError on invalid values."""
        env = os.environ if environ is None else environ

        current_namespace = env.get("POD_NAMESPACE") or "default"
        scope = NamespaceScope.parse(env.get("WATCH_NAMESPACES"), current_namespace)

        backend_raw = env.get("DISCOVERY_BACKEND", RecordBackend.CONFIGMAP.value).strip().lower()
        try:
            backend = RecordBackend(backend_raw)
        except ValueError:
            raise ConfigurationError(
                f"Unknown DISCOVERY_BACKEND={backend_raw!r} "
                f"(expected one of {[b.value for b in RecordBackend]})"
            ) from None

        try:
            settings = cls(
                scope=scope,
                label_selector=env.get("LABEL_SELECTOR") or None,
                record_backend=backend,
                discovery_namespace=validate_name(env.get("DISCOVERY_NAMESPACE", "default"), "DISCOVERY_NAMESPACE"),
                discovery_configmap=validate_name(
                    env.get("DISCOVERY_CONFIGMAP", "openapi-discovery"), "DISCOVERY_CONFIGMAP"
                ),
                discovery_path=Path(env.get("DISCOVERY_PATH", "/etc/config/discovery.json")),
                cache_dir=Path(env.get("CACHE_DIR", "/tmp/openapi-cache")),
                refresh_interval_seconds=float(env.get("REFRESH_INTERVAL_SECONDS", "30")),
                fetch_timeout_seconds=float(env.get("FETCH_TIMEOUT_SECONDS", "10")),
                fetch_concurrency=int(env.get("FETCH_CONCURRENCY", "8")),
                debounce_seconds=float(env.get("RECONCILE_DEBOUNCE_SECONDS", "2")),
                commit_max_attempts=int(env.get("COMMIT_MAX_ATTEMPTS", "5")),
                reconciler_enabled=_flag(env.get("RECONCILER_ENABLED"), True),
                refresh_enabled=_flag(env.get("REFRESH_ENABLED"), True),
                host=env.get("HOST", "0.0.0.0"),
                port=int(env.get("PORT", "8080")),
            )
        except ValueError as e:
            # pydantic.ValidationError subclasses ValueError
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        return settings


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
