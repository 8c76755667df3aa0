# apidoc_hub/state/record_store.py
# @ai-rules:
# 1. [Constraint]: write() is conditioned on the version returned by read(). Stale version -> VersionConflict, never a blind overwrite.
# 2. [Pattern]: A missing record reads as (empty set, None). write(..., None) means "create if absent".
# 3. [Gotcha]: An unparsable stored document reads as (empty set, <its version>) so the next commit repairs it.
# 4. [Constraint]: Transport failures surface as RecordStoreError. VersionConflict is NOT an error to log loudly.
"""
Discovery Record stores.

The Discovery Record is one versioned JSON document holding the canonical
DiscoverySet. Exactly one reconciler writes it; refresh engines read it.

Backends:
    ConfigMapRecordStore   ConfigMap data["discovery.json"], version = resourceVersion
    FileRecordStore        JSON file (mounted ConfigMap or local dev), version = sha256
    RedisRecordStore       see redis_store.py
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from ..errors import RecordStoreError, VersionConflict
from ..models import DiscoverySet
from ..utils.atomic_io import atomic_write_bytes

logger = logging.getLogger(__name__)

DISCOVERY_DATA_KEY = "discovery.json"
DISCOVERY_LABELS = {
    "app.kubernetes.io/name": "openapi-discovery",
    "app.kubernetes.io/component": "discovery",
}

RecordVersion = Optional[str]


class DiscoveryRecordStore(ABC):
    """Versioned read-modify-write contract for the Discovery Record."""

    @abstractmethod
    async def read(self) -> tuple[DiscoverySet, RecordVersion]:
        """Return the stored set and its version token ((empty, None) when absent)."""

    @abstractmethod
    async def write(self, discovery_set: DiscoverySet, expected_version: RecordVersion) -> str:
        """Store *discovery_set* iff the record is still at *expected_version*. Returns the new version."""

    async def close(self) -> None:
        return None


def parse_record(raw: str | bytes, origin: str) -> DiscoverySet:
    """Parse a stored document; a corrupt document is logged and read as empty."""
    try:
        return DiscoverySet.from_json(raw)
    except ValidationError as e:
        logger.warning(f"Discovery record at {origin} is not a valid document, treating as empty: {e}")
        return DiscoverySet.empty()


class ConfigMapRecordStore(DiscoveryRecordStore):
    """
    Discovery Record held in a ConfigMap.

    Optimistic concurrency uses the ConfigMap's resourceVersion: replace()
    with a stale resourceVersion is rejected by the API server with 409.
    """

    def __init__(self, core_api: Any, namespace: str, name: str):
        self.core_api = core_api
        self.namespace = namespace
        self.name = name

    @property
    def origin(self) -> str:
        return f"configmap/{self.namespace}/{self.name}"

    async def read(self) -> tuple[DiscoverySet, RecordVersion]:
        try:
            configmap = await asyncio.get_event_loop().run_in_executor(
                None,
                lambda: self.core_api.read_namespaced_config_map(self.name, self.namespace),
            )
        except ApiException as e:
            if e.status == 404:
                return DiscoverySet.empty(), None
            raise RecordStoreError(f"Failed to read {self.origin}: {e.status} {e.reason}") from e
        except Exception as e:
            raise RecordStoreError(f"Failed to read {self.origin}: {e}") from e

        version = configmap.metadata.resource_version
        raw = (configmap.data or {}).get(DISCOVERY_DATA_KEY)
        if not raw:
            return DiscoverySet.empty(), version
        return parse_record(raw, self.origin), version

    def _build(self, discovery_set: DiscoverySet, resource_version: RecordVersion) -> Any:
        return client.V1ConfigMap(
            metadata=client.V1ObjectMeta(
                name=self.name,
                namespace=self.namespace,
                labels=dict(DISCOVERY_LABELS),
                resource_version=resource_version,
            ),
            data={DISCOVERY_DATA_KEY: discovery_set.to_json()},
        )

    async def write(self, discovery_set: DiscoverySet, expected_version: RecordVersion) -> str:
        body = self._build(discovery_set, expected_version)
        loop = asyncio.get_event_loop()
        try:
            if expected_version is None:
                result = await loop.run_in_executor(
                    None,
                    lambda: self.core_api.create_namespaced_config_map(self.namespace, body),
                )
            else:
                result = await loop.run_in_executor(
                    None,
                    lambda: self.core_api.replace_namespaced_config_map(self.name, self.namespace, body),
                )
        except ApiException as e:
            # 409: created concurrently, or resourceVersion is stale
            # 404: deleted since we read it
            if e.status in (404, 409):
                raise VersionConflict(expected_version) from e
            raise RecordStoreError(f"Failed to write {self.origin}: {e.status} {e.reason}") from e
        except Exception as e:
            raise RecordStoreError(f"Failed to write {self.origin}: {e}") from e

        logger.info(f"Wrote {self.origin} with {len(discovery_set)} APIs")
        return result.metadata.resource_version


class FileRecordStore(DiscoveryRecordStore):
    """
    Discovery Record as a JSON file.

    Used to read a ConfigMap mounted as a volume, and for local development.
    The version token is the sha256 of the file bytes. The version check is
    serialized within this process only.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read_bytes(self) -> Optional[bytes]:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise RecordStoreError(f"Failed to read {self.path}: {e}") from e

    async def read(self) -> tuple[DiscoverySet, RecordVersion]:
        raw = self._read_bytes()
        if raw is None:
            return DiscoverySet.empty(), None
        return parse_record(raw, str(self.path)), hashlib.sha256(raw).hexdigest()

    async def write(self, discovery_set: DiscoverySet, expected_version: RecordVersion) -> str:
        async with self._lock:
            raw = self._read_bytes()
            current = hashlib.sha256(raw).hexdigest() if raw is not None else None
            if current != expected_version:
                raise VersionConflict(expected_version, current)
            data = discovery_set.to_json().encode("utf-8")
            try:
                atomic_write_bytes(self.path, data)
            except OSError as e:
                raise RecordStoreError(f"Failed to write {self.path}: {e}") from e
        logger.info(f"Wrote {self.path} with {len(discovery_set)} APIs")
        return hashlib.sha256(data).hexdigest()
