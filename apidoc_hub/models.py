# apidoc_hub/models.py
# @ai-rules:
# 1. [Constraint]: All models are Pydantic BaseModel except DiscoverySet (immutable mapping wrapper).
# 2. [Pattern]: Wire names are camelCase aliases (displayName, specPath, ...). Always dump with by_alias=True.
# 3. [Gotcha]: ApiDescriptor.source is excluded from serialization. Compare sets via record_payload(), never ==.
# 4. [Pattern]: CacheEntry.spec_body lives in X.json; metadata() is what lands in X.meta.json.
"""Pydantic schemas for discovery records and the spec cache."""
from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_SPEC_PATH = "/swagger/openapi.yml"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def content_digest(body: bytes) -> str:
    """sha256 hex digest used as CacheEntry.contentHash."""
    return hashlib.sha256(body).hexdigest()


# =============================================================================
# Discovery Layer
# =============================================================================

class SourceIdentity(BaseModel):
    """Namespace + name of the Service a descriptor was derived from."""
    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ApiDescriptor(BaseModel):
    """One documented API, as derived from a Service's annotations."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Unique key within the discovery set")
    display_name: str = Field(..., alias="displayName", description="Human label")
    description: Optional[str] = Field(None, description="Free text from the description annotation")
    spec_path: str = Field(DEFAULT_SPEC_PATH, alias="specPath", description="Path appended to baseAddress")
    base_address: str = Field(..., alias="baseAddress", description="Cluster-local address of the Service")
    source: Optional[SourceIdentity] = Field(None, exclude=True, description="Owning Service (in-memory only)")

    @model_validator(mode="before")
    @classmethod
    def _default_display_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not (data.get("displayName") or data.get("display_name")):
            data = dict(data)
            data["displayName"] = f"{data.get('name')} API"
        return data

    @property
    def spec_url(self) -> str:
        return f"{self.base_address.rstrip('/')}{self.spec_path}"

    def record_payload(self) -> dict[str, Any]:
        """The serialized Discovery Record element for this descriptor."""
        return self.model_dump(mode="json", by_alias=True)


class DiscoveryDocument(BaseModel):
    """Serialized Discovery Record body: {"apis": [...], "lastUpdated": ...}."""
    model_config = ConfigDict(populate_by_name=True)

    apis: list[ApiDescriptor] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utcnow, alias="lastUpdated")


class DiscoverySet:
    """
    Canonical, ordered-by-name mapping of API name -> ApiDescriptor.

    Immutable. Built from descriptors in observation order: when two
    descriptors share a name the later one wins. Equality is content
    equality of the serialized records; source identities are ignored.
    """

    __slots__ = ("_apis",)

    def __init__(self, descriptors: Iterable[ApiDescriptor] = ()):
        apis: dict[str, ApiDescriptor] = {}
        for descriptor in descriptors:
            apis[descriptor.name] = descriptor
        self._apis = dict(sorted(apis.items()))

    @classmethod
    def empty(cls) -> "DiscoverySet":
        return cls()

    def names(self) -> list[str]:
        return list(self._apis)

    def get(self, name: str) -> Optional[ApiDescriptor]:
        return self._apis.get(name)

    def payload(self) -> list[dict[str, Any]]:
        return [d.record_payload() for d in self._apis.values()]

    def to_document(self, last_updated: Optional[datetime] = None) -> DiscoveryDocument:
        return DiscoveryDocument(apis=list(self._apis.values()), last_updated=last_updated or utcnow())

    def to_json(self, last_updated: Optional[datetime] = None) -> str:
        return self.to_document(last_updated).model_dump_json(by_alias=True, indent=2)

    @classmethod
    def from_document(cls, document: DiscoveryDocument) -> "DiscoverySet":
        return cls(document.apis)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "DiscoverySet":
        """Parse a serialized Discovery Record. Raises pydantic.ValidationError."""
        return cls.from_document(DiscoveryDocument.model_validate_json(raw))

    def __iter__(self) -> Iterator[ApiDescriptor]:
        return iter(self._apis.values())

    def __len__(self) -> int:
        return len(self._apis)

    def __contains__(self, name: object) -> bool:
        return name in self._apis

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DiscoverySet):
            return NotImplemented
        return self.payload() == other.payload()

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"DiscoverySet({self.names()!r})"


# =============================================================================
# Spec Cache Layer
# =============================================================================

class CacheStatus(str, Enum):
    """Outcome of the latest fetch for one API."""
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class CacheEntry(BaseModel):
    """Per-API fetch result. Body and metadata are written together."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    spec_body: bytes = Field(b"", alias="specBody", exclude=True, description="Raw spec bytes (X.json)")
    status: CacheStatus
    last_error: Optional[str] = Field(None, alias="lastError")
    fetched_at: datetime = Field(default_factory=utcnow, alias="fetchedAt")
    content_hash: str = Field("", alias="contentHash", description="sha256 of spec_body")
    display_name: Optional[str] = Field(None, alias="displayName")
    description: Optional[str] = None
    spec_url: Optional[str] = Field(None, alias="specUrl")
    last_success_at: Optional[datetime] = Field(
        None, alias="lastSuccessAt", description="fetchedAt of the last available fetch"
    )

    @model_validator(mode="after")
    def _fill_content_hash(self) -> "CacheEntry":
        if not self.content_hash:
            self.content_hash = content_digest(self.spec_body)
        return self

    @property
    def available(self) -> bool:
        return self.status == CacheStatus.AVAILABLE

    def metadata(self) -> dict[str, Any]:
        """Contents of the X.meta.json sidecar."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Serving Layer
# =============================================================================

class HealthResponse(BaseModel):
    """Liveness payload."""
    status: str = "healthy"
    cached_apis: int = Field(0, alias="cachedApis")
    last_refresh: Optional[datetime] = Field(None, alias="lastRefresh")

    model_config = ConfigDict(populate_by_name=True)


class ApiSummary(BaseModel):
    """One row of the /apis listing, built from cache metadata only."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    display_name: Optional[str] = Field(None, alias="displayName")
    description: Optional[str] = None
    status: CacheStatus
    fetched_at: datetime = Field(..., alias="fetchedAt")
    last_error: Optional[str] = Field(None, alias="lastError")
    spec_url: str = Field(..., alias="specUrl", description="Serving-layer URL of the cached spec")
