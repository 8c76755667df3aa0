# apidoc_hub/observers/base.py
"""Watch source contract consumed by the Reconciler."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Protocol

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


@dataclass
class WatchEvent:
    """One add/update/delete notification for a Service-like object."""

    type: str
    object: Any


@dataclass
class ServiceSnapshot:
    """Authoritative list of current objects plus the resourceVersion to resume from, per namespace."""

    items: list[Any] = field(default_factory=list)
    resource_versions: dict[Optional[str], Optional[str]] = field(default_factory=dict)


class WatchSource(Protocol):
    """Live, resumable stream of Service events for a fixed namespace scope."""

    async def connect(self) -> None:
        ...

    async def list(self) -> ServiceSnapshot:
        ...

    def watch(self, snapshot: ServiceSnapshot) -> AsyncIterator[WatchEvent]:
        ...
