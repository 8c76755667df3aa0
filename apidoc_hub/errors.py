# apidoc_hub/errors.py
"""Exception hierarchy for the discovery and spec cache pipeline."""
from __future__ import annotations

from typing import Optional


class ApiDocError(Exception):
    """Base class for every error raised by apidoc_hub."""


class ConfigurationError(ApiDocError):
    """Invalid startup configuration. Fatal: raised before any watch begins."""


class VersionConflict(ApiDocError):
    """The Discovery Record changed since it was read.

    Expected signal for the reconciler's retry loop, never surfaced to users.
    """

    def __init__(self, expected: Optional[str], actual: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Discovery record version conflict (expected={expected}, actual={actual})")


class RecordStoreError(ApiDocError):
    """The Discovery Record store is unreachable or returned an unusable reply."""


class WatchStreamError(ApiDocError):
    """The cluster watch stream disconnected or expired."""


class SpecFetchError(ApiDocError):
    """Fetching one API specification failed (transport error, timeout, non-2xx)."""


class SpecValidationError(ApiDocError):
    """A fetched body is empty or cannot be treated as an API specification."""


class CacheError(ApiDocError):
    """The spec cache directory could not be written or read."""


class CacheEntryNotFound(CacheError):
    """No complete cache entry exists for the requested API name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No cached spec for API '{name}'")
