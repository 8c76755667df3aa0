# apidoc_hub/cache/__init__.py
"""Spec cache: file-backed CacheEntry store and the refresh engine that fills it."""
from .refresh import RefreshEngine, RefreshReport
from .spec_cache import SpecCacheStore

__all__ = ["RefreshEngine", "RefreshReport", "SpecCacheStore"]
