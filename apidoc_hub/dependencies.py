# apidoc_hub/dependencies.py
"""FastAPI dependency injection for the API documentation hub."""
from __future__ import annotations

from typing import Optional

from .cache.refresh import RefreshEngine
from .cache.spec_cache import SpecCacheStore

# Global instances (initialized in main.py lifespan)
_spec_cache: Optional[SpecCacheStore] = None
_refresh_engine: Optional[RefreshEngine] = None


def set_spec_cache(cache: Optional[SpecCacheStore]) -> None:
    """Set the global SpecCacheStore instance."""
    global _spec_cache
    _spec_cache = cache


def set_refresh_engine(engine: Optional[RefreshEngine]) -> None:
    """Set the global RefreshEngine instance (None when refresh runs elsewhere)."""
    global _refresh_engine
    _refresh_engine = engine


async def get_spec_cache() -> SpecCacheStore:
    """
    Get the spec cache store.

    FastAPI dependency.
    """
    if _spec_cache is None:
        raise RuntimeError("Spec cache not initialized. Check startup sequence.")
    return _spec_cache


async def get_refresh_engine() -> Optional[RefreshEngine]:
    """Get the refresh engine, or None when this process does not refresh."""
    return _refresh_engine
