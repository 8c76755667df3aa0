# apidoc_hub/routes/specs.py
# @ai-rules:
# 1. [Constraint]: Read-only over SpecCacheStore. Handlers NEVER fetch from a live Service.
# 2. [Gotcha]: GET /apis/names MUST stay before GET /apis/{name} so "names" is not matched as an API name.
# 3. [Pattern]: Unavailable entries are still served (placeholder or last good body). Status is in /apis, not in the spec.
"""
Spec serving API.

Provides endpoints for documentation UIs to:
- List cached APIs and their fetch status
- Fetch a cached spec, parsed (JSON) or raw (original bytes)
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from ..cache.spec_cache import SpecCacheStore
from ..cache.spec_utils import media_type_for, parse_spec
from ..dependencies import get_spec_cache
from ..errors import CacheEntryNotFound, SpecValidationError
from ..models import ApiSummary, CacheEntry

logger = logging.getLogger(__name__)

apis_router = APIRouter(prefix="/apis", tags=["apis"])
specs_router = APIRouter(prefix="/specs", tags=["specs"])


def _summary(entry: CacheEntry) -> ApiSummary:
    return ApiSummary(
        name=entry.name,
        display_name=entry.display_name,
        description=entry.description,
        status=entry.status,
        fetched_at=entry.fetched_at,
        last_error=entry.last_error,
        spec_url=f"{specs_router.prefix}/{entry.name}",
    )


def _not_found(name: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"API '{name}' not found")


@apis_router.get("", response_model=list[ApiSummary])
async def list_apis(
    cache: SpecCacheStore = Depends(get_spec_cache),
):
    """All cached APIs with their latest fetch status."""
    return [_summary(entry) for entry in cache.entries()]


@apis_router.get("/names", response_model=list[str])
async def list_api_names(
    cache: SpecCacheStore = Depends(get_spec_cache),
):
    """Names of all cached APIs, sorted."""
    return cache.list()


@apis_router.get("/{name}")
async def get_api(
    name: str,
    cache: SpecCacheStore = Depends(get_spec_cache),
) -> dict[str, Any]:
    """Cache metadata for one API."""
    try:
        entry = cache.get_metadata(name)
    except CacheEntryNotFound:
        raise _not_found(name)
    return entry.metadata()


@specs_router.get("/{name}")
async def get_spec(
    name: str,
    cache: SpecCacheStore = Depends(get_spec_cache),
) -> Any:
    """Cached spec parsed into JSON, whatever format the Service published."""
    try:
        entry = cache.get(name)
    except CacheEntryNotFound:
        raise _not_found(name)
    try:
        return parse_spec(entry.spec_body)
    except SpecValidationError as e:
        logger.warning(f"Cached spec for '{name}' does not parse: {e}")
        raise HTTPException(status_code=502, detail=f"Cached spec for '{name}' is not valid: {e}")


@specs_router.get("/{name}/raw")
async def get_raw_spec(
    name: str,
    cache: SpecCacheStore = Depends(get_spec_cache),
) -> Response:
    """Cached spec bytes exactly as fetched."""
    try:
        entry = cache.get(name)
    except CacheEntryNotFound:
        raise _not_found(name)
    return Response(content=entry.spec_body, media_type=media_type_for(entry.spec_body))
