# apidoc_hub/cache/spec_cache.py
# @ai-rules:
# 1. [Constraint]: Single writer (RefreshEngine), many readers (routes). No locks: files are replaced atomically, never edited.
# 2. [Pattern]: put() writes the body FIRST, then the meta. get() reads meta, then body, and checks sha256(body) == contentHash.
#    A mismatch means a writer is between the two renames -> re-read. Readers never see body/meta from two different cycles.
# 3. [Gotcha]: File names are sanitized ([A-Za-z0-9_-]) and hash-tagged when that changed the name; the real API name
#    lives in the meta. Meta naming another API -> not found.
"""
Spec Cache Store: restart-surviving, per-API files under CACHE_DIR.

Layout for API name X:
    safe(X).json        raw specification bytes
    safe(X).meta.json   {name, status, lastError, fetchedAt, contentHash, ...}
"""
from __future__ import annotations

import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..errors import CacheEntryNotFound, CacheError
from ..models import CacheEntry, content_digest
from ..utils.atomic_io import atomic_write_bytes, purge_temp_files

logger = logging.getLogger(__name__)

BODY_SUFFIX = ".json"
META_SUFFIX = ".meta.json"
READ_ATTEMPTS = 3

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")
# Room for the hash tag and ".meta.json" inside a 255-byte file name
MAX_STEM_LENGTH = 200


def safe_filename(name: str) -> str:
    """
    File stem for an API name.

    Names made only of [A-Za-z0-9_-] map to themselves. Anything else is
    sanitized and tagged with a hash of the real name, so "orders v2" and
    "orders_v2" never share files.
    """
    stem = _UNSAFE_CHARS.sub("_", name)
    if stem == name and len(stem) <= MAX_STEM_LENGTH:
        return stem
    digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:12]
    return f"{stem[:MAX_STEM_LENGTH]}-{digest}"


class SpecCacheStore:
    """File-backed CacheEntry store."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)

    def initialize(self) -> None:
        """Create the cache directory and drop temp files from an interrupted writer."""
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(f"Cannot create cache directory {self.cache_dir}: {e}") from e
        removed = purge_temp_files(self.cache_dir)
        if removed:
            logger.info(f"Removed {removed} stale temp files from {self.cache_dir}")

    def body_path(self, name: str) -> Path:
        return self.cache_dir / f"{safe_filename(name)}{BODY_SUFFIX}"

    def meta_path(self, name: str) -> Path:
        return self.cache_dir / f"{safe_filename(name)}{META_SUFFIX}"

    # =========================================================================
    # Write side (RefreshEngine only)
    # =========================================================================

    def put(self, entry: CacheEntry) -> None:
        """Store body then metadata. Raises CacheError when the directory is unwritable."""
        meta = json.dumps(entry.metadata(), indent=2).encode("utf-8")
        try:
            atomic_write_bytes(self.body_path(entry.name), entry.spec_body)
            atomic_write_bytes(self.meta_path(entry.name), meta)
        except OSError as e:
            raise CacheError(f"Failed to write cache entry for '{entry.name}': {e}") from e

    def remove(self, name: str) -> None:
        """Delete an entry. Meta goes first so readers see 'not found', never a body without meta."""
        try:
            self.meta_path(name).unlink(missing_ok=True)
            self.body_path(name).unlink(missing_ok=True)
        except OSError as e:
            raise CacheError(f"Failed to remove cache entry for '{name}': {e}") from e

    def prune(self, keep: set[str]) -> list[str]:
        """
        Remove every entry whose API name is not in *keep*.

        Also drops orphan body files (a writer crashed between the body and
        meta renames) that no kept name maps to. Returns the removed API names.
        """
        removed = []
        for name in self.list():
            if name not in keep:
                self.remove(name)
                removed.append(name)

        keep_stems = {safe_filename(name) for name in keep}
        for path in self.cache_dir.glob(f"*{BODY_SUFFIX}"):
            if path.name.endswith(META_SUFFIX):
                continue
            stem = path.name[: -len(BODY_SUFFIX)]
            if stem not in keep_stems and not (self.cache_dir / f"{stem}{META_SUFFIX}").exists():
                path.unlink(missing_ok=True)
                logger.debug(f"Removed orphan cache body {path.name}")
        return removed

    # =========================================================================
    # Read side
    # =========================================================================

    def _load_meta(self, path: Path) -> Optional[CacheEntry]:
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Failed to read metadata file {path}: {e}")
            return None
        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Failed to parse metadata file {path}: {e}")
            return None

    def get_metadata(self, name: str) -> CacheEntry:
        """Metadata only (spec_body left empty). Raises CacheEntryNotFound."""
        meta = self._load_meta(self.meta_path(name))
        if meta is None or meta.name != name:
            raise CacheEntryNotFound(name)
        return meta

    def get(self, name: str) -> CacheEntry:
        """Complete entry with body. Raises CacheEntryNotFound."""
        for _ in range(READ_ATTEMPTS):
            meta = self.get_metadata(name)
            try:
                body = self.body_path(name).read_bytes()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to read cached spec for '{name}': {e}")
                raise CacheEntryNotFound(name) from e
            if content_digest(body) == meta.content_hash:
                return meta.model_copy(update={"spec_body": body})
        logger.warning(f"Cache entry for '{name}' kept changing or is inconsistent, treating as missing")
        raise CacheEntryNotFound(name)

    def list(self) -> list[str]:
        """Names of all entries with readable metadata, sorted."""
        return [entry.name for entry in self.entries()]

    def entries(self) -> list[CacheEntry]:
        """Metadata for all entries, sorted by name."""
        if not self.cache_dir.is_dir():
            return []
        found: dict[str, CacheEntry] = {}
        for path in self.cache_dir.glob(f"*{META_SUFFIX}"):
            meta = self._load_meta(path)
            if meta is not None and path.name == f"{safe_filename(meta.name)}{META_SUFFIX}":
                found[meta.name] = meta
        return [found[name] for name in sorted(found)]
