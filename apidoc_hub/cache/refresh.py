# apidoc_hub/cache/refresh.py
# @ai-rules:
# 1. [Constraint]: Reads the Discovery Record, NEVER writes it. Exclusively owns CacheEntry writes.
# 2. [Pattern]: Bulkhead -- one task per API under a shared Semaphore. Every failure is contained to its own API's entry.
# 3. [Pattern]: No retries inside a cycle. The next tick is the retry.
# 4. [Gotcha]: Record unreadable -> skip the cycle entirely (no fetch, no GC). Never wipe the cache because discovery is down.
# 5. [Gotcha]: A failed fetch keeps the previous body only when it came from a successful fetch (lastSuccessAt set)
#    and still validates, otherwise it stores a placeholder spec. lastSuccessAt is carried forward either way.
# 6. [Constraint]: Cache file I/O runs in the default executor, never on the event loop.
"""
Refresh Engine: periodically pulls every discovered API spec into the cache.

Each cycle:
1. Read the Discovery Record
2. GET baseAddress + specPath for every descriptor (bounded concurrency, per-request timeout)
3. Validate and store each result independently
4. Garbage-collect cache entries for APIs no longer discovered
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar

import httpx

from ..errors import CacheEntryNotFound, CacheError, RecordStoreError, SpecFetchError, SpecValidationError
from ..models import ApiDescriptor, CacheEntry, CacheStatus, utcnow
from ..state.record_store import DiscoveryRecordStore
from .spec_cache import SpecCacheStore
from .spec_utils import create_default_spec, validate_spec

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNAVAILABLE_DESCRIPTION = "API documentation not available"
# Consecutive cycles with cache write failures before logging at ERROR
ESCALATE_AFTER_CYCLES = 3


@dataclass
class RefreshReport:
    """Outcome of one refresh cycle."""

    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    available: list[str] = field(default_factory=list)
    unavailable: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed_writes: list[str] = field(default_factory=list)
    record_error: Optional[str] = None


class RefreshEngine:
    """Scheduled spec fetcher writing into a SpecCacheStore."""

    def __init__(
        self,
        record_store: DiscoveryRecordStore,
        cache: SpecCacheStore,
        interval_seconds: float = 30.0,
        fetch_timeout_seconds: float = 10.0,
        max_concurrency: int = 8,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ):
        self.record_store = record_store
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self.max_concurrency = max_concurrency
        self._client_factory = client_factory or self._default_client

        self.last_report: Optional[RefreshReport] = None
        self._write_failure_cycles = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def _default_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.fetch_timeout_seconds,
            follow_redirects=True,
            limits=httpx.Limits(max_connections=self.max_concurrency),
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the background refresh loop."""
        if self._running:
            logger.warning("RefreshEngine already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._refresh_loop(), name="refresh-engine")
        logger.info(
            f"RefreshEngine started: interval={self.interval_seconds}s, "
            f"timeout={self.fetch_timeout_seconds}s, concurrency={self.max_concurrency}"
        )

    async def stop(self) -> None:
        """Stop the loop, abandoning any in-flight cycle."""
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("RefreshEngine stopped")

    async def _refresh_loop(self) -> None:
        """Run a cycle every interval_seconds (fixed rate, not fixed delay)."""
        while self._running:
            started = time.monotonic()
            try:
                await self.refresh_once()
            except Exception as e:
                logger.error(f"Refresh cycle failed: {e}", exc_info=True)

            remaining = self.interval_seconds - (time.monotonic() - started)
            try:
                await asyncio.sleep(max(0.0, remaining))
            except asyncio.CancelledError:
                break

    # =========================================================================
    # Refresh cycle
    # =========================================================================

    async def refresh_once(self) -> RefreshReport:
        report = RefreshReport()
        try:
            discovery_set, version = await self.record_store.read()
        except RecordStoreError as e:
            logger.error(f"Failed to read discovery record, keeping cached specs: {e}")
            report.record_error = str(e)
            return self._finish(report)

        descriptors = list(discovery_set)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        async with self._client_factory() as http:
            results = await asyncio.gather(
                *(self._refresh_api(http, semaphore, descriptor) for descriptor in descriptors),
                return_exceptions=True,
            )

        for descriptor, result in zip(descriptors, results):
            if isinstance(result, CacheEntry):
                if result.available:
                    report.available.append(descriptor.name)
                else:
                    report.unavailable.append(descriptor.name)
            elif isinstance(result, CacheError):
                report.failed_writes.append(descriptor.name)
                logger.warning(f"{result}")
            else:
                report.failed_writes.append(descriptor.name)
                logger.error(f"Unexpected error refreshing {descriptor.name}: {result!r}")

        try:
            report.removed = await self._run_io(self.cache.prune, set(discovery_set.names()))
        except (CacheError, OSError) as e:
            logger.error(f"Cache garbage collection failed: {e}")

        if report.removed:
            logger.info(f"Removed {len(report.removed)} undiscovered APIs from cache: {report.removed}")
        self._escalate_write_failures(report)
        logger.info(
            f"Refreshed API cache (record v{version}): {len(report.available)} available, "
            f"{len(report.unavailable)} unavailable, {len(report.failed_writes)} failed writes"
        )
        return self._finish(report)

    def _finish(self, report: RefreshReport) -> RefreshReport:
        report.finished_at = utcnow()
        self.last_report = report
        return report

    def _escalate_write_failures(self, report: RefreshReport) -> None:
        if not report.failed_writes:
            self._write_failure_cycles = 0
            return
        self._write_failure_cycles += 1
        message = (
            f"Cache writes failed for {report.failed_writes} "
            f"({self._write_failure_cycles} consecutive cycles)"
        )
        if self._write_failure_cycles >= ESCALATE_AFTER_CYCLES:
            logger.error(message)
        else:
            logger.warning(message)

    async def _refresh_api(
        self,
        http: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
        descriptor: ApiDescriptor,
    ) -> CacheEntry:
        async with semaphore:
            entry = await self._fetch_entry(http, descriptor)
        await self._run_io(self.cache.put, entry)
        return entry

    @staticmethod
    async def _run_io(func: Callable[..., T], *args: Any) -> T:
        """Run blocking cache file I/O in the default executor."""
        return await asyncio.get_event_loop().run_in_executor(None, func, *args)

    async def _fetch(self, http: httpx.AsyncClient, url: str) -> bytes:
        try:
            response = await http.get(url, timeout=self.fetch_timeout_seconds)
        except httpx.TimeoutException as e:
            raise SpecFetchError(f"Timed out after {self.fetch_timeout_seconds}s fetching {url}") from e
        except httpx.HTTPError as e:
            raise SpecFetchError(f"{type(e).__name__} fetching {url}: {e}") from e
        if not response.is_success:
            raise SpecFetchError(f"HTTP error: {response.status_code} from {url}")
        return response.content

    async def _fetch_entry(self, http: httpx.AsyncClient, descriptor: ApiDescriptor) -> CacheEntry:
        now = utcnow()
        try:
            body = await self._fetch(http, descriptor.spec_url)
        except SpecFetchError as e:
            logger.warning(f"Failed to fetch OpenAPI spec for API {descriptor.name}: {e}")
            return await self._unavailable_entry(descriptor, str(e), now)

        if not body.strip():
            logger.warning(f"Empty OpenAPI spec from API {descriptor.name}")
            return await self._unavailable_entry(descriptor, "Spec body is empty", now)

        try:
            validate_spec(body)
        except SpecValidationError as e:
            logger.warning(f"Invalid OpenAPI spec from API {descriptor.name}: {e}")
            _, last_success_at = await self._run_io(self._last_good, descriptor.name)
            return self._entry(
                descriptor, body, CacheStatus.UNAVAILABLE, now,
                last_error=f"Invalid spec: {e}", last_success_at=last_success_at,
            )

        logger.debug(f"Fetched OpenAPI spec for API {descriptor.name} ({len(body)} bytes)")
        return self._entry(descriptor, body, CacheStatus.AVAILABLE, now, last_success_at=now)

    def _last_good(self, name: str) -> tuple[Optional[bytes], Optional[datetime]]:
        """
        Previous entry's (body, lastSuccessAt).

        The body is only returned when it is still a valid spec, so a cached
        malformed response is never passed off as last-known-good.
        """
        try:
            previous = self.cache.get(name)
        except CacheEntryNotFound:
            return None, None
        if previous.last_success_at is None:
            return None, None
        try:
            validate_spec(previous.spec_body)
        except SpecValidationError:
            return None, previous.last_success_at
        return previous.spec_body, previous.last_success_at

    async def _unavailable_entry(self, descriptor: ApiDescriptor, error: str, now: datetime) -> CacheEntry:
        """Failure entry: previous good body when there is one, else a placeholder spec."""
        body, last_success_at = await self._run_io(self._last_good, descriptor.name)
        if body is None:
            body = create_default_spec(descriptor.display_name, UNAVAILABLE_DESCRIPTION)
        return self._entry(
            descriptor, body, CacheStatus.UNAVAILABLE, now,
            last_error=error, last_success_at=last_success_at,
        )

    @staticmethod
    def _entry(
        descriptor: ApiDescriptor,
        body: bytes,
        status: CacheStatus,
        fetched_at: datetime,
        last_error: Optional[str] = None,
        last_success_at: Optional[datetime] = None,
    ) -> CacheEntry:
        return CacheEntry(
            name=descriptor.name,
            spec_body=body,
            status=status,
            last_error=last_error,
            fetched_at=fetched_at,
            display_name=descriptor.display_name,
            description=descriptor.description,
            spec_url=descriptor.spec_url,
            last_success_at=last_success_at,
        )
