# apidoc_hub/discovery/reconciler.py
# @ai-rules:
# 1. [Constraint]: The Reconciler is the ONLY writer of the Discovery Record. Refresh engines only read it.
# 2. [Pattern]: Two tasks: _watch_loop (Connecting -> Synchronizing -> Streaming -> Reconnecting) and _commit_loop (debounced flush).
# 3. [Pattern]: Commit = read version -> compare content -> write(expected_version). VersionConflict -> re-read + jittered backoff.
# 4. [Gotcha]: Nothing is committed before the first full list. Committing an empty pre-sync set would wipe the record.
# 5. [Gotcha]: resync() REPLACES the in-memory map. Never merge a fresh list into stale state.
# 6. [Constraint]: No failure here terminates the process. Exhausted commits retry on the next debounce tick.
"""
Reconciler: watch events -> canonical DiscoverySet -> Discovery Record.

Keeps an in-memory map of SourceIdentity -> ApiDescriptor, derives the
name-keyed DiscoverySet from it, and commits to the record store only when
the derived set differs from what was last committed.
"""
from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import Any, Iterable, Optional

from ..errors import RecordStoreError, VersionConflict, WatchStreamError
from ..models import ApiDescriptor, DiscoverySet, SourceIdentity
from ..observers.base import ADDED, DELETED, MODIFIED, WatchEvent, WatchSource
from ..state.record_store import DiscoveryRecordStore
from .annotations import extract_descriptor, source_identity

logger = logging.getLogger(__name__)

# Consecutive failed flushes before commit failures are logged at ERROR
ESCALATE_AFTER_FAILURES = 3
MAX_COMMIT_BACKOFF_SECONDS = 10.0


class ReconcilerState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SYNCHRONIZING = "synchronizing"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


class Reconciler:
    """
    Observes Services through a WatchSource and maintains the Discovery Record.

    Name collisions: when two Services derive the same API name, the one
    observed (added or changed) most recently wins, and a WARNING is logged
    once per collision.
    """

    def __init__(
        self,
        source: WatchSource,
        store: DiscoveryRecordStore,
        debounce_seconds: float = 2.0,
        max_commit_attempts: int = 5,
        commit_backoff_seconds: float = 0.5,
        reconnect_delay_seconds: float = 1.0,
        max_reconnect_delay_seconds: float = 60.0,
    ):
        self.source = source
        self.store = store
        self.debounce_seconds = debounce_seconds
        self.max_commit_attempts = max_commit_attempts
        self.commit_backoff_seconds = commit_backoff_seconds
        self.reconnect_delay_seconds = reconnect_delay_seconds
        self.max_reconnect_delay_seconds = max_reconnect_delay_seconds

        self.state = ReconcilerState.IDLE
        self.commits = 0

        # identity -> (observation sequence, descriptor)
        self._entries: dict[SourceIdentity, tuple[int, ApiDescriptor]] = {}
        self._sequence = 0
        self._synced = False
        self._last_committed: Optional[DiscoverySet] = None
        # (name, winner, shadowed) already warned about
        self._reported_collisions: set[tuple[str, str, str]] = set()
        self._commit_failures = 0

        self._dirty = asyncio.Event()
        self._running = False
        self._tasks: list[asyncio.Task] = []

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the watch and commit loops."""
        if self._running:
            logger.warning("Reconciler already running")
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._watch_loop(), name="reconciler-watch"),
            asyncio.create_task(self._commit_loop(), name="reconciler-commit"),
        ]
        logger.info(f"Reconciler started (debounce={self.debounce_seconds}s)")

    async def stop(self) -> None:
        """Cancel the watch stream and commit loop."""
        if not self._running:
            return
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        self.state = ReconcilerState.STOPPED
        logger.info("Reconciler stopped")

    @property
    def synchronized(self) -> bool:
        return self._synced

    @property
    def last_committed(self) -> Optional[DiscoverySet]:
        return self._last_committed

    # =========================================================================
    # In-memory discovery state
    # =========================================================================

    def resync(self, objects: Iterable[Any]) -> None:
        """Replace all in-memory state with a fresh authoritative list."""
        self._entries = {}
        for obj in objects:
            self._upsert(obj)
        self._synced = True
        self._dirty.set()

    def apply(self, event: WatchEvent) -> None:
        """Apply one watch event. Events for the same Service must arrive in order."""
        if event.type in (ADDED, MODIFIED):
            self._upsert(event.object)
        elif event.type == DELETED:
            identity = source_identity(event.object)
            if identity is None or self._entries.pop(identity, None) is None:
                return
            logger.debug(f"Service {identity} deleted")
        else:
            logger.debug(f"Ignoring watch event type {event.type}")
            return
        self._dirty.set()

    def _upsert(self, obj: Any) -> None:
        identity = source_identity(obj)
        if identity is None:
            return
        descriptor = extract_descriptor(obj)
        if descriptor is None:
            if self._entries.pop(identity, None) is not None:
                logger.debug(f"Service {identity} no longer documented")
            return
        current = self._entries.get(identity)
        if current is not None and current[1].record_payload() == descriptor.record_payload():
            # Unchanged: keep its position so no-op updates don't flip collision winners
            return
        self._sequence += 1
        self._entries[identity] = (self._sequence, descriptor)

    def discovery_set(self) -> DiscoverySet:
        """Derive the canonical name-keyed set (later-observed wins on name collisions)."""
        winners: dict[str, ApiDescriptor] = {}
        collisions: set[tuple[str, str, str]] = set()
        for _, descriptor in sorted(self._entries.values(), key=lambda entry: entry[0]):
            shadowed = winners.get(descriptor.name)
            if shadowed is not None:
                collisions.add((descriptor.name, str(descriptor.source), str(shadowed.source)))
            winners[descriptor.name] = descriptor

        for name, winner, shadowed in sorted(collisions - self._reported_collisions):
            logger.warning(
                f"API name collision: '{name}' is derived by both {shadowed} and {winner}; "
                f"using {winner} (last observed)"
            )
        self._reported_collisions = collisions
        return DiscoverySet(winners.values())

    # =========================================================================
    # Commit protocol
    # =========================================================================

    def _backoff(self, attempt: int) -> float:
        delay = min(self.commit_backoff_seconds * (2 ** (attempt - 1)), MAX_COMMIT_BACKOFF_SECONDS)
        return delay * random.uniform(0.5, 1.5)

    def _record_failure(self, message: str) -> None:
        self._commit_failures += 1
        if self._commit_failures >= ESCALATE_AFTER_FAILURES:
            logger.error(f"{message} ({self._commit_failures} consecutive failures, retrying next tick)")
        else:
            logger.warning(f"{message} (retrying next tick)")

    async def flush(self) -> bool:
        """
        Commit the derived set if it differs from the last committed one.

        Returns True when the record matches the in-memory set afterwards
        (including "nothing to do"), False when the commit must be retried.
        """
        if not self._synced:
            return True

        desired = self.discovery_set()
        if self._last_committed is not None and desired == self._last_committed:
            return True

        for attempt in range(1, self.max_commit_attempts + 1):
            try:
                current, version = await self.store.read()
                if version is not None and current == desired:
                    self._last_committed = desired
                    self._commit_failures = 0
                    return True
                new_version = await self.store.write(desired, version)
            except VersionConflict as e:
                logger.debug(f"Discovery record commit attempt {attempt}/{self.max_commit_attempts}: {e}")
                if attempt < self.max_commit_attempts:
                    await asyncio.sleep(self._backoff(attempt))
                continue
            except RecordStoreError as e:
                self._record_failure(f"Discovery record store unavailable: {e}")
                return False

            self._last_committed = desired
            self._commit_failures = 0
            self.commits += 1
            logger.info(f"Committed discovery record v{new_version}: {len(desired)} APIs {desired.names()}")
            return True

        self._record_failure(
            f"Discovery record commit gave up after {self.max_commit_attempts} version conflicts"
        )
        return False

    async def _commit_loop(self) -> None:
        """Debounced flush: at most one commit attempt per debounce interval."""
        while self._running:
            await self._dirty.wait()
            await asyncio.sleep(self.debounce_seconds)
            self._dirty.clear()
            try:
                committed = await self.flush()
            except Exception as e:
                self._record_failure(f"Unexpected discovery record commit error: {e!r}")
                logger.debug("Commit failure traceback", exc_info=True)
                committed = False
            if not committed:
                self._dirty.set()

    # =========================================================================
    # Watch session
    # =========================================================================

    async def _watch_loop(self) -> None:
        delay = self.reconnect_delay_seconds
        while self._running:
            try:
                self.state = ReconcilerState.CONNECTING
                await self.source.connect()

                self.state = ReconcilerState.SYNCHRONIZING
                snapshot = await self.source.list()
                self.resync(snapshot.items)
                logger.info(
                    f"Synchronized {len(snapshot.items)} services, "
                    f"{len(self._entries)} documented"
                )

                self.state = ReconcilerState.STREAMING
                delay = self.reconnect_delay_seconds
                async for event in self.source.watch(snapshot):
                    self.apply(event)
                logger.info("Service watch ended, resynchronizing")
            except WatchStreamError as e:
                logger.warning(f"Service watch interrupted: {e}")
            except Exception as e:
                logger.error(f"Unexpected reconciler error: {e}", exc_info=True)

            if not self._running:
                break
            self.state = ReconcilerState.RECONNECTING
            await asyncio.sleep(delay * random.uniform(0.8, 1.2))
            delay = min(delay * 2, self.max_reconnect_delay_seconds)
