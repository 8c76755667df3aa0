# apidoc_hub/observers/kubernetes.py
# @ai-rules:
# 1. [Constraint]: This module is the only Service-watch touchpoint. The reconciler sees WatchEvent/ServiceSnapshot only.
# 2. [Pattern]: The kubernetes client is sync. list() runs in the default executor; each namespace watch runs in a daemon thread
#    that hands events to the event loop via call_soon_threadsafe. Threads are joined (bounded) when the stream closes.
# 3. [Gotcha]: Any watch failure (410 Gone, ERROR event, connection drop) surfaces as WatchStreamError. The reconciler
#    owns reconnect policy; this module never retries on its own except to resume after a server-side watch timeout.
"""
Kubernetes Service watch source.

Lists and watches Services in a NamespaceScope: one namespace, an explicit
set of namespaces (one watch per namespace), or the whole cluster.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, AsyncIterator, Callable, Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from ..config import NamespaceScope
from ..errors import WatchStreamError
from .base import ServiceSnapshot, WatchEvent

logger = logging.getLogger(__name__)

# Server-side watch timeout. The stream is resumed from the last seen resourceVersion when it elapses.
# Also bounds how long a stopped watch thread can stay blocked on a quiet stream.
WATCH_TIMEOUT_SECONDS = 60
THREAD_JOIN_SECONDS = 2.0


def _join_threads(threads: list[threading.Thread], timeout: float) -> list[str]:
    """Join threads against one shared deadline. Returns the names of those still alive."""
    deadline = time.monotonic() + timeout
    for thread in threads:
        thread.join(max(0.0, deadline - time.monotonic()))
    return [thread.name for thread in threads if thread.is_alive()]


def load_kube_config() -> None:
    """In-cluster config first (running in a pod), kubeconfig for local development."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded kubeconfig")


class KubernetesWatchSource:
    """Lists and watches v1 Services within a NamespaceScope."""

    def __init__(
        self,
        scope: NamespaceScope,
        label_selector: Optional[str] = None,
        core_api: Any = None,
        watch_factory: Callable[[], Any] = watch.Watch,
    ):
        self.scope = scope
        self.label_selector = label_selector
        self._core_api = core_api
        self._watch_factory = watch_factory

    async def connect(self) -> None:
        if self._core_api is not None:
            return
        try:
            await asyncio.get_event_loop().run_in_executor(None, load_kube_config)
        except config.ConfigException as e:
            raise WatchStreamError(f"No Kubernetes config available: {e}") from e
        self._core_api = client.CoreV1Api()

    @property
    def core_api(self) -> Any:
        if self._core_api is None:
            raise WatchStreamError("Kubernetes client not connected. Call connect() first.")
        return self._core_api

    def _list_call(self, namespace: Optional[str]) -> tuple[Callable[..., Any], dict[str, Any]]:
        kwargs: dict[str, Any] = {}
        if self.label_selector:
            kwargs["label_selector"] = self.label_selector
        if namespace is None:
            return self.core_api.list_service_for_all_namespaces, kwargs
        kwargs["namespace"] = namespace
        return self.core_api.list_namespaced_service, kwargs

    async def list(self) -> ServiceSnapshot:
        snapshot = ServiceSnapshot()
        for namespace in self.scope.targets():
            func, kwargs = self._list_call(namespace)
            try:
                result = await asyncio.get_event_loop().run_in_executor(None, lambda: func(**kwargs))
            except ApiException as e:
                raise WatchStreamError(
                    f"Failed to list services in {namespace or 'all namespaces'}: {e.status} {e.reason}"
                ) from e
            except Exception as e:
                raise WatchStreamError(f"Failed to list services in {namespace or 'all namespaces'}: {e}") from e
            snapshot.items.extend(result.items or [])
            snapshot.resource_versions[namespace] = result.metadata.resource_version
        logger.debug(f"Listed {len(snapshot.items)} services ({self.scope})")
        return snapshot

    async def watch(self, snapshot: ServiceSnapshot) -> AsyncIterator[WatchEvent]:
        """
        Yield events from every namespace watch until one fails.

        Raises WatchStreamError on the first failure. Closing the generator
        (or cancelling the consumer) stops all underlying watches and waits
        up to THREAD_JOIN_SECONDS for their threads to exit.
        """
        loop = asyncio.get_event_loop()
        queue: asyncio.Queue = asyncio.Queue()
        stop = threading.Event()
        watchers = []
        threads = []

        for namespace, resource_version in snapshot.resource_versions.items():
            w = self._watch_factory()
            watchers.append(w)
            thread = threading.Thread(
                target=self._pump,
                args=(w, namespace, resource_version, loop, queue, stop),
                name=f"service-watch-{namespace or 'all'}",
                daemon=True,
            )
            threads.append(thread)
            thread.start()

        try:
            while True:
                item = await queue.get()
                if isinstance(item, BaseException):
                    if isinstance(item, WatchStreamError):
                        raise item
                    raise WatchStreamError(f"Service watch failed: {item}") from item
                yield item
        finally:
            stop.set()
            for w in watchers:
                w.stop()
            alive = await loop.run_in_executor(None, _join_threads, threads, THREAD_JOIN_SECONDS)
            if alive:
                # Blocked on a quiet stream; they exit at the next event or WATCH_TIMEOUT_SECONDS
                logger.debug(f"Watch threads still draining: {alive}")

    def _pump(
        self,
        w: Any,
        namespace: Optional[str],
        resource_version: Optional[str],
        loop: asyncio.AbstractEventLoop,
        queue: asyncio.Queue,
        stop: threading.Event,
    ) -> None:
        """Thread body: stream one namespace, resuming after server-side timeouts."""

        def emit(item: Any) -> None:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # Event loop closed during shutdown
                stop.set()

        func, kwargs = self._list_call(namespace)
        try:
            while not stop.is_set():
                for raw in w.stream(
                    func,
                    resource_version=resource_version,
                    timeout_seconds=WATCH_TIMEOUT_SECONDS,
                    **kwargs,
                ):
                    if stop.is_set():
                        return
                    event_type = raw.get("type")
                    obj = raw.get("object")
                    if event_type == "ERROR":
                        raise WatchStreamError(f"Watch error event in {namespace or 'all namespaces'}: {obj}")
                    metadata = getattr(obj, "metadata", None)
                    if metadata is not None and metadata.resource_version:
                        resource_version = metadata.resource_version
                    emit(WatchEvent(type=event_type, object=obj))
                logger.debug(f"Service watch in {namespace or 'all namespaces'} timed out, resuming at {resource_version}")
        except Exception as e:
            if not stop.is_set():
                emit(e)
