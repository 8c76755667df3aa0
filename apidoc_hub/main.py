# apidoc_hub/main.py
# @ai-rules:
# 1. [Constraint]: ConfigurationError aborts startup BEFORE any watch or refresh task starts.
# 2. [Pattern]: Reconciler and RefreshEngine are independent and individually switchable (RECONCILER_ENABLED / REFRESH_ENABLED)
#    so one replica can reconcile while several only refresh and serve.
# 3. [Pattern]: ConfigMap backend and watch source share one CoreV1Api, loaded once (in-cluster first, then kubeconfig).
# 4. [Gotcha]: Shutdown order is reconciler -> refresh engine -> record store (closes redis). Tasks first so nothing writes to a closed store.
"""
API Documentation Hub - FastAPI Application

Hosts:
- Reconciler (Service watch -> Discovery Record)
- Refresh Engine (Discovery Record -> Spec Cache)
- Serving Layer (Spec Cache -> HTTP)
"""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException
from kubernetes import client, config

from .cache.refresh import RefreshEngine
from .cache.spec_cache import SpecCacheStore
from .config import RecordBackend, Settings
from .dependencies import get_refresh_engine, set_refresh_engine, set_spec_cache
from .discovery.reconciler import Reconciler
from .errors import ConfigurationError, RecordStoreError
from .models import HealthResponse
from .observers.kubernetes import KubernetesWatchSource, load_kube_config
from .routes import apis_router, specs_router
from .state.record_store import ConfigMapRecordStore, DiscoveryRecordStore, FileRecordStore
from .state.redis_client import RedisClient
from .state.redis_store import RedisRecordStore

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG") else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Squelch noisy loggers (watch/list chatter and per-request fetch lines)
for noisy in ("kubernetes.client.rest", "urllib3.connectionpool", "httpx", "httpcore"):
    logging.getLogger(noisy).setLevel(logging.WARNING)


async def _core_api() -> Any:
    """CoreV1Api from in-cluster config or kubeconfig. Raises ConfigurationError when neither exists."""
    try:
        await asyncio.get_event_loop().run_in_executor(None, load_kube_config)
    except config.ConfigException as e:
        raise ConfigurationError(f"No Kubernetes configuration available: {e}") from e
    return client.CoreV1Api()


async def build_record_store(settings: Settings, core_api: Any = None) -> DiscoveryRecordStore:
    """
    Record store for the configured backend.

    The Redis backend tries to connect with the startup retry budget, but an
    unreachable Redis is not fatal: the store reconnects on each later call
    and the reconciler and refresh engine keep retrying on their schedules.
    """
    if settings.record_backend == RecordBackend.CONFIGMAP:
        store = ConfigMapRecordStore(core_api, settings.discovery_namespace, settings.discovery_configmap)
        logger.info(f"Discovery record: ConfigMap {store.origin}")
        return store

    if settings.record_backend == RecordBackend.REDIS:
        redis_client = RedisClient()
        logger.info(f"Discovery record: Redis {redis_client.host}:{redis_client.port}")
        try:
            await redis_client.connect()
        except RecordStoreError as e:
            logger.error(f"Redis unavailable at startup, will keep retrying: {e}")
        return RedisRecordStore(redis_client)

    logger.info(f"Discovery record: file {settings.discovery_path}")
    return FileRecordStore(settings.discovery_path)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Validates configuration, opens the spec cache and record store, and
    starts the reconciler and refresh engine. Stops them on shutdown.
    """
    logger.info("API documentation hub starting up...")

    # Invalid configuration is fatal: nothing below runs
    settings = Settings.from_env()
    logger.info(
        f"Configuration: scope={settings.scope}, backend={settings.record_backend.value}, "
        f"reconciler={settings.reconciler_enabled}, refresh={settings.refresh_enabled}"
    )

    cache = SpecCacheStore(settings.cache_dir)
    cache.initialize()
    set_spec_cache(cache)
    logger.info(f"Spec cache at {settings.cache_dir} ({len(cache.list())} cached APIs)")

    core_api = None
    if settings.reconciler_enabled or settings.record_backend == RecordBackend.CONFIGMAP:
        core_api = await _core_api()

    store = await build_record_store(settings, core_api)

    # === RECONCILER ===
    reconciler: Optional[Reconciler] = None
    if settings.reconciler_enabled:
        source = KubernetesWatchSource(
            settings.scope,
            label_selector=settings.label_selector,
            core_api=core_api,
        )
        reconciler = Reconciler(
            source,
            store,
            debounce_seconds=settings.debounce_seconds,
            max_commit_attempts=settings.commit_max_attempts,
        )
        await reconciler.start()
        app.state.reconciler = reconciler
    else:
        logger.info("Reconciler disabled (RECONCILER_ENABLED=false)")

    # === REFRESH ENGINE ===
    engine: Optional[RefreshEngine] = None
    if settings.refresh_enabled:
        engine = RefreshEngine(
            store,
            cache,
            interval_seconds=settings.refresh_interval_seconds,
            fetch_timeout_seconds=settings.fetch_timeout_seconds,
            max_concurrency=settings.fetch_concurrency,
        )
        await engine.start()
        set_refresh_engine(engine)
    else:
        logger.info("Refresh engine disabled (REFRESH_ENABLED=false)")

    logger.info("API documentation hub ready")

    yield  # Application runs here

    logger.info("API documentation hub shutting down...")

    if reconciler:
        await reconciler.stop()
    if engine:
        await engine.stop()
        set_refresh_engine(None)

    await store.close()
    set_spec_cache(None)


# Create FastAPI application
app = FastAPI(
    title="API Documentation Hub",
    description="Discovers annotated Services and serves their cached OpenAPI specs",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(apis_router)
app.include_router(specs_router)


# =============================================================================
# Health Endpoint
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(engine: Optional[RefreshEngine] = Depends(get_refresh_engine)) -> HealthResponse:
    """
    Health check endpoint for liveness/readiness checks.

    Returns 503 Service Unavailable if the spec cache is not initialized.
    """
    from .dependencies import _spec_cache

    if _spec_cache is None:
        raise HTTPException(status_code=503, detail="Spec cache not initialized")

    last_refresh = None
    if engine is not None and engine.last_report is not None:
        last_refresh = engine.last_report.finished_at
    return HealthResponse(cached_apis=len(_spec_cache.list()), last_refresh=last_refresh)
