# apidoc_hub/state/redis_client.py
"""
Redis async client for the redis Discovery Record backend.

Uses the redis.asyncio from_url() pattern with retry, so the reconciler
tolerates starting before its Redis sidecar.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Optional

import redis.asyncio as redis

from ..errors import RecordStoreError

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

REDIS_RETRY_ATTEMPTS = int(os.getenv("REDIS_RETRY_ATTEMPTS", "10"))
REDIS_RETRY_DELAY = float(os.getenv("REDIS_RETRY_DELAY", "2.0"))


class RedisClient:
    """
    Connection holder with startup retry.

    Usage:
        client = RedisClient()
        store = RedisRecordStore(client)   # connects on first use
        await store.close()
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        password: Optional[str] = None,
        db: int = 0,
        retry_attempts: int = REDIS_RETRY_ATTEMPTS,
        retry_delay: float = REDIS_RETRY_DELAY,
    ):
        self.host = host or os.getenv("REDIS_HOST", "localhost")
        self.port = port or int(os.getenv("REDIS_PORT", "6379"))
        self.password = password or os.getenv("REDIS_PASSWORD", "")
        self.db = db
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._client: Optional["Redis"] = None

    @property
    def url(self) -> str:
        if self.password:
            return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"

    async def connect(self, attempts: Optional[int] = None) -> "Redis":
        """Connect and PING, retrying *attempts* (default retry_attempts) times. Raises RecordStoreError when exhausted."""
        if self._client is not None:
            return self._client

        attempts = attempts or self.retry_attempts
        logger.info(f"Connecting to Redis at {self.host}:{self.port}")
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                self._client = redis.Redis.from_url(self.url, decode_responses=True)
                await self._client.ping()
                logger.info(f"Redis connection established (attempt {attempt})")
                return self._client
            except (redis.ConnectionError, redis.TimeoutError, ConnectionError) as e:
                last_error = e
                self._client = None
                if attempt < attempts:
                    logger.warning(
                        f"Redis connection attempt {attempt}/{attempts} failed: {e}. "
                        f"Retrying in {self.retry_delay}s..."
                    )
                    await asyncio.sleep(self.retry_delay)

        raise RecordStoreError(
            f"Failed to connect to Redis at {self.host}:{self.port} after {attempts} attempts: {last_error}"
        )

    async def close(self) -> None:
        if self._client is not None:
            logger.info("Closing Redis connection")
            await self._client.aclose()
            self._client = None

