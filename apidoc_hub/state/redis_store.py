# apidoc_hub/state/redis_store.py
# @ai-rules:
# 1. [Constraint]: write() uses WATCH/MULTI/EXEC. Catch redis WatchError specifically and map it to VersionConflict.
# 2. [Pattern]: Version is a monotonic integer stored next to the document in one HASH.
# 3. [Gotcha]: The connection is (re)established lazily on every call. Redis being down is RecordStoreError
#    for that call only, so the reconciler and refresh engine keep their schedules instead of failing startup.
"""
Redis-backed Discovery Record.

Redis Schema:
    apidoc:discovery    HASH    {version, document}
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from redis.exceptions import RedisError, WatchError

from ..errors import RecordStoreError, VersionConflict
from ..models import DiscoverySet
from .record_store import DiscoveryRecordStore, RecordVersion, parse_record

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from .redis_client import RedisClient

logger = logging.getLogger(__name__)

DISCOVERY_KEY = "apidoc:discovery"


def next_version(current: Optional[str]) -> str:
    """Successor of a stored version. A non-numeric version is treated as corrupt and restarts at 1."""
    try:
        return str(int(current or 0) + 1)
    except ValueError:
        logger.warning(f"Discovery record version {current!r} is not a number, restarting at 1")
        return "1"


class RedisRecordStore(DiscoveryRecordStore):
    """Discovery Record in a Redis hash, guarded by WATCH on the key."""

    def __init__(self, connection: "RedisClient", key: str = DISCOVERY_KEY):
        self.connection = connection
        self.key = key

    async def _redis(self) -> "Redis":
        # Single attempt: the caller's own schedule is the retry
        return await self.connection.connect(attempts=1)

    async def read(self) -> tuple[DiscoverySet, RecordVersion]:
        redis = await self._redis()
        try:
            data = await redis.hgetall(self.key)
        except RedisError as e:
            raise RecordStoreError(f"Failed to read redis key {self.key}: {e}") from e
        if not data:
            return DiscoverySet.empty(), None
        document = data.get("document")
        version = data.get("version")
        if not document:
            return DiscoverySet.empty(), version
        return parse_record(document, f"redis:{self.key}"), version

    async def write(self, discovery_set: DiscoverySet, expected_version: RecordVersion) -> str:
        redis = await self._redis()
        try:
            async with redis.pipeline(transaction=True) as pipe:
                await pipe.watch(self.key)
                current = await pipe.hget(self.key, "version")
                if current != expected_version:
                    raise VersionConflict(expected_version, current)
                new_version = next_version(current)
                pipe.multi()
                pipe.hset(self.key, mapping={"version": new_version, "document": discovery_set.to_json()})
                await pipe.execute()
        except WatchError:
            raise VersionConflict(expected_version) from None
        except RedisError as e:
            raise RecordStoreError(f"Failed to write redis key {self.key}: {e}") from e
        logger.info(f"Wrote redis:{self.key} v{new_version} with {len(discovery_set)} APIs")
        return new_version

    async def close(self) -> None:
        await self.connection.close()
