# apidoc_hub/state/__init__.py
"""Discovery Record storage layer."""
from .record_store import ConfigMapRecordStore, DiscoveryRecordStore, FileRecordStore
from .redis_client import RedisClient
from .redis_store import RedisRecordStore

__all__ = [
    "ConfigMapRecordStore",
    "DiscoveryRecordStore",
    "FileRecordStore",
    "RedisClient",
    "RedisRecordStore",
]
