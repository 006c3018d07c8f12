"""Record stores for documents, pages and jobs."""

import redis

from docscan.config import Settings, settings
from docscan.storage.base import (
    DocumentStore,
    DuplicateRecordError,
    JobStore,
    NotFoundError,
    PageStore,
    RecordStore,
)
from docscan.storage.memory import MemoryRecordStore
from docscan.storage.redis_store import RedisRecordStore


def create_record_store(config: Settings | None = None) -> RecordStore:
    """Create the record store selected by ``storage_backend``."""
    config = config or settings
    if config.storage_backend == "memory":
        return MemoryRecordStore()
    return RedisRecordStore(redis.Redis.from_url(config.redis_url))


__all__ = [
    "DocumentStore",
    "DuplicateRecordError",
    "JobStore",
    "MemoryRecordStore",
    "NotFoundError",
    "PageStore",
    "RecordStore",
    "RedisRecordStore",
    "create_record_store",
]
