from __future__ import annotations

from typing import Callable, Optional

from app.core.settings import Settings
from app.storage.base import StorageBackend, StorageFault
from app.storage.failover import FailoverBackend
from app.storage.memory import MemoryBackend
from app.storage.redis_backend import RedisBackend


def build_storage(settings: Settings, clock: Optional[Callable[[], float]] = None) -> FailoverBackend:
    """Redis when ``REDIS_URL`` is configured, always backed by an in-process fallback."""
    primary = None
    if settings.redis_url:
        primary = RedisBackend(settings.redis_url, timeout_seconds=settings.redis_timeout_seconds)
    return FailoverBackend(
        primary,
        MemoryBackend(clock=clock),
        retry_interval=settings.redis_retry_interval_seconds,
        clock=clock,
    )


__all__ = [
    "StorageBackend",
    "StorageFault",
    "MemoryBackend",
    "RedisBackend",
    "FailoverBackend",
    "build_storage",
]
