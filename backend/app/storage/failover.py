from __future__ import annotations

import time
from typing import Any, Callable, List, Optional

from app.security.logger import storage_logger as logger
from app.storage.base import StorageBackend, StorageFault
from app.storage.memory import MemoryBackend


class FailoverBackend(StorageBackend):
    """Route calls to ``primary`` and fall back to ``fallback`` on faults.

    A failed call is replayed against the fallback. Subsequent calls skip the
    primary until ``retry_interval`` seconds have passed, after which the next
    call tries it again. Data written to one store is not copied to the
    other: this is failover, not a cache tier.
    """

    name = "failover"

    def __init__(
        self,
        primary: Optional[StorageBackend],
        fallback: Optional[StorageBackend] = None,
        retry_interval: float = 30.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._clock = clock or time.time
        self._primary = primary
        self._fallback = fallback or MemoryBackend(clock=self._clock)
        self._retry_interval = retry_interval
        self._degraded_until: Optional[float] = None

    @property
    def fallback(self) -> StorageBackend:
        return self._fallback

    @property
    def degraded(self) -> bool:
        return self._primary is None or self._degraded_until is not None

    @property
    def active_name(self) -> str:
        if self._primary is None or self._degraded_until is not None:
            return self._fallback.name
        return self._primary.name

    def _primary_due(self) -> bool:
        if self._primary is None:
            return False
        if self._degraded_until is None:
            return True
        return self._clock() >= self._degraded_until

    def _dispatch(self, method: str, *args: Any, **kwargs: Any) -> Any:
        if self._primary_due():
            try:
                result = getattr(self._primary, method)(*args, **kwargs)
            except StorageFault as exc:
                if self._degraded_until is None:
                    logger.warning(f"Primary storage unavailable, switching to {self._fallback.name}: {exc}")
                else:
                    logger.warning(f"Primary storage still unavailable: {exc}")
                self._degraded_until = self._clock() + self._retry_interval
            else:
                if self._degraded_until is not None:
                    logger.info(f"Primary storage {self._primary.name} reachable again")
                    self._degraded_until = None
                return result
        return getattr(self._fallback, method)(*args, **kwargs)

    def get(self, key: str) -> Optional[str]:
        return self._dispatch("get", key)

    def set(self, key: str, value: str, ttl: Optional[float] = None, replace_only: bool = False) -> bool:
        return self._dispatch("set", key, value, ttl=ttl, replace_only=replace_only)

    def delete(self, key: str) -> int:
        return self._dispatch("delete", key)

    def increment_counter(self, key: str) -> int:
        return self._dispatch("increment_counter", key)

    def set_expiry(self, key: str, ms: int) -> bool:
        return self._dispatch("set_expiry", key, ms)

    def ttl_ms(self, key: str) -> int:
        return self._dispatch("ttl_ms", key)

    def count_keys(self, pattern: str) -> int:
        return self._dispatch("count_keys", pattern)

    def zadd(self, key: str, member: str, score: float) -> int:
        return self._dispatch("zadd", key, member, score)

    def zrange(self, key: str, start: int, stop: int, reverse: bool = False) -> List[str]:
        return self._dispatch("zrange", key, start, stop, reverse=reverse)

    def zrem(self, key: str, member: str) -> int:
        return self._dispatch("zrem", key, member)

    def zcard(self, key: str) -> int:
        return self._dispatch("zcard", key)


__all__ = ["FailoverBackend"]
