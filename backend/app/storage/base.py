from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional


class StorageFault(Exception):
    """Raised by a storage adapter when its backing service cannot be reached."""


class StorageBackend(ABC):
    """Key-value store with per-key TTL and atomic counters.

    TTLs are seconds unless the name says otherwise. ``ttl_ms`` follows Redis
    conventions: ``-2`` for a missing key, ``-1`` for a key without expiry.
    """

    name = "abstract"

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str, ttl: Optional[float] = None, replace_only: bool = False) -> bool:
        """Store ``value``. With ``replace_only`` the write happens only if ``key`` exists."""

    @abstractmethod
    def delete(self, key: str) -> int:
        ...

    @abstractmethod
    def increment_counter(self, key: str) -> int:
        ...

    @abstractmethod
    def set_expiry(self, key: str, ms: int) -> bool:
        ...

    @abstractmethod
    def ttl_ms(self, key: str) -> int:
        ...

    @abstractmethod
    def count_keys(self, pattern: str) -> int:
        ...

    # Ordered sets, used by feed/fraud features that share the store.
    @abstractmethod
    def zadd(self, key: str, member: str, score: float) -> int:
        ...

    @abstractmethod
    def zrange(self, key: str, start: int, stop: int, reverse: bool = False) -> List[str]:
        ...

    @abstractmethod
    def zrem(self, key: str, member: str) -> int:
        ...

    @abstractmethod
    def zcard(self, key: str) -> int:
        ...


__all__ = ["StorageBackend", "StorageFault"]
