from __future__ import annotations

import fnmatch
import threading
import time
from typing import Callable, Dict, List, Optional, Union

from app.storage.base import StorageBackend

Value = Union[str, Dict[str, float]]


class MemoryBackend(StorageBackend):
    """In-process store used for development, tests and as the failover target.

    Expiry is lazy: every access drops the key first if its deadline passed.
    ``sweep()`` removes all expired keys at once for callers that want to
    bound memory between accesses.
    """

    name = "memory"

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.time
        self._values: Dict[str, Value] = {}
        self._expires: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _now(self) -> float:
        return self._clock()

    def _expired(self, key: str, now: float) -> bool:
        deadline = self._expires.get(key)
        return deadline is not None and deadline <= now

    def _drop(self, key: str) -> bool:
        self._expires.pop(key, None)
        return self._values.pop(key, None) is not None

    def _live(self, key: str) -> Optional[Value]:
        if self._expired(key, self._now()):
            self._drop(key)
            return None
        return self._values.get(key)

    def _zset(self, key: str, create: bool = False) -> Optional[Dict[str, float]]:
        value = self._live(key)
        if value is None:
            if not create:
                return None
            value = {}
            self._values[key] = value
        if not isinstance(value, dict):
            raise TypeError(f"key {key!r} does not hold an ordered set")
        return value

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._live(key)
            if isinstance(value, dict):
                raise TypeError(f"key {key!r} holds an ordered set")
            return value

    def set(self, key: str, value: str, ttl: Optional[float] = None, replace_only: bool = False) -> bool:
        with self._lock:
            if replace_only and self._live(key) is None:
                return False
            self._values[key] = value
            if ttl is not None:
                self._expires[key] = self._now() + ttl
            else:
                self._expires.pop(key, None)
            return True

    def delete(self, key: str) -> int:
        with self._lock:
            if self._live(key) is None:
                return 0
            return int(self._drop(key))

    def increment_counter(self, key: str) -> int:
        with self._lock:
            current = self._live(key)
            if isinstance(current, dict):
                raise TypeError(f"key {key!r} holds an ordered set")
            count = int(current or 0) + 1
            self._values[key] = str(count)
            return count

    def set_expiry(self, key: str, ms: int) -> bool:
        with self._lock:
            if self._live(key) is None:
                return False
            self._expires[key] = self._now() + ms / 1000.0
            return True

    def ttl_ms(self, key: str) -> int:
        with self._lock:
            if self._live(key) is None:
                return -2
            deadline = self._expires.get(key)
            if deadline is None:
                return -1
            return max(0, int(round((deadline - self._now()) * 1000)))

    def count_keys(self, pattern: str) -> int:
        with self._lock:
            self._sweep_locked()
            return sum(1 for key in self._values if fnmatch.fnmatchcase(key, pattern))

    def zadd(self, key: str, member: str, score: float) -> int:
        with self._lock:
            zset = self._zset(key, create=True)
            added = 0 if member in zset else 1
            zset[member] = float(score)
            return added

    def zrange(self, key: str, start: int, stop: int, reverse: bool = False) -> List[str]:
        with self._lock:
            zset = self._zset(key) or {}
            ordered = sorted(zset.items(), key=lambda item: (item[1], item[0]), reverse=reverse)
            size = len(ordered)
            if start < 0:
                start = max(0, size + start)
            if stop < 0:
                stop = size + stop
            if start > stop or start >= size:
                return []
            return [member for member, _ in ordered[start:stop + 1]]

    def zrem(self, key: str, member: str) -> int:
        with self._lock:
            zset = self._zset(key)
            if not zset or member not in zset:
                return 0
            del zset[member]
            if not zset:
                self._drop(key)
            return 1

    def zcard(self, key: str) -> int:
        with self._lock:
            zset = self._zset(key)
            return len(zset) if zset else 0

    def _sweep_locked(self) -> int:
        now = self._now()
        expired = [key for key in self._expires if self._expired(key, now)]
        for key in expired:
            self._drop(key)
        return len(expired)

    def sweep(self) -> int:
        """Remove every expired key; returns how many were dropped."""
        with self._lock:
            return self._sweep_locked()

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._expires.clear()


__all__ = ["MemoryBackend"]
