from __future__ import annotations

import time
from typing import Callable, Optional

from app.captcha.models import RateLimitStatus
from app.storage.base import StorageBackend


class RateLimiter:
    """Fixed-window request counter per client IP.

    Only the atomic increment is used, so concurrent requests from one IP
    never lose an update. Requests over budget still increment the counter.
    """

    def __init__(
        self,
        storage: StorageBackend,
        max_requests: int = 50,
        window_seconds: int = 900,
        prefix: str = "captcha:",
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._storage = storage
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._prefix = f"{prefix}ratelimit:"
        self._clock = clock or time.time

    def key(self, ip: str) -> str:
        return f"{self._prefix}{ip or '0.0.0.0'}"

    def check(self, ip: str) -> RateLimitStatus:
        key = self.key(ip)
        window_ms = self.window_seconds * 1000
        count = self._storage.increment_counter(key)
        if count == 1:
            self._storage.set_expiry(key, window_ms)
            ttl = window_ms
        else:
            ttl = self._storage.ttl_ms(key)
            if ttl < 0:
                # Counter survived without a deadline (lost expire call); restart the window.
                self._storage.set_expiry(key, window_ms)
                ttl = window_ms

        return RateLimitStatus(
            allowed=count <= self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_time=self._clock() + ttl / 1000.0,
        )

    def reset(self, ip: str) -> None:
        self._storage.delete(self.key(ip))

    def entry_count(self) -> int:
        return self._storage.count_keys(f"{self._prefix}*")


__all__ = ["RateLimiter"]
