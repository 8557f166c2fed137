from __future__ import annotations

from typing import Any, Callable, List, Optional

import redis
from redis.exceptions import RedisError

from app.storage.base import StorageBackend, StorageFault


class RedisBackend(StorageBackend):
    """Durable store backed by Redis.

    The client is created on first use so that an unreachable server at
    startup only surfaces as a ``StorageFault`` on the first call.
    """

    name = "redis"

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        client: Optional[redis.Redis] = None,
    ) -> None:
        self._url = url
        self._timeout = timeout_seconds
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self._url,
                socket_timeout=self._timeout,
                socket_connect_timeout=self._timeout,
                decode_responses=True,
            )
        return self._client

    def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except RedisError as exc:
            raise StorageFault(f"redis {getattr(fn, '__name__', 'call')} failed: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        return self._call(self.client.get, key)

    def set(self, key: str, value: str, ttl: Optional[float] = None, replace_only: bool = False) -> bool:
        px = int(ttl * 1000) if ttl is not None else None
        return bool(self._call(self.client.set, key, value, px=px, xx=replace_only))

    def delete(self, key: str) -> int:
        return int(self._call(self.client.delete, key))

    def increment_counter(self, key: str) -> int:
        return int(self._call(self.client.incr, key))

    def set_expiry(self, key: str, ms: int) -> bool:
        return bool(self._call(self.client.pexpire, key, ms))

    def ttl_ms(self, key: str) -> int:
        return int(self._call(self.client.pttl, key))

    def count_keys(self, pattern: str) -> int:
        def _scan() -> int:
            return sum(1 for _ in self.client.scan_iter(match=pattern, count=500))

        _scan.__name__ = "scan_iter"
        return self._call(_scan)

    def zadd(self, key: str, member: str, score: float) -> int:
        return int(self._call(self.client.zadd, key, {member: score}))

    def zrange(self, key: str, start: int, stop: int, reverse: bool = False) -> List[str]:
        return list(self._call(self.client.zrange, key, start, stop, desc=reverse))

    def zrem(self, key: str, member: str) -> int:
        return int(self._call(self.client.zrem, key, member))

    def zcard(self, key: str) -> int:
        return int(self._call(self.client.zcard, key))

    def ping(self) -> bool:
        return bool(self._call(self.client.ping))


__all__ = ["RedisBackend"]
