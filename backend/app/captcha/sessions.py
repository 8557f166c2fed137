from __future__ import annotations

import secrets
import time
from dataclasses import replace
from typing import Any, Callable, Optional

from app.captcha.models import Session
from app.security import fingerprint_ip
from app.storage.base import StorageBackend


class SessionStore:
    """CRUD over captcha sessions kept in a :class:`StorageBackend`.

    Failed-attempt counts live in a counter key bumped with the backend's
    atomic increment, and a lockout lives in its own key holding the unlock
    time. Both are authoritative: :meth:`get` overlays them on the session
    record, so a stale full-record write from a concurrent request can never
    lower the count or clear a lock. Updates are replace-only so a session
    deleted by a concurrent successful verification is never written back.
    """

    def __init__(
        self,
        storage: StorageBackend,
        max_age_seconds: int = 300,
        prefix: str = "captcha:",
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._storage = storage
        self.max_age_seconds = max_age_seconds
        self._session_prefix = f"{prefix}session:"
        self._attempts_prefix = f"{prefix}attempts:"
        self._lock_prefix = f"{prefix}lock:"
        self._clock = clock or time.time

    def _now(self) -> float:
        return self._clock()

    def _key(self, token: str) -> str:
        return f"{self._session_prefix}{token}"

    def _attempts_key(self, token: str) -> str:
        return f"{self._attempts_prefix}{token}"

    def _lock_key(self, token: str) -> str:
        return f"{self._lock_prefix}{token}"

    def create(self, ip: str) -> str:
        token = secrets.token_hex(32)
        session = Session(
            token=token,
            created_at=self._now(),
            ip_fingerprint=fingerprint_ip(ip),
        )
        self._storage.set(self._key(token), session.to_json(), ttl=self.max_age_seconds)
        return token

    def get(self, token: str) -> Optional[Session]:
        raw = self._storage.get(self._key(token))
        if raw is None:
            return None
        session = Session.from_json(raw)

        counter = self._storage.get(self._attempts_key(token))
        session.attempts = int(counter) if counter else 0

        lock_until = self._storage.get(self._lock_key(token))
        if lock_until is not None:
            session.locked = True
            session.lock_until = float(lock_until)
        else:
            session.locked = False
            session.lock_until = None
        return session

    def update(self, token: str, **changes: Any) -> Optional[Session]:
        """Merge ``changes`` into the stored session and refresh its TTL.

        Returns the updated session, or ``None`` if it no longer exists.
        """
        session = self.get(token)
        if session is None:
            return None
        updated = replace(session, **changes)
        written = self._storage.set(
            self._key(token),
            updated.to_json(),
            ttl=self.max_age_seconds,
            replace_only=True,
        )
        return updated if written else None

    def delete(self, token: str) -> bool:
        """Remove the session. True only for the call that actually removed it."""
        removed = self._storage.delete(self._key(token))
        self._storage.delete(self._attempts_key(token))
        self._storage.delete(self._lock_key(token))
        return removed > 0

    def increment_attempts(self, token: str) -> int:
        key = self._attempts_key(token)
        count = self._storage.increment_counter(key)
        if count == 1:
            self._storage.set_expiry(key, self.max_age_seconds * 1000)
        return count

    def lock(self, token: str, until: float) -> None:
        # Kept for the session lifetime; an elapsed lock is cleared by unlock().
        self._storage.set(self._lock_key(token), repr(until), ttl=self.max_age_seconds)

    def unlock(self, token: str) -> None:
        self._storage.delete(self._lock_key(token))
        self._storage.delete(self._attempts_key(token))

    def count(self) -> int:
        return self._storage.count_keys(f"{self._session_prefix}*")


__all__ = ["SessionStore"]
