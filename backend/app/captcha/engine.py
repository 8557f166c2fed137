"""
Captcha verification engine.

A session moves from NEW (no challenge) to CHALLENGED once a puzzle is
generated, then either to VERIFIED (session deleted, token minted) or, after
``max_attempts`` failures, to a temporary LOCKED state that clears itself on
the first verification after ``lockout_seconds``.

Every public method returns a structured result. Failures inside the flow
are raised as :mod:`app.captcha.errors` exceptions and converted here.
"""

from __future__ import annotations

import math
import re
import time
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from app.captcha import challenges
from app.captcha.errors import (
    CaptchaError,
    ExpiredError,
    LockedError,
    ProtocolError,
    RateLimitedError,
    VerificationFailure,
)
from app.captcha.models import (
    CAPTCHA_TYPES,
    ChallengeResult,
    Session,
    TokenValidation,
    VerificationResult,
    VerifyOptions,
)
from app.captcha.rate_limit import RateLimiter
from app.captcha.sessions import SessionStore
from app.captcha.tokens import TokenService
from app.core.settings import Settings, get_settings
from app.security.logger import log_captcha_event
from app.storage import StorageBackend, build_storage

SESSION_TOKEN_RE = re.compile(r"[a-f0-9]{64}")
MAX_DIFFICULTY = 2

INVALID_SESSION = "Invalid or expired session"


# ---------------- Answer normalisation ----------------
def _index_list(value: Any) -> List[int]:
    if not isinstance(value, (list, tuple)):
        raise ProtocolError("Malformed answer")
    try:
        return [int(v) for v in value]
    except (TypeError, ValueError):
        raise ProtocolError("Malformed answer")


def _number(value: Any) -> float:
    if isinstance(value, bool):
        raise ProtocolError("Malformed answer")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ProtocolError("Malformed answer")


def _text(value: Any) -> str:
    if isinstance(value, (list, tuple, dict)) or value is None:
        raise ProtocolError("Malformed answer")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().upper()


_NORMALIZERS: Dict[str, Callable[[Any], Any]] = {
    "math": _text,
    "image": _index_list,
    "slider": _number,
    "pattern": _index_list,
}


# ---------------- Comparators ----------------
def compare_math(user: str, expected: Any, tolerance: float) -> bool:
    return user == _text(expected)


def compare_image(user: List[int], expected: Any, tolerance: float) -> bool:
    return set(user) == {int(v) for v in expected}


def compare_slider(user: float, expected: Any, tolerance: float) -> bool:
    return abs(user - float(expected)) <= tolerance


def compare_pattern(user: List[int], expected: Any, tolerance: float) -> bool:
    return user == [int(v) for v in expected]


COMPARATORS: Dict[str, Callable[[Any, Any, float], bool]] = {
    "math": compare_math,
    "image": compare_image,
    "slider": compare_slider,
    "pattern": compare_pattern,
}


def _short(token: Any) -> str:
    return str(token or "")[:8]


class CaptchaEngine:
    def __init__(
        self,
        storage: StorageBackend,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.storage = storage
        self._clock = clock or time.time
        self.sessions = SessionStore(
            storage,
            max_age_seconds=self.settings.session_max_age_seconds,
            prefix=self.settings.key_prefix,
            clock=self._clock,
        )
        self.rate_limiter = RateLimiter(
            storage,
            max_requests=self.settings.rate_limit_max_requests,
            window_seconds=self.settings.rate_limit_window_seconds,
            prefix=self.settings.key_prefix,
            clock=self._clock,
        )
        self.tokens = TokenService(ttl_seconds=self.settings.token_ttl_seconds, clock=self._clock)

    def _now(self) -> float:
        return self._clock()

    # ---------------- Sessions ----------------
    def create_session(self, ip: str) -> Dict[str, Any]:
        token = self.sessions.create(ip)
        log_captcha_event("session_created", session=_short(token))
        return {
            "session_token": token,
            "expires_in_seconds": self.settings.session_max_age_seconds,
        }

    def _load_session(self, token: str) -> Session:
        session = self.sessions.get(token)
        if session is None:
            raise ExpiredError(INVALID_SESSION)
        if session.age(self._now()) > self.settings.session_max_age_seconds:
            self.sessions.delete(token)
            raise ExpiredError("Session expired")
        return session

    def _validate_token_format(self, token: Any) -> None:
        if not isinstance(token, str) or not SESSION_TOKEN_RE.fullmatch(token):
            raise ProtocolError("Invalid session token")

    def _validate_type(self, captcha_type: Any) -> None:
        if captcha_type not in CAPTCHA_TYPES:
            raise ProtocolError("Invalid captcha type")

    # ---------------- Challenges ----------------
    def generate_challenge(self, session_token: str, captcha_type: str, difficulty: int = 0) -> ChallengeResult:
        try:
            self._validate_token_format(session_token)
            self._validate_type(captcha_type)
            if isinstance(difficulty, bool) or not isinstance(difficulty, int) or not 0 <= difficulty <= MAX_DIFFICULTY:
                raise ProtocolError("Invalid difficulty")

            session = self._load_session(session_token)
            if session.captcha_type is not None and session.captcha_type != captcha_type:
                raise ProtocolError("Challenge already issued for a different captcha type")

            generated = challenges.generate(captcha_type, difficulty)
            updated = self.sessions.update(
                session_token,
                captcha_type=captcha_type,
                answer=generated.answer,
                challenge_generated_at=self._now(),
            )
            if updated is None:
                raise ExpiredError(INVALID_SESSION)
        except CaptchaError as exc:
            log_captcha_event("challenge_rejected", session=_short(session_token), reason=exc.kind)
            return ChallengeResult(ok=False, error=exc.message, error_kind=exc.kind)

        log_captcha_event("challenge_generated", session=_short(session_token), type=captcha_type)
        return ChallengeResult(ok=True, captcha_type=captcha_type, challenge=generated.challenge)

    # ---------------- Verification ----------------
    def verify(
        self,
        session_token: str,
        captcha_type: str,
        user_answer: Any,
        elapsed_seconds: float,
        ip: str,
        options: Optional[VerifyOptions] = None,
    ) -> VerificationResult:
        try:
            result = self._verify(session_token, captcha_type, user_answer, elapsed_seconds, ip, options)
        except RateLimitedError as exc:
            log_captcha_event("rate_limited", session=_short(session_token), retry_after=exc.retry_after)
            return VerificationResult(
                verified=False, error=exc.message, error_kind=exc.kind, retry_after=exc.retry_after
            )
        except LockedError as exc:
            log_captcha_event("locked", session=_short(session_token), lock_remaining=exc.lock_remaining)
            return VerificationResult(
                verified=False, error=exc.message, error_kind=exc.kind, lock_remaining=exc.lock_remaining
            )
        except VerificationFailure as exc:
            log_captcha_event(
                "verification_failed",
                session=_short(session_token),
                reason=exc.message,
                attempts=exc.attempts,
            )
            return VerificationResult(
                verified=False,
                error=exc.message,
                error_kind=exc.kind,
                attempts=exc.attempts,
                max_attempts=exc.max_attempts,
                remaining_attempts=exc.remaining_attempts,
                lock_remaining=exc.lock_remaining,
            )
        except CaptchaError as exc:
            log_captcha_event("verification_rejected", session=_short(session_token), reason=exc.kind)
            return VerificationResult(verified=False, error=exc.message, error_kind=exc.kind)

        log_captcha_event("verified", session=_short(session_token), type=captcha_type)
        return result

    def _verify(
        self,
        session_token: str,
        captcha_type: str,
        user_answer: Any,
        elapsed_seconds: float,
        ip: str,
        options: Optional[VerifyOptions],
    ) -> VerificationResult:
        # Counted before any validation, so malformed requests consume budget too.
        rate = self.rate_limiter.check(ip)
        if not rate.allowed:
            retry_after = max(0, math.ceil(rate.reset_time - self._now()))
            raise RateLimitedError("Rate limit exceeded", retry_after=retry_after)

        self._validate_token_format(session_token)
        self._validate_type(captcha_type)
        if (
            isinstance(elapsed_seconds, bool)
            or not isinstance(elapsed_seconds, (int, float))
            or not 0 <= elapsed_seconds <= self.settings.max_solve_seconds
        ):
            raise ProtocolError("Invalid time taken")

        session = self._load_session(session_token)
        if session.captcha_type is None:
            raise ProtocolError("No challenge issued for this session")
        if session.captcha_type != captcha_type:
            raise ProtocolError("Captcha type mismatch")

        session = self._check_lock(session)
        answer = _NORMALIZERS[captcha_type](user_answer)

        if elapsed_seconds < self.min_solve_seconds(captcha_type):
            raise self._register_failure(session, "Suspicious activity detected", with_remaining=False)

        tolerance = self.settings.slider_tolerance
        if options is not None and options.slider_tolerance is not None:
            tolerance = options.slider_tolerance
        if not COMPARATORS[captcha_type](answer, session.answer, tolerance):
            raise self._register_failure(session, "Incorrect answer", with_remaining=True)

        # Duplicate submissions race here; only the call that removes the session wins.
        if not self.sessions.delete(session_token):
            raise ExpiredError(INVALID_SESSION)

        now = self._now()
        return VerificationResult(
            verified=True,
            token=self.tokens.mint(session_token, ip),
            timestamp=int(now * 1000),
        )

    def min_solve_seconds(self, captcha_type: str) -> float:
        if captcha_type == "math":
            return self.settings.min_solve_seconds_math
        return self.settings.min_solve_seconds_default

    def _check_lock(self, session: Session) -> Session:
        if not session.locked:
            return session
        remaining = (session.lock_until or 0.0) - self._now()
        if remaining > 0:
            raise LockedError("Too many attempts. Account temporarily locked", lock_remaining=math.ceil(remaining))

        self.sessions.unlock(session.token)
        unlocked = self.sessions.update(session.token)
        if unlocked is None:
            raise ExpiredError(INVALID_SESSION)
        log_captcha_event("unlocked", session=_short(session.token))
        return unlocked

    def _register_failure(self, session: Session, message: str, with_remaining: bool) -> CaptchaError:
        max_attempts = self.settings.max_attempts
        # The counter and the lock key are authoritative; update() only refreshes the TTL.
        attempts = self.sessions.increment_attempts(session.token)
        lock_remaining = None
        if attempts >= max_attempts:
            self.sessions.lock(session.token, self._now() + self.settings.lockout_seconds)
            lock_remaining = self.settings.lockout_seconds

        if self.sessions.update(session.token) is None:
            return ExpiredError(INVALID_SESSION)
        if lock_remaining is not None:
            log_captcha_event("session_locked", session=_short(session.token), attempts=attempts)

        return VerificationFailure(
            message,
            attempts=attempts,
            max_attempts=max_attempts,
            remaining_attempts=max(0, max_attempts - attempts) if with_remaining else None,
            lock_remaining=lock_remaining,
        )

    # ---------------- Tokens & stats ----------------
    def validate_token(self, token: str, ip: str) -> TokenValidation:
        if not isinstance(token, str) or not token:
            return TokenValidation(valid=False, error="Invalid token format")
        return self.tokens.validate(token, ip)

    def stats(self) -> Dict[str, Any]:
        return {
            "active_sessions": self.sessions.count(),
            "rate_limit_entries": self.rate_limiter.entry_count(),
            "storage_backend": getattr(self.storage, "active_name", self.storage.name),
            "config": {
                "session_max_age": self.settings.session_max_age_seconds,
                "max_attempts": self.settings.max_attempts,
                "lockout_duration": self.settings.lockout_seconds,
                "rate_limit_window": self.settings.rate_limit_window_seconds,
                "rate_limit_max": self.settings.rate_limit_max_requests,
                "token_ttl": self.settings.token_ttl_seconds,
            },
        }


@lru_cache(maxsize=1)
def get_engine() -> CaptchaEngine:
    settings = get_settings()
    return CaptchaEngine(build_storage(settings), settings=settings)


def reset_engine() -> None:
    get_engine.cache_clear()


__all__ = ["CaptchaEngine", "COMPARATORS", "get_engine", "reset_engine"]
