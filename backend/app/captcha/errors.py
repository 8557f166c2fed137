"""
Failure taxonomy of the verification flow.

These exceptions are raised by the individual engine steps and converted
into structured results in :meth:`CaptchaEngine.verify`; none of them leave
the engine. Storage problems use :class:`app.storage.StorageFault` and are
absorbed by the failover backend instead.
"""

from __future__ import annotations

from typing import Optional


class CaptchaError(Exception):
    kind = "captcha_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ProtocolError(CaptchaError):
    """Malformed request or wrong captcha type. Never counts as an attempt."""

    kind = "protocol_error"


class ExpiredError(CaptchaError):
    """Session is missing or older than its max age."""

    kind = "expired"


class RateLimitedError(CaptchaError):
    kind = "rate_limited"

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class LockedError(CaptchaError):
    kind = "locked"

    def __init__(self, message: str, lock_remaining: int) -> None:
        super().__init__(message)
        self.lock_remaining = lock_remaining


class VerificationFailure(CaptchaError):
    """Wrong answer or implausible solve time; the attempt has been counted."""

    kind = "verification_failed"

    def __init__(
        self,
        message: str,
        attempts: int,
        max_attempts: int,
        remaining_attempts: Optional[int] = None,
        lock_remaining: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.max_attempts = max_attempts
        self.remaining_attempts = remaining_attempts
        self.lock_remaining = lock_remaining


__all__ = [
    "CaptchaError",
    "ProtocolError",
    "ExpiredError",
    "RateLimitedError",
    "LockedError",
    "VerificationFailure",
]
