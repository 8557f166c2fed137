"""
Verification tokens handed out after a solved captcha.

The token is base64-encoded JSON: ``{"session_token", "timestamp", "ip"}``
where ``timestamp`` is milliseconds since the epoch and ``ip`` is the SHA-256
fingerprint of the minting client. It is obscured, not signed; anyone can
forge one. Protected routes must treat it as a speed bump only.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from typing import Callable, Optional

from app.captcha.models import TokenValidation
from app.security import fingerprint_ip
from app.security.logger import captcha_logger as logger


class TokenService:
    def __init__(self, ttl_seconds: int = 3600, clock: Optional[Callable[[], float]] = None) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.time

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def mint(self, session_token: str, ip: str) -> str:
        payload = {
            "session_token": session_token,
            "timestamp": self._now_ms(),
            "ip": fingerprint_ip(ip),
        }
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return base64.b64encode(raw).decode("ascii")

    def validate(self, token: str, ip: str) -> TokenValidation:
        try:
            payload = json.loads(base64.b64decode(token, validate=True).decode("utf-8"))
        except (binascii.Error, ValueError, TypeError):
            return TokenValidation(valid=False, error="Invalid token format")

        if not isinstance(payload, dict) or not isinstance(payload.get("timestamp"), (int, float)):
            return TokenValidation(valid=False, error="Invalid token format")

        age_ms = self._now_ms() - payload["timestamp"]
        if age_ms > self.ttl_seconds * 1000:
            return TokenValidation(valid=False, error="Token expired")

        ip_match = payload.get("ip") == fingerprint_ip(ip)
        if not ip_match:
            # Client IPs change mid-session (mobile networks, proxies); log only.
            logger.warning("IP mismatch for verification token")

        return TokenValidation(valid=True, payload=payload, ip_match=ip_match)


__all__ = ["TokenService"]
