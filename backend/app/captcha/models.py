from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Literal, Optional, Union

CaptchaType = Literal["math", "image", "slider", "pattern"]
CAPTCHA_TYPES = ("math", "image", "slider", "pattern")

Answer = Union[int, str, List[int]]


@dataclass
class Session:
    token: str
    created_at: float
    ip_fingerprint: str
    captcha_type: Optional[str] = None
    answer: Optional[Answer] = None
    challenge_generated_at: Optional[float] = None
    attempts: int = 0
    locked: bool = False
    lock_until: Optional[float] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> "Session":
        data = json.loads(raw)
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def age(self, now: float) -> float:
        return now - self.created_at


@dataclass
class RateLimitStatus:
    allowed: bool
    remaining: int
    reset_time: float


@dataclass
class VerifyOptions:
    """Per-call knobs for :meth:`CaptchaEngine.verify`.

    ``slider_tolerance`` is the accepted distance between the submitted slider
    position and the target; ``None`` uses the configured default (5).
    """

    slider_tolerance: Optional[float] = None


@dataclass
class GeneratedChallenge:
    captcha_type: str
    challenge: Dict[str, Any]
    answer: Answer


@dataclass
class VerificationResult:
    verified: bool
    token: Optional[str] = None
    timestamp: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    attempts: Optional[int] = None
    max_attempts: Optional[int] = None
    remaining_attempts: Optional[int] = None
    lock_remaining: Optional[int] = None
    retry_after: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class TokenValidation:
    valid: bool
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    ip_match: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class ChallengeResult:
    ok: bool
    captcha_type: Optional[str] = None
    challenge: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None and v != {}}


__all__ = [
    "CaptchaType",
    "CAPTCHA_TYPES",
    "Session",
    "RateLimitStatus",
    "VerifyOptions",
    "GeneratedChallenge",
    "VerificationResult",
    "TokenValidation",
    "ChallengeResult",
]
