from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    redis_url: Optional[str] = Field(default=None)
    redis_timeout_seconds: float = Field(default=5.0)
    redis_retry_interval_seconds: float = Field(default=30.0)
    key_prefix: str = Field(default="captcha:")

    session_max_age_seconds: int = Field(default=300)
    max_attempts: int = Field(default=3)
    lockout_seconds: int = Field(default=60)
    rate_limit_window_seconds: int = Field(default=900)
    rate_limit_max_requests: int = Field(default=50)
    token_ttl_seconds: int = Field(default=3600)
    slider_tolerance: float = Field(default=5.0)
    min_solve_seconds_math: float = Field(default=1.0)
    min_solve_seconds_default: float = Field(default=2.0)
    max_solve_seconds: float = Field(default=300.0)

    session_rate_limit: str = Field(default="10/minute")
    log_file: str = Field(default="captcha.log")


def _load_settings() -> Settings:
    env = os.getenv
    redis = env("REDIS_URL") or None
    return Settings(
        redis_url=redis,
        redis_timeout_seconds=float(env("REDIS_TIMEOUT_SECONDS", "5")),
        redis_retry_interval_seconds=float(env("REDIS_RETRY_INTERVAL_SECONDS", "30")),
        key_prefix=env("CAPTCHA_KEY_PREFIX", "captcha:") or "captcha:",
        session_max_age_seconds=int(env("CAPTCHA_SESSION_MAX_AGE_SECONDS", "300")),
        max_attempts=int(env("CAPTCHA_MAX_ATTEMPTS", "3")),
        lockout_seconds=int(env("CAPTCHA_LOCKOUT_SECONDS", "60")),
        rate_limit_window_seconds=int(env("CAPTCHA_RATE_LIMIT_WINDOW_SECONDS", "900")),
        rate_limit_max_requests=int(env("CAPTCHA_RATE_LIMIT_MAX_REQUESTS", "50")),
        token_ttl_seconds=int(env("CAPTCHA_TOKEN_TTL_SECONDS", "3600")),
        slider_tolerance=float(env("CAPTCHA_SLIDER_TOLERANCE", "5")),
        min_solve_seconds_math=float(env("CAPTCHA_MIN_SOLVE_SECONDS_MATH", "1")),
        min_solve_seconds_default=float(env("CAPTCHA_MIN_SOLVE_SECONDS_DEFAULT", "2")),
        max_solve_seconds=float(env("CAPTCHA_MAX_SOLVE_SECONDS", "300")),
        session_rate_limit=env("CAPTCHA_SESSION_RATE_LIMIT", "10/minute") or "10/minute",
        log_file=env("CAPTCHA_LOG_FILE", "captcha.log") or "captcha.log",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return _load_settings()


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()


__all__ = ["Settings", "get_settings", "reload_settings"]
