from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.settings import get_settings

# If later behind a proxy, parse X-Forwarded-For here.
limiter = Limiter(key_func=get_remote_address)


def session_rate_limit() -> str:
    return get_settings().session_rate_limit


__all__ = ["limiter", "session_rate_limit"]
