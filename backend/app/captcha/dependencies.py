from typing import Any, Dict

from fastapi import Depends, HTTPException, Request, status

from app.captcha.engine import CaptchaEngine, get_engine
from app.security import client_ip

CAPTCHA_TOKEN_HEADER = "x-captcha-token"


def require_captcha_token(request: Request, engine: CaptchaEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Route dependency: demand a valid verification token in ``X-Captcha-Token``.

    Returns the decoded token payload.
    """
    token = request.headers.get(CAPTCHA_TOKEN_HEADER, "")
    if token:
        result = engine.validate_token(token, client_ip(request))
        if result.valid and result.payload is not None:
            return result.payload
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="captcha_required_or_invalid",
        headers={"X-Captcha-Required": "true"},
    )


__all__ = ["CAPTCHA_TOKEN_HEADER", "require_captcha_token"]
