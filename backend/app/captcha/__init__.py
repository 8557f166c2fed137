from app.captcha.engine import CaptchaEngine, get_engine, reset_engine
from app.captcha.models import CAPTCHA_TYPES, VerificationResult, VerifyOptions

__all__ = [
    "CAPTCHA_TYPES",
    "CaptchaEngine",
    "VerificationResult",
    "VerifyOptions",
    "get_engine",
    "reset_engine",
]
