# backend/app/routers/captcha.py
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.captcha.engine import CaptchaEngine, get_engine
from app.captcha.models import VerifyOptions
from app.core.limiter import limiter, session_rate_limit
from app.security import client_ip

router = APIRouter(prefix="/api/captcha", tags=["captcha"])

# ---------------- Payloads ----------------
class SessionResponse(BaseModel):
    session_token: str
    expires_in_seconds: int

class ChallengePayload(BaseModel):
    session_token: str = Field(max_length=128)
    captcha_type: str = Field(max_length=16)
    difficulty: int = Field(default=0)

class VerifyOptionsPayload(BaseModel):
    slider_tolerance: Optional[float] = Field(default=None, ge=0, le=50)

class VerifyPayload(BaseModel):
    session_token: str = Field(max_length=128)
    captcha_type: str = Field(max_length=16)
    user_answer: Any = None
    time_taken: float
    options: Optional[VerifyOptionsPayload] = None

class ValidateTokenPayload(BaseModel):
    token: str = Field(max_length=500)


# ---------------- Routes ----------------
@router.post("/session", response_model=SessionResponse)
@limiter.limit(session_rate_limit)
def create_session(request: Request, engine: CaptchaEngine = Depends(get_engine)) -> SessionResponse:
    return SessionResponse(**engine.create_session(client_ip(request)))


@router.post("/challenge")
def create_challenge(payload: ChallengePayload, engine: CaptchaEngine = Depends(get_engine)):
    result = engine.generate_challenge(payload.session_token, payload.captcha_type, payload.difficulty)
    if result.ok:
        return {"captcha_type": result.captcha_type, "challenge": result.challenge}
    code = status.HTTP_404_NOT_FOUND if result.error_kind == "expired" else status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=code, content={"error": result.error})


@router.post("/verify")
def verify(request: Request, payload: VerifyPayload, engine: CaptchaEngine = Depends(get_engine)):
    options = None
    if payload.options is not None:
        options = VerifyOptions(slider_tolerance=payload.options.slider_tolerance)
    result = engine.verify(
        payload.session_token,
        payload.captcha_type,
        payload.user_answer,
        payload.time_taken,
        client_ip(request),
        options,
    )
    body = result.to_dict()
    body.pop("error_kind", None)
    if result.retry_after is not None:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=body,
            headers={"Retry-After": str(result.retry_after)},
        )
    return body


@router.post("/validate-token")
def validate_token(request: Request, payload: ValidateTokenPayload, engine: CaptchaEngine = Depends(get_engine)):
    return engine.validate_token(payload.token, client_ip(request)).to_dict()


@router.get("/stats")
def stats(engine: CaptchaEngine = Depends(get_engine)):
    return engine.stats()
