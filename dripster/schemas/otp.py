# dripster/schemas/otp.py
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field, field_validator
from .base import BaseSchema


class SendOtpIn(BaseSchema):
    # EmailStr 을 쓰면 422 가 나가므로 도메인 검사는 서비스에서 400 으로 처리
    email: str = Field(..., min_length=1, max_length=255)


class VerifyOtpIn(BaseSchema):
    email: str = Field(..., min_length=1, max_length=255)
    otp: str = Field(..., min_length=1, max_length=32)


class OtpResultOut(BaseModel):
    success: bool
    message: str


class ErrorOut(BaseModel):
    error: str


class VerificationRecord(BaseSchema):
    """저장소 백엔드(SQL/REST)와 무관한 email_verifications 한 행."""
    id: int
    email: str
    otp_hash: str
    expires_at: datetime
    verified: bool = False
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("expires_at", "last_attempt_at", "created_at")
    @classmethod
    def _as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # SQLite 는 tzinfo 를 버리므로 naive 값은 UTC 로 간주
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v
