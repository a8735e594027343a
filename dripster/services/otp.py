# dripster/services/otp.py
"""
이메일 OTP 발급 / 검증.

레코드 상태 (이메일 단위):

    NONE --발급--> PENDING --일치--> VERIFIED
                     |  \\--불일치(attempts+1)--> PENDING / LOCKED (attempts >= 최대)
                     \\--expires_at 지남--> EXPIRED (조회 시점 판단, 쓰기 없음)

어느 상태에서든 재발급하면 기존 행을 모두 지우고 새 PENDING 행을 만든다.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from dripster.core.config import settings
from dripster.core.errors import (
    AttemptsExhausted,
    CodeMismatch,
    CodeNotFoundOrExpired,
    InvalidEmailDomain,
    StorageError,
)
from dripster.core.security import generate_otp, hash_otp, is_allowed_email, normalize_email, otp_matches
from dripster.services.mailer import Mailer, render_otp_email
from dripster.services.verification_store import VerificationStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def issue_otp(email: str, store: VerificationStore, mailer: Mailer, now: Optional[datetime] = None) -> dict:
    email = normalize_email(email)
    if not is_allowed_email(email):
        logger.info("Invalid email domain: %s", email)
        raise InvalidEmailDomain()

    now = now or utcnow()
    code = generate_otp()
    logger.info("Generated OTP for %s", email)

    # 이전 코드는 상태와 관계없이 전부 무효화
    removed = store.delete_for_email(email)
    if removed:
        logger.info("Removed %d previous verification(s) for %s", removed, email)

    store.insert(email, hash_otp(code), now + timedelta(minutes=settings.OTP_EXPIRE_MINUTES))

    html = render_otp_email(code, settings.OTP_EXPIRE_MINUTES, settings.APP_NAME)
    mailer.send(email, f"Your {settings.APP_NAME} Verification Code", html)

    return {"success": True, "message": "OTP sent to your email"}


def verify_otp(email: str, code: str, store: VerificationStore, now: Optional[datetime] = None) -> dict:
    email = normalize_email(email)
    code = (code or "").strip()
    now = now or utcnow()
    logger.info("Verifying OTP for email: %s", email)

    record = store.find_active(email, now)
    if record is None:
        logger.info("Invalid or expired OTP for %s", email)
        raise CodeNotFoundOrExpired()

    if record.attempts >= settings.OTP_MAX_ATTEMPTS:
        logger.warning("OTP attempts exhausted for %s (%d)", email, record.attempts)
        raise AttemptsExhausted()

    if not otp_matches(code, record.otp_hash):
        try:
            recorded = store.record_failed_attempt(record, now)
        except StorageError:
            # 불일치 응답이 우선, 저장 실패는 로그만
            logger.exception("Failed to record OTP attempt for %s", email)
            raise CodeMismatch()
        if not recorded:
            # 그 사이 verified 되거나 재발급으로 지워진 행
            logger.info("OTP record for %s retired during mismatch", email)
            raise CodeNotFoundOrExpired()
        logger.info("OTP mismatch for %s (attempt %d)", email, record.attempts + 1)
        raise CodeMismatch()

    if not store.mark_verified(record):
        # 동시에 들어온 다른 요청이 먼저 verified 로 바꿈
        logger.info("OTP already consumed for %s", email)
        raise CodeNotFoundOrExpired()

    logger.info("OTP verified successfully for: %s", email)
    return {"success": True, "message": "Email verified successfully"}
