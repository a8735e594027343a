import hashlib
import hmac
import secrets

from dripster.core.config import settings

OTP_MIN = 100000
OTP_MAX = 999999


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_allowed_email(email: str, domain: str = None) -> bool:
    suffix = (domain if domain is not None else settings.ALLOWED_EMAIL_DOMAIN).lower()
    return bool(suffix) and normalize_email(email).endswith(suffix)


def generate_otp() -> str:
    """100000~999999 범위의 6자리 코드 (앞자리 0 없음, 900,000개)."""
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


def hash_otp(code: str) -> str:
    return hashlib.sha256(str(code).encode("utf-8")).hexdigest()


def otp_matches(code: str, otp_hash: str) -> bool:
    # 전체 digest 끼리 비교하므로 prefix 일치 여부가 타이밍으로 새지 않음
    return hmac.compare_digest(hash_otp(code), otp_hash or "")
