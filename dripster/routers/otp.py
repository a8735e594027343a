# dripster/routers/otp.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from dripster.core.config import settings
from dripster.core.db import get_db
from dripster.schemas.otp import SendOtpIn, VerifyOtpIn, OtpResultOut, ErrorOut
from dripster.services.mailer import Mailer, build_mailer
from dripster.services.otp import issue_otp, verify_otp
from dripster.services.verification_store import (
    RestVerificationStore,
    SqlVerificationStore,
    VerificationStore,
)

router = APIRouter(prefix="/api/auth", tags=["otp"])

ERROR_RESPONSES = {
    400: {"model": ErrorOut},
    429: {"model": ErrorOut},
    500: {"model": ErrorOut},
}


def get_verification_store(db: Session = Depends(get_db)) -> VerificationStore:
    if settings.VERIFICATION_STORE.lower() == "rest":
        return RestVerificationStore(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    return SqlVerificationStore(db)


def get_mailer() -> Mailer:
    return build_mailer(settings)


@router.post("/send-otp", response_model=OtpResultOut, responses=ERROR_RESPONSES)
def send_otp(
    payload: SendOtpIn,
    store: VerificationStore = Depends(get_verification_store),
    mailer: Mailer = Depends(get_mailer),
):
    return issue_otp(payload.email, store, mailer)


@router.post("/verify-otp", response_model=OtpResultOut, responses=ERROR_RESPONSES)
def verify(
    payload: VerifyOtpIn,
    store: VerificationStore = Depends(get_verification_store),
):
    return verify_otp(payload.email, payload.otp, store)
