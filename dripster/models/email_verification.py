# dripster/models/email_verification.py
from sqlalchemy import Column, Integer, String, DateTime, Boolean, func
from dripster.core.db import Base

class EmailVerification(Base):
    __tablename__ = "email_verifications"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), index=True, nullable=False)
    # SHA-256 hex, 평문 코드는 저장하지 않음
    otp_hash = Column(String(64), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified = Column(Boolean, nullable=False, default=False)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
