import logging
import sys
from datetime import datetime, timezone

from dripster.core.db import Base, SessionLocal, engine
from dripster.models.email_verification import EmailVerification
from dripster.services.verification_store import SqlVerificationStore

logger = logging.getLogger(__name__)


# 한번만 실행하는 스크립트
def reset_db():
    logger.info("데이터베이스 초기화 중...")
    Base.metadata.drop_all(bind=engine, checkfirst=True)
    Base.metadata.create_all(bind=engine)
    logger.info("초기화 완료!")


def purge_retired_verifications(before: datetime = None) -> int:
    """검증 완료됐거나 만료된 email_verifications 행 정리."""
    before = before or datetime.now(timezone.utc)
    db = SessionLocal()
    try:
        n = SqlVerificationStore(db).purge_retired(before)
    finally:
        db.close()
    logger.info("purged %d verification record(s)", n)
    return n


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    if len(sys.argv) > 1 and sys.argv[1] == "purge":
        purge_retired_verifications()
    else:
        reset_db()
