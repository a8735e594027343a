# dripster/services/verification_store.py
"""
email_verifications 저장소.

OTP 서비스는 이 인터페이스만 본다. 백엔드는 두 가지:

- ``SqlVerificationStore``: SQLAlchemy 세션 (기본값)
- ``RestVerificationStore``: Supabase PostgREST (service role key 로 접근)

모든 실패는 ``StorageError`` 로 바뀌어 올라간다. 네트워크/DB 오류는 재시도하지 않는다.
"""
import logging
from datetime import datetime
from typing import List, Optional

import requests
from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dripster.core.config import settings
from dripster.core.errors import StorageError
from dripster.models.email_verification import EmailVerification
from dripster.schemas.otp import VerificationRecord

logger = logging.getLogger(__name__)


class VerificationStore:
    def delete_for_email(self, email: str) -> int:
        raise NotImplementedError

    def insert(self, email: str, otp_hash: str, expires_at: datetime) -> VerificationRecord:
        raise NotImplementedError

    def find_active(self, email: str, now: datetime) -> Optional[VerificationRecord]:
        """verified=false, expires_at > now 인 가장 최근 행."""
        raise NotImplementedError

    def record_failed_attempt(self, record: VerificationRecord, now: datetime) -> bool:
        """
        attempts + 1, last_attempt_at = now. 아직 verified=false 일 때만.
        False 면 그 사이 verified 됐거나 재발급으로 삭제된 것.
        """
        raise NotImplementedError

    def mark_verified(self, record: VerificationRecord) -> bool:
        """verified=false 인 경우에만 true 로 바꾼다. 바뀐 행이 없으면 False."""
        raise NotImplementedError

    def purge_retired(self, before: datetime) -> int:
        """verified 이거나 before 이전에 만료된 행 삭제."""
        raise NotImplementedError


class SqlVerificationStore(VerificationStore):
    def __init__(self, db: Session):
        self.db = db

    def _fail(self, op: str, e: Exception) -> StorageError:
        self.db.rollback()
        logger.error("verification store %s failed: %s", op, e)
        return StorageError()

    def delete_for_email(self, email: str) -> int:
        try:
            n = self.db.query(EmailVerification).filter(EmailVerification.email == email).delete(
                synchronize_session=False
            )
            self.db.commit()
            return int(n or 0)
        except SQLAlchemyError as e:
            raise self._fail("delete", e) from e

    def insert(self, email: str, otp_hash: str, expires_at: datetime) -> VerificationRecord:
        row = EmailVerification(
            email=email,
            otp_hash=otp_hash,
            expires_at=expires_at,
            verified=False,
            attempts=0,
        )
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as e:
            raise self._fail("insert", e) from e
        return VerificationRecord.model_validate(row)

    def find_active(self, email: str, now: datetime) -> Optional[VerificationRecord]:
        try:
            row = (
                self.db.query(EmailVerification)
                .filter(
                    EmailVerification.email == email,
                    EmailVerification.verified.is_(False),
                    EmailVerification.expires_at > now,
                )
                .order_by(EmailVerification.created_at.desc(), EmailVerification.id.desc())
                .first()
            )
        except SQLAlchemyError as e:
            raise self._fail("select", e) from e
        return VerificationRecord.model_validate(row) if row else None

    def record_failed_attempt(self, record: VerificationRecord, now: datetime) -> bool:
        # attempts = attempts + 1 을 DB 에서 계산해야 동시 요청에도 누락이 없음
        stmt = (
            update(EmailVerification)
            .where(EmailVerification.id == record.id, EmailVerification.verified.is_(False))
            .values(attempts=EmailVerification.attempts + 1, last_attempt_at=now)
        )
        try:
            res = self.db.execute(stmt.execution_options(synchronize_session=False))
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail("update", e) from e
        return res.rowcount > 0

    def mark_verified(self, record: VerificationRecord) -> bool:
        stmt = (
            update(EmailVerification)
            .where(EmailVerification.id == record.id, EmailVerification.verified.is_(False))
            .values(verified=True)
        )
        try:
            res = self.db.execute(stmt.execution_options(synchronize_session=False))
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail("update", e) from e
        return res.rowcount > 0

    def purge_retired(self, before: datetime) -> int:
        try:
            n = (
                self.db.query(EmailVerification)
                .filter(or_(EmailVerification.verified.is_(True), EmailVerification.expires_at <= before))
                .delete(synchronize_session=False)
            )
            self.db.commit()
            return int(n or 0)
        except SQLAlchemyError as e:
            raise self._fail("delete", e) from e


class RestVerificationStore(VerificationStore):
    TABLE = "email_verifications"
    MAX_INCREMENT_RETRIES = 10

    def __init__(self, base_url: str, service_key: str, timeout: float = None, session: requests.Session = None):
        if not base_url or not service_key:
            logger.error("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY is not set")
            raise StorageError()
        self.url = f"{base_url.rstrip('/')}/rest/v1/{self.TABLE}"
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.http = session or requests.Session()
        self.headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Accept": "application/json",
        }

    def _request(self, method: str, params: dict = None, json: dict = None, prefer: str = None) -> requests.Response:
        headers = dict(self.headers)
        if json is not None:
            headers["Content-Type"] = "application/json"
        if prefer:
            headers["Prefer"] = prefer
        try:
            resp = self.http.request(
                method, self.url, params=params, json=json, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error("verification store %s failed: %s", method, e)
            raise StorageError() from e
        if resp.status_code >= 300:
            logger.error("verification store %s failed (%s): %s", method, resp.status_code, resp.text)
            raise StorageError()
        return resp

    @staticmethod
    def _ts(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _rows(resp: requests.Response) -> List[VerificationRecord]:
        try:
            data = resp.json()
        except ValueError as e:
            raise StorageError() from e
        return [VerificationRecord.model_validate(r) for r in (data or [])]

    def delete_for_email(self, email: str) -> int:
        resp = self._request("DELETE", params={"email": f"eq.{email}"}, prefer="return=representation")
        return len(self._rows(resp))

    def insert(self, email: str, otp_hash: str, expires_at: datetime) -> VerificationRecord:
        body = {
            "email": email,
            "otp_hash": otp_hash,
            "expires_at": self._ts(expires_at),
            "verified": False,
            "attempts": 0,
        }
        resp = self._request("POST", json=body, prefer="return=representation")
        rows = self._rows(resp)
        if not rows:
            raise StorageError()
        return rows[0]

    def find_active(self, email: str, now: datetime) -> Optional[VerificationRecord]:
        params = {
            "email": f"eq.{email}",
            "verified": "eq.false",
            "expires_at": f"gt.{self._ts(now)}",
            "order": "created_at.desc,id.desc",
            "limit": "1",
        }
        rows = self._rows(self._request("GET", params=params))
        return rows[0] if rows else None

    def _get_pending(self, record_id: int) -> Optional[VerificationRecord]:
        params = {"id": f"eq.{record_id}", "verified": "eq.false", "limit": "1"}
        rows = self._rows(self._request("GET", params=params))
        return rows[0] if rows else None

    def record_failed_attempt(self, record: VerificationRecord, now: datetime) -> bool:
        # PostgREST 는 attempts + 1 을 못 하므로 읽었던 값 기준으로 조건부 갱신,
        # 다른 요청이 먼저 바꿨으면 다시 읽고 재시도
        current = record
        for _ in range(self.MAX_INCREMENT_RETRIES):
            params = {
                "id": f"eq.{current.id}",
                "verified": "eq.false",
                "attempts": f"eq.{current.attempts}",
            }
            body = {"attempts": current.attempts + 1, "last_attempt_at": self._ts(now)}
            resp = self._request("PATCH", params=params, json=body, prefer="return=representation")
            if self._rows(resp):
                return True
            current = self._get_pending(record.id)
            if current is None:
                # 이미 verified 됐거나 재발급으로 삭제됨
                return False
        logger.error("attempt increment for verification %s kept losing races", record.id)
        raise StorageError()

    def mark_verified(self, record: VerificationRecord) -> bool:
        params = {"id": f"eq.{record.id}", "verified": "eq.false"}
        resp = self._request("PATCH", params=params, json={"verified": True}, prefer="return=representation")
        return len(self._rows(resp)) > 0

    def purge_retired(self, before: datetime) -> int:
        params = {"or": f"(verified.is.true,expires_at.lte.{self._ts(before)})"}
        resp = self._request("DELETE", params=params, prefer="return=representation")
        return len(self._rows(resp))
