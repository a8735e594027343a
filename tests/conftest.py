# tests/conftest.py

import os
import re

import pytest

# settings 는 import 시점에 읽히므로 가장 먼저 설정
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["MAIL_BACKEND"] = "log"
os.environ["VERIFICATION_STORE"] = "sql"
os.environ["ALLOWED_EMAIL_DOMAIN"] = "@ssn.edu.in"

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dripster.core.db import Base
from dripster.main import app
from dripster.models.email_verification import EmailVerification
from dripster.routers.otp import get_mailer, get_verification_store
from dripster.services.mailer import Mailer
from dripster.services.verification_store import SqlVerificationStore

CODE_RE = re.compile(r">\s*(\d{6})\s*<")


class FakeMailer(Mailer):
    """Records outgoing mail instead of sending it."""

    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send(self, to, subject, html):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append({"to": to, "subject": subject, "html": html})

    def last_code(self):
        return CODE_RE.search(self.sent[-1]["html"]).group(1)


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    db = Session()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def store(db_session):
    return SqlVerificationStore(db_session)


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(store, mailer):
    app.dependency_overrides[get_verification_store] = lambda: store
    app.dependency_overrides[get_mailer] = lambda: mailer
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def rows(db_session):
    """Current email_verifications rows, freshly read."""
    def _rows(email=None):
        db_session.expire_all()
        q = db_session.query(EmailVerification)
        if email is not None:
            q = q.filter(EmailVerification.email == email)
        return q.order_by(EmailVerification.id).all()
    return _rows
