# dripster/services/mailer.py
import base64
import logging
from email.mime.text import MIMEText
from typing import Optional

import requests

from dripster.core.config import Settings, settings
from dripster.core.errors import MailDispatchError

logger = logging.getLogger(__name__)


def render_otp_email(code: str, expire_minutes: int, app_name: str) -> str:
    return f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2 style="color: #333; margin-bottom: 20px;">Verify Your Email</h2>
        <p style="color: #666; font-size: 16px; line-height: 1.5;">
          Welcome to {app_name}! Please use the following verification code to complete your signup:
        </p>
        <div style="background: #667eea; color: white; font-size: 32px; font-weight: bold; text-align: center; padding: 20px; margin: 30px 0; border-radius: 8px; letter-spacing: 8px;">
          {code}
        </div>
        <p style="color: #666; font-size: 14px;">
          This code will expire in {expire_minutes} minutes.
        </p>
        <p style="color: #999; font-size: 12px; margin-top: 30px;">
          If you didn't request this code, please ignore this email.
        </p>
      </div>
    """


def encode_message(to: str, subject: str, html: str, sender: Optional[str] = None) -> str:
    """MIME 메시지를 Gmail API 가 받는 base64url (padding 없음) 문자열로."""
    msg = MIMEText(html, "html", "utf-8")
    msg["To"] = to
    msg["Subject"] = subject
    if sender:
        msg["From"] = sender
    return base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii").rstrip("=")


class Mailer:
    def send(self, to: str, subject: str, html: str) -> None:
        raise NotImplementedError


class GmailMailer(Mailer):
    """
    Gmail API 발송.

    보낼 때마다 refresh token 으로 access token 을 새로 받는다.
    토큰 교환이나 발송이 실패하면 MailDispatchError, 재시도 없음.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        sender: Optional[str] = None,
        token_url: str = None,
        send_url: str = None,
        timeout: float = None,
        session: requests.Session = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.sender = sender
        self.token_url = token_url or settings.GMAIL_TOKEN_URL
        self.send_url = send_url or settings.GMAIL_SEND_URL
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.http = session or requests.Session()

    def get_access_token(self) -> str:
        if not (self.client_id and self.client_secret and self.refresh_token):
            logger.error("Gmail credentials are not configured")
            raise MailDispatchError()
        try:
            resp = self.http.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Failed to get Gmail access token: %s", e)
            raise MailDispatchError() from e
        if resp.status_code >= 300:
            logger.error("Failed to get Gmail access token (%s): %s", resp.status_code, resp.text)
            raise MailDispatchError()
        try:
            token = resp.json().get("access_token")
        except ValueError as e:
            raise MailDispatchError() from e
        if not token:
            logger.error("Gmail token response has no access_token")
            raise MailDispatchError()
        return token

    def send(self, to: str, subject: str, html: str) -> None:
        token = self.get_access_token()
        raw = encode_message(to, subject, html, sender=self.sender)
        try:
            resp = self.http.post(
                self.send_url,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                json={"raw": raw},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Gmail API error: %s", e)
            raise MailDispatchError() from e
        if resp.status_code >= 300:
            logger.error("Gmail API error (%s): %s", resp.status_code, resp.text)
            raise MailDispatchError()
        logger.info("Email sent via Gmail API to %s", to)


class LogMailer(Mailer):
    """개발용: 실제로 보내지 않고 로그만 남김 (코드가 로그에 찍힌다)."""

    def send(self, to: str, subject: str, html: str) -> None:
        logger.warning("MAIL_BACKEND=log, not sending. to=%s subject=%s\n%s", to, subject, html)


def build_mailer(cfg: Settings = settings) -> Mailer:
    backend = (cfg.MAIL_BACKEND or "gmail").lower()
    if backend == "log":
        return LogMailer()
    if backend == "gmail":
        return GmailMailer(
            client_id=cfg.GMAIL_CLIENT_ID,
            client_secret=cfg.GMAIL_CLIENT_SECRET,
            refresh_token=cfg.GMAIL_REFRESH_TOKEN,
            sender=cfg.MAIL_FROM or None,
            token_url=cfg.GMAIL_TOKEN_URL,
            send_url=cfg.GMAIL_SEND_URL,
            timeout=cfg.HTTP_TIMEOUT_SECONDS,
        )
    raise RuntimeError(f"unknown MAIL_BACKEND: {cfg.MAIL_BACKEND}")
