# dripster/core/config.py
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "Dripster"
    DATABASE_URL: str = "sqlite:///./app.db"
    LOG_LEVEL: str = "INFO"

    # 가입 허용 도메인 (대소문자 무시)
    ALLOWED_EMAIL_DOMAIN: str = "@ssn.edu.in"
    INSTITUTION_NAME: str = "SSN"
    OTP_EXPIRE_MINUTES: int = 10
    OTP_MAX_ATTEMPTS: int = 5

    # "sql" | "rest"
    VERIFICATION_STORE: str = "sql"
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""

    # "gmail" | "log"
    MAIL_BACKEND: str = "gmail"
    MAIL_FROM: str = ""
    GMAIL_CLIENT_ID: str = ""
    GMAIL_CLIENT_SECRET: str = ""
    GMAIL_REFRESH_TOKEN: str = ""
    GMAIL_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    GMAIL_SEND_URL: str = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"

    HTTP_TIMEOUT_SECONDS: float = 15.0

    CORS_ALLOW_ORIGINS: List[str] = ["*"]

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
