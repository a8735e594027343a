# dripster/core/errors.py
"""
OTP 흐름에서 발생하는 오류 모음.

각 예외는 HTTP 상태코드와 사용자에게 그대로 보여줄 메시지를 들고 있고,
main.py 의 exception handler 가 ``{"error": message}`` JSON 으로 바꿔준다.

- 400: 입력을 고쳐야 함 (도메인, 코드 불일치, 만료/없음)
- 429: 시도 횟수 초과, 새 코드를 받아야 함
- 500: 저장소/메일 의존성 실패, 나중에 다시 시도
"""
from dripster.core.config import settings


class OtpError(Exception):
    status_code: int = 500
    message: str = "Something went wrong. Please try again."

    def __init__(self, message: str = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidEmailDomain(OtpError):
    status_code = 400

    def __init__(self, message: str = None):
        super().__init__(
            message or f"Please use your {settings.INSTITUTION_NAME} student email ({settings.ALLOWED_EMAIL_DOMAIN})"
        )


class CodeNotFoundOrExpired(OtpError):
    # 코드가 발급된 적 없는지, 만료됐는지, 이미 쓰였는지 구분하지 않는다
    status_code = 400
    message = "Invalid or expired OTP code"


class CodeMismatch(CodeNotFoundOrExpired):
    # 로그/내부 처리용으로만 구분, 클라이언트 응답은 위와 동일
    pass


class AttemptsExhausted(OtpError):
    status_code = 429
    message = "Too many failed attempts. Please request a new code."


class StorageError(OtpError):
    status_code = 500
    message = "Failed to store OTP. Please try again."


class MailDispatchError(OtpError):
    status_code = 500
    message = "Failed to send OTP email. Please try again."
