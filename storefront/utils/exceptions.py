import enum

from fastapi import HTTPException, status


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR KINDS: closed taxonomy carried end-to-end
# ═══════════════════════════════════════════════════════════════════════════════
class ErrorKind(str, enum.Enum):
    VALIDATION   = "VALIDATION"
    CONFLICT     = "CONFLICT"
    NOT_FOUND    = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    LOCKED       = "LOCKED"
    UNAUTHORIZED = "UNAUTHORIZED"
    INTERNAL     = "INTERNAL"


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES: machine-readable constants for frontend switch/case
# ═══════════════════════════════════════════════════════════════════════════════
class ErrorCode:
    VALIDATION_ERROR        = "VALIDATION_ERROR"
    UNAUTHORIZED            = "UNAUTHORIZED"
    TOKEN_EXPIRED           = "TOKEN_EXPIRED"
    REFRESH_TOKEN_INVALID   = "REFRESH_TOKEN_INVALID"
    EMAIL_NOT_VERIFIED      = "EMAIL_NOT_VERIFIED"
    NOT_FOUND               = "NOT_FOUND"
    DUPLICATE_ENTRY         = "DUPLICATE_ENTRY"
    REGISTRATION_EXPIRED    = "REGISTRATION_EXPIRED"
    OTP_INVALID             = "OTP_INVALID"
    OTP_EXPIRED             = "OTP_EXPIRED"
    OTP_LOCKED              = "OTP_LOCKED"
    OTP_COOLDOWN            = "OTP_COOLDOWN"
    OTP_SEND_LIMIT          = "OTP_SEND_LIMIT"
    RESET_NOT_VERIFIED      = "RESET_NOT_VERIFIED"
    SERVICE_UNAVAILABLE     = "SERVICE_UNAVAILABLE"
    INTERNAL_SERVER_ERROR   = "INTERNAL_SERVER_ERROR"


# ═══════════════════════════════════════════════════════════════════════════════
# BASE EXCEPTION
# ═══════════════════════════════════════════════════════════════════════════════
class AppException(HTTPException):
    """
    Base exception for all application-level errors.
    Carries a machine-readable error_code and an ErrorKind for frontend handling.
    `extra` holds non identity-revealing counters (remainingAttempts,
    lockDuration, retryAfter) that are merged into the error body.
    """
    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: str,
        kind: ErrorKind,
        details: list | None = None,
        field: str | None = None,
        extra: dict | None = None,
    ):
        self.error_code = error_code
        self.kind = kind
        error = {
            "code": error_code,
            "kind": kind.value,
            "details": details,
            "field": field,
        }
        if extra:
            error.update(extra)
        super().__init__(status_code=status_code, detail={"message": message, "error": error})

    @property
    def message(self) -> str:
        return self.detail["message"]


# ═══════════════════════════════════════════════════════════════════════════════
# CONCRETE EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════════════

class UnauthorizedException(AppException):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(status.HTTP_401_UNAUTHORIZED, message,
                         ErrorCode.UNAUTHORIZED, ErrorKind.UNAUTHORIZED)


class InvalidCredentialsException(UnauthorizedException):
    def __init__(self):
        super().__init__("Invalid email or password")


class TokenExpiredException(AppException):
    def __init__(self):
        super().__init__(status.HTTP_401_UNAUTHORIZED, "Access token has expired",
                         ErrorCode.TOKEN_EXPIRED, ErrorKind.UNAUTHORIZED)


class RefreshTokenInvalidException(AppException):
    def __init__(self):
        super().__init__(status.HTTP_401_UNAUTHORIZED, "Invalid refresh token",
                         ErrorCode.REFRESH_TOKEN_INVALID, ErrorKind.UNAUTHORIZED)


class EmailNotVerifiedException(AppException):
    def __init__(self):
        super().__init__(
            status.HTTP_401_UNAUTHORIZED,
            "Please verify your email address before logging in.",
            ErrorCode.EMAIL_NOT_VERIFIED,
            ErrorKind.UNAUTHORIZED,
        )


class NotFoundException(AppException):
    def __init__(self, resource: str = "Resource"):
        super().__init__(status.HTTP_404_NOT_FOUND, f"{resource} not found",
                         ErrorCode.NOT_FOUND, ErrorKind.NOT_FOUND)


class DuplicateEntryException(AppException):
    def __init__(self, message: str = "Record already exists", field: str | None = None):
        super().__init__(status.HTTP_409_CONFLICT, message,
                         ErrorCode.DUPLICATE_ENTRY, ErrorKind.CONFLICT, field=field)


class RegistrationExpiredException(AppException):
    def __init__(self, message: str = "Registration data expired. Please register again."):
        super().__init__(status.HTTP_404_NOT_FOUND, message,
                         ErrorCode.REGISTRATION_EXPIRED, ErrorKind.NOT_FOUND)


class OTPInvalidException(AppException):
    def __init__(self, remaining_attempts: int):
        super().__init__(
            status.HTTP_400_BAD_REQUEST,
            f"Incorrect OTP. {remaining_attempts} attempts remaining.",
            ErrorCode.OTP_INVALID,
            ErrorKind.UNAUTHORIZED,
            extra={"remainingAttempts": remaining_attempts},
        )


class OTPExpiredException(AppException):
    def __init__(self):
        super().__init__(
            status.HTTP_400_BAD_REQUEST,
            "OTP expired or not found. Please request a new one.",
            ErrorCode.OTP_EXPIRED,
            ErrorKind.NOT_FOUND,
        )


class OTPLockedException(AppException):
    def __init__(self, lock_seconds: int):
        minutes = max(1, -(-lock_seconds // 60))
        super().__init__(
            status.HTTP_429_TOO_MANY_REQUESTS,
            f"Too many incorrect attempts. Try again in {minutes} minutes.",
            ErrorCode.OTP_LOCKED,
            ErrorKind.LOCKED,
            extra={"lockDuration": lock_seconds},
        )


class OTPCooldownException(AppException):
    def __init__(self, retry_after: int):
        super().__init__(
            status.HTTP_429_TOO_MANY_REQUESTS,
            f"Please wait {retry_after} seconds before requesting another OTP.",
            ErrorCode.OTP_COOLDOWN,
            ErrorKind.RATE_LIMITED,
            extra={"retryAfter": retry_after},
        )


class OTPSendLimitException(AppException):
    def __init__(self, retry_after: int):
        super().__init__(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Maximum OTP requests exceeded. Please try again later.",
            ErrorCode.OTP_SEND_LIMIT,
            ErrorKind.RATE_LIMITED,
            extra={"retryAfter": retry_after},
        )


class ResetNotVerifiedException(AppException):
    def __init__(self):
        super().__init__(
            status.HTTP_401_UNAUTHORIZED,
            "Password reset has not been verified. Please verify the OTP first.",
            ErrorCode.RESET_NOT_VERIFIED,
            ErrorKind.UNAUTHORIZED,
        )


class ServiceUnavailableException(AppException):
    def __init__(self, message: str = "Service temporarily unavailable. Please try again."):
        super().__init__(status.HTTP_503_SERVICE_UNAVAILABLE, message,
                         ErrorCode.SERVICE_UNAVAILABLE, ErrorKind.INTERNAL)
