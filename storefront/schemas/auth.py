from pydantic import BaseModel, EmailStr, field_validator, model_validator
import re

from storefront.models.user import UserRole
from storefront.services.otp_vault import OTPPurpose


# ─── Helpers ──────────────────────────────────────────────────────────────────
def validate_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError("Password must be at least 8 characters")
    if len(v.encode("utf-8")) > 72:
        raise ValueError("Password must be at most 72 bytes")
    if not re.search(r"[a-z]", v):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", v):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[0-9]", v):
        raise ValueError("Password must contain at least one digit")
    return v


def normalize_email(v: str) -> str:
    return v.strip().lower()


class EmailBody(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return normalize_email(v)


# ─── Request Schemas ──────────────────────────────────────────────────────────
class RegisterRequest(EmailBody):
    name:            str
    password:        str
    role:            UserRole = UserRole.USER
    phoneNumber:     str | None = None
    profileImageUrl: str | None = None

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return validate_password_strength(v)

    @field_validator("name")
    @classmethod
    def name_length(cls, v: str) -> str:
        if len(v.strip()) < 3:
            raise ValueError("Name must be at least 3 characters")
        return v.strip()

    @field_validator("role")
    @classmethod
    def self_service_role(cls, v: UserRole) -> UserRole:
        if v is UserRole.ADMIN:
            raise ValueError("Admin accounts cannot be self-registered")
        return v

    @model_validator(mode="after")
    def seller_needs_phone(self) -> "RegisterRequest":
        if self.role is UserRole.SELLER and not (self.phoneNumber and self.phoneNumber.strip()):
            raise ValueError("Phone number is required for sellers")
        return self


class VerifyOTPRequest(EmailBody):
    otp: str

    @field_validator("otp")
    @classmethod
    def six_digits(cls, v: str) -> str:
        v = v.strip()
        if not re.fullmatch(r"\d{6}", v):
            raise ValueError("OTP must be exactly 6 digits")
        return v


class ResendOTPRequest(EmailBody):
    pass


class LoginRequest(EmailBody):
    password: str


class ForgotPasswordRequest(EmailBody):
    pass


class ResetPasswordRequest(EmailBody):
    newPassword:     str
    confirmPassword: str | None = None

    @field_validator("newPassword")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return validate_password_strength(v)

    @model_validator(mode="after")
    def passwords_match(self) -> "ResetPasswordRequest":
        if self.confirmPassword is not None and self.newPassword != self.confirmPassword:
            raise ValueError("Passwords do not match")
        return self


# ─── Response Schemas ─────────────────────────────────────────────────────────
class UserOut(BaseModel):
    id:              str
    name:            str
    email:           str
    role:            str | None
    phoneNumber:     str | None = None
    profileImageUrl: str | None = None
    isVerified:      bool
    createdAt:       str | None = None
    updatedAt:       str | None = None


class AuthPayload(BaseModel):
    user:        UserOut
    accessToken: str
    tokenType:   str = "Bearer"
    expiresIn:   int          # seconds


class CooldownStatus(BaseModel):
    secondsRemaining: int
    canResend:        bool
    purpose:          OTPPurpose = OTPPurpose.EMAIL_VERIFICATION


class ResetVerificationStatus(BaseModel):
    isVerified: bool
