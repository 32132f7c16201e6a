from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # ─── Application ───────────────────────────────────────────────────────────
    APP_NAME: str = "Storefront Auth Service"
    APP_ENV:  str = "development"
    APP_DEBUG: bool = True
    APP_HOST:  str = "0.0.0.0"
    APP_PORT:  int = 8000

    # ─── Database ──────────────────────────────────────────────────────────────
    DATABASE_URL:          str
    DATABASE_POOL_SIZE:    int  = 10
    DATABASE_MAX_OVERFLOW: int  = 20
    DATABASE_POOL_TIMEOUT: int  = 30
    DATABASE_ECHO:         bool = False

    # ─── Redis ─────────────────────────────────────────────────────────────────
    REDIS_URL:            str   = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT: float = 5.0

    # ─── JWT ───────────────────────────────────────────────────────────────────
    SECRET_KEY:                    str
    ALGORITHM:                     str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES:   int = 15
    REFRESH_TOKEN_EXPIRE_DAYS:     int = 30
    REFRESH_COOKIE_NAME:           str = "refreshToken"
    REFRESH_COOKIE_SECURE:         bool = True

    # ─── Password Hashing ──────────────────────────────────────────────────────
    BCRYPT_ROUNDS: int = 12

    # ─── OTP ───────────────────────────────────────────────────────────────────
    OTP_EXPIRE_MINUTES:                  int = 10
    PENDING_REGISTRATION_EXPIRE_MINUTES: int = 30
    OTP_MAX_FAILED_ATTEMPTS:             int = 5
    OTP_LOCK_MINUTES:                    int = 15
    OTP_RESEND_COOLDOWN_SECONDS:         int = 60
    OTP_SEND_WINDOW_MINUTES:             int = 60
    OTP_VERIFICATION_MAX_SENDS:          int = 5
    OTP_RESET_MAX_SENDS:                 int = 2
    OTP_RESET_CAP_LOCK_MINUTES:          int = 60
    RESET_VERIFIED_EXPIRE_MINUTES:       int = 10

    # ─── Notification ──────────────────────────────────────────────────────────
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    # ─── CORS ──────────────────────────────────────────────────────────────────
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8000"

    def get_cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

    @property
    def refresh_token_max_age(self) -> int:
        """Refresh cookie lifetime in seconds (matches the ledger expiry)."""
        return self.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60

    model_config = {"env_file": ".env", "case_sensitive": True, "extra": "ignore"}


settings = Settings()
