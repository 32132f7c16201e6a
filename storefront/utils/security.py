import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, ExpiredSignatureError, jwt
from passlib.context import CryptContext

from storefront.config import settings
from storefront.utils.exceptions import TokenExpiredException, UnauthorizedException

# ─── Password Hashing ─────────────────────────────────────────────────────────
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password using bcrypt."""
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """
    Verify a plain-text password against a bcrypt hash.
    A missing or unparseable hash is a plain mismatch, never an error.
    """
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


# ─── Access Tokens (JWT) ──────────────────────────────────────────────────────
def create_access_token(user_id: str) -> str:
    """
    Create a short-lived JWT access token.
    Payload: sub (user id), exp. Nothing else is trusted on the way back in.
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(user_id),
        "exp": expire,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_access_token(token: str) -> str:
    """
    Decode and validate a JWT access token and return its subject.
    Raises 401 if invalid, 401 (TOKEN_EXPIRED) if expired.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"require_exp": True, "require_sub": True},
        )
    except ExpiredSignatureError:
        raise TokenExpiredException()
    except JWTError:
        raise UnauthorizedException("Invalid or malformed token")
    return payload["sub"]


def access_token_expiry(token: str) -> datetime | None:
    """Read the exp claim without verifying the signature (client-side scheduling only)."""
    try:
        exp = jwt.get_unverified_claims(token).get("exp")
    except JWTError:
        return None
    if exp is None:
        return None
    return datetime.fromtimestamp(int(exp), tz=timezone.utc)


# ─── Refresh Tokens ───────────────────────────────────────────────────────────
def create_refresh_token() -> str:
    """Opaque bearer string: 64 random bytes, hex encoded. Carries no claims."""
    return secrets.token_hex(64)


def hash_token(token: str) -> str:
    """Deterministic SHA-256 digest used to store and look up refresh tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def refresh_token_expiry() -> datetime:
    """Return refresh token expiry timestamp (UTC)."""
    return datetime.now(timezone.utc) + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)


# ─── OTP ──────────────────────────────────────────────────────────────────────
def generate_otp() -> str:
    """Uniform 6-digit code in [100000, 999999]; randbelow has no modulo bias."""
    return str(100000 + secrets.randbelow(900000))


def otp_matches(candidate: str, stored: str) -> bool:
    """Constant-time comparison of a submitted OTP against the stored one."""
    return hmac.compare_digest(candidate.encode("utf-8"), stored.encode("utf-8"))
