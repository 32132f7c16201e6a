import uuid

import redis.asyncio as aioredis
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.models.user import User
from storefront.redis_client import get_redis
from storefront.services.auth_service import AuthService
from storefront.services.otp_vault import OTPVault
from storefront.utils.email import NotificationSender, get_notification_sender
from storefront.utils.security import verify_access_token
from storefront.utils.exceptions import UnauthorizedException

# Bearer token extractor
bearer_scheme = HTTPBearer(auto_error=False)


# ─── Services ─────────────────────────────────────────────────────────────────
def get_otp_vault(redis: aioredis.Redis = Depends(get_redis)) -> OTPVault:
    return OTPVault(redis)


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    vault: OTPVault = Depends(get_otp_vault),
    notifier: NotificationSender = Depends(get_notification_sender),
) -> AuthService:
    return AuthService(db, vault, notifier)


# ─── Get Current User ─────────────────────────────────────────────────────────
async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Validate JWT Bearer token and return the current User.
    Raises 401 if token is missing, invalid, expired, or its subject is gone.
    """
    if not credentials:
        raise UnauthorizedException("No authentication token provided")

    subject = verify_access_token(credentials.credentials)
    try:
        user_id = uuid.UUID(subject)
    except ValueError:
        raise UnauthorizedException("Invalid token payload")

    user = await db.get(User, user_id)
    if not user:
        raise UnauthorizedException("Invalid or malformed token")

    return user
