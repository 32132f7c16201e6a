from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.user import User, UserRole
from storefront.utils.exceptions import DuplicateEntryException


def serialize_user(u: User) -> dict:
    return {
        "id":              str(u.id),
        "name":            u.name,
        "email":           u.email,
        "role":            u.role.value if u.role else None,
        "phoneNumber":     u.phoneNumber,
        "profileImageUrl": u.profileImageUrl,
        "isVerified":      u.isVerified,
        "createdAt":       u.createdAt.isoformat() if u.createdAt else None,
        "updatedAt":       u.updatedAt.isoformat() if u.updatedAt else None,
    }


class UserDirectory:
    """Lookup / insert / update of permanent user rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalars().first()

    async def get_by_id(self, user_id) -> User | None:
        return await self.db.get(User, user_id)

    async def create_verified(self, payload: dict) -> User:
        """
        Promote a staged registration into a permanent, verified user.
        A concurrent insert of the same email or phone surfaces as a conflict.
        """
        user = User(
            name=payload["name"],
            email=payload["email"].strip().lower(),
            passwordHash=payload["passwordHash"],
            role=UserRole(payload.get("role") or UserRole.USER.value),
            phoneNumber=payload.get("phoneNumber"),
            profileImageUrl=payload.get("profileImageUrl"),
            isVerified=True,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateEntryException("User already exists", field="email")
        return user

    async def update_password(self, user: User, password_hash: str) -> None:
        user.passwordHash = password_hash
        await self.db.flush()
