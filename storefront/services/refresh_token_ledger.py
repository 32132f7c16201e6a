import uuid
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.refresh_token import RefreshToken
from storefront.utils.exceptions import RefreshTokenInvalidException
from storefront.utils.security import hash_token, refresh_token_expiry


class RefreshTokenLedger:
    """
    Persistent record of refresh-token digests, grouped into families.

    Writes are added/flushed on the caller's session; the caller commits, so a
    rotation (revoke old + insert new) lands in one transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Issue ────────────────────────────────────────────────────────────────
    async def store(self, user_id, raw_token: str, family_id=None) -> RefreshToken:
        record = RefreshToken(
            userId=user_id,
            tokenHash=hash_token(raw_token),
            familyId=family_id or uuid.uuid4(),
            expiresAt=refresh_token_expiry(),
            revoked=False,
        )
        self.db.add(record)
        await self.db.flush()
        return record

    # ─── Rotate ───────────────────────────────────────────────────────────────
    async def rotate(self, current: RefreshToken, new_raw_token: str) -> RefreshToken:
        """
        Revoke the presented token's family, then store the replacement under the
        same family id. The revoke is a compare-and-swap on the presented row, so
        of two concurrent refreshes with the same token only one wins.
        """
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == current.id, RefreshToken.revoked == False)
            .values(revoked=True)
        )
        if result.rowcount != 1:
            raise RefreshTokenInvalidException()

        await self.revoke_family(current.userId, current.familyId)
        return await self.store(current.userId, new_raw_token, current.familyId)

    # ─── Revoke ───────────────────────────────────────────────────────────────
    async def revoke_family(self, user_id, family_id) -> None:
        await self.db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.userId == user_id,
                RefreshToken.familyId == family_id,
                RefreshToken.revoked == False,
            )
            .values(revoked=True)
        )

    async def revoke_all(self, user_id) -> None:
        await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.userId == user_id, RefreshToken.revoked == False)
            .values(revoked=True)
        )

    # ─── Lookup ───────────────────────────────────────────────────────────────
    async def lookup_valid(self, raw_token: str) -> RefreshToken | None:
        """The only path that authorizes a refresh: known, not revoked, not expired."""
        result = await self.db.execute(
            select(RefreshToken).where(
                RefreshToken.tokenHash == hash_token(raw_token),
                RefreshToken.revoked == False,
                RefreshToken.expiresAt > datetime.now(timezone.utc),
            )
        )
        return result.scalars().first()

    async def find(self, raw_token: str) -> RefreshToken | None:
        """Any row for this token regardless of state (logout, reuse detection)."""
        result = await self.db.execute(
            select(RefreshToken).where(RefreshToken.tokenHash == hash_token(raw_token))
        )
        return result.scalars().first()

    async def detect_reuse(self, raw_token: str) -> RefreshToken | None:
        """Return the row if this token was already rotated out or revoked."""
        record = await self.find(raw_token)
        if record is not None and record.revoked:
            return record
        return None
