import uuid

from sqlalchemy import Column, Text, Boolean, ForeignKey, TIMESTAMP, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id        = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    userId    = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"),
                       nullable=False, index=True)
    tokenHash = Column(Text, nullable=False, unique=True)   # SHA-256 hex, never the raw token
    familyId  = Column(Uuid(as_uuid=True), nullable=False, index=True)
    expiresAt = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    revoked   = Column(Boolean, default=False, nullable=False)
    createdAt = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    user = relationship("User", back_populates="refresh_tokens")

    def __repr__(self):
        return f"<RefreshToken id={self.id} userId={self.userId} family={self.familyId} revoked={self.revoked}>"
