from sqlalchemy import Column, Integer, String, Text, ForeignKey, TIMESTAMP, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id          = Column(Integer, primary_key=True, index=True)
    userId      = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"),
                         nullable=True)                     # NULL = anonymous / system action
    action      = Column(String(100), nullable=False)       # e.g. LOGIN, LOGOUT, TOKEN_REUSE
    entityType  = Column(String(100), nullable=False)       # e.g. User, RefreshToken
    entityId    = Column(String(36), nullable=True)
    description = Column(Text, nullable=True)
    createdAt   = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    user = relationship("User", back_populates="audit_logs")

    def __repr__(self):
        return f"<AuditLog id={self.id} action={self.action} entity={self.entityType}:{self.entityId}>"
