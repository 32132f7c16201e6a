import enum
import uuid

from sqlalchemy import Column, String, Text, Boolean, Enum, TIMESTAMP, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base


class UserRole(str, enum.Enum):
    USER   = "USER"
    SELLER = "SELLER"
    ADMIN  = "ADMIN"


class User(Base):
    __tablename__ = "users"

    id              = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name            = Column(String(255), nullable=False, index=True)
    email           = Column(String(255), unique=True, nullable=False, index=True)
    passwordHash    = Column(Text, nullable=True)           # NULL = OAuth-only account
    role            = Column(Enum(UserRole), default=UserRole.USER, nullable=False)
    phoneNumber     = Column(String(255), unique=True, nullable=True)
    profileImageUrl = Column(Text, nullable=True)
    isVerified      = Column(Boolean, default=False, nullable=False)
    createdAt       = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    updatedAt       = Column(TIMESTAMP(timezone=True), server_default=func.now(),
                             onupdate=func.now(), nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")
    audit_logs     = relationship("AuditLog", back_populates="user")

    # Load server-generated timestamps on flush; async sessions cannot lazy-load them
    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self):
        return f"<User id={self.id} email={self.email} role={self.role}>"
