"""
Import all models here so that:
1. Alembic can auto-detect them when generating migrations
2. Relationships between models resolve correctly

Order matters: import parent tables before child tables.
"""

from storefront.models.user import User, UserRole
from storefront.models.refresh_token import RefreshToken
from storefront.models.audit_log import AuditLog

__all__ = [
    "User",
    "UserRole",
    "RefreshToken",
    "AuditLog",
]
