from sqlalchemy.ext.asyncio import AsyncSession
from storefront.models.audit_log import AuditLog


def log_action(
    db: AsyncSession,
    user_id,
    action: str,
    entity_type: str,
    entity_id=None,
    description: str | None = None,
) -> None:
    """
    Write an audit log entry.

    Args:
        db:          Active DB session (adds but does NOT commit; caller commits)
        user_id:     ID of the user the event concerns (None = anonymous)
        action:      Verb: REGISTER, LOGIN, LOGOUT, RESET_PASSWORD, TOKEN_REUSE, etc.
        entity_type: Model name: "User", "RefreshToken"
        entity_id:   Primary key of the affected record
        description: Human-readable description

    Usage:
        log_action(db, user.id, "LOGIN", "User", user.id, f"{user.email} logged in")
        await db.commit()
    """
    entry = AuditLog(
        userId=user_id,
        action=action,
        entityType=entity_type,
        entityId=str(entity_id) if entity_id is not None else None,
        description=description,
    )
    db.add(entry)
    # Do NOT commit here; let the caller's transaction commit everything atomically
