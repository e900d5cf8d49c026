"""Audit service: append-only event logging.

All writes are append-only. No update or delete methods are exposed.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.models.audit import AuditLogEvent


async def log_event(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    event_type: str,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    detail: dict | None = None,
    ip_address: str | None = None,
) -> AuditLogEvent:
    """Create an append-only audit log event."""
    event = AuditLogEvent(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        detail=detail,
        ip_address=ip_address,
    )
    db.add(event)
    await db.flush()
    return event


async def get_events_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    event_type: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[AuditLogEvent]:
    """Retrieve audit events for a user, oldest first."""
    stmt = (
        select(AuditLogEvent)
        .where(AuditLogEvent.user_id == user_id)
        .order_by(AuditLogEvent.timestamp.asc())
    )
    if event_type is not None:
        stmt = stmt.where(AuditLogEvent.event_type == event_type)
    stmt = stmt.offset(offset).limit(limit)

    result = await db.execute(stmt)
    return list(result.scalars().all())
