"""
Notifications and audit trail.

Writers only add rows to the session; the calling operation owns the commit
so the notification lands in the same transaction as the change it reports.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.core.errors import NotFound
from fittrack.core.logging_config import get_logger
from fittrack.models import Notification, AuditLog

logger = get_logger("crud.notifications")


def add_notification(
    db: AsyncSession,
    *,
    user_id: int,
    type: str,
    title: str,
    message: str,
) -> Notification:
    notification = Notification(user_id=user_id, type=type, title=title, message=message)
    db.add(notification)
    return notification


def add_audit_log(
    db: AsyncSession,
    *,
    user_id: Optional[int],
    action: str,
    resource: str,
    resource_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        details=details or {},
        ip_address=ip_address,
    )
    db.add(entry)
    logger.info(f"Audit {action} {resource}#{resource_id} by user {user_id}")
    return entry


async def list_notifications(
    db: AsyncSession,
    *,
    user_id: int,
    unread_only: bool = False,
    limit: int = 50,
) -> List[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read == False)  # noqa: E712
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def count_unread(db: AsyncSession, *, user_id: int) -> int:
    result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read == False,  # noqa: E712
        )
    )
    return result.scalar() or 0


async def mark_read(db: AsyncSession, *, user_id: int, notification_id: int) -> Notification:
    """Mark one of the user's notifications as read"""
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise NotFound("Notification not found")

    notification.is_read = True
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise
    return notification


async def mark_all_read(db: AsyncSession, *, user_id: int) -> int:
    stmt = (
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    try:
        result = await db.execute(stmt)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise
    return result.rowcount or 0


async def list_audit_logs(
    db: AsyncSession,
    *,
    resource: Optional[str] = None,
    user_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[AuditLog]:
    stmt = select(AuditLog)
    if resource:
        stmt = stmt.where(AuditLog.resource == resource)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())
