from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.api.deps import get_current_user
from fittrack.api.notifications.schemas import MarkAllReadOut, NotificationListOut, NotificationOut
from fittrack.crud import notificationsCrud
from fittrack.db.postgresql import get_db
from fittrack.models import User

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListOut)
async def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    notifications = await notificationsCrud.list_notifications(
        db, user_id=user.id, unread_only=unread_only, limit=limit
    )
    unread = await notificationsCrud.count_unread(db, user_id=user.id)
    return NotificationListOut(notifications=notifications, unread_count=unread)


@router.patch("/read-all", response_model=MarkAllReadOut)
async def mark_all_read(db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    updated = await notificationsCrud.mark_all_read(db, user_id=user.id)
    return MarkAllReadOut(message="All notifications marked as read", updated=updated)


@router.patch("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
    notification_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await notificationsCrud.mark_read(db, user_id=user.id, notification_id=notification_id)
