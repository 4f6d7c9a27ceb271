from datetime import datetime
from typing import List

from fittrack.api.schemas import CamelModel


class NotificationOut(CamelModel):
    id: int
    type: str
    title: str
    message: str
    is_read: bool
    created_at: datetime


class NotificationListOut(CamelModel):
    notifications: List[NotificationOut]
    unread_count: int


class MarkAllReadOut(CamelModel):
    message: str
    updated: int
