from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.api.audit.schemas import AuditLogOut
from fittrack.api.deps import require_roles
from fittrack.crud import notificationsCrud
from fittrack.db.postgresql import get_db
from fittrack.models import User

router = APIRouter(prefix="/api/audit-logs", tags=["audit"])


@router.get("", response_model=List[AuditLogOut])
async def list_audit_logs(
    resource: Optional[str] = None,
    user_id: Optional[int] = Query(None, alias="userId"),
    limit: int = 100,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_roles("admin")),
):
    return await notificationsCrud.list_audit_logs(
        db, resource=resource, user_id=user_id, limit=limit, offset=offset
    )
