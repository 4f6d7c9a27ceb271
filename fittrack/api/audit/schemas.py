from datetime import datetime
from typing import Any, Dict, Optional

from fittrack.api.schemas import CamelModel


class AuditLogOut(CamelModel):
    id: int
    user_id: Optional[int] = None
    action: str
    resource: str
    resource_id: Optional[int] = None
    details: Dict[str, Any] = {}
    ip_address: Optional[str] = None
    created_at: datetime
