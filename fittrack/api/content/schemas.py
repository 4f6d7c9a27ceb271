from datetime import datetime
from typing import List, Optional

from fittrack.api.schemas import CamelModel, UserBrief


class ContentPlanOut(CamelModel):
    id: int
    trainer_id: int
    title: str
    description: str
    file_url: str
    file_type: str
    visibility: str
    tags: List[str] = []
    price: Optional[int] = None
    calories: Optional[int] = None
    uploaded_at: datetime


class ContentPlanWithTrainerOut(ContentPlanOut):
    trainer: UserBrief
