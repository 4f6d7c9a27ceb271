from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """JSON in camelCase, Python in snake_case; built straight from ORM rows"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class MessageOut(CamelModel):
    message: str


class UserBrief(CamelModel):
    id: int
    name: str
    email: str
    role: str


class ClassBrief(CamelModel):
    id: int
    name: str
    location: Optional[str] = None
    trainer_id: int
    start_at: datetime
    end_at: datetime
    status: str
    recurrence_group_id: Optional[str] = None
