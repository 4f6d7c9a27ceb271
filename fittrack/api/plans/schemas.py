from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from fittrack.api.schemas import CamelModel


class PlanIn(CamelModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None
    price: int = Field(ge=0)
    interval: Literal["month", "year"] = "month"
    classes_per_month: int = Field(default=0, ge=0)
    features: List[str] = []
    stripe_price_id: Optional[str] = None


class PlanUpdateIn(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)
    interval: Optional[Literal["month", "year"]] = None
    classes_per_month: Optional[int] = Field(default=None, ge=0)
    features: Optional[List[str]] = None
    stripe_price_id: Optional[str] = None
    is_active: Optional[bool] = None


class PlanOut(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    price: int
    interval: str
    classes_per_month: int
    features: List[str] = []
    stripe_price_id: Optional[str] = None
    is_active: bool
    created_at: datetime
