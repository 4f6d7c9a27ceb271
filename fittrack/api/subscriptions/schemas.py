from datetime import datetime
from typing import List, Optional

from pydantic import Field

from fittrack.api.plans.schemas import PlanOut
from fittrack.api.schemas import CamelModel


class CheckoutIn(CamelModel):
    plan_id: int


class CheckoutOut(CamelModel):
    session_id: str
    url: Optional[str] = None


class SubscriptionCreateIn(CamelModel):
    plan_id: int
    payment_method_id: Optional[str] = None


class SyncIn(CamelModel):
    session_id: str = Field(min_length=1)


class SubscriptionOut(CamelModel):
    id: int
    user_id: int
    plan_id: int
    plan: PlanOut
    status: str
    stripe_subscription_id: str
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    cancelled_at: Optional[datetime] = None
    created_at: datetime


class SubscriptionCreateOut(CamelModel):
    subscription: SubscriptionOut
    client_secret: Optional[str] = None


class MySubscriptionOut(CamelModel):
    active: Optional[SubscriptionOut] = None
    history: List[SubscriptionOut] = []


class WebhookOut(CamelModel):
    received: bool = True
    type: str
