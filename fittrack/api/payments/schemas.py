from datetime import datetime
from typing import Optional

from pydantic import Field

from fittrack.api.schemas import CamelModel


class PaymentIntentIn(CamelModel):
    amount: int = Field(gt=0)
    description: Optional[str] = None


class PaymentIntentOut(CamelModel):
    payment_intent_id: str
    client_secret: Optional[str] = None


class RecordPaymentIn(CamelModel):
    payment_intent_id: str = Field(min_length=1)


class PaymentOut(CamelModel):
    id: int
    user_id: int
    subscription_id: Optional[int] = None
    amount: int
    currency: str
    stripe_payment_intent_id: Optional[str] = None
    status: str
    created_at: datetime
