from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.api.deps import get_current_user, require_roles
from fittrack.api.payments.schemas import PaymentIntentIn, PaymentIntentOut, PaymentOut, RecordPaymentIn
from fittrack.crud import membershipsCrud
from fittrack.db.postgresql import get_db
from fittrack.models import User
from fittrack.services import billing_service

router = APIRouter(prefix="/api/payments", tags=["payments"])

admin_only = require_roles("admin")


@router.post("/intent", response_model=PaymentIntentOut)
async def create_payment_intent(
    data: PaymentIntentIn,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await billing_service.create_payment_intent(
        db, user=user, amount=data.amount, description=data.description
    )


@router.post("/record", response_model=PaymentOut)
async def record_payment(
    data: RecordPaymentIn,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Store a succeeded payment intent; recording the same intent twice is a no-op"""
    return await billing_service.record_payment(db, user=user, payment_intent_id=data.payment_intent_id)


@router.get("/me", response_model=List[PaymentOut])
async def my_payments(db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    return await membershipsCrud.list_user_payments(db, user.id)


@router.get("", response_model=List[PaymentOut])
async def list_payments(
    limit: int = 100,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(admin_only),
):
    return await membershipsCrud.list_all_payments(db, limit=limit, offset=offset)
