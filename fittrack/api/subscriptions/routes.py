from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.api.deps import get_current_user, require_roles
from fittrack.api.subscriptions.schemas import (
    CheckoutIn,
    CheckoutOut,
    MySubscriptionOut,
    SubscriptionCreateIn,
    SubscriptionCreateOut,
    SubscriptionOut,
    SyncIn,
    WebhookOut,
)
from fittrack.crud import membershipsCrud
from fittrack.db.postgresql import get_db
from fittrack.models import User
from fittrack.services import billing_service

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])

member_only = require_roles("member")


@router.post("/checkout", response_model=CheckoutOut)
async def create_checkout(
    data: CheckoutIn,
    db: AsyncSession = Depends(get_db),
    member: User = Depends(member_only),
):
    """Start a hosted checkout; the client redirects to the returned url"""
    return await billing_service.create_checkout_session(db, user=member, plan_id=data.plan_id)


@router.post("", response_model=SubscriptionCreateOut, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    data: SubscriptionCreateIn,
    db: AsyncSession = Depends(get_db),
    member: User = Depends(member_only),
):
    mirror, client_secret = await billing_service.create_subscription(
        db, user=member, plan_id=data.plan_id, payment_method_id=data.payment_method_id
    )
    subscription = await membershipsCrud.get_subscription(db, mirror.id)
    return SubscriptionCreateOut(subscription=subscription, client_secret=client_secret)


@router.post("/sync", response_model=SubscriptionOut)
async def sync_subscription(
    data: SyncIn,
    db: AsyncSession = Depends(get_db),
    member: User = Depends(member_only),
):
    """Mirror the subscription of a completed checkout without waiting for the webhook"""
    mirror = await billing_service.sync_subscription(db, user=member, session_id=data.session_id)
    return await membershipsCrud.get_subscription(db, mirror.id)


@router.post("/webhook", response_model=WebhookOut)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="stripe-signature"),
    db: AsyncSession = Depends(get_db),
):
    payload = await request.body()
    event_type = await billing_service.handle_webhook(db, payload=payload, signature=stripe_signature)
    return WebhookOut(type=event_type)


@router.get("/me", response_model=MySubscriptionOut)
async def my_subscription(db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    active = await membershipsCrud.get_active_subscription(db, user.id)
    history = await membershipsCrud.list_user_subscriptions(db, user.id)
    return MySubscriptionOut(active=active, history=history)


@router.get("/{subscription_id}", response_model=SubscriptionOut)
async def get_subscription(
    subscription_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await billing_service.get_subscription(db, user=user, subscription_id=subscription_id)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionOut)
async def cancel_subscription(
    subscription_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await billing_service.cancel_subscription(db, user=user, subscription_id=subscription_id)


@router.post("/{subscription_id}/reactivate", response_model=SubscriptionOut)
async def reactivate_subscription(
    subscription_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await billing_service.reactivate_subscription(db, user=user, subscription_id=subscription_id)
