"""
CRUD operations for membership plans, the subscription mirror and payments.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from fittrack.core.conversions import utcnow
from fittrack.core.errors import NotFound, PermissionDenied, ValidationFailed
from fittrack.core.logging_config import get_logger
from fittrack.models import Plan, Subscription, Payment, User
from fittrack.models.membershipsModel import ACCESS_STATUSES

logger = get_logger("crud.memberships")

PLAN_FIELDS = ("name", "description", "price", "interval", "classes_per_month", "features", "stripe_price_id", "is_active")


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise


# ==================== PLANS ====================

def _validate_plan_fields(values: Dict[str, Any]) -> None:
    if "price" in values and (values["price"] is None or values["price"] < 0):
        raise ValidationFailed("Price must be zero or positive")
    if "interval" in values and values["interval"] not in ("month", "year"):
        raise ValidationFailed("Interval must be month or year")
    if "classes_per_month" in values and (values["classes_per_month"] or 0) < 0:
        raise ValidationFailed("classes_per_month must be zero (unlimited) or positive")


async def list_plans(db: AsyncSession, *, include_inactive: bool = False) -> List[Plan]:
    stmt = select(Plan)
    if not include_inactive:
        stmt = stmt.where(Plan.is_active == True)  # noqa: E712
    res = await db.execute(stmt.order_by(Plan.price, Plan.id))
    return list(res.scalars().all())


async def get_plan(db: AsyncSession, plan_id: int, *, active_only: bool = False) -> Plan:
    stmt = select(Plan).where(Plan.id == plan_id)
    if active_only:
        stmt = stmt.where(Plan.is_active == True)  # noqa: E712
    plan = (await db.execute(stmt)).scalar_one_or_none()
    if not plan:
        raise NotFound("Plan not found")
    return plan


async def create_plan(db: AsyncSession, *, values: Dict[str, Any]) -> Plan:
    """Create a membership plan"""
    if not values.get("name"):
        raise ValidationFailed("Plan name is required")
    _validate_plan_fields(values)
    plan = Plan(**{k: v for k, v in values.items() if k in PLAN_FIELDS})
    db.add(plan)
    await _commit(db)
    await db.refresh(plan)
    logger.info(f"Created plan {plan.id} ({plan.name})")
    return plan


async def update_plan(db: AsyncSession, *, plan_id: int, changes: Dict[str, Any]) -> Plan:
    plan = await get_plan(db, plan_id)
    _validate_plan_fields(changes)
    for key, value in changes.items():
        if key in PLAN_FIELDS:
            setattr(plan, key, value)
    await _commit(db)
    return plan


async def deactivate_plan(db: AsyncSession, *, plan_id: int) -> Plan:
    plan = await get_plan(db, plan_id)
    plan.is_active = False
    await _commit(db)
    logger.info(f"Deactivated plan {plan.id}")
    return plan


# ==================== SUBSCRIPTIONS ====================

async def get_active_subscription(
    db: AsyncSession,
    user_id: int,
    *,
    at: Optional[datetime] = None,
) -> Optional[Subscription]:
    """Latest subscription granting access: active/trialing with a period that has not ended"""
    now = at or utcnow()
    res = await db.execute(
        select(Subscription)
        .options(joinedload(Subscription.plan))
        .where(
            Subscription.user_id == user_id,
            Subscription.status.in_(ACCESS_STATUSES),
            Subscription.current_period_end >= now,
        )
        .order_by(Subscription.current_period_end.desc())
        .limit(1)
    )
    return res.scalars().first()


async def require_active_subscription(db: AsyncSession, user_id: int, *, own: bool = True) -> Subscription:
    subscription = await get_active_subscription(db, user_id)
    if not subscription:
        message = "Active subscription required" if own else "Member does not have an active subscription"
        raise PermissionDenied(message)
    return subscription


async def get_subscription(db: AsyncSession, subscription_id: int) -> Subscription:
    res = await db.execute(
        select(Subscription)
        .options(joinedload(Subscription.plan))
        .where(Subscription.id == subscription_id)
        .execution_options(populate_existing=True)
    )
    subscription = res.scalar_one_or_none()
    if not subscription:
        raise NotFound("Subscription not found")
    return subscription


async def get_by_stripe_id(db: AsyncSession, stripe_subscription_id: str) -> Optional[Subscription]:
    res = await db.execute(
        select(Subscription)
        .options(joinedload(Subscription.plan))
        .where(Subscription.stripe_subscription_id == stripe_subscription_id)
    )
    return res.scalar_one_or_none()


async def list_user_subscriptions(db: AsyncSession, user_id: int) -> List[Subscription]:
    res = await db.execute(
        select(Subscription)
        .options(joinedload(Subscription.plan))
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
    )
    return list(res.scalars().all())


async def upsert_subscription(
    db: AsyncSession,
    *,
    user_id: int,
    plan_id: int,
    stripe_customer_id: str,
    stripe_subscription_id: str,
    status: str,
    current_period_start: datetime,
    current_period_end: datetime,
    cancel_at_period_end: bool = False,
) -> Subscription:
    """Insert or refresh the local mirror of a processor subscription (no commit)"""
    subscription = await get_by_stripe_id(db, stripe_subscription_id)
    if subscription is None:
        subscription = Subscription(
            user_id=user_id,
            plan_id=plan_id,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
        )
        db.add(subscription)

    subscription.status = status
    subscription.current_period_start = current_period_start
    subscription.current_period_end = current_period_end
    subscription.cancel_at_period_end = cancel_at_period_end
    if status == "cancelled" and subscription.cancelled_at is None:
        subscription.cancelled_at = utcnow()

    await db.flush()
    logger.info(f"Subscription {stripe_subscription_id} mirrored as {status} until {current_period_end}")
    return subscription


# ==================== PAYMENTS ====================

async def record_payment(
    db: AsyncSession,
    *,
    user_id: int,
    amount: int,
    currency: str,
    stripe_payment_intent_id: Optional[str],
    subscription_id: Optional[int] = None,
    status: str = "paid",
) -> Payment:
    """Record a payment once per processor payment intent (no commit)"""
    if stripe_payment_intent_id:
        existing = (await db.execute(
            select(Payment).where(Payment.stripe_payment_intent_id == stripe_payment_intent_id)
        )).scalar_one_or_none()
        if existing:
            return existing

    payment = Payment(
        user_id=user_id,
        subscription_id=subscription_id,
        amount=amount,
        currency=currency,
        stripe_payment_intent_id=stripe_payment_intent_id,
        status=status,
    )
    db.add(payment)
    await db.flush()
    logger.info(f"Recorded payment {payment.id} of {amount} {currency} for user {user_id}")
    return payment


async def list_user_payments(db: AsyncSession, user_id: int) -> List[Payment]:
    res = await db.execute(
        select(Payment)
        .where(Payment.user_id == user_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    return list(res.scalars().all())


async def list_all_payments(db: AsyncSession, *, limit: int = 100, offset: int = 0) -> List[Payment]:
    res = await db.execute(
        select(Payment)
        .options(joinedload(Payment.user))
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(res.scalars().all())


async def total_revenue(db: AsyncSession) -> int:
    res = await db.execute(select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.status == "paid"))
    return int(res.scalar() or 0)


async def set_customer_id(db: AsyncSession, *, user: User, customer_id: str) -> None:
    user.stripe_customer_id = customer_id
    await _commit(db)
