"""
Payment processor gateway (Stripe).

The Stripe SDK is synchronous, so every call runs in the threadpool. Processor
errors are logged and re-raised as ``ValidationFailed`` carrying Stripe's
message.
"""
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import stripe
from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from fittrack.core import settings
from fittrack.core.conversions import coerce_int, from_unix, utcnow
from fittrack.core.errors import PermissionDenied, ValidationFailed
from fittrack.core.logging_config import get_logger, log_security_event
from fittrack.crud import membershipsCrud
from fittrack.models import Payment, Subscription, User

logger = get_logger("services.billing")

stripe.api_key = settings.STRIPE_SECRET_KEY

# Stripe status -> local mirror status
STATUS_MAP = {
    "active": "active",
    "trialing": "trialing",
    "past_due": "past_due",
    "unpaid": "past_due",
    "paused": "past_due",
    "canceled": "cancelled",
    "incomplete_expired": "cancelled",
    "incomplete": "incomplete",
}


def field(obj: Any, key: str, default: Any = None) -> Any:
    """Item access that works for StripeObject and plain dicts"""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def normalize_status(stripe_status: Optional[str]) -> str:
    return STATUS_MAP.get(stripe_status or "", "incomplete")


def plan_period_end(start: datetime, interval: str) -> datetime:
    if interval == "year":
        return start + relativedelta(years=1)
    return start + relativedelta(months=1)


def subscription_period(subscription: Any, interval: str = "month") -> Tuple[datetime, datetime]:
    """
    Billing period bounds of a Stripe subscription.

    Newer API versions moved the period onto the subscription items, so fall
    back to the first item, then to the start date plus one plan interval.
    """
    start = from_unix(field(subscription, "current_period_start"))
    end = from_unix(field(subscription, "current_period_end"))

    if start is None or end is None:
        items = field(field(subscription, "items"), "data", [])
        if items:
            start = start or from_unix(field(items[0], "current_period_start"))
            end = end or from_unix(field(items[0], "current_period_end"))

    if start is None:
        start = from_unix(field(subscription, "start_date")) or utcnow()
    if end is None:
        end = plan_period_end(start, interval)
    return start, end


class BillingService:
    """Thin async wrapper around the Stripe primitives the app uses"""

    def __init__(self, currency: Optional[str] = None):
        self.currency = (currency or settings.STRIPE_CURRENCY).lower()

    async def _call(self, fn, **kwargs):
        try:
            return await run_in_threadpool(fn, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe call {getattr(fn, '__qualname__', fn)} failed: {e}")
            raise ValidationFailed(getattr(e, "user_message", None) or str(e)) from e

    # ==================== CUSTOMERS ====================

    async def create_customer(self, *, email: str, name: str, user_id: int) -> str:
        customer = await self._call(
            stripe.Customer.create,
            email=email,
            name=name,
            metadata={"userId": str(user_id)},
        )
        logger.info(f"Created Stripe customer for user {user_id}")
        return field(customer, "id")

    async def attach_payment_method(self, *, customer_id: str, payment_method_id: str) -> None:
        await self._call(
            stripe.PaymentMethod.attach,
            payment_method=payment_method_id,
            customer=customer_id,
        )
        await self._call(
            stripe.Customer.modify,
            id=customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )

    # ==================== CHECKOUT ====================

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        plan: Any,
        user_id: int,
    ) -> Any:
        if plan.stripe_price_id:
            line_item = {"price": plan.stripe_price_id, "quantity": 1}
        else:
            line_item = {
                "price_data": {
                    "currency": self.currency,
                    "unit_amount": plan.price,
                    "recurring": {"interval": plan.interval},
                    "product_data": {"name": plan.name},
                },
                "quantity": 1,
            }

        return await self._call(
            stripe.checkout.Session.create,
            mode="subscription",
            customer=customer_id,
            line_items=[line_item],
            success_url=f"{settings.CLIENT_URL}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.CLIENT_URL}/plans",
            metadata={"userId": str(user_id), "planId": str(plan.id)},
        )

    async def retrieve_checkout_session(self, session_id: str) -> Any:
        return await self._call(stripe.checkout.Session.retrieve, id=session_id)

    # ==================== SUBSCRIPTIONS ====================

    async def create_subscription(
        self,
        *,
        customer_id: str,
        plan: Any,
        user_id: int,
    ) -> Any:
        if plan.stripe_price_id:
            item = {"price": plan.stripe_price_id}
        else:
            item = {
                "price_data": {
                    "currency": self.currency,
                    "unit_amount": plan.price,
                    "recurring": {"interval": plan.interval},
                    "product": await self._product_for(plan),
                }
            }

        return await self._call(
            stripe.Subscription.create,
            customer=customer_id,
            items=[item],
            payment_behavior="default_incomplete",
            expand=["latest_invoice.payment_intent"],
            metadata={"userId": str(user_id), "planId": str(plan.id)},
        )

    async def _product_for(self, plan: Any) -> str:
        product = await self._call(stripe.Product.create, name=plan.name)
        return field(product, "id")

    async def retrieve_subscription(self, subscription_id: str) -> Any:
        return await self._call(stripe.Subscription.retrieve, id=subscription_id)

    async def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> Any:
        return await self._call(
            stripe.Subscription.modify,
            id=subscription_id,
            cancel_at_period_end=cancel,
        )

    # ==================== PAYMENTS ====================

    async def create_payment_intent(
        self,
        *,
        amount: int,
        customer_id: Optional[str],
        metadata: Dict[str, str],
    ) -> Any:
        kwargs: Dict[str, Any] = {
            "amount": amount,
            "currency": self.currency,
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_id:
            kwargs["customer"] = customer_id
        return await self._call(stripe.PaymentIntent.create, **kwargs)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Any:
        return await self._call(stripe.PaymentIntent.retrieve, id=payment_intent_id)

    # ==================== WEBHOOKS ====================

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Any:
        if not settings.STRIPE_WEBHOOK_SECRET:
            raise ValidationFailed("Webhook secret is not configured")
        try:
            return stripe.Webhook.construct_event(payload, signature or "", settings.STRIPE_WEBHOOK_SECRET)
        except ValueError as e:
            logger.warning(f"Invalid webhook payload: {e}")
            raise ValidationFailed("Invalid payload") from e
        except stripe.SignatureVerificationError as e:
            log_security_event("webhook_signature", f"Stripe webhook rejected: {e}")
            raise ValidationFailed("Invalid signature") from e


billing = BillingService()


# ==================== SUBSCRIPTION FLOWS ====================

async def ensure_customer(db: AsyncSession, user: User) -> str:
    """Processor customer id for ``user``, created on first use"""
    if user.stripe_customer_id:
        return user.stripe_customer_id
    customer_id = await billing.create_customer(email=user.email, name=user.name, user_id=user.id)
    await membershipsCrud.set_customer_id(db, user=user, customer_id=customer_id)
    return customer_id


async def _ensure_no_active(db: AsyncSession, user: User) -> None:
    if await membershipsCrud.get_active_subscription(db, user.id):
        raise ValidationFailed("You already have an active subscription")


async def create_checkout_session(db: AsyncSession, *, user: User, plan_id: int) -> Dict[str, Any]:
    """Start a hosted checkout for ``plan_id``"""
    plan = await membershipsCrud.get_plan(db, plan_id, active_only=True)
    await _ensure_no_active(db, user)
    customer_id = await ensure_customer(db, user)

    session = await billing.create_checkout_session(customer_id=customer_id, plan=plan, user_id=user.id)
    logger.info(f"Checkout session created for user {user.id}, plan {plan.id}")
    return {"session_id": field(session, "id"), "url": field(session, "url")}


async def create_subscription(
    db: AsyncSession,
    *,
    user: User,
    plan_id: int,
    payment_method_id: Optional[str] = None,
) -> Tuple[Subscription, Optional[str]]:
    """Create a subscription directly and mirror it; returns the mirror and the client secret"""
    plan = await membershipsCrud.get_plan(db, plan_id, active_only=True)
    await _ensure_no_active(db, user)
    customer_id = await ensure_customer(db, user)
    if payment_method_id:
        await billing.attach_payment_method(customer_id=customer_id, payment_method_id=payment_method_id)

    stripe_sub = await billing.create_subscription(customer_id=customer_id, plan=plan, user_id=user.id)
    start, end = subscription_period(stripe_sub, plan.interval)
    mirror = await membershipsCrud.upsert_subscription(
        db,
        user_id=user.id,
        plan_id=plan.id,
        stripe_customer_id=customer_id,
        stripe_subscription_id=field(stripe_sub, "id"),
        status=normalize_status(field(stripe_sub, "status")),
        current_period_start=start,
        current_period_end=end,
    )
    await _commit(db)

    payment_intent = field(field(stripe_sub, "latest_invoice"), "payment_intent")
    return mirror, field(payment_intent, "client_secret")


def _subscription_id(value: Any) -> Optional[str]:
    # expanded objects carry the id inside
    if value is None or isinstance(value, str):
        return value
    return field(value, "id")


async def sync_subscription(db: AsyncSession, *, user: User, session_id: str) -> Subscription:
    """Mirror the subscription created by a completed checkout session"""
    session = await billing.retrieve_checkout_session(session_id)
    if field(session, "payment_status") != "paid":
        raise ValidationFailed("Payment has not been completed")

    metadata = field(session, "metadata", {})
    if coerce_int(field(metadata, "userId")) != user.id:
        raise PermissionDenied("This checkout session belongs to another user")
    plan = await membershipsCrud.get_plan(db, coerce_int(field(metadata, "planId")) or 0)

    stripe_subscription_id = _subscription_id(field(session, "subscription"))
    if not stripe_subscription_id:
        raise ValidationFailed("Checkout session has no subscription")
    stripe_sub = await billing.retrieve_subscription(stripe_subscription_id)
    start, end = subscription_period(stripe_sub, plan.interval)

    mirror = await membershipsCrud.upsert_subscription(
        db,
        user_id=user.id,
        plan_id=plan.id,
        stripe_customer_id=field(session, "customer") or user.stripe_customer_id or "",
        stripe_subscription_id=stripe_subscription_id,
        status=normalize_status(field(stripe_sub, "status")),
        current_period_start=start,
        current_period_end=end,
        cancel_at_period_end=bool(field(stripe_sub, "cancel_at_period_end", False)),
    )
    await membershipsCrud.record_payment(
        db,
        user_id=user.id,
        subscription_id=mirror.id,
        amount=field(session, "amount_total", plan.price),
        currency=field(session, "currency", billing.currency),
        stripe_payment_intent_id=field(session, "payment_intent") or field(session, "invoice") or f"checkout:{session_id}",
    )
    await _commit(db)
    logger.info(f"Synced checkout {session_id} for user {user.id}: subscription {mirror.id} {mirror.status}")
    return mirror


async def handle_webhook(db: AsyncSession, *, payload: bytes, signature: Optional[str]) -> str:
    """Apply subscription lifecycle events to the local mirror"""
    event = billing.construct_event(payload, signature)
    event_type = field(event, "type")
    obj = field(field(event, "data"), "object")

    if event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
        await _apply_subscription_event(db, obj, deleted=event_type.endswith("deleted"))
    elif event_type == "invoice.paid":
        await _apply_invoice_paid(db, obj)
    else:
        logger.debug(f"Ignoring webhook event {event_type}")
        return event_type

    await _commit(db)
    logger.info(f"Processed webhook event {event_type}")
    return event_type


async def _apply_subscription_event(db: AsyncSession, stripe_sub: Any, *, deleted: bool) -> None:
    stripe_subscription_id = field(stripe_sub, "id")
    mirror = await membershipsCrud.get_by_stripe_id(db, stripe_subscription_id)
    metadata = field(stripe_sub, "metadata", {})
    user_id = mirror.user_id if mirror else coerce_int(field(metadata, "userId"))
    plan_id = mirror.plan_id if mirror else coerce_int(field(metadata, "planId"))
    if not user_id or not plan_id:
        logger.warning(f"Webhook for unknown subscription {stripe_subscription_id}")
        return

    plan = await membershipsCrud.get_plan(db, plan_id)
    start, end = subscription_period(stripe_sub, plan.interval)
    await membershipsCrud.upsert_subscription(
        db,
        user_id=user_id,
        plan_id=plan_id,
        stripe_customer_id=field(stripe_sub, "customer") or (mirror.stripe_customer_id if mirror else ""),
        stripe_subscription_id=stripe_subscription_id,
        status="cancelled" if deleted else normalize_status(field(stripe_sub, "status")),
        current_period_start=start,
        current_period_end=end,
        cancel_at_period_end=bool(field(stripe_sub, "cancel_at_period_end", False)),
    )


async def _apply_invoice_paid(db: AsyncSession, invoice: Any) -> None:
    stripe_subscription_id = _subscription_id(field(invoice, "subscription")) or field(
        field(field(invoice, "parent"), "subscription_details"), "subscription"
    )
    mirror = await membershipsCrud.get_by_stripe_id(db, stripe_subscription_id) if stripe_subscription_id else None
    if mirror is None:
        logger.warning(f"Paid invoice {field(invoice, 'id')} has no mirrored subscription")
        return

    stripe_sub = await billing.retrieve_subscription(stripe_subscription_id)
    start, end = subscription_period(stripe_sub, mirror.plan.interval)
    mirror.status = normalize_status(field(stripe_sub, "status", "active"))
    mirror.current_period_start = start
    mirror.current_period_end = end

    await membershipsCrud.record_payment(
        db,
        user_id=mirror.user_id,
        subscription_id=mirror.id,
        amount=field(invoice, "amount_paid", 0),
        currency=field(invoice, "currency", billing.currency),
        stripe_payment_intent_id=field(invoice, "payment_intent") or field(invoice, "id"),
    )


async def _owned_subscription(db: AsyncSession, *, user: User, subscription_id: int) -> Subscription:
    subscription = await membershipsCrud.get_subscription(db, subscription_id)
    if subscription.user_id != user.id and user.role != "admin":
        raise PermissionDenied("Not authorized to access this subscription")
    return subscription


async def get_subscription(db: AsyncSession, *, user: User, subscription_id: int) -> Subscription:
    return await _owned_subscription(db, user=user, subscription_id=subscription_id)


async def cancel_subscription(db: AsyncSession, *, user: User, subscription_id: int) -> Subscription:
    """Cancel at the end of the current period; access continues until then"""
    subscription = await _owned_subscription(db, user=user, subscription_id=subscription_id)
    if subscription.status == "cancelled":
        raise ValidationFailed("Subscription is already cancelled")
    if subscription.cancel_at_period_end:
        raise ValidationFailed("Subscription is already set to cancel")

    await billing.set_cancel_at_period_end(subscription.stripe_subscription_id, True)
    subscription.cancel_at_period_end = True
    await _commit(db)
    logger.info(f"Subscription {subscription.id} set to cancel at period end")
    return subscription


async def reactivate_subscription(db: AsyncSession, *, user: User, subscription_id: int) -> Subscription:
    subscription = await _owned_subscription(db, user=user, subscription_id=subscription_id)
    if subscription.status == "cancelled" or not subscription.cancel_at_period_end:
        raise ValidationFailed("Only subscriptions pending cancellation can be reactivated")

    await billing.set_cancel_at_period_end(subscription.stripe_subscription_id, False)
    subscription.cancel_at_period_end = False
    await _commit(db)
    logger.info(f"Subscription {subscription.id} reactivated")
    return subscription


# ==================== ONE-OFF PAYMENTS ====================

async def create_payment_intent(
    db: AsyncSession,
    *,
    user: User,
    amount: int,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    if amount <= 0:
        raise ValidationFailed("Amount must be positive")
    customer_id = await ensure_customer(db, user)
    intent = await billing.create_payment_intent(
        amount=amount,
        customer_id=customer_id,
        metadata={"userId": str(user.id), "description": description or ""},
    )
    return {"payment_intent_id": field(intent, "id"), "client_secret": field(intent, "client_secret")}


async def record_payment(db: AsyncSession, *, user: User, payment_intent_id: str) -> Payment:
    """Record a succeeded payment intent belonging to ``user``"""
    intent = await billing.retrieve_payment_intent(payment_intent_id)
    if field(intent, "status") != "succeeded":
        raise ValidationFailed("Payment has not succeeded")
    if coerce_int(field(field(intent, "metadata", {}), "userId")) != user.id:
        raise PermissionDenied("This payment belongs to another user")

    payment = await membershipsCrud.record_payment(
        db,
        user_id=user.id,
        amount=field(intent, "amount_received", field(intent, "amount", 0)),
        currency=field(intent, "currency", billing.currency),
        stripe_payment_intent_id=payment_intent_id,
    )
    await _commit(db)
    return payment


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise
