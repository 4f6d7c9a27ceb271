from datetime import datetime, timedelta, timezone

import pytest
import stripe
from sqlalchemy import func, select

from fittrack.core.conversions import utcnow
from fittrack.core.errors import PermissionDenied, ValidationFailed
from fittrack.crud import membershipsCrud
from fittrack.models import Payment, Subscription
from fittrack.services import billing_service
from fittrack.services.billing_service import normalize_status, subscription_period


class StripeRecorder:
    """Collects the keyword arguments of every patched Stripe call"""

    def __init__(self):
        self.calls = {}

    def patch(self, monkeypatch, owner, name, result):
        def fake(**kwargs):
            self.calls.setdefault(f"{owner.__name__}.{name}", []).append(kwargs)
            if isinstance(result, Exception):
                raise result
            return result(**kwargs) if callable(result) else result

        monkeypatch.setattr(owner, name, fake)


@pytest.fixture
def fake_stripe(monkeypatch):
    recorder = StripeRecorder()
    recorder.patch(monkeypatch, stripe.Customer, "create", {"id": "cus_new"})
    recorder.patch(monkeypatch, stripe.checkout.Session, "create", {"id": "cs_test_1", "url": "https://checkout.test/cs_test_1"})
    return lambda owner, name, result: recorder.patch(monkeypatch, owner, name, result) or recorder


def _ts(value: datetime) -> int:
    return int(value.timestamp())


async def test_checkout_creates_customer_once(db, make_user, make_plan, fake_stripe):
    member = await make_user()
    plan = await make_plan(price=450000)
    recorder = fake_stripe(stripe.checkout.Session, "create", {"id": "cs_test_1", "url": "https://checkout.test/cs_test_1"})

    first = await billing_service.create_checkout_session(db, user=member, plan_id=plan.id)
    await billing_service.create_checkout_session(db, user=member, plan_id=plan.id)

    assert first == {"session_id": "cs_test_1", "url": "https://checkout.test/cs_test_1"}
    assert member.stripe_customer_id == "cus_new"
    assert len(recorder.calls["Customer.create"]) == 1
    line_item = recorder.calls["Session.create"][0]["line_items"][0]
    assert line_item["price_data"]["unit_amount"] == 450000
    assert line_item["price_data"]["recurring"] == {"interval": "month"}


async def test_checkout_refused_with_active_subscription(db, make_user, make_plan, subscribe, fake_stripe):
    member = await make_user()
    plan = await make_plan()
    await subscribe(member, plan=plan)

    with pytest.raises(ValidationFailed, match="already have an active subscription"):
        await billing_service.create_checkout_session(db, user=member, plan_id=plan.id)


async def test_stripe_errors_become_validation_failures(db, make_user, make_plan, fake_stripe):
    member = await make_user()
    plan = await make_plan()
    fake_stripe(stripe.Customer, "create", stripe.InvalidRequestError("No such customer", param="customer"))

    with pytest.raises(ValidationFailed, match="No such customer"):
        await billing_service.create_checkout_session(db, user=member, plan_id=plan.id)


async def test_sync_mirrors_subscription_and_payment_once(db, make_user, make_plan, fake_stripe):
    member = await make_user()
    plan = await make_plan(price=300000)
    start = utcnow().replace(microsecond=0)
    end = start + timedelta(days=30)
    fake_stripe(stripe.checkout.Session, "retrieve", {
        "id": "cs_paid",
        "payment_status": "paid",
        "metadata": {"userId": str(member.id), "planId": str(plan.id)},
        "subscription": "sub_live_1",
        "customer": "cus_abc",
        "amount_total": 300000,
        "currency": "pkr",
        "payment_intent": "pi_abc",
    })
    fake_stripe(stripe.Subscription, "retrieve", {
        "id": "sub_live_1",
        "status": "active",
        "current_period_start": _ts(start),
        "current_period_end": _ts(end),
        "cancel_at_period_end": False,
    })

    mirror = await billing_service.sync_subscription(db, user=member, session_id="cs_paid")
    await billing_service.sync_subscription(db, user=member, session_id="cs_paid")

    assert mirror.status == "active"
    assert mirror.current_period_end == end
    active = await membershipsCrud.get_active_subscription(db, member.id)
    assert active.stripe_subscription_id == "sub_live_1"
    subscriptions = (await db.execute(select(func.count(Subscription.id)))).scalar()
    payments = (await db.execute(select(func.count(Payment.id)))).scalar()
    assert (subscriptions, payments) == (1, 1)


async def test_sync_rejects_someone_elses_checkout(db, make_user, make_plan, fake_stripe):
    member, other = await make_user(), await make_user()
    plan = await make_plan()
    fake_stripe(stripe.checkout.Session, "retrieve", {
        "payment_status": "paid",
        "metadata": {"userId": str(other.id), "planId": str(plan.id)},
        "subscription": "sub_x",
    })

    with pytest.raises(PermissionDenied):
        await billing_service.sync_subscription(db, user=member, session_id="cs_other")


async def test_sync_requires_paid_session(db, make_user, fake_stripe):
    member = await make_user()
    fake_stripe(stripe.checkout.Session, "retrieve", {"payment_status": "unpaid"})

    with pytest.raises(ValidationFailed, match="not been completed"):
        await billing_service.sync_subscription(db, user=member, session_id="cs_unpaid")


async def test_webhook_deletion_revokes_access(db, monkeypatch, make_user, make_plan, subscribe):
    member = await make_user()
    plan = await make_plan()
    subscription = await subscribe(member, plan=plan)
    event = {
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": subscription.stripe_subscription_id, "status": "canceled"}},
    }
    monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, signature, secret: event)

    event_type = await billing_service.handle_webhook(db, payload=b"{}", signature="t=1,v1=abc")

    assert event_type == "customer.subscription.deleted"
    assert await membershipsCrud.get_active_subscription(db, member.id) is None


async def test_webhook_bad_signature(db, monkeypatch):
    def reject(payload, signature, secret):
        raise stripe.SignatureVerificationError("No signatures found", signature)

    monkeypatch.setattr(stripe.Webhook, "construct_event", reject)

    with pytest.raises(ValidationFailed, match="Invalid signature"):
        await billing_service.handle_webhook(db, payload=b"{}", signature="bogus")


async def test_cancel_and_reactivate(db, make_user, subscribe, fake_stripe):
    member = await make_user()
    subscription = await subscribe(member)
    recorder = fake_stripe(stripe.Subscription, "modify", {})

    cancelled = await billing_service.cancel_subscription(db, user=member, subscription_id=subscription.id)
    assert cancelled.cancel_at_period_end is True
    with pytest.raises(ValidationFailed, match="already set to cancel"):
        await billing_service.cancel_subscription(db, user=member, subscription_id=subscription.id)

    reactivated = await billing_service.reactivate_subscription(db, user=member, subscription_id=subscription.id)
    assert reactivated.cancel_at_period_end is False
    assert [c["cancel_at_period_end"] for c in recorder.calls["Subscription.modify"]] == [True, False]


async def test_subscription_belongs_to_owner(db, make_user, subscribe):
    member, other = await make_user(), await make_user()
    admin = await make_user("admin")
    subscription = await subscribe(member)

    with pytest.raises(PermissionDenied):
        await billing_service.get_subscription(db, user=other, subscription_id=subscription.id)
    found = await billing_service.get_subscription(db, user=admin, subscription_id=subscription.id)
    assert found.id == subscription.id


async def test_record_payment_checks_intent(db, make_user, fake_stripe):
    member = await make_user()
    fake_stripe(stripe.PaymentIntent, "retrieve", {
        "id": "pi_ok",
        "status": "succeeded",
        "amount_received": 150000,
        "currency": "pkr",
        "metadata": {"userId": str(member.id)},
    })

    payment = await billing_service.record_payment(db, user=member, payment_intent_id="pi_ok")
    again = await billing_service.record_payment(db, user=member, payment_intent_id="pi_ok")

    assert payment.amount == 150000
    assert again.id == payment.id


def test_subscription_period_falls_back_to_items():
    start = datetime(2026, 3, 1, tzinfo=timezone.utc)
    end = datetime(2026, 4, 1, tzinfo=timezone.utc)
    sub = {"items": {"data": [{"current_period_start": _ts(start), "current_period_end": _ts(end)}]}}

    assert subscription_period(sub) == (start, end)


def test_subscription_period_uses_plan_interval():
    start = datetime(2026, 1, 31, tzinfo=timezone.utc)

    assert subscription_period({"start_date": _ts(start)}, "month") == (start, datetime(2026, 2, 28, tzinfo=timezone.utc))
    assert subscription_period({"start_date": _ts(start)}, "year")[1] == datetime(2027, 1, 31, tzinfo=timezone.utc)


def test_status_normalization():
    assert normalize_status("canceled") == "cancelled"
    assert normalize_status("unpaid") == "past_due"
    assert normalize_status(None) == "incomplete"
