import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from fittrack.core.errors import AlreadyExists, PermissionDenied, ValidationFailed
from fittrack.crud import bookingsCrud
from fittrack.models import Booking, ClassSession, Notification


async def _class(session_factory, class_id):
    async with session_factory() as session:
        return (await session.execute(select(ClassSession).where(ClassSession.id == class_id))).scalar_one()


async def _bookings(session_factory, class_id):
    async with session_factory() as session:
        res = await session.execute(select(Booking).where(Booking.class_id == class_id).order_by(Booking.id))
        return list(res.scalars().all())


async def test_book_class_takes_a_seat(db, session_factory, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member)
    spin = await make_class(trainer, capacity=2)

    outcome = await bookingsCrud.book_class(db, member=member, class_id=spin.id)

    assert not outcome.is_series
    assert outcome.results[0].status == "booked"
    assert (await _class(session_factory, spin.id)).attendee_count == 1


async def test_booking_requires_active_subscription(db, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member, status="past_due")
    spin = await make_class(trainer)

    with pytest.raises(PermissionDenied, match="Active subscription required"):
        await bookingsCrud.book_class(db, member=member, class_id=spin.id)


async def test_booking_twice_is_rejected(db, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member)
    spin = await make_class(trainer)

    await bookingsCrud.book_class(db, member=member, class_id=spin.id)
    with pytest.raises(AlreadyExists):
        await bookingsCrud.book_class(db, member=member, class_id=spin.id)


async def test_full_class_waitlists_in_order(db, session_factory, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    spin = await make_class(trainer, capacity=1)
    members = [await make_user() for _ in range(3)]
    for m in members:
        await subscribe(m)

    results = [await bookingsCrud.book_class(db, member=m, class_id=spin.id) for m in members]

    assert [r.results[0].status for r in results] == ["booked", "waitlisted", "waitlisted"]
    assert [r.results[0].waitlist_position for r in results] == [None, 1, 2]
    assert (await _class(session_factory, spin.id)).attendee_count == 1


async def test_cancel_promotes_head_of_waitlist(db, session_factory, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    spin = await make_class(trainer, capacity=1)
    first, second, third = [await make_user() for _ in range(3)]
    for m in (first, second, third):
        await subscribe(m)

    booked = await bookingsCrud.book_class(db, member=first, class_id=spin.id)
    await bookingsCrud.book_class(db, member=second, class_id=spin.id)
    await bookingsCrud.book_class(db, member=third, class_id=spin.id)

    await bookingsCrud.cancel_booking(db, member=first, booking_id=booked.results[0].booking.id, reason="sick")

    statuses = {b.member_id: (b.status, b.waitlist_position) for b in await _bookings(session_factory, spin.id)}
    assert statuses[first.id] == ("cancelled", None)
    assert statuses[second.id] == ("booked", None)
    assert statuses[third.id] == ("waitlisted", 2)
    assert (await _class(session_factory, spin.id)).attendee_count == 1

    async with session_factory() as session:
        types = (await session.execute(
            select(Notification.type).where(Notification.user_id == second.id)
        )).scalars().all()
    assert "waitlist_promoted" in types


async def test_cancel_inside_cutoff_is_rejected(db, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member)
    spin = await make_class(trainer, starts_in=timedelta(hours=1))

    outcome = await bookingsCrud.book_class(db, member=member, class_id=spin.id)
    with pytest.raises(ValidationFailed, match="2 hours"):
        await bookingsCrud.cancel_booking(db, member=member, booking_id=outcome.results[0].booking.id)


async def test_waitlisted_booking_can_cancel_inside_cutoff(db, session_factory, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    spin = await make_class(trainer, starts_in=timedelta(hours=1), capacity=1)
    first, second = await make_user(), await make_user()
    await subscribe(first)
    await subscribe(second)

    await bookingsCrud.book_class(db, member=first, class_id=spin.id)
    waiting = await bookingsCrud.book_class(db, member=second, class_id=spin.id)

    cancelled = await bookingsCrud.cancel_booking(db, member=second, booking_id=waiting.results[0].booking.id)
    assert cancelled.status == "cancelled"
    assert (await _class(session_factory, spin.id)).attendee_count == 1


async def test_cancelled_booking_can_be_rebooked(db, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member)
    spin = await make_class(trainer)

    first = await bookingsCrud.book_class(db, member=member, class_id=spin.id)
    booking_id = first.results[0].booking.id
    await bookingsCrud.cancel_booking(db, member=member, booking_id=booking_id)

    again = await bookingsCrud.book_class(db, member=member, class_id=spin.id)
    assert again.results[0].status == "booked"
    assert again.results[0].booking.id == booking_id


async def test_other_members_booking_is_forbidden(db, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    owner, other = await make_user(), await make_user()
    await subscribe(owner)
    spin = await make_class(trainer)

    outcome = await bookingsCrud.book_class(db, member=owner, class_id=spin.id)
    with pytest.raises(PermissionDenied):
        await bookingsCrud.cancel_booking(db, member=other, booking_id=outcome.results[0].booking.id)


async def test_series_booking_books_every_upcoming_occurrence(db, session_factory, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member)
    group = str(uuid.uuid4())
    weeks = [
        await make_class(trainer, starts_in=timedelta(days=1 + 7 * i), recurrence_group_id=group, capacity=1)
        for i in range(3)
    ]
    rival = await make_user()
    await subscribe(rival)
    await bookingsCrud.book_class(db, member=rival, class_id=weeks[2].id)

    outcome = await bookingsCrud.book_class(db, member=member, class_id=weeks[0].id)

    assert outcome.is_series
    assert [r.status for r in outcome.results] == ["booked", "booked", "waitlisted"]
    assert outcome.waitlisted


async def test_course_quota_counts_series_once(db, make_user, make_class, make_plan, subscribe):
    trainer = await make_user("trainer")
    member = await make_user()
    plan = await make_plan(classes_per_month=1, name="Starter")
    await subscribe(member, plan=plan)
    group = str(uuid.uuid4())
    series = [
        await make_class(trainer, starts_in=timedelta(days=1 + 7 * i), recurrence_group_id=group)
        for i in range(2)
    ]
    yoga = await make_class(trainer, starts_in=timedelta(days=2), name="Yoga")

    await bookingsCrud.book_class(db, member=member, class_id=series[0].id)

    with pytest.raises(PermissionDenied) as excinfo:
        await bookingsCrud.book_class(db, member=member, class_id=yoga.id)
    assert excinfo.value.extra == {"limit": 1, "currentCount": 1}


async def test_course_quota_covers_classes_after_period_end(db, session_factory, make_user, make_class,
                                                            make_plan, subscribe):
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member, plan=await make_plan(classes_per_month=1, name="Starter"), days_left=20)
    far_out = [
        await make_class(trainer, starts_in=timedelta(days=25 + i), name=f"Course {i}")
        for i in range(4)
    ]

    await bookingsCrud.book_class(db, member=member, class_id=far_out[0].id)
    for class_session in far_out[1:]:
        with pytest.raises(PermissionDenied, match="1 active course"):
            await bookingsCrud.book_class(db, member=member, class_id=class_session.id)

    booked = [b for c in far_out for b in await _bookings(session_factory, c.id)]
    assert [b.class_id for b in booked] == [far_out[0].id]


async def test_ended_class_frees_course_slot(db, make_user, make_class, make_plan, subscribe):
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member, plan=await make_plan(classes_per_month=1, name="Starter"))
    earlier = await make_class(trainer, starts_in=timedelta(hours=-2), minutes=60, name="Done")
    db.add(Booking(member_id=member.id, class_id=earlier.id, status="checked_in"))
    await db.commit()
    yoga = await make_class(trainer, starts_in=timedelta(days=2), name="Yoga")

    assert await bookingsCrud.member_courses(db, member.id) == set()
    outcome = await bookingsCrud.book_class(db, member=member, class_id=yoga.id)
    assert outcome.results[0].status == "booked"


async def test_unbook_course_skips_seats_inside_cutoff(db, session_factory, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member)
    group = str(uuid.uuid4())
    soon = await make_class(trainer, starts_in=timedelta(hours=1), recurrence_group_id=group)
    later = await make_class(trainer, starts_in=timedelta(days=7), recurrence_group_id=group)

    await bookingsCrud.book_class(db, member=member, class_id=soon.id)
    outcome = await bookingsCrud.unbook_course(db, member=member, class_id=soon.id, reason="moving")

    assert outcome == {"cancelled": [later.id], "skipped": [soon.id]}
    statuses = {b.class_id: b.status for b in await _bookings(session_factory, later.id)}
    assert statuses[later.id] == "cancelled"


async def test_unbook_course_without_bookings_fails(db, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member)
    spin = await make_class(trainer)

    with pytest.raises(ValidationFailed, match="No bookings"):
        await bookingsCrud.unbook_course(db, member=member, class_id=spin.id)


async def test_concurrent_bookings_never_overfill(session_factory, db, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    spin = await make_class(trainer, capacity=3)
    members = [await make_user() for _ in range(8)]
    for m in members:
        await subscribe(m)

    async def attempt(member):
        async with session_factory() as session:
            outcome = await bookingsCrud.book_class(session, member=member, class_id=spin.id)
            return outcome.results[0].status

    statuses = await asyncio.gather(*(attempt(m) for m in members))

    assert statuses.count("booked") == 3
    assert statuses.count("waitlisted") == 5
    refreshed = await _class(session_factory, spin.id)
    assert refreshed.attendee_count == 3
    positions = sorted(b.waitlist_position for b in await _bookings(session_factory, spin.id) if b.status == "waitlisted")
    assert positions == [1, 2, 3, 4, 5]
