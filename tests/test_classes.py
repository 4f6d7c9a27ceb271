from datetime import datetime, time, timedelta, timezone

import pytest
from sqlalchemy import select

from fittrack.core.conversions import utcnow
from fittrack.core.errors import PermissionDenied, ValidationFailed
from fittrack.crud import bookingsCrud, classSessionCrud, usersCrud
from fittrack.crud.classSessionCrud import ClassCreateData
from fittrack.models import Booking, ClassSession, Notification
from fittrack.services.availability import sunday_weekday


def _tomorrow_at(hour, minute=0):
    day = (utcnow() + timedelta(days=1)).date()
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


def _payload(trainer, start, minutes=60, **overrides):
    values = dict(
        name="HIIT",
        description="High intensity intervals",
        start_at=start,
        end_at=start + timedelta(minutes=minutes),
        capacity=12,
        location="Main floor",
        trainer_id=trainer.id,
    )
    values.update(overrides)
    return ClassCreateData(**values)


async def test_create_single_class(db, make_user):
    admin = await make_user("admin")
    trainer = await make_user("trainer")

    created = await classSessionCrud.create_classes(db, actor=admin, data=_payload(trainer, _tomorrow_at(10)))

    assert len(created) == 1
    assert created[0].duration_min == 60
    assert created[0].recurrence_group_id is None
    assert created[0].attendee_count == 0


async def test_create_weekly_series(db, make_user):
    admin = await make_user("admin")
    trainer = await make_user("trainer")
    start = _tomorrow_at(18)

    created = await classSessionCrud.create_classes(
        db, actor=admin, data=_payload(trainer, start, is_recurring=True, recurrence_count=4)
    )

    assert len(created) == 4
    assert len({c.recurrence_group_id for c in created}) == 1
    assert created[0].recurrence_group_id is not None
    assert [c.start_at for c in created] == [start + timedelta(weeks=i) for i in range(4)]


async def test_trainer_conflict_rejects_whole_series(db, make_user):
    admin = await make_user("admin")
    trainer = await make_user("trainer")
    start = _tomorrow_at(9)
    await classSessionCrud.create_classes(
        db, actor=admin, data=_payload(trainer, start + timedelta(weeks=2, minutes=30))
    )

    with pytest.raises(ValidationFailed) as excinfo:
        await classSessionCrud.create_classes(
            db, actor=admin, data=_payload(trainer, start, is_recurring=True, recurrence_count=3)
        )
    assert len(excinfo.value.extra["conflicts"]) == 1

    count = len((await db.execute(select(ClassSession))).scalars().all())
    assert count == 1


async def test_back_to_back_classes_do_not_conflict(db, make_user):
    admin = await make_user("admin")
    trainer = await make_user("trainer")
    start = _tomorrow_at(9)

    await classSessionCrud.create_classes(db, actor=admin, data=_payload(trainer, start))
    created = await classSessionCrud.create_classes(
        db, actor=admin, data=_payload(trainer, start + timedelta(minutes=60))
    )
    assert len(created) == 1


async def test_class_outside_availability_window(db, make_user):
    admin = await make_user("admin")
    trainer = await make_user("trainer")
    start = _tomorrow_at(11, 30)
    await usersCrud.set_availability(
        db,
        trainer=trainer,
        windows=[usersCrud.AvailabilityWindow(weekday=sunday_weekday(start), start_time="08:00", end_time="12:00")],
    )

    with pytest.raises(ValidationFailed, match="only available"):
        await classSessionCrud.create_classes(db, actor=admin, data=_payload(trainer, start))

    created = await classSessionCrud.create_classes(db, actor=admin, data=_payload(trainer, _tomorrow_at(8)))
    assert len(created) == 1


async def test_class_on_unavailable_day(db, make_user):
    admin = await make_user("admin")
    trainer = await make_user("trainer")
    start = _tomorrow_at(10)
    other_day = (sunday_weekday(start) + 1) % 7
    await usersCrud.set_availability(
        db, trainer=trainer, windows=[usersCrud.AvailabilityWindow(weekday=other_day)]
    )

    with pytest.raises(ValidationFailed, match="not available"):
        await classSessionCrud.create_classes(db, actor=admin, data=_payload(trainer, start))


async def test_update_capacity_below_attendees_is_rejected(db, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    spin = await make_class(trainer, capacity=3)
    for _ in range(2):
        member = await make_user()
        await subscribe(member)
        await bookingsCrud.book_class(db, member=member, class_id=spin.id)

    with pytest.raises(ValidationFailed, match="lower than"):
        await classSessionCrud.update_class(db, actor=trainer, class_id=spin.id, changes={"capacity": 1})


async def test_capacity_increase_promotes_waitlist(db, session_factory, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    spin = await make_class(trainer, capacity=1)
    members = [await make_user() for _ in range(3)]
    for m in members:
        await subscribe(m)
        await bookingsCrud.book_class(db, member=m, class_id=spin.id)

    updated = await classSessionCrud.update_class(db, actor=trainer, class_id=spin.id, changes={"capacity": 2})

    assert updated.capacity == 2
    assert updated.attendee_count == 2
    async with session_factory() as session:
        rows = (await session.execute(select(Booking).where(Booking.class_id == spin.id))).scalars().all()
    statuses = {b.member_id: b.status for b in rows}
    assert statuses == {members[0].id: "booked", members[1].id: "booked", members[2].id: "waitlisted"}


async def test_only_admin_reassigns_trainer(db, make_user, make_class):
    trainer = await make_user("trainer")
    other = await make_user("trainer")
    admin = await make_user("admin")
    spin = await make_class(trainer)

    with pytest.raises(PermissionDenied):
        await classSessionCrud.update_class(db, actor=trainer, class_id=spin.id, changes={"trainer_id": other.id})

    updated = await classSessionCrud.update_class(db, actor=admin, class_id=spin.id, changes={"trainer_id": other.id})
    assert updated.trainer_id == other.id


async def test_duration_change_moves_end_time(db, make_user, make_class):
    trainer = await make_user("trainer")
    spin = await make_class(trainer, minutes=60)

    updated = await classSessionCrud.update_class(db, actor=trainer, class_id=spin.id, changes={"duration_min": 90})

    assert updated.end_at - updated.start_at == timedelta(minutes=90)


async def test_cancel_class_cancels_bookings(db, session_factory, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    spin = await make_class(trainer, capacity=1)
    first, second = await make_user(), await make_user()
    for m in (first, second):
        await subscribe(m)
        await bookingsCrud.book_class(db, member=m, class_id=spin.id)

    cancelled = await classSessionCrud.cancel_class(db, actor=trainer, class_id=spin.id)

    assert cancelled.status == "cancelled"
    assert cancelled.attendee_count == 0
    async with session_factory() as session:
        statuses = (await session.execute(
            select(Booking.status).where(Booking.class_id == spin.id)
        )).scalars().all()
        notified = (await session.execute(
            select(Notification.user_id).where(Notification.type == "class_cancelled")
        )).scalars().all()
    assert set(statuses) == {"cancelled"}
    assert set(notified) == {first.id, second.id}


async def test_cancel_class_by_other_trainer_is_forbidden(db, make_user, make_class):
    trainer = await make_user("trainer")
    other = await make_user("trainer")
    spin = await make_class(trainer)

    with pytest.raises(PermissionDenied):
        await classSessionCrud.cancel_class(db, actor=other, class_id=spin.id)


async def test_complete_class_marks_no_shows(db, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    spin = await make_class(trainer, starts_in=timedelta(minutes=-30), capacity=1)
    first, second = await make_user(), await make_user()
    for m in (first, second):
        await subscribe(m)
        await bookingsCrud.book_class(db, member=m, class_id=spin.id)

    counts = await classSessionCrud.complete_class(db, actor=trainer, class_id=spin.id)

    assert counts == {"completed": 0, "no_show": 1, "waitlist_cancelled": 1}


async def test_complete_future_class_is_rejected(db, make_user, make_class):
    trainer = await make_user("trainer")
    spin = await make_class(trainer)

    with pytest.raises(ValidationFailed, match="not started"):
        await classSessionCrud.complete_class(db, actor=trainer, class_id=spin.id)


async def test_class_detail_lists_roster_and_waitlist(db, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    spin = await make_class(trainer, capacity=1)
    first, second = await make_user(), await make_user()
    for m in (first, second):
        await subscribe(m)
        await bookingsCrud.book_class(db, member=m, class_id=spin.id)

    detail = await classSessionCrud.get_class_detail(db, spin.id)

    assert [b.member_id for b in detail.attendees] == [first.id]
    assert [b.member_id for b in detail.waitlist] == [second.id]
    assert detail.class_session.available_spots == 0
