from datetime import timedelta

import pytest
from sqlalchemy import select, update

from fittrack.core.conversions import utcnow
from fittrack.core.errors import AlreadyExists, PermissionDenied, ValidationFailed
from fittrack.crud import attendanceCrud, bookingsCrud
from fittrack.models import Attendance, AttendanceToken, Booking
from fittrack.services.qr_service import hash_token


@pytest.fixture
async def live_booking(db, make_user, make_class, subscribe):
    """A member booked into a class that is in progress"""
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member)
    spin = await make_class(trainer, starts_in=timedelta(minutes=-10), minutes=60)
    outcome = await bookingsCrud.book_class(db, member=member, class_id=spin.id)
    return trainer, member, spin, outcome.results[0].booking


async def test_qr_code_payload(db, live_booking):
    _, member, spin, booking = live_booking

    qr = await bookingsCrud.generate_qr_token(db, member=member, booking_id=booking.id)

    assert qr["booking_id"] == booking.id
    assert qr["class_id"] == spin.id
    assert qr["qr_code"].startswith("data:image/png;base64,")
    assert f"b={booking.id}" in qr["checkin_url"]
    assert qr["expires_at"] > utcnow()

    stored = (await db.execute(
        select(AttendanceToken).where(AttendanceToken.booking_id == booking.id)
    )).scalar_one()
    assert stored.token_hash == hash_token(qr["token"])


async def test_qr_check_in_is_single_use(db, session_factory, live_booking):
    trainer, member, _, booking = live_booking
    qr = await bookingsCrud.generate_qr_token(db, member=member, booking_id=booking.id)

    attendance = await attendanceCrud.check_in_with_qr(db, caller=trainer, booking_id=booking.id, token=qr["token"])
    assert attendance.method == "qr"
    assert attendance.checked_in_by == trainer.id

    with pytest.raises(ValidationFailed, match="already been used"):
        await attendanceCrud.check_in_with_qr(db, caller=trainer, booking_id=booking.id, token=qr["token"])

    async with session_factory() as session:
        status = (await session.execute(select(Booking.status).where(Booking.id == booking.id))).scalar_one()
        rows = (await session.execute(select(Attendance).where(Attendance.booking_id == booking.id))).scalars().all()
    assert status == "checked_in"
    assert len(rows) == 1


async def test_new_code_revokes_previous_one(db, live_booking):
    trainer, member, _, booking = live_booking
    old = await bookingsCrud.generate_qr_token(db, member=member, booking_id=booking.id)
    await bookingsCrud.generate_qr_token(db, member=member, booking_id=booking.id)

    with pytest.raises(ValidationFailed, match="Invalid QR code"):
        await attendanceCrud.check_in_with_qr(db, caller=trainer, booking_id=booking.id, token=old["token"])


async def test_expired_qr_code_is_rejected(db, live_booking):
    trainer, member, _, booking = live_booking
    qr = await bookingsCrud.generate_qr_token(db, member=member, booking_id=booking.id)
    await db.execute(
        update(AttendanceToken)
        .where(AttendanceToken.booking_id == booking.id)
        .values(expires_at=utcnow() - timedelta(minutes=1))
    )
    await db.commit()

    with pytest.raises(ValidationFailed, match="expired"):
        await attendanceCrud.check_in_with_qr(db, caller=trainer, booking_id=booking.id, token=qr["token"])


async def test_recently_expired_code_survives_other_mints(db, make_user, subscribe, live_booking):
    trainer, member, spin, booking = live_booking
    qr = await bookingsCrud.generate_qr_token(db, member=member, booking_id=booking.id)
    await db.execute(
        update(AttendanceToken)
        .where(AttendanceToken.booking_id == booking.id)
        .values(expires_at=utcnow() - timedelta(hours=1))
    )
    await db.commit()

    other = await make_user()
    await subscribe(other)
    other_booking = (await bookingsCrud.book_class(db, member=other, class_id=spin.id)).results[0].booking
    await bookingsCrud.generate_qr_token(db, member=other, booking_id=other_booking.id)

    with pytest.raises(ValidationFailed, match="QR code has expired"):
        await attendanceCrud.check_in_with_qr(db, caller=trainer, booking_id=booking.id, token=qr["token"])


async def test_long_expired_tokens_are_purged(db, live_booking):
    _, member, _, booking = live_booking
    await bookingsCrud.generate_qr_token(db, member=member, booking_id=booking.id)
    await db.execute(
        update(AttendanceToken)
        .where(AttendanceToken.booking_id == booking.id)
        .values(expires_at=utcnow() - timedelta(hours=25))
    )
    await db.commit()

    assert await attendanceCrud.purge_expired_tokens(db) == 1
    await db.commit()


async def test_unrelated_user_cannot_scan(db, make_user, live_booking):
    _, member, _, booking = live_booking
    stranger = await make_user("trainer")
    qr = await bookingsCrud.generate_qr_token(db, member=member, booking_id=booking.id)

    with pytest.raises(PermissionDenied):
        await attendanceCrud.check_in_with_qr(db, caller=stranger, booking_id=booking.id, token=qr["token"])


async def test_manual_check_in_once(db, live_booking):
    trainer, member, spin, booking = live_booking

    attendance = await attendanceCrud.manual_check_in(db, caller=trainer, class_id=spin.id, member_id=member.id)
    assert attendance.method == "manual"

    with pytest.raises(AlreadyExists, match="Already checked in"):
        await attendanceCrud.manual_check_in(db, caller=trainer, class_id=spin.id, member_id=member.id)


async def test_manual_check_in_before_class_starts(db, make_user, make_class, subscribe):
    trainer = await make_user("trainer")
    member = await make_user()
    await subscribe(member)
    spin = await make_class(trainer, starts_in=timedelta(hours=3))
    await bookingsCrud.book_class(db, member=member, class_id=spin.id)

    with pytest.raises(ValidationFailed, match="not started"):
        await attendanceCrud.manual_check_in(db, caller=trainer, class_id=spin.id, member_id=member.id)


async def test_manual_check_in_needs_class_trainer(db, make_user, live_booking):
    _, member, spin, _ = live_booking
    other_trainer = await make_user("trainer")

    with pytest.raises(PermissionDenied):
        await attendanceCrud.manual_check_in(db, caller=other_trainer, class_id=spin.id, member_id=member.id)


async def test_class_attendance_report(db, live_booking):
    trainer, member, spin, _ = live_booking
    await attendanceCrud.manual_check_in(db, caller=trainer, class_id=spin.id, member_id=member.id)

    report = await attendanceCrud.get_class_attendance(db, caller=trainer, class_id=spin.id)

    assert report.stats.total_bookings == 1
    assert report.stats.checked_in == 1
    assert report.stats.manual == 1
    assert report.attendance[0].member.id == member.id


async def test_member_attendance_is_private(db, make_user, live_booking):
    _, member, _, _ = live_booking
    other = await make_user()

    with pytest.raises(PermissionDenied):
        await attendanceCrud.get_member_attendance(db, caller=other, member_id=member.id)
    report = await attendanceCrud.get_member_attendance(db, caller=member, member_id=member.id)
    assert report.total == 0
