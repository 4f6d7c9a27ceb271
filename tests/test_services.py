import io
import logging
from datetime import datetime, timedelta, timezone

import pytest
from PIL import Image

from fittrack.core.errors import AlreadyExists, ValidationFailed
from fittrack.core.logging_config import SecurityFilter
from fittrack.crud import usersCrud
from fittrack.models import TrainerAvailability
from fittrack.services.availability import check_availability, sunday_weekday
from fittrack.services.image_service import DocumentService, ImageService
from fittrack.services.qr_service import build_checkin_url, hash_token, new_token


def _window(weekday, start="06:00", end="14:00", available=True):
    return TrainerAvailability(weekday=weekday, start_time=start, end_time=end, is_available=available)


def test_sunday_based_weekdays():
    assert sunday_weekday(datetime(2026, 10, 18, tzinfo=timezone.utc)) == 0  # Sunday
    assert sunday_weekday(datetime(2026, 10, 17, tzinfo=timezone.utc)) == 6  # Saturday


def test_no_windows_means_available():
    start = datetime(2026, 10, 19, 20, tzinfo=timezone.utc)
    assert check_availability([], start, start.replace(hour=21)) == (True, "")


def test_availability_window_bounds():
    monday = datetime(2026, 10, 19, 7, tzinfo=timezone.utc)
    windows = [_window(1)]

    assert check_availability(windows, monday, monday.replace(hour=8))[0] is True
    ok, reason = check_availability(windows, monday.replace(hour=13), monday.replace(hour=15))
    assert not ok
    assert reason == "Trainer is only available on Monday from 06:00 to 14:00"


def test_day_marked_unavailable():
    monday = datetime(2026, 10, 19, 7, tzinfo=timezone.utc)
    ok, reason = check_availability([_window(1, available=False)], monday, monday.replace(hour=8))
    assert not ok
    assert reason == "Trainer is not available on Monday"


def test_tokens_are_hashed_and_urls_carry_ids():
    token = new_token()
    assert len(hash_token(token)) == 64
    assert hash_token(token) != token
    url = build_checkin_url(7, 42, token)
    assert "/checkin?" in url
    assert "c=7" in url and "b=42" in url


def _png(size=(800, 600)):
    buffered = io.BytesIO()
    Image.new("RGBA", size, (255, 0, 0, 128)).save(buffered, format="PNG")
    return buffered.getvalue()


def test_avatar_is_cropped_and_stored(tmp_path):
    service = ImageService(root=tmp_path)
    data = _png()

    assert service.validate_image(data, "me.png") == (True, "")
    path = service.process_and_save_image(data, 5, "me.png")

    assert path.startswith("avatars/")
    with Image.open(tmp_path / path) as saved:
        assert saved.size == (500, 500)
        assert saved.mode == "RGB"
    assert service.delete_file(path) is True
    assert not (tmp_path / path).exists()


def test_invalid_avatar_rejected(tmp_path):
    service = ImageService(root=tmp_path)
    ok, error = service.validate_image(b"not an image", "me.png")
    assert not ok
    assert error.startswith("Invalid image file")
    assert service.validate_image(_png(), "me.gif")[0] is False


def test_delete_outside_upload_dir_is_refused(tmp_path):
    service = ImageService(root=tmp_path / "uploads")
    outside = tmp_path / "secret.txt"
    outside.write_text("keep")

    assert service.delete_file("../secret.txt") is False
    assert outside.exists()


def test_document_validation(tmp_path):
    service = DocumentService(root=tmp_path)
    assert service.validate_document(b"%PDF", "application/pdf") == (True, "")
    assert service.validate_document(b"", "application/pdf")[0] is False
    assert service.validate_document(b"x", "text/html")[0] is False
    assert service.save_document(b"%PDF", "diet", "plan.pdf").startswith("plans/diet_")


async def test_create_user_rules(db, make_user):
    await make_user(email="sara@example.com")

    with pytest.raises(AlreadyExists):
        await usersCrud.create_user(db, name="Sara", email="SARA@example.com", password="secret123")
    with pytest.raises(ValidationFailed):
        await usersCrud.create_user(db, name="Short", email="short@example.com", password="123")
    with pytest.raises(ValidationFailed):
        await usersCrud.create_user(db, name="Boss", email="boss@example.com", password="secret123", role="owner")


async def test_deactivate_user(db, make_user):
    admin = await make_user("admin")
    member = await make_user()

    deactivated = await usersCrud.deactivate_user(db, user_id=member.id, acting_user_id=admin.id)
    assert deactivated.is_active is False
    with pytest.raises(ValidationFailed, match="your own account"):
        await usersCrud.deactivate_user(db, user_id=admin.id, acting_user_id=admin.id)


async def test_trainer_with_upcoming_classes_keeps_account(db, make_user, make_class):
    trainer = await make_user("trainer")
    await make_class(trainer, starts_in=timedelta(days=3))

    with pytest.raises(ValidationFailed, match="1 upcoming class"):
        await usersCrud.close_own_account(db, user=trainer)
    assert trainer.is_active is True


async def test_availability_rejects_duplicate_days(db, make_user):
    trainer = await make_user("trainer")
    with pytest.raises(ValidationFailed, match="Duplicate"):
        await usersCrud.set_availability(
            db,
            trainer=trainer,
            windows=[usersCrud.AvailabilityWindow(weekday=2), usersCrud.AvailabilityWindow(weekday=2)],
        )
    saved = await usersCrud.set_availability(
        db, trainer=trainer, windows=[usersCrud.AvailabilityWindow(weekday=2, start_time="07:00", end_time="11:00")]
    )
    assert [(w.day, w.start_time) for w in saved] == [("Tuesday", "07:00")]


def test_security_filter_masks_tokens_and_secrets():
    record = logging.LogRecord(
        "fittrack.test", logging.INFO, __file__, 1,
        "scan %s with key %s", ("https://gym.test/checkin?b=1&t=abcDEF123_-", "sk_test_51Habc"), None,
    )
    assert SecurityFilter().filter(record) is True
    message = record.getMessage()
    assert "abcDEF123" not in message
    assert "[QR_TOKEN]" in message
    assert "[STRIPE_SECRET]" in message
