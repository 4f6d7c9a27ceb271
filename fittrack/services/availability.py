"""
Trainer working-window checks.

Availability rows hold "HH:MM" strings in gym-local time, so class times are
converted to ``GYM_TIMEZONE`` before comparing.
"""
from datetime import datetime, time
from typing import Iterable, Tuple
from zoneinfo import ZoneInfo

from fittrack.core import settings
from fittrack.core.conversions import ensure_utc
from fittrack.models.userModel import TrainerAvailability, WEEKDAYS


def parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def to_gym_time(value: datetime) -> datetime:
    return ensure_utc(value).astimezone(ZoneInfo(settings.GYM_TIMEZONE))


def sunday_weekday(value: datetime) -> int:
    """0=Sunday ... 6=Saturday"""
    return (value.weekday() + 1) % 7


def check_availability(
    windows: Iterable[TrainerAvailability],
    start_at: datetime,
    end_at: datetime,
) -> Tuple[bool, str]:
    """
    Check that [start_at, end_at] falls inside the trainer's working window.

    A trainer with no windows configured is treated as always available.

    Returns:
        Tuple of (is_available, reason)
    """
    windows = list(windows)
    if not windows:
        return True, ""

    local_start = to_gym_time(start_at)
    local_end = to_gym_time(end_at)
    weekday = sunday_weekday(local_start)
    day_name = WEEKDAYS[weekday]

    window = next((w for w in windows if w.weekday == weekday), None)
    if window is None or not window.is_available:
        return False, f"Trainer is not available on {day_name}"

    if local_end.date() != local_start.date():
        return False, "Class must start and end on the same day"

    window_start = parse_hhmm(window.start_time)
    window_end = parse_hhmm(window.end_time)
    if local_start.time() < window_start or local_end.time() > window_end:
        return False, (
            f"Trainer is only available on {day_name} "
            f"from {window.start_time} to {window.end_time}"
        )

    return True, ""
