"""Calendar utilities — ISO week arithmetic. Pure functions, no state.

Week ids are ``"<year>-W<week>"`` strings (``"2025-W47"``) following ISO 8601:
weeks start on Monday and week 1 is the week holding the year's first
Thursday, so late-December dates can belong to week 1 of the next year and
early-January dates to week 52/53 of the previous one.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from app.config import settings
from app.scheduler.exceptions import InvalidWeekIdError
from app.scheduler.models import Milestone

WEEK_ID_RE = re.compile(r"^(\d{4})-W(\d{2})$")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_week_id(d: date) -> str:
    year, week, _ = d.isocalendar()
    return f"{year}-W{week:02d}"


def current_iso_week(now: datetime | None = None, tz_name: str | None = None) -> str:
    """ISO week of `now` (default: current time) in the configured timezone."""
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    tz = ZoneInfo(tz_name or settings.default_tz)
    return iso_week_id(moment.astimezone(tz).date())


def parse_iso_week(week_id: str) -> tuple[int, int]:
    """Split a week id into (year, week). Raises InvalidWeekIdError."""
    match = WEEK_ID_RE.match(week_id) if isinstance(week_id, str) else None
    if match is None:
        raise InvalidWeekIdError(week_id)
    year, week = int(match.group(1)), int(match.group(2))
    try:
        # Rejects W00 and W53 in 52-week years
        date.fromisocalendar(year, week, 1)
    except ValueError:
        raise InvalidWeekIdError(week_id) from None
    return year, week


def is_valid_week_id(week_id: Any) -> bool:
    try:
        parse_iso_week(week_id)
    except InvalidWeekIdError:
        return False
    return True


def week_start(week_id: str) -> date:
    year, week = parse_iso_week(week_id)
    return date.fromisocalendar(year, week, 1)


def week_range(week_id: str) -> tuple[date, date]:
    """(Monday, Sunday) of the week."""
    start = week_start(week_id)
    return start, start + timedelta(days=6)


def next_week_id(week_id: str) -> str:
    return iso_week_id(week_start(week_id) + timedelta(days=7))


def weeks_between(start_week: str, end_week: str) -> list[str]:
    """Week ids in [start_week, end_week). Empty if end is not after start."""
    cursor = week_start(start_week)
    end = week_start(end_week)
    weeks: list[str] = []
    while cursor < end:
        weeks.append(iso_week_id(cursor))
        cursor += timedelta(days=7)
    return weeks


def weeks_elapsed(start_week: str, end_week: str) -> int:
    return (week_start(end_week) - week_start(start_week)).days // 7


def to_date(value: Any) -> date | None:
    """Coerce a date, datetime or ISO string to a date. None when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def weeks_until(target_date: Any, from_week: str) -> int:
    """Weeks from the Monday of `from_week` until `target_date`, rounded up.

    A target inside the current week counts as 0 or 1 weeks out; a target
    before the Monday of `from_week` (or a missing/invalid date) returns -1.
    """
    target = to_date(target_date)
    if target is None:
        return -1
    days = (target - week_start(from_week)).days
    if days < 0:
        return -1
    return math.ceil(days / 7)


def months_to_weeks(months: float, weeks_per_month: float | None = None) -> int:
    factor = weeks_per_month if weeks_per_month is not None else settings.weeks_per_month
    # round() first so 100 * 4.33 does not ceil to 434
    return math.ceil(round(months * factor, 6))


def is_milestone_complete(
    milestone: Milestone | Mapping[str, Any] | None,
    dream_progress: float = 0,
) -> bool:
    """Complete when the streak reached its target, or the dream is done and the
    milestone is configured to end with it."""
    if not milestone:
        return False
    if not isinstance(milestone, Milestone):
        milestone = Milestone.model_validate(milestone)
    if (
        milestone.target_weeks is not None
        and milestone.streak_weeks is not None
        and milestone.streak_weeks >= milestone.target_weeks
    ):
        return True
    return milestone.end_on_dream_complete and dream_progress >= 100


def compute_streak(
    week_log: Mapping[str, bool] | None,
    start_date: Any = None,
    today: date | None = None,
) -> int:
    """Consecutive weeks logged True, counted from the week of `start_date`.

    The count stops at the first week that is missing or not True.
    """
    if not week_log:
        return 0
    today = today or datetime.now(timezone.utc).date()
    start = to_date(start_date) or today
    cursor = start - timedelta(days=start.weekday())
    streak = 0
    while cursor <= today:
        if week_log.get(iso_week_id(cursor)) is not True:
            break
        streak += 1
        cursor += timedelta(days=7)
    return streak
