"""Resume-time computation for delays, dated waits and wait timeouts."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Set
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from shared.constants import DEFAULT_TIMEZONE, WEEKEND_DAYS
from shared.types import BusinessHours, WorkflowSettings


def workflow_zone(settings: Optional[WorkflowSettings]) -> ZoneInfo:
    name = settings.timezone if settings is not None and settings.timezone else DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":", 1)
    return time(int(hours), int(minutes))


def _midnight_after(moment: datetime) -> datetime:
    return datetime.combine(moment.date() + timedelta(days=1), time(0), tzinfo=moment.tzinfo)


def _skip_weekend_days(moment: datetime) -> datetime:
    """Moves to the same time-of-day on the next weekday."""
    while moment.weekday() in WEEKEND_DAYS:
        moment = datetime.combine(moment.date() + timedelta(days=1), moment.timetz())
    return moment


def add_weekday_time(start: datetime, delta: timedelta) -> datetime:
    """Adds ``delta`` counting only time that falls on weekdays."""
    cursor = start
    if cursor.weekday() in WEEKEND_DAYS:
        cursor = _midnight_after(cursor)
        while cursor.weekday() in WEEKEND_DAYS:
            cursor = _midnight_after(cursor)
    remaining = delta
    while remaining > timedelta(0):
        day_end = _midnight_after(cursor)
        chunk = min(remaining, day_end - cursor)
        cursor = cursor + chunk
        remaining -= chunk
        if remaining > timedelta(0):
            cursor = day_end
            while cursor.weekday() in WEEKEND_DAYS:
                cursor = _midnight_after(cursor)
    return cursor


def next_business_moment(moment: datetime, hours: BusinessHours) -> datetime:
    """Returns ``moment`` if inside the business window, else the next window start."""
    start, end = parse_hhmm(hours.start), parse_hhmm(hours.end)
    days: Set[int] = set(hours.days)
    if not days:
        return moment

    local_time = moment.time()
    if moment.weekday() in days:
        if start <= local_time < end:
            return moment
        if local_time < start:
            return datetime.combine(moment.date(), start, tzinfo=moment.tzinfo)

    day = moment.date() + timedelta(days=1)
    while day.weekday() not in days:
        day += timedelta(days=1)
    return datetime.combine(day, start, tzinfo=moment.tzinfo)


def _next_allowed_day(moment: datetime, skip_weekends: bool, business_days: Optional[Set[int]]) -> datetime:
    def allowed(d: date) -> bool:
        if skip_weekends and d.weekday() in WEEKEND_DAYS:
            return False
        if business_days and d.weekday() not in business_days:
            return False
        return True

    while not allowed(moment.date()):
        moment = datetime.combine(moment.date() + timedelta(days=1), moment.timetz())
    return moment


def compute_resume_at(
    now: datetime,
    amount: float,
    unit: str,
    business_hours_only: bool = False,
    skip_weekends: bool = False,
    specific_time: Optional[str] = None,
    settings: Optional[WorkflowSettings] = None,
) -> datetime:
    """Computes when a delayed record resumes, returned in UTC.

    Steps, in order: add the duration (weekend time does not count for
    minutes/hours/days when ``skip_weekends``; weeks are calendar weeks),
    move into the business window, roll off a weekend, then pin to
    ``specific_time`` on the same or the next allowed day.
    """
    settings = settings or WorkflowSettings()
    zone = workflow_zone(settings)
    local = now.astimezone(zone)
    delta = timedelta(**{unit: amount})

    if skip_weekends and unit != "weeks":
        resume = add_weekday_time(local, delta)
    else:
        resume = local + delta

    if business_hours_only:
        resume = next_business_moment(resume, settings.business_hours)

    if skip_weekends:
        resume = _skip_weekend_days(resume)

    if specific_time:
        at = parse_hhmm(specific_time)
        pinned = datetime.combine(resume.date(), at, tzinfo=zone)
        if pinned < resume:
            pinned = datetime.combine(resume.date() + timedelta(days=1), at, tzinfo=zone)
        business_days = set(settings.business_hours.days) if business_hours_only else None
        resume = _next_allowed_day(pinned, skip_weekends, business_days)

    return resume.astimezone(timezone.utc)


def resolve_wait_date(date_str: str, time_str: Optional[str], settings: Optional[WorkflowSettings] = None) -> datetime:
    """Interprets a wait-until date (and optional HH:MM) in the workflow timezone."""
    zone = workflow_zone(settings)
    day = date.fromisoformat(date_str[:10])
    at = parse_hhmm(time_str) if time_str else time(0)
    return datetime.combine(day, at, tzinfo=zone).astimezone(timezone.utc)
