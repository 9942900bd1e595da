"""Expand a schedule into concrete fire instants.

Recurrence steps are applied to the anchor (``scheduled_at``) in the
schedule's own timezone, so local wall-clock time is kept across DST changes
and monthly steps clamp to the last day of shorter months without drifting
(Jan 31 -> Feb 29 -> Mar 31).
"""
from datetime import datetime
from typing import Iterator, List, Optional

from dateutil.relativedelta import relativedelta

from notification_engine.core.clock import get_zone, to_local, to_utc_naive, utcnow
from notification_engine.models.enums import RecurringPattern, ScheduleStatus


def _step(pattern: str, n: int) -> relativedelta:
    if pattern == RecurringPattern.DAILY.value:
        return relativedelta(days=n)
    if pattern == RecurringPattern.WEEKLY.value:
        return relativedelta(weeks=n)
    if pattern == RecurringPattern.MONTHLY.value:
        return relativedelta(months=n)
    raise ValueError(f"Unknown recurring pattern: {pattern}")


def iter_recurring(schedule) -> Iterator[datetime]:
    """Yield every fire of a recurring schedule in order, as naive UTC."""
    zone = get_zone(schedule.timezone)
    anchor_local = to_local(schedule.scheduled_at, zone)
    end = schedule.recurring_end_date
    previous: Optional[datetime] = None
    n = 0
    while True:
        fire = to_utc_naive(anchor_local + _step(schedule.recurring_pattern, n))
        n += 1
        if end is not None and fire > end:
            return
        if previous is not None and fire <= previous:
            continue
        previous = fire
        yield fire


def expand_fire_times(schedule, window_start: datetime, window_end: datetime, now: Optional[datetime] = None) -> List[datetime]:
    """Fire instants of ``schedule`` inside ``[window_start, window_end)``.

    Past-due instants are returned as-is; deciding whether to still dispatch
    them is the caller's business.
    """
    if schedule.status == ScheduleStatus.CANCELLED.value:
        return []
    if not schedule.is_recurring:
        fire = schedule.scheduled_at or (now or utcnow())
        return [fire] if window_start <= fire < window_end else []

    fires: List[datetime] = []
    for fire in iter_recurring(schedule):
        if fire >= window_end:
            break
        if fire >= window_start:
            fires.append(fire)
    return fires


def next_fire_after(schedule, after: datetime) -> Optional[datetime]:
    if schedule.status == ScheduleStatus.CANCELLED.value:
        return None
    if not schedule.is_recurring:
        fire = schedule.scheduled_at
        return fire if fire is not None and fire > after else None
    for fire in iter_recurring(schedule):
        if fire > after:
            return fire
    return None
