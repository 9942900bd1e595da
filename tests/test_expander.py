from datetime import datetime, timedelta
from types import SimpleNamespace

from notification_engine.services import expander


def make_schedule(**overrides):
    data = {
        "status": "SCHEDULED",
        "scheduled_at": datetime(2024, 1, 15, 9, 0),
        "timezone": "UTC",
        "is_recurring": 0,
        "recurring_pattern": None,
        "recurring_end_date": None,
    }
    data.update(overrides)
    return SimpleNamespace(**data)


def test_non_recurring_fire_inside_window():
    schedule = make_schedule()
    fires = expander.expand_fire_times(schedule, datetime(2024, 1, 15), datetime(2024, 1, 16))
    assert fires == [datetime(2024, 1, 15, 9, 0)]


def test_non_recurring_fire_outside_window():
    schedule = make_schedule()
    assert expander.expand_fire_times(schedule, datetime(2024, 1, 16), datetime(2024, 1, 17)) == []


def test_window_end_is_exclusive():
    schedule = make_schedule()
    assert expander.expand_fire_times(schedule, datetime(2024, 1, 15), datetime(2024, 1, 15, 9, 0)) == []


def test_null_scheduled_at_fires_now():
    now = datetime(2024, 2, 1, 12, 0)
    schedule = make_schedule(scheduled_at=None)
    fires = expander.expand_fire_times(schedule, datetime(2024, 2, 1), datetime(2024, 2, 2), now=now)
    assert fires == [now]


def test_past_due_non_recurring_is_still_returned():
    schedule = make_schedule(scheduled_at=datetime(2020, 1, 1, 9, 0))
    fires = expander.expand_fire_times(schedule, datetime.min, datetime(2024, 1, 1))
    assert fires == [datetime(2020, 1, 1, 9, 0)]


def test_cancelled_schedule_has_no_fires():
    schedule = make_schedule(status="CANCELLED", is_recurring=1, recurring_pattern="DAILY")
    assert expander.expand_fire_times(schedule, datetime(2024, 1, 1), datetime(2024, 12, 31)) == []
    assert expander.next_fire_after(schedule, datetime(2024, 1, 1)) is None


def test_daily_recurrence_in_window():
    schedule = make_schedule(scheduled_at=datetime(2024, 1, 1, 9, 0), is_recurring=1, recurring_pattern="DAILY")
    fires = expander.expand_fire_times(schedule, datetime(2024, 1, 2), datetime(2024, 1, 5))
    assert fires == [datetime(2024, 1, d, 9, 0) for d in (2, 3, 4)]


def test_weekly_recurrence_steps_seven_days():
    schedule = make_schedule(scheduled_at=datetime(2024, 1, 1, 9, 0), is_recurring=1, recurring_pattern="WEEKLY")
    fires = expander.expand_fire_times(schedule, datetime(2024, 1, 1), datetime(2024, 1, 31))
    assert fires == [datetime(2024, 1, 1, 9), datetime(2024, 1, 8, 9), datetime(2024, 1, 15, 9), datetime(2024, 1, 22, 9), datetime(2024, 1, 29, 9)]


def test_monthly_recurrence_clamps_to_last_day_in_leap_year():
    schedule = make_schedule(scheduled_at=datetime(2024, 1, 31, 9, 0), is_recurring=1, recurring_pattern="MONTHLY")
    fires = expander.expand_fire_times(schedule, datetime(2024, 1, 1), datetime(2024, 5, 1))
    assert fires == [
        datetime(2024, 1, 31, 9, 0),
        datetime(2024, 2, 29, 9, 0),
        datetime(2024, 3, 31, 9, 0),
        datetime(2024, 4, 30, 9, 0),
    ]


def test_monthly_recurrence_clamps_to_feb_28():
    schedule = make_schedule(scheduled_at=datetime(2023, 1, 31, 9, 0), is_recurring=1, recurring_pattern="MONTHLY")
    fires = expander.expand_fire_times(schedule, datetime(2023, 2, 1), datetime(2023, 3, 1))
    assert fires == [datetime(2023, 2, 28, 9, 0)]


def test_end_date_is_inclusive():
    schedule = make_schedule(
        scheduled_at=datetime(2024, 1, 1, 9, 0),
        is_recurring=1,
        recurring_pattern="DAILY",
        recurring_end_date=datetime(2024, 1, 3, 9, 0),
    )
    fires = expander.expand_fire_times(schedule, datetime(2024, 1, 1), datetime(2024, 2, 1))
    assert fires == [datetime(2024, 1, 1, 9), datetime(2024, 1, 2, 9), datetime(2024, 1, 3, 9)]


def test_expansion_is_idempotent():
    schedule = make_schedule(scheduled_at=datetime(2024, 1, 31, 9, 0), is_recurring=1, recurring_pattern="MONTHLY")
    window = (datetime(2024, 1, 1), datetime(2025, 1, 1))
    first = expander.expand_fire_times(schedule, *window)
    second = expander.expand_fire_times(schedule, *window)
    assert first == second
    assert len(first) == len(set(first)) == 12
    assert first == sorted(first)


def test_daily_recurrence_keeps_local_time_across_dst():
    # 09:00 in New York: UTC-5 before 2024-03-10, UTC-4 after
    schedule = make_schedule(
        scheduled_at=datetime(2024, 3, 9, 14, 0),
        timezone="America/New_York",
        is_recurring=1,
        recurring_pattern="DAILY",
    )
    fires = expander.expand_fire_times(schedule, datetime(2024, 3, 9), datetime(2024, 3, 12))
    assert fires == [datetime(2024, 3, 9, 14, 0), datetime(2024, 3, 10, 13, 0), datetime(2024, 3, 11, 13, 0)]


def test_next_fire_after():
    schedule = make_schedule(
        scheduled_at=datetime(2024, 1, 1, 9, 0),
        is_recurring=1,
        recurring_pattern="DAILY",
        recurring_end_date=datetime(2024, 1, 2, 9, 0),
    )
    assert expander.next_fire_after(schedule, datetime(2024, 1, 1, 9, 0)) == datetime(2024, 1, 2, 9, 0)
    assert expander.next_fire_after(schedule, datetime(2024, 1, 2, 9, 0)) is None
    assert expander.next_fire_after(make_schedule(), datetime(2024, 1, 15, 9, 0) - timedelta(seconds=1)) == datetime(2024, 1, 15, 9, 0)
