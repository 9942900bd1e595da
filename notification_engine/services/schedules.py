import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import func, select

from notification_engine.core.clock import to_utc_naive
from notification_engine.core.config import get_settings
from notification_engine.core.database import session_scope
from notification_engine.core.errors import NotFoundError, ValidationError
from notification_engine.models import NotificationDelivery, NotificationSchedule, NotificationTemplate, ScheduleOccurrence
from notification_engine.models.enums import RecurringPattern, ScheduleStatus
from notification_engine.services import occurrences

logger = logging.getLogger(__name__)

TARGET_FIELDS = {
    "roles": "target_roles",
    "user_ids": "target_user_ids",
    "course_ids": "target_course_ids",
    "class_ids": "target_class_ids",
}
FLAG_FIELDS = ("email_enabled", "push_enabled", "in_app_enabled", "include_teachers", "is_recurring")
REQUIRED_FIELDS = ("name", "template_id", "timezone") + FLAG_FIELDS


def validate_timing(
    scheduled_at: Optional[datetime],
    is_recurring: bool,
    recurring_pattern: Optional[str],
    recurring_end_date: Optional[datetime],
    timezone: str,
) -> None:
    """Reject recurrence configurations the expander can not handle."""
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"unknown timezone: {timezone}") from exc
    if is_recurring:
        if not recurring_pattern:
            raise ValidationError("recurring schedules need a recurring_pattern")
        if recurring_pattern not in RecurringPattern.__members__:
            raise ValidationError(f"invalid recurring_pattern: {recurring_pattern}")
        if scheduled_at is None:
            raise ValidationError("recurring schedules need scheduled_at as their first fire")
        if recurring_end_date is not None and recurring_end_date < scheduled_at:
            raise ValidationError("recurring_end_date must not be before scheduled_at")
    elif recurring_end_date is not None:
        raise ValidationError("recurring_end_date requires is_recurring")


def _normalize(fields: Dict[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key, value in fields.items():
        if key in TARGET_FIELDS:
            values[TARGET_FIELDS[key]] = json.dumps(sorted({str(v) for v in value})) if value else None
        elif key in FLAG_FIELDS:
            values[key] = 1 if value else 0
        elif key in ("scheduled_at", "recurring_end_date"):
            values[key] = to_utc_naive(value) if value else None
        elif key == "variables":
            values[key] = json.dumps(value) if value else None
        elif key == "recurring_pattern":
            values[key] = value.upper() if value else None
        else:
            values[key] = value
    return values


def _validate_row(schedule: NotificationSchedule) -> None:
    validate_timing(
        schedule.scheduled_at,
        bool(schedule.is_recurring),
        schedule.recurring_pattern,
        schedule.recurring_end_date,
        schedule.timezone or "UTC",
    )
    if not schedule.is_recurring:
        schedule.recurring_pattern = None


def create_schedule(name: str, template_id: int, status: str = ScheduleStatus.DRAFT.value, **fields) -> NotificationSchedule:
    if status not in (ScheduleStatus.DRAFT.value, ScheduleStatus.SCHEDULED.value):
        raise ValidationError("schedules are created as DRAFT or SCHEDULED")
    if fields.get("include_teachers") is None:
        fields["include_teachers"] = get_settings().include_teachers
    with session_scope(use_lock=True) as session:
        if not session.get(NotificationTemplate, template_id):
            raise NotFoundError("Template not found")
        schedule = NotificationSchedule(name=name, template_id=template_id, status=status, **_normalize(fields))
        _validate_row(schedule)
        session.add(schedule)
        session.flush()
        session.refresh(schedule)
    logger.info("Created schedule %s (%s)", schedule.id, schedule.status)
    return schedule


def update_schedule(schedule_id: int, **fields) -> NotificationSchedule:
    """Edit a DRAFT or SCHEDULED schedule; fired deliveries are unaffected.

    Only the given fields change. ``None`` clears an optional field.
    """
    with session_scope(use_lock=True) as session:
        schedule = session.get(NotificationSchedule, schedule_id)
        if not schedule:
            raise NotFoundError("Schedule not found")
        if schedule.status in (ScheduleStatus.SENT.value, ScheduleStatus.CANCELLED.value):
            raise ValidationError(f"{schedule.status} schedules can not be edited")
        status = fields.pop("status", None)
        if status is not None:
            if status not in (ScheduleStatus.DRAFT.value, ScheduleStatus.SCHEDULED.value):
                raise ValidationError("use the cancel or send-now actions for other status changes")
            schedule.status = status
        for key in REQUIRED_FIELDS:
            if key in fields and fields[key] is None:
                raise ValidationError(f"{key} can not be cleared")
        if "template_id" in fields and not session.get(NotificationTemplate, fields["template_id"]):
            raise NotFoundError("Template not found")
        for key, value in _normalize(fields).items():
            setattr(schedule, key, value)
        _validate_row(schedule)
        session.add(schedule)
        session.flush()
        session.refresh(schedule)
        return schedule


def get_schedule(schedule_id: int) -> Optional[NotificationSchedule]:
    with session_scope() as session:
        return session.get(NotificationSchedule, schedule_id)


def list_schedules(status: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[NotificationSchedule]:
    with session_scope() as session:
        stmt = select(NotificationSchedule).order_by(NotificationSchedule.created_at.desc(), NotificationSchedule.id.desc())
        if status:
            stmt = stmt.where(NotificationSchedule.status == status)
        return session.execute(stmt.offset(max(offset, 0)).limit(min(max(limit, 1), 200))).scalars().all()


def delete_schedule(schedule_id: int) -> None:
    """Only schedules that never fired can be deleted; others keep their history."""
    with session_scope(use_lock=True) as session:
        schedule = session.get(NotificationSchedule, schedule_id)
        if not schedule:
            raise NotFoundError("Schedule not found")
        fired = session.execute(
            select(func.count()).select_from(ScheduleOccurrence).where(ScheduleOccurrence.schedule_id == schedule_id)
        ).scalar_one()
        if fired:
            raise ValidationError("schedule has fired; cancel it instead")
        session.delete(schedule)


def cancel_schedule(schedule_id: int) -> NotificationSchedule:
    """Stop future fires. Deliveries already created run to completion."""
    with session_scope(use_lock=True) as session:
        schedule = session.get(NotificationSchedule, schedule_id)
        if not schedule:
            raise NotFoundError("Schedule not found")
        if schedule.status == ScheduleStatus.SENT.value:
            raise ValidationError("schedule already sent")
        schedule.status = ScheduleStatus.CANCELLED.value
        session.add(schedule)
    logger.info("Cancelled schedule %s", schedule_id)
    return schedule


def send_now(schedule_id: int) -> occurrences.OccurrenceResult:
    """Force an immediate fire regardless of ``scheduled_at``."""
    schedule = get_schedule(schedule_id)
    if not schedule:
        raise NotFoundError("Schedule not found")
    return occurrences.fire_schedule(schedule_id, forced=True)


def schedule_progress(schedule_id: int) -> Dict[str, int]:
    """Delivery counts by status for the schedule overview."""
    with session_scope() as session:
        rows = session.execute(
            select(NotificationDelivery.status, func.count())
            .where(NotificationDelivery.schedule_id == schedule_id)
            .group_by(NotificationDelivery.status)
        ).all()
    return {status: count for status, count in rows}
