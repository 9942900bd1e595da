"""Fire schedules: resolve the audience, build deliveries, record the occurrence."""
import json
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select

from notification_engine.core.clock import utcnow
from notification_engine.core.config import get_settings
from notification_engine.core.database import session_scope
from notification_engine.core.errors import NotFoundError, ValidationError
from notification_engine.models import NotificationSchedule, NotificationTemplate, ScheduleOccurrence
from notification_engine.models.enums import DeliveryStatus, OccurrenceStatus, ScheduleStatus
from notification_engine.services import dispatcher, expander, task_queue
from notification_engine.services import preferences as preference_service
from notification_engine.services.audience import Targeting, resolve_audience
from notification_engine.services.directory import DirectoryLookup, get_directory
from notification_engine.services.rendering import TemplateRenderer

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_schedule_locks: Dict[int, threading.Lock] = defaultdict(threading.Lock)


def _schedule_lock(schedule_id: int) -> threading.Lock:
    with _locks_guard:
        return _schedule_locks[schedule_id]


@dataclass
class OccurrenceResult:
    occurrence_id: int
    status: str
    fire_at: datetime
    recipient_count: int = 0
    delivery_ids: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None


def _finish(occurrence_id: int, status: OccurrenceStatus, **fields) -> None:
    with session_scope(use_lock=True) as session:
        occurrence = session.get(ScheduleOccurrence, occurrence_id)
        occurrence.status = status.value
        occurrence.finished_at = utcnow()
        for key, value in fields.items():
            setattr(occurrence, key, value)


def _advance_schedule(schedule_id: int, fire_at: datetime, forced: bool) -> None:
    with session_scope(use_lock=True) as session:
        schedule = session.get(NotificationSchedule, schedule_id)
        if forced and schedule.is_recurring:
            # send-now on a recurring schedule does not consume a regular fire
            return
        if not forced:
            schedule.last_fired_at = fire_at
        if schedule.status == ScheduleStatus.CANCELLED.value:
            return
        if not schedule.is_recurring or expander.next_fire_after(schedule, fire_at) is None:
            schedule.status = ScheduleStatus.SENT.value


def fire_schedule(
    schedule_id: int,
    fire_at: Optional[datetime] = None,
    *,
    forced: bool = False,
    directory: Optional[DirectoryLookup] = None,
    renderer: Optional[TemplateRenderer] = None,
    enqueue: bool = True,
) -> OccurrenceResult:
    """Run one fire of a schedule.

    Fires of the same schedule are serialized, so occurrence N is fully
    dispatched before N+1 starts. A missing template fails this occurrence
    only; the schedule is not cancelled and its timeline moves on.
    """
    settings = get_settings()
    with _schedule_lock(schedule_id):
        now = utcnow()
        fire_at = fire_at or now
        with session_scope(use_lock=True) as session:
            schedule = session.get(NotificationSchedule, schedule_id)
            if not schedule:
                raise NotFoundError("Schedule not found")
            if schedule.status == ScheduleStatus.CANCELLED.value:
                raise ValidationError("schedule is cancelled")
            if not forced:
                # the tick works from a snapshot; a send-now or earlier fire may have overtaken it
                if schedule.status != ScheduleStatus.SCHEDULED.value:
                    raise ValidationError(f"schedule is {schedule.status}")
                if schedule.last_fired_at is not None and fire_at <= schedule.last_fired_at:
                    raise ValidationError(f"occurrence at {fire_at.isoformat()} already fired")
            template = session.get(NotificationTemplate, schedule.template_id)
            occurrence = ScheduleOccurrence(schedule_id=schedule_id, fire_at=fire_at, forced=1 if forced else 0, started_at=now)
            session.add(occurrence)
            session.flush()
            occurrence_id = occurrence.id

        result = OccurrenceResult(occurrence_id=occurrence_id, status=OccurrenceStatus.RUNNING.value, fire_at=fire_at)
        logger.info("Firing schedule %s at %s", schedule_id, fire_at.isoformat(), extra={"occurrence_id": occurrence_id})

        if template is None or not template.is_active:
            result.error = f"template {schedule.template_id} is missing or inactive"
            result.status = OccurrenceStatus.FAILED.value
            logger.error("Schedule %s occurrence %s failed: %s", schedule_id, occurrence_id, result.error)
            _finish(occurrence_id, OccurrenceStatus.FAILED, error=result.error)
            _advance_schedule(schedule_id, fire_at, forced)
            return result

        audience = resolve_audience(
            Targeting.from_schedule(schedule),
            directory or get_directory(),
            include_teachers=bool(schedule.include_teachers),
        )
        prefs = preference_service.load_preferences(r.user_id for r in audience.recipients)
        plan = dispatcher.plan_deliveries(
            schedule,
            template,
            audience.recipients,
            prefs,
            fire_at=fire_at,
            now=utcnow(),
            renderer=renderer,
            settings=settings,
        )
        result.recipient_count = len(audience.recipients)
        result.warnings = audience.warnings + plan.warnings

        with session_scope(use_lock=True) as session:
            for delivery in plan.deliveries:
                delivery.occurrence_id = occurrence_id
                session.add(delivery)
            session.flush()
            queued = [(d.id, d.scheduled_for if d.status == DeliveryStatus.SCHEDULED.value else None) for d in plan.deliveries]
        result.delivery_ids = [delivery_id for delivery_id, _ in queued]

        _finish(
            occurrence_id,
            OccurrenceStatus.COMPLETED,
            recipient_count=result.recipient_count,
            deliveries_created=len(queued),
            warnings=json.dumps(result.warnings) if result.warnings else None,
        )
        _advance_schedule(schedule_id, fire_at, forced)
        result.status = OccurrenceStatus.COMPLETED.value
        logger.info(
            "Schedule %s occurrence %s created %s deliveries (%s deferred, %s warnings)",
            schedule_id,
            occurrence_id,
            len(queued),
            plan.deferred,
            len(result.warnings),
        )

    if enqueue:
        task_queue.enqueue_many(queued)
    return result


def run_due_schedules(now: Optional[datetime] = None) -> List[OccurrenceResult]:
    """Fire every due occurrence of every active schedule, in order."""
    now = now or utcnow()
    with session_scope() as session:
        schedules = (
            session.execute(
                select(NotificationSchedule)
                .where(NotificationSchedule.status == ScheduleStatus.SCHEDULED.value)
                .order_by(NotificationSchedule.id)
            )
            .scalars()
            .all()
        )
    results: List[OccurrenceResult] = []
    for schedule in schedules:
        window_start = schedule.last_fired_at + timedelta(microseconds=1) if schedule.last_fired_at else datetime.min
        for fire_at in expander.expand_fire_times(schedule, window_start, now + timedelta(microseconds=1), now):
            try:
                results.append(fire_schedule(schedule.id, fire_at))
            except ValidationError as exc:
                logger.info("Skipping schedule %s: %s", schedule.id, exc)
                break
    return results


def list_occurrences(schedule_id: int, limit: int = 50) -> List[ScheduleOccurrence]:
    with session_scope() as session:
        stmt = (
            select(ScheduleOccurrence)
            .where(ScheduleOccurrence.schedule_id == schedule_id)
            .order_by(ScheduleOccurrence.fire_at.desc())
            .limit(limit)
        )
        return session.execute(stmt).scalars().all()
