import json

from fastapi import APIRouter, Depends, HTTPException, Query

from notification_engine.api.deps import require_admin_token
from notification_engine.core.errors import NotFoundError
from notification_engine.schemas.schedules import (
    FireResultResponse,
    OccurrenceResponse,
    ScheduleCreate,
    ScheduleListResponse,
    ScheduleProgressResponse,
    ScheduleResponse,
    ScheduleUpdate,
)
from notification_engine.services import audit as audit_service
from notification_engine.services import occurrences as occurrence_service
from notification_engine.services import schedules as schedule_service

router = APIRouter(prefix="/schedules", dependencies=[Depends(require_admin_token)])


def _iso(value):
    return value.isoformat() if value else None


def _load(raw):
    return json.loads(raw) if raw else []


def serialize_schedule(schedule) -> ScheduleResponse:
    return ScheduleResponse(
        id=schedule.id,
        name=schedule.name,
        template_id=schedule.template_id,
        targeting={
            "roles": _load(schedule.target_roles),
            "user_ids": _load(schedule.target_user_ids),
            "course_ids": _load(schedule.target_course_ids),
            "class_ids": _load(schedule.target_class_ids),
        },
        include_teachers=bool(schedule.include_teachers),
        scheduled_at=_iso(schedule.scheduled_at),
        timezone=schedule.timezone,
        is_recurring=bool(schedule.is_recurring),
        recurring_pattern=schedule.recurring_pattern,
        recurring_end_date=_iso(schedule.recurring_end_date),
        email_enabled=bool(schedule.email_enabled),
        push_enabled=bool(schedule.push_enabled),
        in_app_enabled=bool(schedule.in_app_enabled),
        variables=json.loads(schedule.variables) if schedule.variables else {},
        status=schedule.status,
        last_fired_at=_iso(schedule.last_fired_at),
        created_at=schedule.created_at.isoformat(),
    )


def _fields(payload, only_set: bool = False) -> dict:
    data = payload.model_dump(exclude={"targeting"}, exclude_unset=only_set)
    if payload.targeting is not None:
        data.update(payload.targeting.model_dump())
    return data


@router.get("", response_model=ScheduleListResponse)
def list_schedules(
    status: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    items = schedule_service.list_schedules(status=status, limit=limit, offset=offset)
    return ScheduleListResponse(items=[serialize_schedule(s) for s in items])


@router.post("", response_model=ScheduleResponse, status_code=201)
def create_schedule(payload: ScheduleCreate):
    data = _fields(payload)
    try:
        schedule = schedule_service.create_schedule(data.pop("name"), data.pop("template_id"), **data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    audit_service.log_action("schedule.create", f"Created schedule {schedule.id} ({schedule.status})")
    return serialize_schedule(schedule)


@router.get("/{schedule_id}", response_model=ScheduleResponse)
def get_schedule(schedule_id: int):
    schedule = schedule_service.get_schedule(schedule_id)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return serialize_schedule(schedule)


@router.put("/{schedule_id}", response_model=ScheduleResponse)
def update_schedule(schedule_id: int, payload: ScheduleUpdate):
    try:
        schedule = schedule_service.update_schedule(schedule_id, **_fields(payload, only_set=True))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    audit_service.log_action("schedule.update", f"Updated schedule {schedule_id}")
    return serialize_schedule(schedule)


@router.delete("/{schedule_id}", status_code=204)
def delete_schedule(schedule_id: int):
    try:
        schedule_service.delete_schedule(schedule_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    audit_service.log_action("schedule.delete", f"Deleted schedule {schedule_id}")


@router.post("/{schedule_id}/send-now", response_model=FireResultResponse)
def send_now(schedule_id: int):
    try:
        result = schedule_service.send_now(schedule_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    audit_service.log_action(
        "schedule.send_now",
        f"Fired schedule {schedule_id}: {len(result.delivery_ids)} deliveries, {len(result.warnings)} warnings",
    )
    return FireResultResponse(
        occurrence_id=result.occurrence_id,
        status=result.status,
        fire_at=result.fire_at.isoformat(),
        recipient_count=result.recipient_count,
        deliveries_created=len(result.delivery_ids),
        warnings=result.warnings,
        error=result.error,
    )


@router.post("/{schedule_id}/cancel", response_model=ScheduleResponse)
def cancel_schedule(schedule_id: int):
    try:
        schedule = schedule_service.cancel_schedule(schedule_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    audit_service.log_action("schedule.cancel", f"Cancelled schedule {schedule_id}")
    return serialize_schedule(schedule)


@router.get("/{schedule_id}/occurrences", response_model=list[OccurrenceResponse])
def list_occurrences(schedule_id: int, limit: int = Query(50, ge=1, le=200)):
    return [
        OccurrenceResponse(
            id=o.id,
            schedule_id=o.schedule_id,
            fire_at=o.fire_at.isoformat(),
            status=o.status,
            forced=bool(o.forced),
            recipient_count=o.recipient_count or 0,
            deliveries_created=o.deliveries_created or 0,
            warnings=_load(o.warnings),
            error=o.error,
            started_at=_iso(o.started_at),
            finished_at=_iso(o.finished_at),
        )
        for o in occurrence_service.list_occurrences(schedule_id, limit=limit)
    ]


@router.get("/{schedule_id}/progress", response_model=ScheduleProgressResponse)
def schedule_progress(schedule_id: int):
    schedule = schedule_service.get_schedule(schedule_id)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    counts = schedule_service.schedule_progress(schedule_id)
    return ScheduleProgressResponse(
        schedule_id=schedule_id,
        status=schedule.status,
        total=sum(counts.values()),
        by_status=counts,
    )
