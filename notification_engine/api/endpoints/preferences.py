import json

from fastapi import APIRouter, Depends, HTTPException

from notification_engine.api.deps import require_admin_token
from notification_engine.schemas.preferences import PreferenceResponse, PreferenceUpdate
from notification_engine.services import audit as audit_service
from notification_engine.services import preferences as pref_service

router = APIRouter(prefix="/preferences", dependencies=[Depends(require_admin_token)])


def serialize_preference(user_id: str, pref) -> PreferenceResponse:
    if pref is None:
        return PreferenceResponse(user_id=user_id)
    return PreferenceResponse(
        user_id=pref.user_id,
        email_enabled=bool(pref.email_enabled),
        push_enabled=bool(pref.push_enabled),
        in_app_enabled=bool(pref.in_app_enabled),
        disabled_categories=json.loads(pref.disabled_categories) if pref.disabled_categories else [],
        frequency=pref.frequency,
        quiet_hours_enabled=bool(pref.quiet_hours_enabled),
        quiet_hours_start=pref.quiet_hours_start,
        quiet_hours_end=pref.quiet_hours_end,
        timezone=pref.timezone,
    )


@router.get("/{user_id}", response_model=PreferenceResponse)
def get_preferences(user_id: str):
    return serialize_preference(user_id, pref_service.get_preference(user_id))


@router.put("/{user_id}", response_model=PreferenceResponse)
def update_preferences(user_id: str, payload: PreferenceUpdate):
    try:
        pref = pref_service.upsert_preference(user_id, **payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    audit_service.log_action("preference.update", f"Updated preferences of {user_id}")
    return serialize_preference(user_id, pref)
