from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from notification_engine.api.deps import require_admin_token
from notification_engine.core.errors import NotFoundError
from notification_engine.schemas.templates import TemplateCreate, TemplateResponse, TemplateUpdate
from notification_engine.services import audit as audit_service
from notification_engine.services import templates as template_service

router = APIRouter(prefix="/templates", dependencies=[Depends(require_admin_token)])


def serialize_template(tpl) -> TemplateResponse:
    return TemplateResponse(
        id=tpl.id,
        name=tpl.name,
        type=tpl.type,
        locale=tpl.locale,
        description=tpl.description,
        is_active=bool(tpl.is_active),
        contents=[
            {"channel": c.channel, "locale": c.locale, "subject": c.subject, "body": c.body} for c in tpl.contents
        ],
        created_at=tpl.created_at.isoformat(),
        updated_at=tpl.updated_at.isoformat(),
    )


@router.get("", response_model=List[TemplateResponse])
def list_templates(active_only: bool = Query(False)):
    return [serialize_template(t) for t in template_service.list_templates(active_only=active_only)]


@router.post("", response_model=TemplateResponse, status_code=201)
def create_template(payload: TemplateCreate):
    try:
        tpl = template_service.create_template(
            name=payload.name,
            type=payload.type,
            contents=[c.model_dump() for c in payload.contents],
            locale=payload.locale,
            description=payload.description,
            is_active=payload.is_active,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    audit_service.log_action("template.create", f"Created template {tpl.id} ({tpl.name})")
    return serialize_template(tpl)


@router.get("/{template_id}", response_model=TemplateResponse)
def get_template(template_id: int):
    tpl = template_service.get_template(template_id)
    if not tpl:
        raise HTTPException(status_code=404, detail="Template not found")
    return serialize_template(tpl)


@router.put("/{template_id}", response_model=TemplateResponse)
def update_template(template_id: int, payload: TemplateUpdate):
    data = payload.model_dump(exclude={"contents"})
    contents = [c.model_dump() for c in payload.contents] if payload.contents is not None else None
    try:
        tpl = template_service.update_template(template_id, contents=contents, **data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    audit_service.log_action("template.update", f"Updated template {template_id}")
    return serialize_template(tpl)


@router.delete("/{template_id}", status_code=204)
def delete_template(template_id: int):
    try:
        template_service.delete_template(template_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    audit_service.log_action("template.delete", f"Deleted template {template_id}")
