import logging
from typing import Iterable, List, Optional

from sqlalchemy import func, select

from notification_engine.core.database import session_scope
from notification_engine.core.errors import NotFoundError, ValidationError
from notification_engine.models import NotificationDelivery, NotificationSchedule, NotificationTemplate, TemplateContent
from notification_engine.models.enums import DeliveryChannel, NotificationType

logger = logging.getLogger(__name__)


def _check_type(value: str) -> str:
    try:
        return NotificationType(value).value
    except ValueError as exc:
        raise ValidationError(f"invalid notification type: {value}") from exc


def _build_contents(contents: Iterable[dict], default_locale: str) -> List[TemplateContent]:
    rows = []
    seen = set()
    for item in contents:
        try:
            channel = DeliveryChannel(item["channel"]).value
        except ValueError as exc:
            raise ValidationError(f"invalid channel: {item['channel']}") from exc
        locale = item.get("locale") or default_locale
        if (channel, locale) in seen:
            raise ValidationError(f"duplicate content for {channel}/{locale}")
        seen.add((channel, locale))
        if not item.get("body"):
            raise ValidationError(f"empty body for {channel}/{locale}")
        rows.append(TemplateContent(channel=channel, locale=locale, subject=item.get("subject"), body=item["body"]))
    return rows


def list_templates(active_only: bool = False) -> List[NotificationTemplate]:
    with session_scope() as session:
        stmt = select(NotificationTemplate).order_by(NotificationTemplate.created_at)
        if active_only:
            stmt = stmt.where(NotificationTemplate.is_active == 1)
        return session.execute(stmt).scalars().all()


def get_template(template_id: int) -> Optional[NotificationTemplate]:
    with session_scope() as session:
        return session.get(NotificationTemplate, template_id)


def create_template(
    name: str,
    type: str,
    contents: Iterable[dict],
    locale: str = "en",
    description: Optional[str] = None,
    is_active: bool = True,
) -> NotificationTemplate:
    with session_scope() as session:
        tpl = NotificationTemplate(
            name=name,
            type=_check_type(type),
            locale=locale,
            description=description,
            is_active=1 if is_active else 0,
        )
        tpl.contents = _build_contents(contents, locale)
        session.add(tpl)
        session.flush()
        session.refresh(tpl)
        return tpl


def _is_referenced(session, template_id: int) -> bool:
    count = session.execute(
        select(func.count())
        .select_from(NotificationDelivery)
        .join(NotificationSchedule, NotificationSchedule.id == NotificationDelivery.schedule_id)
        .where(NotificationSchedule.template_id == template_id)
    ).scalar_one()
    return count > 0


def update_template(template_id: int, contents: Optional[Iterable[dict]] = None, **kwargs) -> NotificationTemplate:
    """Edit a template. Deliveries keep their rendered snapshot, so content edits
    are always allowed; the type is frozen once deliveries reference it."""
    with session_scope() as session:
        tpl = session.get(NotificationTemplate, template_id)
        if not tpl:
            raise NotFoundError("Template not found")
        new_type = kwargs.pop("type", None)
        if new_type is not None and _check_type(new_type) != tpl.type:
            if _is_referenced(session, template_id):
                raise ValidationError("template type can not change once deliveries reference it")
            tpl.type = _check_type(new_type)
        for key, value in kwargs.items():
            if value is None:
                continue
            if key == "is_active":
                value = 1 if value else 0
            setattr(tpl, key, value)
        if contents is not None:
            rows = _build_contents(contents, tpl.locale)
            # old rows must be gone before inserts hit the (template, channel, locale) constraint
            tpl.contents.clear()
            session.flush()
            tpl.contents.extend(rows)
        session.add(tpl)
        session.flush()
        session.refresh(tpl)
        return tpl


def delete_template(template_id: int) -> None:
    with session_scope() as session:
        tpl = session.get(NotificationTemplate, template_id)
        if not tpl:
            raise NotFoundError("Template not found")
        if _is_referenced(session, template_id):
            raise ValidationError("template is referenced by deliveries; deactivate it instead")
        session.delete(tpl)


def find_content(template: NotificationTemplate, channel: DeliveryChannel, locale: Optional[str]) -> Optional[TemplateContent]:
    """Content for the recipient locale, falling back to the template's default locale."""
    by_key = {(c.channel, c.locale): c for c in template.contents}
    for candidate in (locale, template.locale):
        if candidate and (channel.value, candidate) in by_key:
            return by_key[(channel.value, candidate)]
    return None
