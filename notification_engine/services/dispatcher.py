"""Build the deliveries of one schedule fire.

For each recipient and channel the schedule flag, the recipient's channel
flag and the recipient's category toggle must all be on. Quiet hours and
digest frequency can push the send time later; such deliveries start in
SCHEDULED with ``scheduled_for`` set, everything else starts PENDING.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional

from notification_engine.core.clock import from_local, get_zone, to_local
from notification_engine.core.config import Settings, get_settings
from notification_engine.core.errors import TemplateRenderError
from notification_engine.models import NotificationDelivery
from notification_engine.models.enums import DeliveryChannel, DeliveryStatus, DigestFrequency
from notification_engine.services import templates as template_service
from notification_engine.services.directory import Recipient
from notification_engine.services.preferences import CHANNEL_FLAGS, PreferenceView, QuietHours
from notification_engine.services.rendering import TemplateRenderer

logger = logging.getLogger(__name__)


def in_quiet_hours(moment: time, start: time, end: time) -> bool:
    if start == end:
        return False
    if start < end:
        return start <= moment < end
    # window wraps midnight, e.g. 22:00-08:00
    return moment >= start or moment < end


def quiet_hours_release(local_now: datetime, quiet: QuietHours) -> Optional[datetime]:
    """Local wall-clock time at which the current quiet window ends, or None
    when ``local_now`` is outside the window."""
    if not quiet.active or not in_quiet_hours(local_now.time(), quiet.start, quiet.end):
        return None
    release = local_now.replace(hour=quiet.end.hour, minute=quiet.end.minute, second=0, microsecond=0)
    if release <= local_now:
        release += timedelta(days=1)
    return release


def digest_boundary(local_now: datetime, frequency: DigestFrequency) -> Optional[datetime]:
    """Next local midnight (DAILY) or next local Monday 00:00 (WEEKLY)."""
    if frequency == DigestFrequency.IMMEDIATE:
        return None
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    if frequency == DigestFrequency.DAILY:
        return midnight + timedelta(days=1)
    return midnight + timedelta(days=7 - local_now.weekday())


def effective_send_time(now: datetime, preference: PreferenceView, timezone_name: Optional[str]) -> Optional[datetime]:
    """Deferred send instant (naive UTC) or None for immediate send.

    When both quiet hours and digesting apply, the later of the two wins.
    """
    zone = get_zone(timezone_name)
    local_now = to_local(now, zone).replace(tzinfo=None)
    candidates = [
        t for t in (quiet_hours_release(local_now, preference.quiet_hours), digest_boundary(local_now, preference.frequency)) if t
    ]
    if not candidates:
        return None
    return from_local(max(candidates), zone)


@dataclass
class DispatchPlan:
    deliveries: List[NotificationDelivery] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def deferred(self) -> int:
        return sum(1 for d in self.deliveries if d.status == DeliveryStatus.SCHEDULED.value)


def build_variables(schedule, template, recipient: Recipient, fire_at: datetime) -> Dict[str, Any]:
    variables: Dict[str, Any] = dict(recipient.attributes)
    variables.update(
        {
            "user_id": recipient.user_id,
            "role": recipient.role,
            "locale": recipient.locale,
            "schedule_name": schedule.name,
            "template_name": template.name,
            "fire_at": fire_at.isoformat(),
        }
    )
    if schedule.variables:
        variables.update(json.loads(schedule.variables))
    return variables


def plan_deliveries(
    schedule,
    template,
    recipients: List[Recipient],
    preferences: Dict[str, PreferenceView],
    *,
    fire_at: datetime,
    now: datetime,
    renderer: Optional[TemplateRenderer] = None,
    settings: Optional[Settings] = None,
) -> DispatchPlan:
    """Unsaved delivery rows for one fire. Problems with one recipient or
    channel become warnings and never stop the others."""
    settings = settings or get_settings()
    renderer = renderer or TemplateRenderer()
    plan = DispatchPlan()

    schedule_channels = [c for c, attr in CHANNEL_FLAGS.items() if getattr(schedule, attr)]
    for recipient in recipients:
        preference = preferences.get(recipient.user_id) or PreferenceView(user_id=recipient.user_id)
        if not preference.category_enabled(template.type):
            logger.debug("User %s opted out of %s", recipient.user_id, template.type)
            continue
        channels = [c for c in schedule_channels if preference.channel_enabled(c)]
        if not channels:
            continue

        timezone_name = preference.timezone or recipient.timezone or settings.default_timezone
        send_at = effective_send_time(now, preference, timezone_name)
        locale = recipient.locale or template.locale or settings.default_locale
        variables = build_variables(schedule, template, recipient, fire_at)

        for channel in channels:
            endpoint = recipient.endpoints.get(channel.value)
            if not endpoint:
                plan.warnings.append(f"user {recipient.user_id}: no {channel.value} endpoint")
                continue
            content = template_service.find_content(template, channel, locale)
            if content is None:
                plan.warnings.append(f"user {recipient.user_id}: template {template.id} has no {channel.value} content for {locale}")
                continue
            try:
                rendered = renderer.render(content, variables)
            except TemplateRenderError as exc:
                plan.warnings.append(f"user {recipient.user_id}: {channel.value} render failed: {exc}")
                continue
            plan.deliveries.append(
                _new_delivery(schedule, template, recipient, channel, endpoint, locale, rendered, send_at, now, settings)
            )
    return plan


def _new_delivery(schedule, template, recipient, channel: DeliveryChannel, endpoint, locale, rendered, send_at, now, settings):
    deferred = send_at is not None and send_at > now
    due = send_at if deferred else now
    expires_at = due + timedelta(hours=settings.delivery_expiry_hours)
    end_date = schedule.recurring_end_date
    if deferred and end_date is not None and send_at > end_date:
        # deferred past the schedule's validity; the expiry sweep will close it
        expires_at = end_date
    return NotificationDelivery(
        schedule_id=schedule.id,
        recipient_id=recipient.user_id,
        recipient_endpoint=endpoint,
        recipient_locale=locale,
        delivery_channel=channel.value,
        notification_type=template.type,
        subject=rendered.subject,
        content=rendered.body,
        status=DeliveryStatus.SCHEDULED.value if deferred else DeliveryStatus.PENDING.value,
        retry_count=0,
        max_retries=settings.max_retries,
        scheduled_for=send_at if deferred else None,
        expires_at=expires_at,
        created_at=now,
        updated_at=now,
    )
