import json
from dataclasses import dataclass, field
from datetime import time
from typing import Dict, FrozenSet, Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select

from notification_engine.core.database import session_scope
from notification_engine.core.errors import ValidationError
from notification_engine.models import UserPreference
from notification_engine.models.enums import DeliveryChannel, DigestFrequency, NotificationType

CHANNEL_FLAGS = {
    DeliveryChannel.EMAIL: "email_enabled",
    DeliveryChannel.PUSH: "push_enabled",
    DeliveryChannel.IN_APP: "in_app_enabled",
}


def parse_hhmm(value: str) -> time:
    try:
        hour, minute = value.split(":")
        return time(int(hour), int(minute))
    except (AttributeError, ValueError) as exc:
        raise ValidationError(f"invalid time of day: {value!r}") from exc


@dataclass(frozen=True)
class QuietHours:
    enabled: bool = False
    start: Optional[time] = None
    end: Optional[time] = None

    @property
    def active(self) -> bool:
        return self.enabled and self.start is not None and self.end is not None and self.start != self.end


@dataclass(frozen=True)
class PreferenceView:
    """Read-only snapshot of a user's delivery settings."""

    user_id: str
    channels: Dict[DeliveryChannel, bool] = field(default_factory=lambda: {c: True for c in DeliveryChannel})
    disabled_categories: FrozenSet[str] = frozenset()
    frequency: DigestFrequency = DigestFrequency.IMMEDIATE
    quiet_hours: QuietHours = QuietHours()
    timezone: Optional[str] = None

    def channel_enabled(self, channel: DeliveryChannel) -> bool:
        return self.channels.get(channel, True)

    def category_enabled(self, notification_type: str) -> bool:
        return notification_type not in self.disabled_categories

    @classmethod
    def from_model(cls, pref: UserPreference) -> "PreferenceView":
        quiet = QuietHours(
            enabled=bool(pref.quiet_hours_enabled),
            start=parse_hhmm(pref.quiet_hours_start) if pref.quiet_hours_start else None,
            end=parse_hhmm(pref.quiet_hours_end) if pref.quiet_hours_end else None,
        )
        return cls(
            user_id=pref.user_id,
            channels={channel: bool(getattr(pref, attr)) for channel, attr in CHANNEL_FLAGS.items()},
            disabled_categories=frozenset(json.loads(pref.disabled_categories or "[]")),
            frequency=DigestFrequency(pref.frequency or DigestFrequency.IMMEDIATE.value),
            quiet_hours=quiet,
            timezone=pref.timezone,
        )


def get_preference(user_id: str) -> Optional[UserPreference]:
    with session_scope() as session:
        return session.execute(select(UserPreference).where(UserPreference.user_id == str(user_id))).scalar_one_or_none()


def load_preferences(user_ids: Iterable[str]) -> Dict[str, PreferenceView]:
    """Preference views keyed by user id; users without a row get defaults."""
    ids = [str(u) for u in user_ids]
    views = {user_id: PreferenceView(user_id=user_id) for user_id in ids}
    if not ids:
        return views
    with session_scope() as session:
        rows = session.execute(select(UserPreference).where(UserPreference.user_id.in_(ids))).scalars().all()
    for row in rows:
        views[row.user_id] = PreferenceView.from_model(row)
    return views


def _validate(kwargs: dict) -> dict:
    values = {}
    for key, value in kwargs.items():
        if value is None:
            continue
        if key in ("quiet_hours_start", "quiet_hours_end"):
            parse_hhmm(value)
        elif key == "timezone":
            try:
                ZoneInfo(value)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ValidationError(f"unknown timezone: {value}") from exc
        elif key == "frequency":
            try:
                value = DigestFrequency(value).value
            except ValueError as exc:
                raise ValidationError(f"invalid frequency: {value}") from exc
        elif key == "disabled_categories":
            categories = sorted(set(value))
            unknown = [c for c in categories if c not in NotificationType.__members__]
            if unknown:
                raise ValidationError(f"unknown notification types: {', '.join(unknown)}")
            value = json.dumps(categories)
        elif isinstance(value, bool):
            value = 1 if value else 0
        values[key] = value
    return values


def upsert_preference(user_id: str, **kwargs) -> UserPreference:
    values = _validate(kwargs)
    with session_scope() as session:
        pref = session.execute(select(UserPreference).where(UserPreference.user_id == str(user_id))).scalar_one_or_none()
        if pref:
            for key, value in values.items():
                setattr(pref, key, value)
        else:
            pref = UserPreference(user_id=str(user_id), **values)
            session.add(pref)
        session.flush()
        session.refresh(pref)
        return pref
