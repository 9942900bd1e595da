"""Turn a schedule's targeting fields into a deduplicated recipient list."""
import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List

from notification_engine.core.errors import DirectoryError
from notification_engine.services.directory import DirectoryLookup, Recipient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Targeting:
    roles: FrozenSet[str] = frozenset()
    user_ids: FrozenSet[str] = frozenset()
    course_ids: FrozenSet[str] = frozenset()
    class_ids: FrozenSet[str] = frozenset()

    @classmethod
    def build(cls, roles=None, user_ids=None, course_ids=None, class_ids=None) -> "Targeting":
        def norm(values):
            return frozenset(str(v) for v in (values or []) if v is not None and str(v) != "")

        return cls(
            roles=frozenset(str(r).upper() for r in norm(roles)),
            user_ids=norm(user_ids),
            course_ids=norm(course_ids),
            class_ids=norm(class_ids),
        )

    @classmethod
    def from_schedule(cls, schedule) -> "Targeting":
        def load(raw):
            return json.loads(raw) if raw else []

        return cls.build(
            roles=load(schedule.target_roles),
            user_ids=load(schedule.target_user_ids),
            course_ids=load(schedule.target_course_ids),
            class_ids=load(schedule.target_class_ids),
        )

    def is_empty(self) -> bool:
        return not (self.roles or self.user_ids or self.course_ids or self.class_ids)


@dataclass
class AudienceResult:
    recipients: List[Recipient] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def resolve_audience(targeting: Targeting, directory: DirectoryLookup, include_teachers: bool = False) -> AudienceResult:
    """Union of every populated targeting field, one entry per user id.

    A directory failure on one field becomes a warning; the other fields
    still resolve. Unknown explicit user ids are reported individually.
    """
    found: Dict[str, Recipient] = {}
    warnings: List[str] = []

    def collect(label: str, fetch: Callable[[], List[Recipient]]) -> None:
        try:
            rows = fetch()
        except DirectoryError as exc:
            logger.warning("Audience lookup failed for %s: %s", label, exc)
            warnings.append(f"{label} lookup failed: {exc}")
            return
        for recipient in rows:
            found.setdefault(recipient.user_id, recipient)

    if targeting.roles:
        collect("roles", lambda: directory.members_of_roles(sorted(targeting.roles)))
    if targeting.course_ids:
        course_ids = sorted(targeting.course_ids)
        collect("course students", lambda: directory.students_of_courses(course_ids))
        if include_teachers:
            collect("course teachers", lambda: directory.teachers_of_courses(course_ids))
    if targeting.class_ids:
        collect("classes", lambda: directory.members_of_classes(sorted(targeting.class_ids)))
    if targeting.user_ids:
        requested = sorted(targeting.user_ids)
        try:
            known = directory.users_by_ids(requested)
        except DirectoryError as exc:
            logger.warning("User lookup failed: %s", exc)
            warnings.append(f"users lookup failed: {exc}")
        else:
            known_ids = set()
            for recipient in known:
                known_ids.add(recipient.user_id)
                found.setdefault(recipient.user_id, recipient)
            for user_id in requested:
                if user_id not in known_ids:
                    warnings.append(f"unknown user id {user_id}")

    recipients = [found[key] for key in sorted(found)]
    logger.debug("Resolved audience", extra={"recipients": len(recipients), "warnings": len(warnings)})
    return AudienceResult(recipients=recipients, warnings=warnings)
