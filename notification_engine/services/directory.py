"""Access to the user/course/class directory.

The directory is owned by another service; the engine only reads from it
through :class:`DirectoryLookup`.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import httpx

from notification_engine.core.config import get_settings
from notification_engine.core.errors import DirectoryError

logger = logging.getLogger(__name__)


@dataclass
class Recipient:
    user_id: str
    role: str = "STUDENT"
    locale: Optional[str] = None
    timezone: Optional[str] = None
    endpoints: Dict[str, str] = field(default_factory=dict)  # channel -> address/token/user key
    attributes: Dict[str, Any] = field(default_factory=dict)  # profile fields usable as template variables

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recipient":
        return cls(
            user_id=str(data.get("userId") or data.get("user_id")),
            role=data.get("role") or "STUDENT",
            locale=data.get("locale"),
            timezone=data.get("timezone"),
            endpoints={str(k).upper(): v for k, v in (data.get("channelEndpoints") or data.get("endpoints") or {}).items() if v},
            attributes=dict(data.get("profile") or {}),
        )


class DirectoryLookup(ABC):
    @abstractmethod
    def users_by_ids(self, user_ids: Iterable[str]) -> List[Recipient]:
        """Return the users that exist; unknown ids are simply absent."""

    @abstractmethod
    def members_of_roles(self, roles: Iterable[str]) -> List[Recipient]: ...

    @abstractmethod
    def students_of_courses(self, course_ids: Iterable[str]) -> List[Recipient]: ...

    @abstractmethod
    def teachers_of_courses(self, course_ids: Iterable[str]) -> List[Recipient]: ...

    @abstractmethod
    def members_of_classes(self, class_ids: Iterable[str]) -> List[Recipient]: ...


class HttpDirectoryLookup(DirectoryLookup):
    """Directory client for the platform's REST directory endpoints."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.settings = get_settings()
        self.base_url = (base_url or self.settings.directory_base_url).rstrip("/")
        self.timeout = timeout or self.settings.directory_timeout_sec
        self._client = httpx.Client(timeout=self.timeout)

    def _post(self, path: str, payload: Dict[str, Any]) -> List[Recipient]:
        try:
            resp = self._client.post(f"{self.base_url}{path}", json=payload)
            resp.raise_for_status()
            rows = resp.json()
        except httpx.HTTPError as exc:
            raise DirectoryError(f"{path}: {exc}") from exc
        return [Recipient.from_dict(row) for row in rows or []]

    def users_by_ids(self, user_ids: Iterable[str]) -> List[Recipient]:
        return self._post("/users/resolve", {"userIds": list(user_ids)})

    def members_of_roles(self, roles: Iterable[str]) -> List[Recipient]:
        return self._post("/roles/members", {"roles": list(roles)})

    def students_of_courses(self, course_ids: Iterable[str]) -> List[Recipient]:
        return self._post("/courses/students", {"courseIds": list(course_ids)})

    def teachers_of_courses(self, course_ids: Iterable[str]) -> List[Recipient]:
        return self._post("/courses/teachers", {"courseIds": list(course_ids)})

    def members_of_classes(self, class_ids: Iterable[str]) -> List[Recipient]:
        return self._post("/classes/members", {"classIds": list(class_ids)})

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpDirectoryLookup":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


_directory: Optional[DirectoryLookup] = None


def get_directory() -> DirectoryLookup:
    global _directory
    if _directory is None:
        _directory = HttpDirectoryLookup()
    return _directory


def set_directory(directory: Optional[DirectoryLookup]) -> None:
    global _directory
    _directory = directory
