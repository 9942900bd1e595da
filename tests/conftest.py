import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="notification-engine-tests-")
os.environ["DATA_DIR"] = _TMP_DIR
os.environ["SQLITE_PATH"] = os.path.join(_TMP_DIR, "test.db")
os.environ["START_WORKERS"] = "false"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["DIRECTORY_BASE_URL"] = "http://directory.invalid"

from datetime import datetime  # noqa: E402
from typing import Dict, Iterable, List  # noqa: E402

import pytest  # noqa: E402

import notification_engine.models  # noqa: E402,F401
from notification_engine.core.database import Base, engine  # noqa: E402
from notification_engine.core.errors import TransportError  # noqa: E402
from notification_engine.models.enums import DeliveryChannel  # noqa: E402
from notification_engine.services import channels, directory  # noqa: E402
from notification_engine.services.channels import ChannelSender  # noqa: E402
from notification_engine.services.directory import DirectoryLookup, Recipient  # noqa: E402


class InMemoryDirectory(DirectoryLookup):
    def __init__(self):
        self.users: Dict[str, Recipient] = {}
        self.roles: Dict[str, List[str]] = {}
        self.course_students: Dict[str, List[str]] = {}
        self.course_teachers: Dict[str, List[str]] = {}
        self.classes: Dict[str, List[str]] = {}

    def add_user(self, user_id, role="STUDENT", email=None, push=None, locale="en", timezone=None, **profile):
        endpoints = {"EMAIL": email or f"{user_id}@school.test"}
        if push:
            endpoints["PUSH"] = push
        endpoints["IN_APP"] = user_id
        self.users[user_id] = Recipient(
            user_id=user_id, role=role, locale=locale, timezone=timezone, endpoints=endpoints, attributes=profile
        )
        self.roles.setdefault(role, []).append(user_id)
        return self.users[user_id]

    def _lookup(self, mapping, keys: Iterable[str]) -> List[Recipient]:
        return [self.users[uid] for key in keys for uid in mapping.get(key, [])]

    def users_by_ids(self, user_ids):
        return [self.users[uid] for uid in user_ids if uid in self.users]

    def members_of_roles(self, roles):
        return self._lookup(self.roles, roles)

    def students_of_courses(self, course_ids):
        return self._lookup(self.course_students, course_ids)

    def teachers_of_courses(self, course_ids):
        return self._lookup(self.course_teachers, course_ids)

    def members_of_classes(self, class_ids):
        return self._lookup(self.classes, class_ids)


class FakeSender(ChannelSender):
    """Records every send; pops queued failure reasons before succeeding."""

    def __init__(self, channel=DeliveryChannel.EMAIL, failures=None, always_fail=None):
        self.channel = channel
        self.failures = list(failures or [])
        self.always_fail = always_fail
        self.sent = []

    def send(self, endpoint, message):
        if self.always_fail:
            raise TransportError(self.always_fail)
        if self.failures:
            raise TransportError(self.failures.pop(0))
        self.sent.append((endpoint, message))
        return f"{self.channel.value.lower()}-{len(self.sent)}"


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def fake_directory():
    lookup = InMemoryDirectory()
    directory.set_directory(lookup)
    yield lookup
    directory.set_directory(None)


@pytest.fixture
def fake_senders():
    senders = {channel: FakeSender(channel) for channel in DeliveryChannel}
    channels.set_senders(senders)
    yield senders
    channels.set_senders(None)


@pytest.fixture
def fire_instant():
    return datetime(2024, 1, 15, 9, 0)
