from unittest.mock import MagicMock

from notification_engine.core.errors import DirectoryError
from notification_engine.services.audience import Targeting, resolve_audience


def test_user_matched_twice_appears_once(fake_directory):
    fake_directory.add_user("u1")
    fake_directory.add_user("u2")
    fake_directory.classes["C1"] = ["u1", "u2"]

    result = resolve_audience(Targeting.build(roles=["student"], class_ids=["C1"]), fake_directory)

    assert [r.user_id for r in result.recipients] == ["u1", "u2"]
    assert result.warnings == []


def test_unknown_user_ids_are_reported_individually(fake_directory):
    fake_directory.add_user("u1")

    result = resolve_audience(Targeting.build(user_ids=["u1", "ghost-1", "ghost-2"]), fake_directory)

    assert [r.user_id for r in result.recipients] == ["u1"]
    assert result.warnings == ["unknown user id ghost-1", "unknown user id ghost-2"]


def test_course_teachers_only_with_include_teachers(fake_directory):
    fake_directory.add_user("s1")
    fake_directory.add_user("t1", role="TEACHER")
    fake_directory.course_students["K1"] = ["s1"]
    fake_directory.course_teachers["K1"] = ["t1"]
    targeting = Targeting.build(course_ids=["K1"])

    assert [r.user_id for r in resolve_audience(targeting, fake_directory).recipients] == ["s1"]
    with_teachers = resolve_audience(targeting, fake_directory, include_teachers=True)
    assert [r.user_id for r in with_teachers.recipients] == ["s1", "t1"]


def test_empty_selection_is_not_an_error(fake_directory):
    fake_directory.classes["C-empty"] = []

    result = resolve_audience(Targeting.build(class_ids=["C-empty"]), fake_directory)

    assert result.recipients == []
    assert result.warnings == []
    assert Targeting.build().is_empty()


def test_directory_failure_on_one_field_keeps_the_others(fake_directory):
    fake_directory.add_user("u1")
    fake_directory.classes["C1"] = ["u1"]
    fake_directory.members_of_roles = MagicMock(side_effect=DirectoryError("roles service down"))

    result = resolve_audience(Targeting.build(roles=["ADMIN"], class_ids=["C1"]), fake_directory)

    assert [r.user_id for r in result.recipients] == ["u1"]
    assert result.warnings == ["roles lookup failed: roles service down"]


def test_targeting_from_schedule_reads_json_fields():
    schedule = MagicMock(
        target_roles='["teacher"]',
        target_user_ids=None,
        target_course_ids='["K1", "K2"]',
        target_class_ids="[]",
    )
    targeting = Targeting.from_schedule(schedule)
    assert targeting.roles == frozenset({"TEACHER"})
    assert targeting.course_ids == frozenset({"K1", "K2"})
    assert targeting.user_ids == frozenset()
