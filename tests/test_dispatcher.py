from datetime import datetime, time
from types import SimpleNamespace

from notification_engine.core.config import get_settings
from notification_engine.models.enums import DeliveryChannel, DigestFrequency
from notification_engine.services import dispatcher
from notification_engine.services.directory import Recipient
from notification_engine.services.preferences import PreferenceView, QuietHours


def make_template(contents=None, type="SCHEDULE_REMINDER"):
    if contents is None:
        contents = [
            SimpleNamespace(channel="EMAIL", locale="en", subject="Reminder: {{schedule_name}}", body="Hello {{user_id}}"),
        ]
    return SimpleNamespace(id=1, name="Lesson reminder", type=type, locale="en", contents=contents)


def make_schedule(**overrides):
    data = {
        "id": 7,
        "name": "Monday lesson",
        "email_enabled": 1,
        "push_enabled": 0,
        "in_app_enabled": 0,
        "variables": None,
        "recurring_end_date": None,
    }
    data.update(overrides)
    return SimpleNamespace(**data)


def recipient(user_id, **attributes):
    return Recipient(
        user_id=user_id,
        locale="en",
        endpoints={"EMAIL": f"{user_id}@school.test", "PUSH": f"token-{user_id}"},
        attributes=attributes,
    )


def quiet(start="22:00", end="08:00"):
    return QuietHours(enabled=True, start=time.fromisoformat(start), end=time.fromisoformat(end))


def test_in_quiet_hours_handles_wraparound():
    start, end = time(22), time(8)
    assert dispatcher.in_quiet_hours(time(23), start, end)
    assert dispatcher.in_quiet_hours(time(7, 59), start, end)
    assert not dispatcher.in_quiet_hours(time(8), start, end)
    assert not dispatcher.in_quiet_hours(time(12), start, end)
    assert dispatcher.in_quiet_hours(time(13), time(12), time(14))
    assert not dispatcher.in_quiet_hours(time(13), time(13), time(13))


def test_quiet_hours_defers_to_window_end():
    pref = PreferenceView(user_id="u1", quiet_hours=quiet())
    send_at = dispatcher.effective_send_time(datetime(2024, 1, 15, 23, 0), pref, "UTC")
    assert send_at == datetime(2024, 1, 16, 8, 0)


def test_quiet_hours_after_midnight_release_same_day():
    pref = PreferenceView(user_id="u1", quiet_hours=quiet())
    send_at = dispatcher.effective_send_time(datetime(2024, 1, 16, 3, 0), pref, "UTC")
    assert send_at == datetime(2024, 1, 16, 8, 0)


def test_quiet_hours_use_recipient_timezone():
    # 22:30 UTC is 23:30 in Paris (UTC+1 in January)
    pref = PreferenceView(user_id="u1", quiet_hours=quiet())
    send_at = dispatcher.effective_send_time(datetime(2024, 1, 15, 22, 30), pref, "Europe/Paris")
    assert send_at == datetime(2024, 1, 16, 7, 0)


def test_outside_quiet_hours_sends_immediately():
    pref = PreferenceView(user_id="u1", quiet_hours=quiet())
    assert dispatcher.effective_send_time(datetime(2024, 1, 15, 12, 0), pref, "UTC") is None


def test_digest_boundaries():
    monday = datetime(2024, 1, 15, 10, 0)
    daily = PreferenceView(user_id="u1", frequency=DigestFrequency.DAILY)
    weekly = PreferenceView(user_id="u1", frequency=DigestFrequency.WEEKLY)
    assert dispatcher.effective_send_time(monday, daily, "UTC") == datetime(2024, 1, 16, 0, 0)
    assert dispatcher.effective_send_time(monday, weekly, "UTC") == datetime(2024, 1, 22, 0, 0)
    assert dispatcher.effective_send_time(datetime(2024, 1, 21, 18, 0), weekly, "UTC") == datetime(2024, 1, 22, 0, 0)


def test_quiet_hours_and_digest_take_the_later_time():
    pref = PreferenceView(user_id="u1", frequency=DigestFrequency.DAILY, quiet_hours=quiet())
    send_at = dispatcher.effective_send_time(datetime(2024, 1, 15, 23, 0), pref, "UTC")
    assert send_at == datetime(2024, 1, 16, 8, 0)


def test_class_of_two_students_gets_two_pending_emails(fire_instant):
    students = [recipient("s1"), recipient("s2")]
    plan = dispatcher.plan_deliveries(
        make_schedule(), make_template(), students, {}, fire_at=fire_instant, now=fire_instant
    )

    assert plan.warnings == []
    assert len(plan.deliveries) == 2
    for delivery in plan.deliveries:
        assert delivery.delivery_channel == "EMAIL"
        assert delivery.status == "PENDING"
        assert delivery.created_at == fire_instant
        assert delivery.retry_count == 0
        assert delivery.max_retries == get_settings().max_retries
        assert delivery.subject == "Reminder: Monday lesson"
    assert [d.content for d in plan.deliveries] == ["Hello s1", "Hello s2"]


def test_missing_channel_content_is_a_warning_only(fire_instant):
    plan = dispatcher.plan_deliveries(
        make_schedule(push_enabled=1), make_template(), [recipient("s1")], {}, fire_at=fire_instant, now=fire_instant
    )
    assert [d.delivery_channel for d in plan.deliveries] == ["EMAIL"]
    assert plan.warnings == ["user s1: template 1 has no PUSH content for en"]


def test_render_failure_skips_only_that_recipient(fire_instant):
    template = make_template(
        contents=[SimpleNamespace(channel="EMAIL", locale="en", subject=None, body="Hi {{first_name}}")]
    )
    plan = dispatcher.plan_deliveries(
        make_schedule(),
        template,
        [recipient("s1", first_name="Aiko"), recipient("s2")],
        {},
        fire_at=fire_instant,
        now=fire_instant,
    )
    assert [d.recipient_id for d in plan.deliveries] == ["s1"]
    assert plan.deliveries[0].content == "Hi Aiko"
    assert len(plan.warnings) == 1
    assert plan.warnings[0].startswith("user s2: EMAIL render failed")


def test_recipient_channel_flag_vetoes_delivery(fire_instant):
    prefs = {"s1": PreferenceView(user_id="s1", channels={c: c != DeliveryChannel.EMAIL for c in DeliveryChannel})}
    plan = dispatcher.plan_deliveries(
        make_schedule(), make_template(), [recipient("s1"), recipient("s2")], prefs, fire_at=fire_instant, now=fire_instant
    )
    assert [d.recipient_id for d in plan.deliveries] == ["s2"]


def test_category_opt_out(fire_instant):
    prefs = {"s1": PreferenceView(user_id="s1", disabled_categories=frozenset({"SCHEDULE_REMINDER"}))}
    plan = dispatcher.plan_deliveries(
        make_schedule(), make_template(), [recipient("s1")], prefs, fire_at=fire_instant, now=fire_instant
    )
    assert plan.deliveries == []
    assert plan.warnings == []


def test_missing_endpoint_is_a_warning(fire_instant):
    plan = dispatcher.plan_deliveries(
        make_schedule(),
        make_template(),
        [Recipient(user_id="s1", endpoints={})],
        {},
        fire_at=fire_instant,
        now=fire_instant,
    )
    assert plan.deliveries == []
    assert plan.warnings == ["user s1: no EMAIL endpoint"]


def test_quiet_hours_create_scheduled_delivery():
    now = datetime(2024, 1, 15, 23, 0)
    prefs = {"s1": PreferenceView(user_id="s1", quiet_hours=quiet())}
    plan = dispatcher.plan_deliveries(make_schedule(), make_template(), [recipient("s1")], prefs, fire_at=now, now=now)

    delivery = plan.deliveries[0]
    assert delivery.status == "SCHEDULED"
    assert delivery.scheduled_for == datetime(2024, 1, 16, 8, 0)
    assert delivery.created_at == now
    assert delivery.next_retry_at is None
    assert plan.deferred == 1


def test_recipient_locale_falls_back_to_template_locale(fire_instant):
    template = make_template(
        contents=[
            SimpleNamespace(channel="EMAIL", locale="en", subject=None, body="Hello"),
            SimpleNamespace(channel="EMAIL", locale="ja", subject=None, body="Konnichiwa"),
        ]
    )
    ja = Recipient(user_id="s1", locale="ja", endpoints={"EMAIL": "s1@school.test"})
    fr = Recipient(user_id="s2", locale="fr", endpoints={"EMAIL": "s2@school.test"})
    plan = dispatcher.plan_deliveries(make_schedule(), template, [ja, fr], {}, fire_at=fire_instant, now=fire_instant)
    assert [d.content for d in plan.deliveries] == ["Konnichiwa", "Hello"]
