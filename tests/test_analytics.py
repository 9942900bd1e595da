from datetime import datetime, timedelta

import pytest

from notification_engine.core.database import session_scope
from notification_engine.core.errors import ValidationError
from notification_engine.models import NotificationDelivery
from notification_engine.services import analytics
from notification_engine.services.analytics import DeliveryRecord

START = datetime(2024, 1, 15)
END = datetime(2024, 1, 18)


def record(id, status="SENT", channel="EMAIL", type="SCHEDULE_REMINDER", created_at=None, sent_after=30, **kwargs):
    created_at = created_at or START + timedelta(hours=id)
    sent_at = created_at + timedelta(seconds=sent_after) if status in ("SENT", "DELIVERED") else None
    return DeliveryRecord(
        id=id,
        recipient_id=kwargs.get("recipient_id", f"u{id % 2}"),
        channel=channel,
        notification_type=type,
        status=status,
        failure_reason=kwargs.get("failure_reason"),
        next_retry_at=kwargs.get("next_retry_at"),
        created_at=created_at,
        sent_at=sent_at,
    )


def test_empty_range_returns_zeros():
    summary = analytics.summarize([], START, END)
    assert summary["total"] == 0
    assert summary["overall_delivery_rate"] == 0
    assert summary["overall_stats"] == {}
    assert summary["stats_by_channel"] == {}
    assert summary["stats_by_type"] == {}
    assert summary["failure_reasons"] == {}
    assert summary["average_delivery_time_seconds"] == 0
    assert [d["total"] for d in summary["daily_trends"]] == [0, 0, 0]
    assert all(d["delivery_rate"] == 0 for d in summary["daily_trends"])


def test_summary_counts_and_rates():
    records = [
        record(1, "SENT", sent_after=10),
        record(2, "DELIVERED", sent_after=30),
        record(3, "FAILED", failure_reason="SMTP_TIMEOUT"),
        record(4, "FAILED", failure_reason="SMTP_TIMEOUT", next_retry_at=START),
        record(5, "PENDING", channel="PUSH", type="QUIZ_REMINDER"),
        record(6, "SENT", created_at=END),
    ]

    summary = analytics.summarize(records, START, END)

    assert summary["total"] == 5
    assert summary["overall_stats"] == {"SENT": 1, "DELIVERED": 1, "FAILED": 2, "PENDING": 1}
    assert summary["overall_delivery_rate"] == 40.0
    assert summary["stats_by_channel"]["EMAIL"] == {"successful": 2, "total": 4, "delivery_rate": 50.0}
    assert summary["stats_by_channel"]["PUSH"] == {"successful": 0, "total": 1, "delivery_rate": 0.0}
    assert summary["stats_by_type"]["QUIZ_REMINDER"]["total"] == 1
    assert summary["average_delivery_time_seconds"] == 20.0
    assert summary["failure_reasons"] == {"SMTP_TIMEOUT": 1}
    assert summary["daily_trends"][0] == {"date": "2024-01-15", "total": 5, "successful": 2, "delivery_rate": 40.0}


def test_volume_trends_by_hour_and_week():
    records = [record(1), record(2, "FAILED"), record(1, created_at=START + timedelta(days=7))]
    hourly = analytics.volume_trends(records, "hour")
    assert [p["period"] for p in hourly][:2] == ["2024-01-15T01:00:00", "2024-01-15T02:00:00"]

    weekly = analytics.volume_trends(records, "week")
    assert weekly == [
        {"period": "2024-01-15T00:00:00", "total": 2, "successful": 1, "failed": 1},
        {"period": "2024-01-22T00:00:00", "total": 1, "successful": 1, "failed": 0},
    ]
    with pytest.raises(ValidationError):
        analytics.volume_trends(records, "month")


def test_top_recipients_and_rates_by_type():
    records = [
        record(1, recipient_id="a"),
        record(2, "FAILED", recipient_id="a"),
        record(3, recipient_id="b", type="ASSIGNMENT_DUE"),
    ]
    assert analytics.top_recipients(records, limit=1) == [
        {"recipient_id": "a", "total": 2, "successful": 1, "delivery_rate": 50.0}
    ]
    assert analytics.delivery_rates_by_type(records) == {"ASSIGNMENT_DUE": 100.0, "SCHEDULE_REMINDER": 50.0}


def test_get_analytics_reads_the_store():
    with session_scope() as session:
        session.add_all(
            [
                NotificationDelivery(
                    recipient_id="u1",
                    recipient_endpoint="u1@school.test",
                    delivery_channel="EMAIL",
                    notification_type="CONTENT_UPDATE",
                    content="x",
                    status="SENT",
                    created_at=START,
                    sent_at=START + timedelta(seconds=5),
                ),
                NotificationDelivery(
                    recipient_id="u2",
                    recipient_endpoint="u2@school.test",
                    delivery_channel="EMAIL",
                    notification_type="CONTENT_UPDATE",
                    content="x",
                    status="FAILED",
                    failure_reason="HTTP_500",
                    created_at=START + timedelta(days=1),
                ),
            ]
        )

    report = analytics.get_analytics(START, END)

    assert report["total"] == 2
    assert report["stats_by_type"] == {"CONTENT_UPDATE": {"successful": 1, "total": 2, "delivery_rate": 50.0}}
    assert report["failure_reasons"] == {"HTTP_500": 1}
    assert report["average_delivery_time_seconds"] == 5.0
    with pytest.raises(ValidationError):
        analytics.get_analytics(END, START)
