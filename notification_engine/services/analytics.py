"""Read-side delivery analytics.

The aggregation functions are pure and work on ``DeliveryRecord`` snapshots, so
they can be exercised without a database. ``get_analytics`` loads the records
for a date range and assembles the full report.
"""
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select

from notification_engine.core.clock import to_utc_naive
from notification_engine.core.database import session_scope
from notification_engine.core.errors import ValidationError
from notification_engine.models import NotificationDelivery, NotificationSchedule, NotificationTemplate
from notification_engine.models.enums import DeliveryStatus
from notification_engine.services.retry_manager import delivery_type_column

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = (DeliveryStatus.SENT.value, DeliveryStatus.DELIVERED.value)
GROUP_BY = ("hour", "day", "week")


@dataclass(frozen=True)
class DeliveryRecord:
    id: int
    recipient_id: str
    channel: str
    notification_type: Optional[str]
    status: str
    failure_reason: Optional[str]
    next_retry_at: Optional[datetime]
    created_at: datetime
    sent_at: Optional[datetime] = None

    @property
    def successful(self) -> bool:
        return self.status in SUCCESS_STATUSES


def _rate(successful: int, total: int) -> float:
    if not total:
        return 0.0
    return round(successful / total * 100, 2)


def _in_range(records: Iterable[DeliveryRecord], start: datetime, end: datetime) -> List[DeliveryRecord]:
    return [r for r in records if start <= r.created_at < end]


def overall_stats(records: Iterable[DeliveryRecord]) -> Dict[str, int]:
    return dict(Counter(r.status for r in records))


def overall_delivery_rate(records: Iterable[DeliveryRecord]) -> float:
    records = list(records)
    return _rate(sum(1 for r in records if r.successful), len(records))


def _grouped(records: Iterable[DeliveryRecord], key) -> Dict[str, Dict[str, float]]:
    totals: Dict[str, int] = defaultdict(int)
    successes: Dict[str, int] = defaultdict(int)
    for record in records:
        group = key(record)
        totals[group] += 1
        if record.successful:
            successes[group] += 1
    return {
        group: {"successful": successes[group], "total": total, "delivery_rate": _rate(successes[group], total)}
        for group, total in sorted(totals.items())
    }


def stats_by_channel(records: Iterable[DeliveryRecord]) -> Dict[str, Dict[str, float]]:
    return _grouped(records, lambda r: r.channel)


def stats_by_type(records: Iterable[DeliveryRecord]) -> Dict[str, Dict[str, float]]:
    return _grouped(records, lambda r: r.notification_type or "UNKNOWN")


def delivery_rates_by_type(records: Iterable[DeliveryRecord]) -> Dict[str, float]:
    return {group: stats["delivery_rate"] for group, stats in stats_by_type(records).items()}


def average_delivery_time_seconds(records: Iterable[DeliveryRecord]) -> float:
    durations = [
        (r.sent_at - r.created_at).total_seconds()
        for r in records
        if r.successful and r.sent_at is not None
    ]
    if not durations:
        return 0.0
    return round(sum(durations) / len(durations), 2)


def failure_reasons(records: Iterable[DeliveryRecord]) -> Dict[str, int]:
    """Counts over FAILED deliveries with no retry booked."""
    counts = Counter(
        r.failure_reason or "UNKNOWN"
        for r in records
        if r.status == DeliveryStatus.FAILED.value and r.next_retry_at is None
    )
    return dict(counts.most_common())


def daily_trends(records: Iterable[DeliveryRecord], start: datetime, end: datetime) -> List[Dict]:
    """One entry per UTC calendar day touched by ``[start, end)``, empty days included."""
    records = list(records)
    by_day: Dict[date, List[DeliveryRecord]] = defaultdict(list)
    for record in records:
        by_day[record.created_at.date()].append(record)
    trends = []
    day = start.date()
    last = (end - timedelta(microseconds=1)).date() if end > start else None
    while last is not None and day <= last:
        bucket = by_day.get(day, [])
        trends.append(
            {
                "date": day.isoformat(),
                "total": len(bucket),
                "successful": sum(1 for r in bucket if r.successful),
                "delivery_rate": overall_delivery_rate(bucket),
            }
        )
        day += timedelta(days=1)
    return trends


def _bucket(moment: datetime, group_by: str) -> datetime:
    if group_by == "hour":
        return moment.replace(minute=0, second=0, microsecond=0)
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if group_by == "week":
        return day - timedelta(days=day.weekday())
    return day


def volume_trends(records: Iterable[DeliveryRecord], group_by: str = "day") -> List[Dict]:
    """Delivery volume per hour, day or ISO week (Monday start). Only non-empty buckets."""
    if group_by not in GROUP_BY:
        raise ValidationError(f"group_by must be one of {', '.join(GROUP_BY)}")
    buckets: Dict[datetime, Counter] = defaultdict(Counter)
    for record in records:
        buckets[_bucket(record.created_at, group_by)][record.status] += 1
    return [
        {
            "period": period.isoformat(),
            "total": sum(counts.values()),
            "successful": sum(counts[s] for s in SUCCESS_STATUSES),
            "failed": counts[DeliveryStatus.FAILED.value],
        }
        for period, counts in sorted(buckets.items())
    ]


def top_recipients(records: Iterable[DeliveryRecord], limit: int = 10) -> List[Dict]:
    totals: Counter = Counter()
    successes: Counter = Counter()
    for record in records:
        totals[record.recipient_id] += 1
        if record.successful:
            successes[record.recipient_id] += 1
    ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))[: max(limit, 0)]
    return [
        {"recipient_id": rid, "total": total, "successful": successes[rid], "delivery_rate": _rate(successes[rid], total)}
        for rid, total in ranked
    ]


def summarize(records: Iterable[DeliveryRecord], start: datetime, end: datetime) -> Dict:
    records = _in_range(records, start, end)
    return {
        "start": start,
        "end": end,
        "total": len(records),
        "overall_stats": overall_stats(records),
        "overall_delivery_rate": overall_delivery_rate(records),
        "stats_by_channel": stats_by_channel(records),
        "stats_by_type": stats_by_type(records),
        "average_delivery_time_seconds": average_delivery_time_seconds(records),
        "failure_reasons": failure_reasons(records),
        "daily_trends": daily_trends(records, start, end),
    }


def load_records(start: datetime, end: datetime) -> List[DeliveryRecord]:
    """Deliveries created in ``[start, end)`` with their type resolved via schedule -> template."""
    with session_scope() as session:
        rows = session.execute(
            select(
                NotificationDelivery.id,
                NotificationDelivery.recipient_id,
                NotificationDelivery.delivery_channel,
                delivery_type_column(),
                NotificationDelivery.status,
                NotificationDelivery.failure_reason,
                NotificationDelivery.next_retry_at,
                NotificationDelivery.created_at,
                NotificationDelivery.sent_at,
            )
            .outerjoin(NotificationSchedule, NotificationSchedule.id == NotificationDelivery.schedule_id)
            .outerjoin(NotificationTemplate, NotificationTemplate.id == NotificationSchedule.template_id)
            .where(NotificationDelivery.created_at >= start, NotificationDelivery.created_at < end)
        ).all()
    return [DeliveryRecord(*row) for row in rows]


def _window(start: datetime, end: datetime):
    start, end = to_utc_naive(start), to_utc_naive(end)
    if end <= start:
        raise ValidationError("end must be after start")
    return start, end


def get_analytics(start: datetime, end: datetime) -> Dict:
    start, end = _window(start, end)
    records = load_records(start, end)
    logger.debug("Analytics over %s deliveries", len(records))
    return summarize(records, start, end)


def get_trends(start: datetime, end: datetime, group_by: str = "day", top: int = 10) -> Dict:
    start, end = _window(start, end)
    records = load_records(start, end)
    return {
        "start": start,
        "end": end,
        "group_by": group_by,
        "volume": volume_trends(records, group_by),
        "top_recipients": top_recipients(records, top),
        "delivery_rates_by_type": delivery_rates_by_type(records),
    }
