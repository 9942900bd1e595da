"""Drive deliveries through their lifecycle against the delivery store.

The store is the single source of truth. A delivery is only sent by the
worker that wins the conditional ``PENDING -> PROCESSING`` update, so two
workers can never have the same delivery in flight.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, asc, desc, func, or_, select, update

from notification_engine.core.clock import to_utc_naive, utcnow
from notification_engine.core.config import get_settings
from notification_engine.core.database import session_scope, with_retry
from notification_engine.core.errors import NotFoundError, TransportError
from notification_engine.models import NotificationDelivery, NotificationSchedule, NotificationTemplate
from notification_engine.models.enums import DeliveryStatus
from notification_engine.services import delivery_state
from notification_engine.services.channels import ChannelSender, get_senders
from notification_engine.services.delivery_state import RetryPolicy
from notification_engine.services.rendering import RenderedContent

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "created_at": NotificationDelivery.created_at,
    "sent_at": NotificationDelivery.sent_at,
    "status": NotificationDelivery.status,
    "retry_count": NotificationDelivery.retry_count,
    "id": NotificationDelivery.id,
}


def _policy() -> RetryPolicy:
    return RetryPolicy.from_settings(get_settings())


def claim_for_processing(delivery_id: int, now: Optional[datetime] = None) -> bool:
    """Atomically move a PENDING delivery to PROCESSING. Only one caller wins."""
    now = now or utcnow()

    def operation(session):
        result = session.execute(
            update(NotificationDelivery)
            .where(NotificationDelivery.id == delivery_id, NotificationDelivery.status == DeliveryStatus.PENDING.value)
            .values(status=DeliveryStatus.PROCESSING.value, updated_at=now)
        )
        return result.rowcount == 1

    return with_retry(operation)


def release_due(delivery_id: int, now: Optional[datetime] = None) -> bool:
    """Move a due SCHEDULED or retry-due FAILED delivery back to PENDING.

    Returns True when the delivery is PENDING afterwards.
    """
    now = now or utcnow()

    def operation(session):
        delivery = session.get(NotificationDelivery, delivery_id)
        if not delivery:
            return False
        status = delivery.status
        if status == DeliveryStatus.PENDING.value:
            return True
        if status == DeliveryStatus.SCHEDULED.value and delivery.scheduled_for and delivery.scheduled_for <= now:
            if delivery.expires_at and delivery.expires_at <= now:
                delivery_state.transition(delivery, DeliveryStatus.EXPIRED, now)
                delivery.failure_reason = "Delivery expired before its send time"
                return False
            delivery_state.requeue(delivery, now)
            return True
        if status == DeliveryStatus.FAILED.value and delivery.next_retry_at and delivery.next_retry_at <= now:
            delivery_state.requeue(delivery, now)
            return True
        return False

    return with_retry(operation)


def process_delivery(
    delivery_id: int,
    senders: Optional[Dict] = None,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """Claim, send and record the outcome of one delivery.

    Returns the resulting status, or None when another worker owns it or it
    is not ready.
    """
    if not release_due(delivery_id, now) or not claim_for_processing(delivery_id, now):
        return None
    with session_scope() as session:
        delivery = session.get(NotificationDelivery, delivery_id)
        channel = delivery.delivery_channel
        endpoint = delivery.recipient_endpoint
        message = RenderedContent(subject=delivery.subject, body=delivery.content)

    senders = senders if senders is not None else get_senders()
    sender: Optional[ChannelSender] = {getattr(k, "value", k): v for k, v in senders.items()}.get(channel)
    external_id: Optional[str] = None
    reason: Optional[str] = None
    if sender is None:
        reason = f"NO_SENDER_FOR_{channel}"
    else:
        try:
            external_id = sender.send(endpoint, message)
        except TransportError as exc:
            reason = exc.reason
        except Exception as exc:
            logger.exception("Unexpected transport error for delivery %s", delivery_id)
            reason = f"{exc.__class__.__name__}: {exc}"

    if reason is None:
        return record_success(delivery_id, external_id, now)
    return record_failure(delivery_id, reason, now)


def record_success(delivery_id: int, external_id: Optional[str], now: Optional[datetime] = None) -> str:
    def operation(session):
        delivery = session.get(NotificationDelivery, delivery_id)
        delivery_state.mark_sent(delivery, external_id, now or utcnow())
        return delivery.status

    status = with_retry(operation)
    logger.info("Delivery sent", extra={"delivery_id": delivery_id, "external_id": external_id})
    return status


def record_failure(delivery_id: int, reason: str, now: Optional[datetime] = None) -> str:
    policy = _policy()

    def operation(session):
        delivery = session.get(NotificationDelivery, delivery_id)
        retrying = delivery_state.mark_failed(delivery, reason, now or utcnow(), policy)
        return delivery.status, retrying, delivery.retry_count, delivery.next_retry_at

    status, retrying, retry_count, next_retry_at = with_retry(operation)
    if retrying:
        logger.warning(
            "Delivery %s failed (%s, attempt %s); retry at %s", delivery_id, reason, retry_count, next_retry_at.isoformat()
        )
    else:
        logger.warning("Delivery %s failed permanently after %s attempts: %s", delivery_id, retry_count, reason)
    return status


def promote_due(now: Optional[datetime] = None, limit: Optional[int] = None) -> List[int]:
    """Release every delivery whose send or retry time has come; returns the
    ids now PENDING."""
    now = now or utcnow()
    limit = limit or get_settings().batch_size
    with session_scope() as session:
        ids = (
            session.execute(
                select(NotificationDelivery.id)
                .where(
                    or_(
                        and_(
                            NotificationDelivery.status == DeliveryStatus.SCHEDULED.value,
                            NotificationDelivery.scheduled_for <= now,
                        ),
                        and_(
                            NotificationDelivery.status == DeliveryStatus.FAILED.value,
                            NotificationDelivery.next_retry_at.is_not(None),
                            NotificationDelivery.next_retry_at <= now,
                        ),
                    )
                )
                .order_by(NotificationDelivery.id)
                .limit(limit)
            )
            .scalars()
            .all()
        )
    return [delivery_id for delivery_id in ids if release_due(delivery_id, now)]


def pending_ids(limit: Optional[int] = None) -> List[int]:
    with session_scope() as session:
        return (
            session.execute(
                select(NotificationDelivery.id)
                .where(NotificationDelivery.status == DeliveryStatus.PENDING.value)
                .order_by(NotificationDelivery.created_at, NotificationDelivery.id)
                .limit(limit or get_settings().batch_size)
            )
            .scalars()
            .all()
        )


def waiting_deliveries() -> List[Tuple[int, datetime]]:
    """(id, due time) of every SCHEDULED delivery and booked retry."""
    with session_scope() as session:
        rows = session.execute(
            select(
                NotificationDelivery.id,
                func.coalesce(NotificationDelivery.scheduled_for, NotificationDelivery.next_retry_at),
            ).where(
                or_(
                    NotificationDelivery.status == DeliveryStatus.SCHEDULED.value,
                    and_(
                        NotificationDelivery.status == DeliveryStatus.FAILED.value,
                        NotificationDelivery.next_retry_at.is_not(None),
                    ),
                )
            )
        ).all()
    return [(row[0], row[1]) for row in rows]


def expire_stale(now: Optional[datetime] = None) -> int:
    """PENDING/SCHEDULED deliveries past their validity deadline become EXPIRED."""
    now = now or utcnow()

    def operation(session):
        result = session.execute(
            update(NotificationDelivery)
            .where(
                NotificationDelivery.status.in_(delivery_state.CANCELLABLE),
                NotificationDelivery.retry_count == 0,
                NotificationDelivery.expires_at.is_not(None),
                NotificationDelivery.expires_at <= now,
            )
            .values(
                status=DeliveryStatus.EXPIRED.value,
                failure_reason="Delivery expired before it could be sent",
                updated_at=now,
            )
        )
        return result.rowcount

    count = with_retry(operation)
    if count:
        logger.info("Marked %s deliveries as expired", count)
    return count


def retry_delivery(delivery_id: int, now: Optional[datetime] = None) -> NotificationDelivery:
    """Operator retry of a delivery that exhausted its automatic retries."""

    def operation(session):
        delivery = session.get(NotificationDelivery, delivery_id)
        if not delivery:
            raise NotFoundError("Delivery not found")
        delivery_state.manual_retry(delivery, now or utcnow())
        session.flush()
        return delivery

    delivery = with_retry(operation)
    logger.info("Manual retry queued", extra={"delivery_id": delivery_id})
    return delivery


def delivery_type_column():
    return func.coalesce(NotificationTemplate.type, NotificationDelivery.notification_type)


def bulk_retry(
    start: datetime,
    end: datetime,
    channel: Optional[str] = None,
    notification_type: Optional[str] = None,
    failure_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[int]:
    """Manual retry of every exhausted FAILED delivery created in ``[start, end)``
    matching the optional filters."""
    now = now or utcnow()
    start, end = to_utc_naive(start), to_utc_naive(end)

    def operation(session):
        stmt = (
            select(NotificationDelivery)
            .outerjoin(NotificationSchedule, NotificationSchedule.id == NotificationDelivery.schedule_id)
            .outerjoin(NotificationTemplate, NotificationTemplate.id == NotificationSchedule.template_id)
            .where(
                NotificationDelivery.status == DeliveryStatus.FAILED.value,
                NotificationDelivery.next_retry_at.is_(None),
                NotificationDelivery.created_at >= start,
                NotificationDelivery.created_at < end,
            )
        )
        if channel:
            stmt = stmt.where(NotificationDelivery.delivery_channel == channel)
        if notification_type:
            stmt = stmt.where(delivery_type_column() == notification_type)
        if failure_reason:
            stmt = stmt.where(NotificationDelivery.failure_reason == failure_reason)
        deliveries = session.execute(stmt).scalars().all()
        for delivery in deliveries:
            delivery_state.manual_retry(delivery, now)
        return [d.id for d in deliveries]

    ids = with_retry(operation)
    logger.info("Bulk retry queued %s deliveries", len(ids))
    return ids


def bulk_cancel(
    schedule_id: Optional[int] = None,
    delivery_ids: Optional[List[int]] = None,
    now: Optional[datetime] = None,
) -> int:
    """Cancel PENDING/SCHEDULED deliveries. PROCESSING ones are left to finish."""
    if schedule_id is None and not delivery_ids:
        raise ValueError("schedule_id or delivery_ids required")
    now = now or utcnow()

    def operation(session):
        stmt = update(NotificationDelivery).where(NotificationDelivery.status.in_(delivery_state.CANCELLABLE))
        if schedule_id is not None:
            stmt = stmt.where(NotificationDelivery.schedule_id == schedule_id)
        if delivery_ids:
            stmt = stmt.where(NotificationDelivery.id.in_(delivery_ids))
        result = session.execute(stmt.values(status=DeliveryStatus.CANCELLED.value, next_retry_at=None, updated_at=now))
        return result.rowcount

    count = with_retry(operation)
    logger.info("Cancelled %s deliveries", count, extra={"schedule_id": schedule_id})
    return count


def handle_transport_callback(external_id: str, status: str, reason: Optional[str] = None) -> NotificationDelivery:
    """Asynchronous outcome reported by a transport for an already SENT delivery."""
    target = DeliveryStatus(status)
    now = utcnow()
    policy = _policy()

    def operation(session):
        delivery = session.execute(
            select(NotificationDelivery).where(NotificationDelivery.external_id == external_id)
        ).scalar_one_or_none()
        if not delivery:
            raise NotFoundError(f"No delivery with external id {external_id}")
        if target == DeliveryStatus.DELIVERED:
            delivery_state.mark_delivered(delivery, now)
        elif target == DeliveryStatus.FAILED:
            delivery_state.mark_failed(delivery, reason or "TRANSPORT_REPORTED_FAILURE", now, policy)
        else:
            raise ValueError(f"unsupported callback status: {status}")
        session.flush()
        return delivery

    return with_retry(operation)


def get_delivery(delivery_id: int) -> Optional[NotificationDelivery]:
    with session_scope() as session:
        return session.get(NotificationDelivery, delivery_id)


def list_deliveries(
    schedule_id: Optional[int] = None,
    status: Optional[str] = None,
    channel: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    sort: str = "created_at",
    order: str = "desc",
) -> Tuple[List[NotificationDelivery], int]:
    limit = min(max(limit, 1), 200)
    offset = max(offset, 0)
    column = SORT_FIELDS.get(sort)
    if column is None:
        raise ValueError(f"unsupported sort field: {sort}")
    with session_scope() as session:
        stmt = select(NotificationDelivery)
        if schedule_id is not None:
            stmt = stmt.where(NotificationDelivery.schedule_id == schedule_id)
        if status:
            stmt = stmt.where(NotificationDelivery.status == status)
        if channel:
            stmt = stmt.where(NotificationDelivery.delivery_channel == channel)
        total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        direction = asc if order == "asc" else desc
        stmt = stmt.order_by(direction(column), direction(NotificationDelivery.id)).offset(offset).limit(limit)
        return session.execute(stmt).scalars().all(), total
