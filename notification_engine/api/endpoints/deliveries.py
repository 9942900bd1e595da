from fastapi import APIRouter, Depends, HTTPException, Query

from notification_engine.api.deps import require_admin_token
from notification_engine.core.errors import NotFoundError
from notification_engine.schemas.deliveries import (
    BulkActionResponse,
    BulkCancelRequest,
    BulkRetryRequest,
    DeliveryListResponse,
    DeliveryResponse,
    TransportCallback,
)
from notification_engine.services import audit as audit_service
from notification_engine.services import retry_manager, task_queue

router = APIRouter(prefix="/deliveries", dependencies=[Depends(require_admin_token)])


def _iso(value):
    return value.isoformat() if value else None


def serialize_delivery(delivery) -> DeliveryResponse:
    return DeliveryResponse(
        id=delivery.id,
        schedule_id=delivery.schedule_id,
        occurrence_id=delivery.occurrence_id,
        recipient_id=delivery.recipient_id,
        recipient_endpoint=delivery.recipient_endpoint,
        delivery_channel=delivery.delivery_channel,
        notification_type=delivery.notification_type,
        subject=delivery.subject,
        content=delivery.content,
        status=delivery.status,
        retry_count=delivery.retry_count,
        max_retries=delivery.max_retries,
        next_retry_at=_iso(delivery.next_retry_at),
        scheduled_for=_iso(delivery.scheduled_for),
        failure_reason=delivery.failure_reason,
        external_id=delivery.external_id,
        created_at=delivery.created_at.isoformat(),
        sent_at=_iso(delivery.sent_at),
        delivered_at=_iso(delivery.delivered_at),
    )


@router.get("", response_model=DeliveryListResponse)
def list_deliveries(
    schedule_id: int | None = None,
    status: str | None = None,
    channel: str | None = None,
    sort: str = Query("created_at"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    try:
        items, total = retry_manager.list_deliveries(
            schedule_id=schedule_id,
            status=status,
            channel=channel,
            limit=limit,
            offset=offset,
            sort=sort,
            order=order,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return DeliveryListResponse(items=[serialize_delivery(d) for d in items], total=total, limit=limit, offset=offset)


@router.get("/{delivery_id}", response_model=DeliveryResponse)
def get_delivery(delivery_id: int):
    delivery = retry_manager.get_delivery(delivery_id)
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    return serialize_delivery(delivery)


@router.post("/{delivery_id}/retry", response_model=DeliveryResponse)
def retry_delivery(delivery_id: int):
    try:
        delivery = retry_manager.retry_delivery(delivery_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    task_queue.enqueue_delivery(delivery.id)
    audit_service.log_action("delivery.retry", f"Manual retry of delivery {delivery_id}")
    return serialize_delivery(delivery)


@router.post("/bulk-retry", response_model=BulkActionResponse)
def bulk_retry(payload: BulkRetryRequest):
    if payload.end <= payload.start:
        raise HTTPException(status_code=400, detail="end must be after start")
    ids = retry_manager.bulk_retry(
        start=payload.start,
        end=payload.end,
        channel=payload.channel,
        notification_type=payload.notification_type,
        failure_reason=payload.failure_reason,
    )
    task_queue.enqueue_many((delivery_id, None) for delivery_id in ids)
    audit_service.log_action("delivery.bulk_retry", f"Bulk retry of {len(ids)} deliveries")
    return BulkActionResponse(count=len(ids), delivery_ids=ids)


@router.post("/bulk-cancel", response_model=BulkActionResponse)
def bulk_cancel(payload: BulkCancelRequest):
    try:
        count = retry_manager.bulk_cancel(schedule_id=payload.schedule_id, delivery_ids=payload.delivery_ids)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    audit_service.log_action("delivery.bulk_cancel", f"Cancelled {count} deliveries")
    return BulkActionResponse(count=count)


@router.post("/callback", response_model=DeliveryResponse)
def transport_callback(payload: TransportCallback):
    try:
        delivery = retry_manager.handle_transport_callback(payload.external_id, payload.status, payload.reason)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if delivery.next_retry_at is not None:
        task_queue.enqueue_delivery(delivery.id, delivery.next_retry_at)
    return serialize_delivery(delivery)
