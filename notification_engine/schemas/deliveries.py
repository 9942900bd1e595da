from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class DeliveryResponse(BaseModel):
    id: int
    schedule_id: Optional[int] = None
    occurrence_id: Optional[int] = None
    recipient_id: str
    recipient_endpoint: str
    delivery_channel: str
    notification_type: Optional[str] = None
    subject: Optional[str] = None
    content: str
    status: str
    retry_count: int
    max_retries: int
    next_retry_at: Optional[str] = None
    scheduled_for: Optional[str] = None
    failure_reason: Optional[str] = None
    external_id: Optional[str] = None
    created_at: str
    sent_at: Optional[str] = None
    delivered_at: Optional[str] = None


class DeliveryListResponse(BaseModel):
    items: List[DeliveryResponse]
    total: int
    limit: int
    offset: int


class BulkRetryRequest(BaseModel):
    start: datetime
    end: datetime
    channel: Optional[str] = None
    notification_type: Optional[str] = None
    failure_reason: Optional[str] = None


class BulkCancelRequest(BaseModel):
    schedule_id: Optional[int] = None
    delivery_ids: List[int] = Field(default_factory=list)


class BulkActionResponse(BaseModel):
    count: int
    delivery_ids: List[int] = Field(default_factory=list)


class TransportCallback(BaseModel):
    external_id: str
    status: str = Field(..., description="DELIVERED|FAILED")
    reason: Optional[str] = None
