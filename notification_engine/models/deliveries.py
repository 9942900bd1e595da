from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from notification_engine.core.clock import utcnow
from notification_engine.core.database import Base


class NotificationDelivery(Base):
    __tablename__ = "notification_deliveries"
    __table_args__ = (
        Index("ix_delivery_status_retry", "status", "next_retry_at"),
        Index("ix_delivery_status_scheduled", "status", "scheduled_for"),
    )

    id = Column(Integer, primary_key=True, index=True)
    schedule_id = Column(Integer, ForeignKey("notification_schedules.id"), nullable=True, index=True)
    occurrence_id = Column(Integer, ForeignKey("schedule_occurrences.id"), nullable=True, index=True)
    recipient_id = Column(String(64), nullable=False, index=True)
    recipient_endpoint = Column(String(256), nullable=False)
    recipient_locale = Column(String(16), nullable=True)
    delivery_channel = Column(String(16), nullable=False)
    notification_type = Column(String(32), nullable=True)
    subject = Column(String(256), nullable=True)
    content = Column(Text, nullable=False)
    status = Column(String(16), default="PENDING", nullable=False, index=True)
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)
    next_retry_at = Column(DateTime, nullable=True)
    scheduled_for = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)
    external_id = Column(String(128), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    sent_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
