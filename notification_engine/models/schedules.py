from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from notification_engine.core.clock import utcnow
from notification_engine.core.database import Base


class NotificationSchedule(Base):
    __tablename__ = "notification_schedules"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(128), nullable=False)
    template_id = Column(Integer, nullable=False, index=True)
    # JSON lists; union semantics across fields
    target_roles = Column(Text, nullable=True)
    target_user_ids = Column(Text, nullable=True)
    target_course_ids = Column(Text, nullable=True)
    target_class_ids = Column(Text, nullable=True)
    include_teachers = Column(Integer, default=0)
    scheduled_at = Column(DateTime, nullable=True)  # null = immediate
    timezone = Column(String(64), default="UTC", nullable=False)
    is_recurring = Column(Integer, default=0)
    recurring_pattern = Column(String(16), nullable=True)  # DAILY | WEEKLY | MONTHLY
    recurring_end_date = Column(DateTime, nullable=True)
    email_enabled = Column(Integer, default=1)
    push_enabled = Column(Integer, default=0)
    in_app_enabled = Column(Integer, default=0)
    variables = Column(Text, nullable=True)
    status = Column(String(16), default="DRAFT", nullable=False)
    last_fired_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class ScheduleOccurrence(Base):
    __tablename__ = "schedule_occurrences"

    id = Column(Integer, primary_key=True, index=True)
    schedule_id = Column(Integer, ForeignKey("notification_schedules.id"), nullable=False, index=True)
    fire_at = Column(DateTime, nullable=False)
    status = Column(String(16), default="RUNNING")
    forced = Column(Integer, default=0)
    recipient_count = Column(Integer, default=0)
    deliveries_created = Column(Integer, default=0)
    warnings = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    finished_at = Column(DateTime, nullable=True)
