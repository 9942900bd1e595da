from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from notification_engine.core.clock import utcnow
from notification_engine.core.database import Base


class UserPreference(Base):
    __tablename__ = "user_preferences"
    __table_args__ = (UniqueConstraint("user_id", name="uq_pref_user"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    email_enabled = Column(Integer, default=1)
    push_enabled = Column(Integer, default=1)
    in_app_enabled = Column(Integer, default=1)
    disabled_categories = Column(Text, nullable=True)  # JSON list of notification types
    frequency = Column(String(16), default="IMMEDIATE")
    quiet_hours_enabled = Column(Integer, default=0)
    quiet_hours_start = Column(String(5), nullable=True)  # HH:MM
    quiet_hours_end = Column(String(5), nullable=True)
    timezone = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
