from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from notification_engine.core.clock import utcnow
from notification_engine.core.database import Base


class NotificationTemplate(Base):
    __tablename__ = "notification_templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(128), nullable=False)
    type = Column(String(32), nullable=False)
    locale = Column(String(16), default="en", nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Integer, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    contents = relationship(
        "TemplateContent",
        back_populates="template",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class TemplateContent(Base):
    """Content of one template for one channel and locale.

    EMAIL uses ``subject`` + ``body``; PUSH and IN_APP use them as title + message.
    """

    __tablename__ = "notification_template_contents"
    __table_args__ = (UniqueConstraint("template_id", "channel", "locale", name="uq_template_channel_locale"),)

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey("notification_templates.id"), nullable=False, index=True)
    channel = Column(String(16), nullable=False)
    locale = Column(String(16), nullable=False)
    subject = Column(String(256), nullable=True)
    body = Column(Text, nullable=False)

    template = relationship("NotificationTemplate", back_populates="contents")
