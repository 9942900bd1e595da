from notification_engine.models.templates import NotificationTemplate, TemplateContent
from notification_engine.models.schedules import NotificationSchedule, ScheduleOccurrence
from notification_engine.models.deliveries import NotificationDelivery
from notification_engine.models.preferences import UserPreference
from notification_engine.models.audit import AuditLog

__all__ = [
    "NotificationTemplate",
    "TemplateContent",
    "NotificationSchedule",
    "ScheduleOccurrence",
    "NotificationDelivery",
    "UserPreference",
    "AuditLog",
]
