import enum


class NotificationType(str, enum.Enum):
    SCHEDULE_REMINDER = "SCHEDULE_REMINDER"
    CONTENT_UPDATE = "CONTENT_UPDATE"
    QUIZ_REMINDER = "QUIZ_REMINDER"
    ASSIGNMENT_DUE = "ASSIGNMENT_DUE"
    COURSE_ANNOUNCEMENT = "COURSE_ANNOUNCEMENT"
    SYSTEM_NOTIFICATION = "SYSTEM_NOTIFICATION"


class DeliveryChannel(str, enum.Enum):
    EMAIL = "EMAIL"
    PUSH = "PUSH"
    IN_APP = "IN_APP"


class DeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    SCHEDULED = "SCHEDULED"


class ScheduleStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    SENT = "SENT"
    CANCELLED = "CANCELLED"


class RecurringPattern(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class DigestFrequency(str, enum.Enum):
    IMMEDIATE = "IMMEDIATE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"


class OccurrenceStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"
