"""Closed status enumerations shared by models and services"""
import enum


class LessonStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    MISSED = "MISSED"


class SlotStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class BillingStatus(str, enum.Enum):
    PENDING = "PENDING"
    BILLED = "BILLED"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


# Lessons that occupy the teacher's calendar
BLOCKING_LESSON_STATUSES = (LessonStatus.SCHEDULED, LessonStatus.COMPLETED)
