"""SQLAlchemy ORM Models for the lesson booking schema"""
from lessonbook.models.teacher import Teacher, TeacherLessonSettings
from lessonbook.models.student import Student
from lessonbook.models.availability import WeeklyAvailability, BlockedInterval
from lessonbook.models.lesson import Lesson
from lessonbook.models.recurring_slot import RecurringSlot, SlotSubscription
from lessonbook.models.billing_record import BillingRecord
from lessonbook.models.job_execution import JobExecutionRecord
from lessonbook.models.enums import LessonStatus, SlotStatus, SubscriptionStatus, BillingStatus

__all__ = [
    "Teacher",
    "TeacherLessonSettings",
    "Student",
    "WeeklyAvailability",
    "BlockedInterval",
    "Lesson",
    "RecurringSlot",
    "SlotSubscription",
    "BillingRecord",
    "JobExecutionRecord",
    "LessonStatus",
    "SlotStatus",
    "SubscriptionStatus",
    "BillingStatus",
]
