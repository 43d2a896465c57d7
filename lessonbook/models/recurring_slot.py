"""Recurring weekly slots and their monthly billing subscriptions"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, CheckConstraint, Index, Enum, Uuid
from sqlalchemy.sql import func
import uuid

from lessonbook.database import Base
from lessonbook.models.enums import SlotStatus, SubscriptionStatus


class RecurringSlot(Base):
    """Standing weekly booking between one teacher and one student"""

    __tablename__ = "recurring_slots"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    teacher_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("teachers.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    day_of_week = Column(
        Integer,
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6"),
        nullable=False,
    )  # 0=Sunday
    start_time = Column(String(5), nullable=False)  # HH:MM, teacher timezone
    duration_minutes = Column(Integer, nullable=False)
    rate_per_lesson = Column(Integer, nullable=False)
    monthly_rate = Column(Integer, nullable=False)
    status = Column(
        Enum(SlotStatus, name="slot_status"),
        nullable=False,
        default=SlotStatus.ACTIVE,
    )
    booked_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_recurring_slots_teacher_status", "teacher_id", "status"),
        Index("idx_recurring_slots_student_status", "student_id", "status"),
    )

    def __repr__(self):
        return (
            f"<RecurringSlot(id={self.id}, teacher_id={self.teacher_id}, day={self.day_of_week}, "
            f"start={self.start_time}, status={self.status})>"
        )


class SlotSubscription(Base):
    """Monthly billing agreement attached to a recurring slot"""

    __tablename__ = "slot_subscriptions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slot_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("recurring_slots.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_month = Column(String(7), nullable=False)  # YYYY-MM
    end_month = Column(String(7), nullable=True)
    monthly_rate = Column(Integer, nullable=False)
    status = Column(
        Enum(SubscriptionStatus, name="subscription_status"),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )
    last_billed_month = Column(String(7), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_subscriptions_status", "status"),
        Index("idx_subscriptions_slot", "slot_id"),
    )

    def covers_month(self, month: str) -> bool:
        """YYYY-MM strings compare chronologically"""
        if month < self.start_month:
            return False
        return self.end_month is None or month <= self.end_month

    def __repr__(self):
        return f"<SlotSubscription(id={self.id}, slot_id={self.slot_id}, status={self.status})>"
