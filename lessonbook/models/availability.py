"""Weekly availability windows and one-off blocked intervals"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, CheckConstraint, Index, Uuid
from sqlalchemy.sql import func
import uuid

from lessonbook.database import Base


class WeeklyAvailability(Base):
    """Recurring weekly window, times in the teacher's timezone (HH:MM)"""

    __tablename__ = "weekly_availability"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    teacher_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("teachers.id", ondelete="CASCADE"),
        nullable=False,
    )
    day_of_week = Column(
        Integer,
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6"),
        nullable=False,
    )  # 0=Sunday
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_availability_teacher_day", "teacher_id", "day_of_week"),
    )

    def __repr__(self):
        return (
            f"<WeeklyAvailability(teacher_id={self.teacher_id}, day={self.day_of_week}, "
            f"{self.start_time}-{self.end_time})>"
        )


class BlockedInterval(Base):
    """One-off unavailability (vacation, gig, etc.), stored in UTC"""

    __tablename__ = "blocked_intervals"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    teacher_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("teachers.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    reason = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_blocked_teacher_range", "teacher_id", "start_time", "end_time"),
    )

    def __repr__(self):
        return f"<BlockedInterval(teacher_id={self.teacher_id}, {self.start_time} -> {self.end_time})>"
