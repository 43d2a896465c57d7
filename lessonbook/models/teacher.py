"""Teacher model and per-teacher lesson settings"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, CheckConstraint, Index, Uuid
from sqlalchemy.sql import func
import uuid

from lessonbook.database import Base


class Teacher(Base):
    """Music teacher offering lessons in their own timezone"""

    __tablename__ = "teachers"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    email = Column(String(320), unique=True, nullable=False)
    timezone = Column(String(64), nullable=False, default="America/Chicago")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_teachers_active", "is_active"),
    )

    def __repr__(self):
        return f"<Teacher(id={self.id}, name={self.name}, timezone={self.timezone})>"


class TeacherLessonSettings(Base):
    """Offered lesson durations, prices (cents) and booking horizon"""

    __tablename__ = "teacher_lesson_settings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    teacher_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("teachers.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    allows_30_min = Column(Boolean, nullable=False, default=True)
    allows_60_min = Column(Boolean, nullable=False, default=True)
    price_30_min = Column(Integer, nullable=False)
    price_60_min = Column(Integer, nullable=False)
    advance_booking_days = Column(
        Integer,
        CheckConstraint("advance_booking_days >= 1 AND advance_booking_days <= 90"),
        nullable=False,
        default=21,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def price_for(self, duration: int) -> int:
        return self.price_30_min if duration == 30 else self.price_60_min

    def offered_durations(self):
        durations = []
        if self.allows_30_min:
            durations.append(30)
        if self.allows_60_min:
            durations.append(60)
        return durations

    def __repr__(self):
        return (
            f"<TeacherLessonSettings(teacher_id={self.teacher_id}, "
            f"30={self.allows_30_min}/{self.price_30_min}, 60={self.allows_60_min}/{self.price_60_min})>"
        )
