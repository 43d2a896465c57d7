"""Lesson model - concrete scheduled lessons"""
from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey, CheckConstraint, Index, Enum, Uuid, text
from sqlalchemy.sql import func
import uuid

from lessonbook.database import Base
from lessonbook.models.enums import LessonStatus


class Lesson(Base):
    """Single lesson between a teacher and a student"""

    __tablename__ = "lessons"

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
    start_time = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(
        Integer,
        CheckConstraint("duration_minutes IN (30, 60)"),
        nullable=False,
    )
    status = Column(
        Enum(LessonStatus, name="lesson_status"),
        nullable=False,
        default=LessonStatus.SCHEDULED,
    )
    price = Column(Integer, nullable=False, default=0)
    timezone = Column(String(64), nullable=False, default="America/Chicago")
    notes = Column(Text, nullable=True)
    recurring_slot_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("recurring_slots.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        # Store-level guard against double-booking a teacher
        Index(
            "uq_lessons_teacher_start_scheduled",
            "teacher_id",
            "start_time",
            unique=True,
            postgresql_where=text("status = 'SCHEDULED'"),
            sqlite_where=text("status = 'SCHEDULED'"),
        ),
        Index("uq_lessons_slot_start", "recurring_slot_id", "start_time", unique=True),
        Index("idx_lessons_teacher_time", "teacher_id", "start_time"),
        Index("idx_lessons_student", "student_id"),
        Index("idx_lessons_status_time", "status", "start_time"),
    )

    def __repr__(self):
        return f"<Lesson(id={self.id}, teacher_id={self.teacher_id}, start={self.start_time}, status={self.status})>"
