"""Shared read queries used by the scheduling services"""
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lessonbook.errors import NotFoundError, ValidationError
from lessonbook.models import (
    BlockedInterval,
    Lesson,
    Teacher,
    TeacherLessonSettings,
    WeeklyAvailability,
)
from lessonbook.models.enums import BLOCKING_LESSON_STATUSES, LessonStatus
from lessonbook.services.time_utils import ensure_utc

# Longest lesson; lessons starting this long before a window can still overlap it
MAX_LESSON_MINUTES = 60


def as_uuid(value: Union[str, uuid.UUID], label: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, AttributeError, TypeError):
        raise ValidationError(f"Invalid {label}: {value!r}")


async def get_teacher(session: AsyncSession, teacher_id) -> Teacher:
    """Load a teacher or raise NotFoundError."""
    teacher = await session.get(Teacher, as_uuid(teacher_id, "teacher id"))
    if teacher is None:
        raise NotFoundError(f"Teacher {teacher_id} not found", details={"teacher_id": str(teacher_id)})
    return teacher


async def get_lesson_settings(session: AsyncSession, teacher_id: uuid.UUID) -> Optional[TeacherLessonSettings]:
    result = await session.execute(
        select(TeacherLessonSettings).where(TeacherLessonSettings.teacher_id == teacher_id)
    )
    return result.scalar_one_or_none()


async def get_weekly_availability(session: AsyncSession, teacher_id: uuid.UUID) -> List[WeeklyAvailability]:
    result = await session.execute(
        select(WeeklyAvailability)
        .where(WeeklyAvailability.teacher_id == teacher_id, WeeklyAvailability.is_active.is_(True))
        .order_by(WeeklyAvailability.day_of_week, WeeklyAvailability.start_time)
    )
    return list(result.scalars().all())


async def get_blocked_intervals(
    session: AsyncSession,
    teacher_id: uuid.UUID,
    window_start: datetime,
    window_end: datetime,
) -> List[BlockedInterval]:
    """Blocked intervals overlapping [window_start, window_end)."""
    result = await session.execute(
        select(BlockedInterval).where(
            BlockedInterval.teacher_id == teacher_id,
            BlockedInterval.start_time < window_end,
            BlockedInterval.end_time > window_start,
        )
    )
    return list(result.scalars().all())


async def get_blocking_lessons(
    session: AsyncSession,
    teacher_id: uuid.UUID,
    window_start: datetime,
    window_end: datetime,
    statuses=BLOCKING_LESSON_STATUSES,
) -> List[Lesson]:
    """Lessons in the given statuses that may overlap [window_start, window_end)."""
    result = await session.execute(
        select(Lesson).where(
            Lesson.teacher_id == teacher_id,
            Lesson.status.in_(statuses),
            Lesson.start_time >= window_start - timedelta(minutes=MAX_LESSON_MINUTES),
            Lesson.start_time < window_end,
        )
    )
    return list(result.scalars().all())


async def get_scheduled_lessons(
    session: AsyncSession,
    teacher_id: uuid.UUID,
    window_start: datetime,
    window_end: datetime,
) -> List[Lesson]:
    return await get_blocking_lessons(
        session, teacher_id, window_start, window_end, statuses=(LessonStatus.SCHEDULED,)
    )


def lesson_end(lesson: Lesson) -> datetime:
    return ensure_utc(lesson.start_time) + timedelta(minutes=lesson.duration_minutes)
