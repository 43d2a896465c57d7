"""
Teacher availability management.

Weekly windows are replaced wholesale (delete then recreate inside one
transaction) rather than diffed. Blocked intervals are one-off and pruned once
they end.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from sqlalchemy import delete

from lessonbook.database import AsyncSessionLocal
from lessonbook.errors import ConflictError, ValidationError
from lessonbook.models import BlockedInterval, WeeklyAvailability
from lessonbook.services import lookups
from lessonbook.services.retry import DATABASE_RETRY_POLICY, with_retry
from lessonbook.services.time_utils import (
    day_name,
    ensure_utc,
    minutes_since_midnight,
    normalize_time_of_day,
    utcnow,
    validate_day_of_week,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityWindow:
    day_of_week: int  # 0=Sunday
    start_time: str  # HH:MM
    end_time: str


def check_availability_windows(windows: Sequence[AvailabilityWindow]) -> None:
    """
    Business rules for a proposed weekly schedule.

    Raises:
        ValidationError: bad weekday, bad HH:MM, start >= end, or two windows
            overlapping on the same day (touching windows are fine)
    """
    parsed = []
    for window in windows:
        validate_day_of_week(window.day_of_week)
        start = minutes_since_midnight(window.start_time)
        end = minutes_since_midnight(window.end_time)
        if start >= end:
            raise ValidationError(
                f"End time must be after start time on {day_name(window.day_of_week)}",
                details={"start_time": window.start_time, "end_time": window.end_time},
            )
        parsed.append((window.day_of_week, start, end))

    parsed.sort()
    for previous, current in zip(parsed, parsed[1:]):
        if previous[0] == current[0] and current[1] < previous[2]:
            raise ValidationError(
                f"Overlapping time slots on {day_name(current[0])}",
                details={"day_of_week": current[0]},
            )


class AvailabilityService:
    """Validates and persists weekly availability and blocked time"""

    def __init__(self, session_factory=None, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory or AsyncSessionLocal
        self.clock = clock

    async def validate_availability(self, teacher_id, windows: Sequence[AvailabilityWindow]) -> None:
        """Pre-write check for a proposed weekly schedule; raises on failure."""
        async with self.session_factory() as session:
            await lookups.get_teacher(session, teacher_id)
        check_availability_windows(windows)

    async def validate_blocked_time(self, teacher_id, start_time: datetime, end_time: datetime) -> None:
        """
        Pre-write check for a blocked interval.

        Raises:
            ValidationError: start >= end, or start in the past
            NotFoundError: unknown teacher
            ConflictError: scheduled lessons already fall inside the interval
        """
        start_time = ensure_utc(start_time)
        end_time = ensure_utc(end_time)
        if start_time >= end_time:
            raise ValidationError("End time must be after start time")
        if start_time < ensure_utc(self.clock()):
            raise ValidationError("Cannot block time in the past")

        async with self.session_factory() as session:
            teacher = await lookups.get_teacher(session, teacher_id)
            lessons = await lookups.get_scheduled_lessons(session, teacher.id, start_time, end_time)

        overlapping = [
            lesson for lesson in lessons
            if lookups.lesson_end(lesson) > start_time and ensure_utc(lesson.start_time) < end_time
        ]
        if overlapping:
            raise ConflictError(
                f"Cannot block time: {len(overlapping)} lesson(s) already scheduled during this period",
                details={"lesson_ids": [str(lesson.id) for lesson in overlapping]},
            )

    async def replace_weekly_availability(
        self, teacher_id, windows: Sequence[AvailabilityWindow]
    ) -> List[WeeklyAvailability]:
        """Validate, then swap the teacher's whole weekly schedule atomically."""
        await self.validate_availability(teacher_id, windows)
        teacher_uuid = lookups.as_uuid(teacher_id, "teacher id")

        async def _replace():
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(WeeklyAvailability).where(WeeklyAvailability.teacher_id == teacher_uuid)
                    )
                    rows = [
                        WeeklyAvailability(
                            teacher_id=teacher_uuid,
                            day_of_week=w.day_of_week,
                            start_time=normalize_time_of_day(w.start_time),
                            end_time=normalize_time_of_day(w.end_time),
                            is_active=True,
                        )
                        for w in windows
                    ]
                    session.add_all(rows)
                return rows

        rows = await with_retry(_replace, DATABASE_RETRY_POLICY, operation_name="replace_weekly_availability")
        logger.info(f"Replaced weekly availability for teacher {teacher_id}: {len(rows)} windows")
        return rows

    async def add_blocked_interval(
        self,
        teacher_id,
        start_time: datetime,
        end_time: datetime,
        reason: Optional[str] = None,
    ) -> BlockedInterval:
        await self.validate_blocked_time(teacher_id, start_time, end_time)
        teacher_uuid = lookups.as_uuid(teacher_id, "teacher id")

        async def _insert():
            async with self.session_factory() as session:
                blocked = BlockedInterval(
                    teacher_id=teacher_uuid,
                    start_time=ensure_utc(start_time),
                    end_time=ensure_utc(end_time),
                    reason=reason,
                )
                session.add(blocked)
                await session.commit()
                return blocked

        blocked = await with_retry(_insert, DATABASE_RETRY_POLICY, operation_name="add_blocked_interval")
        logger.info(f"Blocked {start_time.isoformat()} -> {end_time.isoformat()} for teacher {teacher_id}")
        return blocked

    async def prune_expired_blocked_intervals(self) -> int:
        """Delete blocked intervals that ended before now."""
        now = ensure_utc(self.clock())

        async def _prune():
            async with self.session_factory() as session:
                result = await session.execute(delete(BlockedInterval).where(BlockedInterval.end_time < now))
                await session.commit()
                return result.rowcount or 0

        deleted_count = await with_retry(_prune, DATABASE_RETRY_POLICY, operation_name="prune_blocked_intervals")
        logger.info(f"Pruned {deleted_count} expired blocked intervals")
        return deleted_count


# Global service instance
_service: Optional[AvailabilityService] = None


def get_availability_service() -> AvailabilityService:
    """Get or create global AvailabilityService instance."""
    global _service
    if _service is None:
        _service = AvailabilityService()
    return _service
