"""
Lesson cleanup

Repairs derived state: lessons whose start time has passed while still
SCHEDULED become MISSED. Also holds the cancellation-window rule used by the
booking service.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from sqlalchemy import update

from lessonbook.config import CANCELLATION_BUFFER_HOURS
from lessonbook.database import AsyncSessionLocal
from lessonbook.models import Lesson
from lessonbook.models.enums import LessonStatus
from lessonbook.services.job_results import JobResult
from lessonbook.services.retry import DATABASE_RETRY_POLICY, with_retry
from lessonbook.services.time_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

JOB_NAME = "mark-missed-lessons"
MISSED_NOTE = "Automatically marked as missed - lesson time passed"


def can_cancel_lesson(
    lesson_start: datetime,
    lesson_status: LessonStatus,
    now: datetime,
    buffer_hours: int = CANCELLATION_BUFFER_HOURS,
) -> Tuple[bool, Optional[str]]:
    """
    Whether a lesson may still be cancelled.

    Returns:
        Tuple of (can_cancel, reason_if_not)
    """
    lesson_start = ensure_utc(lesson_start)
    now = ensure_utc(now)

    if lesson_status != LessonStatus.SCHEDULED:
        return False, f"Cannot cancel lesson with status: {lesson_status.value}"
    if lesson_start <= now:
        return False, "Cannot cancel lessons that have already started or passed"
    if lesson_start <= now + timedelta(hours=buffer_hours):
        return False, f"Cannot cancel lessons within {buffer_hours} hours of start time"
    return True, None


class LessonCleanup:
    """Marks past scheduled lessons as missed"""

    def __init__(self, session_factory=None, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory or AsyncSessionLocal
        self.clock = clock

    async def mark_missed_lessons(self) -> JobResult:
        result = JobResult(JOB_NAME, counts={"lessons_updated": 0})
        now = ensure_utc(self.clock())

        async def _update():
            async with self.session_factory() as session:
                outcome = await session.execute(
                    update(Lesson)
                    .where(Lesson.start_time < now, Lesson.status == LessonStatus.SCHEDULED)
                    .values(status=LessonStatus.MISSED, notes=MISSED_NOTE)
                )
                await session.commit()
                return outcome.rowcount or 0

        try:
            updated = await with_retry(_update, DATABASE_RETRY_POLICY, operation_name="mark_missed_lessons")
        except Exception as e:
            logger.error(f"Error cleaning up past lessons: {e}", exc_info=True)
            result.add_error("job", JOB_NAME, "mark_missed", e)
            return result

        result.increment("lessons_updated", updated)
        logger.info(f"Marked {updated} past lessons as missed")
        return result


# Global cleanup instance
_cleanup: Optional[LessonCleanup] = None


def get_lesson_cleanup() -> LessonCleanup:
    """Get or create global LessonCleanup instance."""
    global _cleanup
    if _cleanup is None:
        _cleanup = LessonCleanup()
    return _cleanup
