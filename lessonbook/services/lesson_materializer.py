"""
Lesson Materializer

Background job that turns ACTIVE recurring slots into concrete Lesson rows
for a rolling horizon (12 weeks by default).

Safe to re-run at any time: an occurrence is only created when its slot has
no lesson on that local date yet, so repeated runs converge on the same set
of lessons. Each teacher is processed independently and a failure for one
teacher is recorded without stopping the rest.
"""
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy import select

from lessonbook.config import LESSON_GENERATION_WEEKS
from lessonbook.database import AsyncSessionLocal
from lessonbook.models import Lesson, RecurringSlot, SlotSubscription
from lessonbook.models.enums import LessonStatus, SlotStatus, SubscriptionStatus
from lessonbook.services import lookups
from lessonbook.services.conflict_detector import (
    Interval,
    blocked_intervals_from,
    find_conflict,
    lesson_intervals_from,
)
from lessonbook.services.job_results import JobResult
from lessonbook.services.retry import DATABASE_RETRY_POLICY, with_retry
from lessonbook.services.time_utils import (
    day_of_week,
    ensure_utc,
    iter_days,
    local_date,
    local_to_utc,
    month_of,
    normalize_timezone,
    utcnow,
)

logger = logging.getLogger(__name__)

JOB_NAME = "generate-future-lessons"


class LessonMaterializer:
    """Generates upcoming lessons from active recurring slots"""

    def __init__(
        self,
        session_factory=None,
        clock: Callable[[], datetime] = utcnow,
        horizon_weeks: int = LESSON_GENERATION_WEEKS,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.clock = clock
        self.horizon_weeks = horizon_weeks

    async def generate_future_lessons(self) -> JobResult:
        """
        Materialize lessons for every teacher with active recurring slots.

        Returns:
            JobResult with counts lessons_generated, lessons_skipped and
            teachers_processed, plus one error entry per failed teacher
        """
        start_time = time.time()
        result = JobResult(JOB_NAME)
        for counter in ("lessons_generated", "lessons_skipped", "teachers_processed"):
            result.increment(counter, 0)

        logger.info("Starting automatic lesson generation job")

        try:
            teacher_ids = await with_retry(
                self._teachers_with_active_slots, DATABASE_RETRY_POLICY, operation_name="load_active_slot_teachers"
            )
        except Exception as e:
            logger.error(f"Fatal error loading teachers for lesson generation: {e}", exc_info=True)
            result.add_error("job", JOB_NAME, "load_teachers", e)
            return result

        logger.info(f"Found {len(teacher_ids)} teachers with active recurring slots")

        for teacher_id in teacher_ids:
            try:
                created, skipped = await self.generate_for_teacher(teacher_id)
            except Exception as e:
                logger.error(f"Failed to generate lessons for teacher {teacher_id}: {e}", exc_info=True)
                result.add_error("teacher", teacher_id, "generate_lessons", e)
                continue

            result.increment("lessons_generated", created)
            result.increment("lessons_skipped", skipped)
            result.increment("teachers_processed")
            if created > 0:
                logger.info(f"Generated {created} lessons for teacher {teacher_id}")

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Lesson generation complete: {result.count('lessons_generated')} lessons for "
            f"{result.count('teachers_processed')} teachers, {len(result.errors)} errors, {duration_ms:.2f}ms"
        )
        return result

    async def _teachers_with_active_slots(self) -> List:
        async with self.session_factory() as session:
            rows = await session.execute(
                select(RecurringSlot.teacher_id)
                .where(RecurringSlot.status == SlotStatus.ACTIVE)
                .distinct()
            )
            return [row[0] for row in rows.all()]

    async def generate_for_teacher(self, teacher_id) -> Tuple[int, int]:
        """
        Materialize one teacher's active slots, retrying transient database errors.

        Returns:
            Tuple of (lessons_created, occurrences_skipped_for_conflicts)
        """
        return await with_retry(
            lambda: self._generate_for_teacher(teacher_id),
            DATABASE_RETRY_POLICY,
            operation_name=f"generate_lessons[{teacher_id}]",
        )

    async def _generate_for_teacher(self, teacher_id) -> Tuple[int, int]:
        now = ensure_utc(self.clock())
        horizon_end = now + timedelta(weeks=self.horizon_weeks)

        async with self.session_factory() as session:
            teacher = await lookups.get_teacher(session, teacher_id)
            tz = normalize_timezone(teacher.timezone)

            slots_result = await session.execute(
                select(RecurringSlot).where(
                    RecurringSlot.teacher_id == teacher.id,
                    RecurringSlot.status == SlotStatus.ACTIVE,
                )
            )
            slots = list(slots_result.scalars().all())
            if not slots:
                return 0, 0

            blocked = blocked_intervals_from(
                await lookups.get_blocked_intervals(session, teacher.id, now, horizon_end)
            )
            occupied = lesson_intervals_from(
                await lookups.get_blocking_lessons(session, teacher.id, now, horizon_end)
            )
            existing = await self._existing_occurrences(session, [s.id for s in slots], now, horizon_end, tz)
            subscriptions = await self._open_subscriptions(session, [s.id for s in slots])

            created = 0
            skipped = 0
            first_day = local_date(now, tz)
            last_day = local_date(horizon_end, tz)

            for slot in slots:
                booked_at = ensure_utc(slot.booked_at) if slot.booked_at else now
                for day in iter_days(first_day, last_day):
                    if day_of_week(day) != slot.day_of_week:
                        continue
                    if (slot.id, day) in existing:
                        continue
                    if slot.id in subscriptions and not any(
                        sub.covers_month(month_of(day)) for sub in subscriptions[slot.id]
                    ):
                        continue

                    start = local_to_utc(day, slot.start_time, tz)
                    if start < now or start < booked_at or start > horizon_end:
                        continue

                    end = start + timedelta(minutes=slot.duration_minutes)
                    conflict = find_conflict(start, end, blocked, occupied)
                    if conflict is not None:
                        skipped += 1
                        logger.warning(
                            f"Skipping {day.isoformat()} for slot {slot.id} (teacher {teacher.id}): "
                            f"conflicts with {conflict}"
                        )
                        continue

                    session.add(Lesson(
                        teacher_id=teacher.id,
                        student_id=slot.student_id,
                        start_time=start,
                        duration_minutes=slot.duration_minutes,
                        status=LessonStatus.SCHEDULED,
                        price=slot.rate_per_lesson,
                        timezone=tz,
                        recurring_slot_id=slot.id,
                    ))
                    existing.add((slot.id, day))
                    occupied.append(Interval(start, end))
                    created += 1

            await session.commit()

        return created, skipped

    @staticmethod
    async def _open_subscriptions(session, slot_ids) -> Dict:
        """Non-cancelled subscriptions by slot id; slots without any are not month-limited."""
        rows = await session.execute(
            select(SlotSubscription).where(
                SlotSubscription.slot_id.in_(slot_ids),
                SlotSubscription.status != SubscriptionStatus.CANCELLED,
            )
        )
        by_slot = {}
        for subscription in rows.scalars().all():
            by_slot.setdefault(subscription.slot_id, []).append(subscription)
        return by_slot

    @staticmethod
    async def _existing_occurrences(session, slot_ids, window_start, window_end, tz) -> Set[Tuple]:
        """(slot_id, local date) pairs that already have a lesson, whatever its status."""
        rows = await session.execute(
            select(Lesson.recurring_slot_id, Lesson.start_time).where(
                Lesson.recurring_slot_id.in_(slot_ids),
                Lesson.start_time >= window_start - timedelta(days=1),
                Lesson.start_time <= window_end + timedelta(days=1),
            )
        )
        return {(slot_id, local_date(start, tz)) for slot_id, start in rows.all()}


# Global materializer instance
_materializer: Optional[LessonMaterializer] = None


def get_lesson_materializer() -> LessonMaterializer:
    """Get or create global LessonMaterializer instance."""
    global _materializer
    if _materializer is None:
        _materializer = LessonMaterializer()
    return _materializer
