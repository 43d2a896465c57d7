"""
Availability Slot Generator

Combines a teacher's weekly availability windows with blocked intervals and
existing lessons to produce bookable slots over a date range.

Slots are recomputed on every call and never cached: lesson state changes must
show up immediately or two students could book the same time. The result is
best-effort consistent as of read time; bookings re-validate at commit.
"""
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional

from lessonbook.config import SLOT_STEP_MINUTES
from lessonbook.database import AsyncSessionLocal
from lessonbook.errors import ValidationError
from lessonbook.services import lookups
from lessonbook.services.conflict_detector import (
    Interval,
    blocked_intervals_from,
    find_conflict,
    lesson_intervals_from,
)
from lessonbook.services.time_utils import (
    day_of_week,
    ensure_utc,
    format_in_timezone,
    generate_time_slots,
    iter_days,
    local_date,
    local_to_utc,
    minutes_since_midnight,
    normalize_timezone,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Slot:
    """Candidate lesson time with availability flag and price (cents)"""
    start: datetime
    end: datetime
    duration: int
    price: int
    available: bool
    unavailable_reason: Optional[str] = None
    display_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration": self.duration,
            "price": self.price,
            "available": self.available,
            "unavailable_reason": self.unavailable_reason,
            "display_time": self.display_time,
        }


@dataclass(frozen=True)
class _Window:
    day_of_week: int
    start_time: str
    end_time: str


class SlotGenerator:
    """Computes bookable slots for a teacher"""

    def __init__(self, session_factory=None, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory or AsyncSessionLocal
        self.clock = clock

    async def get_available_slots(
        self,
        teacher_id,
        range_start: datetime,
        range_end: datetime,
        student_timezone: Optional[str] = None,
    ) -> Iterator[Slot]:
        """
        Compute slots for every teacher-local calendar day touching the range.

        Args:
            teacher_id: Teacher UUID
            range_start: Range start (UTC)
            range_end: Range end (UTC), must be after range_start
            student_timezone: IANA timezone used for display_time; invalid
                values fall back to the default timezone

        Returns:
            Iterator over all slots, available and unavailable, in time order
            per availability window

        Raises:
            ValidationError: If range_end <= range_start
            NotFoundError: If the teacher does not exist
        """
        started = time.time()
        range_start = ensure_utc(range_start)
        range_end = ensure_utc(range_end)
        if range_end <= range_start:
            raise ValidationError(
                "Range end must be after range start",
                details={"range_start": range_start.isoformat(), "range_end": range_end.isoformat()},
            )

        async with self.session_factory() as session:
            teacher = await lookups.get_teacher(session, teacher_id)
            teacher_tz = normalize_timezone(teacher.timezone)
            settings = await lookups.get_lesson_settings(session, teacher.id)
            availability = await lookups.get_weekly_availability(session, teacher.id)

            if settings is None or not availability or not settings.offered_durations():
                logger.debug(f"Teacher {teacher.id} has no lesson settings or availability; no slots")
                return iter(())

            first_day = local_date(range_start, teacher_tz)
            last_day = local_date(range_end, teacher_tz)
            window_start = local_to_utc(first_day, "00:00", teacher_tz)
            window_end = local_to_utc(last_day + timedelta(days=1), "00:00", teacher_tz)

            blocked = blocked_intervals_from(
                await lookups.get_blocked_intervals(session, teacher.id, window_start, window_end)
            )
            booked = lesson_intervals_from(
                await lookups.get_blocking_lessons(session, teacher.id, window_start, window_end)
            )

            windows = [_Window(a.day_of_week, a.start_time, a.end_time) for a in availability]
            durations = settings.offered_durations()
            prices = {d: settings.price_for(d) for d in durations}
            horizon_days = settings.advance_booking_days

        now = ensure_utc(self.clock())
        logger.debug(
            f"Loaded slot inputs for teacher {teacher_id}: {len(windows)} windows, "
            f"{len(blocked)} blocked, {len(booked)} lessons in {(time.time() - started) * 1000:.2f}ms"
        )

        return self._iter_slots(
            first_day,
            last_day,
            windows,
            durations,
            prices,
            blocked,
            booked,
            teacher_tz,
            normalize_timezone(student_timezone),
            now,
            now + timedelta(days=horizon_days),
        )

    def _iter_slots(
        self,
        first_day: date,
        last_day: date,
        windows: List[_Window],
        durations: List[int],
        prices: Dict[int, int],
        blocked: List[Interval],
        booked: List[Interval],
        teacher_tz: str,
        student_tz: str,
        now: datetime,
        horizon: datetime,
    ) -> Iterator[Slot]:
        for day in iter_days(first_day, last_day):
            dow = day_of_week(day)
            for window in (w for w in windows if w.day_of_week == dow):
                window_end = minutes_since_midnight(window.end_time)
                starts = generate_time_slots(
                    window.start_time, window.end_time, min(durations), step=SLOT_STEP_MINUTES
                )
                for start_str in starts:
                    start_minutes = minutes_since_midnight(start_str)
                    slot_start = local_to_utc(day, start_str, teacher_tz)
                    for duration in durations:
                        if start_minutes + duration > window_end:
                            continue
                        slot_end = slot_start + timedelta(minutes=duration)
                        reason = self._unavailable_reason(slot_start, slot_end, blocked, booked, now, horizon)
                        yield Slot(
                            start=slot_start,
                            end=slot_end,
                            duration=duration,
                            price=prices[duration],
                            available=reason is None,
                            unavailable_reason=reason,
                            display_time=format_in_timezone(slot_start, student_tz, "%a %b %d, %I:%M %p %Z"),
                        )

    @staticmethod
    def _unavailable_reason(
        slot_start: datetime,
        slot_end: datetime,
        blocked: List[Interval],
        booked: List[Interval],
        now: datetime,
        horizon: datetime,
    ) -> Optional[str]:
        if slot_start < now:
            return "past"
        if slot_start > horizon:
            return "beyond_booking_horizon"
        conflict = find_conflict(slot_start, slot_end, blocked, booked)
        if conflict == "blocked":
            return "blocked"
        if conflict == "lesson":
            return "booked"
        return None


# Global generator instance
_generator: Optional[SlotGenerator] = None


def get_slot_generator() -> SlotGenerator:
    """Get or create global SlotGenerator instance."""
    global _generator
    if _generator is None:
        _generator = SlotGenerator()
    return _generator
