"""
Booking Service

Request-path writes: one-off lessons, recurring weekly slots and their
cancellation. Slot availability shown to students is advisory; every write
here re-checks conflicts against current state in the same session that
inserts the lesson, and the partial unique index on (teacher_id, start_time)
turns a lost race into a ConflictError.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy import exc as sa_exc

from lessonbook.database import AsyncSessionLocal
from lessonbook.errors import ConflictError, NotFoundError, ValidationError
from lessonbook.models import (
    BillingRecord,
    Lesson,
    RecurringSlot,
    SlotSubscription,
    Student,
    WeeklyAvailability,
)
from lessonbook.models.enums import BillingStatus, LessonStatus, SlotStatus, SubscriptionStatus
from lessonbook.services import lookups
from lessonbook.services.billing_calculator import (
    RefundCalculation,
    format_cents,
    monthly_rate_for_slot,
    refund_for_cancellation,
)
from lessonbook.services.conflict_detector import (
    blocked_intervals_from,
    find_conflict,
    lesson_intervals_from,
)
from lessonbook.services.email import EmailSender, get_email_sender, send_email_with_retry
from lessonbook.services.lesson_cleanup import can_cancel_lesson
from lessonbook.services.lesson_materializer import LessonMaterializer
from lessonbook.services.retry import CRITICAL_RETRY_POLICY, DATABASE_RETRY_POLICY, with_retry
from lessonbook.services.time_utils import (
    day_name,
    day_of_week,
    ensure_utc,
    first_occurrence_after,
    format_slot_time,
    local_date,
    local_to_utc,
    minutes_since_midnight,
    month_bounds,
    month_of,
    normalize_time_of_day,
    normalize_timezone,
    parse_month,
    to_local,
    utcnow,
    validate_day_of_week,
)

logger = logging.getLogger(__name__)

REFUNDABLE_BILLING_STATUSES = (BillingStatus.BILLED, BillingStatus.PAID)


def fits_availability(windows: List[WeeklyAvailability], local_start: datetime, duration: int) -> bool:
    """True if [local_start, +duration) lies inside one weekly window of that weekday."""
    dow = day_of_week(local_start.date())
    start = local_start.hour * 60 + local_start.minute
    end = start + duration
    return any(
        w.day_of_week == dow
        and minutes_since_midnight(w.start_time) <= start
        and end <= minutes_since_midnight(w.end_time)
        for w in windows
    )


@dataclass(frozen=True)
class SlotCancellation:
    """Outcome of cancelling a recurring slot"""
    slot_id: str
    cancel_date: date
    lessons_cancelled: int
    refund: Optional[RefundCalculation]
    email_sent: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slot_id": self.slot_id,
            "cancel_date": self.cancel_date.isoformat(),
            "lessons_cancelled": self.lessons_cancelled,
            "refund": self.refund.to_dict() if self.refund else None,
            "email_sent": self.email_sent,
        }


class BookingService:
    """Books and cancels lessons and recurring slots"""

    def __init__(
        self,
        session_factory=None,
        clock: Callable[[], datetime] = utcnow,
        email_sender: Optional[EmailSender] = None,
        materializer: Optional[LessonMaterializer] = None,
        email_sleep=None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.clock = clock
        self.email_sender = email_sender
        self.materializer = materializer or LessonMaterializer(self.session_factory, clock)
        self.email_sleep = email_sleep

    def _sender(self) -> EmailSender:
        return self.email_sender or get_email_sender()

    async def _check_bookable(
        self, session, teacher, student_id, start: datetime, duration: int, now: datetime, check_horizon=True
    ):
        """
        Shared request validation for a single lesson start.

        check_horizon=False skips the advance booking limit, for recurring
        slots that start in a later month.

        Returns:
            The teacher's TeacherLessonSettings
        """
        student = await session.get(Student, lookups.as_uuid(student_id, "student id"))
        if student is None:
            raise NotFoundError(f"Student {student_id} not found", details={"student_id": str(student_id)})

        settings = await lookups.get_lesson_settings(session, teacher.id)
        if settings is None:
            raise ValidationError("Teacher has not configured lesson settings")
        if duration not in settings.offered_durations():
            raise ValidationError(
                f"{duration}-minute lessons are not offered by this teacher",
                details={"offered_durations": settings.offered_durations()},
            )
        if start <= now:
            raise ValidationError("Cannot book lessons in the past")
        if check_horizon and start > now + timedelta(days=settings.advance_booking_days):
            raise ValidationError(
                f"Lessons can be booked at most {settings.advance_booking_days} days in advance"
            )

        tz = normalize_timezone(teacher.timezone)
        windows = await lookups.get_weekly_availability(session, teacher.id)
        if not fits_availability(windows, to_local(start, tz), duration):
            raise ValidationError("Requested time is outside the teacher's availability")
        return settings

    @staticmethod
    async def _check_conflicts(session, teacher_id, start: datetime, end: datetime) -> None:
        blocked = blocked_intervals_from(await lookups.get_blocked_intervals(session, teacher_id, start, end))
        booked = lesson_intervals_from(await lookups.get_blocking_lessons(session, teacher_id, start, end))
        conflict = find_conflict(start, end, blocked, booked)
        if conflict == "blocked":
            raise ConflictError("Teacher is not available at this time", details={"start_time": start.isoformat()})
        if conflict == "lesson":
            raise ConflictError("Time slot is already booked", details={"start_time": start.isoformat()})

    async def book_lesson(
        self,
        teacher_id,
        student_id,
        start_time: datetime,
        duration_minutes: int,
        timezone: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Lesson:
        """
        Book a single lesson.

        Raises:
            ValidationError: bad duration, past start, beyond the booking
                horizon or outside availability
            NotFoundError: unknown teacher or student
            ConflictError: overlaps a blocked interval or another lesson
        """
        start = ensure_utc(start_time)
        end = start + timedelta(minutes=duration_minutes)
        now = ensure_utc(self.clock())

        async def _book():
            async with self.session_factory() as session:
                teacher = await lookups.get_teacher(session, teacher_id)
                settings = await self._check_bookable(session, teacher, student_id, start, duration_minutes, now)
                await self._check_conflicts(session, teacher.id, start, end)

                lesson = Lesson(
                    teacher_id=teacher.id,
                    student_id=lookups.as_uuid(student_id, "student id"),
                    start_time=start,
                    duration_minutes=duration_minutes,
                    status=LessonStatus.SCHEDULED,
                    price=settings.price_for(duration_minutes),
                    timezone=normalize_timezone(timezone or teacher.timezone),
                    notes=notes,
                )
                session.add(lesson)
                await session.commit()
                return lesson

        try:
            lesson = await with_retry(_book, DATABASE_RETRY_POLICY, operation_name="book_lesson")
        except sa_exc.IntegrityError as e:
            logger.warning(f"Concurrent booking for teacher {teacher_id} at {start.isoformat()}: {e}")
            raise ConflictError("Time slot is already booked", details={"start_time": start.isoformat()})

        logger.info(f"Booked lesson {lesson.id} for teacher {teacher_id} at {start.isoformat()}")
        return lesson

    async def book_recurring_slot(
        self,
        teacher_id,
        student_id,
        day_of_week_number: int,
        start_time: str,
        duration_minutes: int,
        start_month: Optional[str] = None,
        end_month: Optional[str] = None,
    ) -> RecurringSlot:
        """
        Book a standing weekly slot and its monthly subscription.

        The first upcoming occurrence (in start_month or later, when given) is
        validated like a single booking apart from the advance booking limit.
        The monthly rate is the per-lesson price times the occurrences in the
        first occurrence's month. Lessons are materialized right away.

        Args:
            start_month: First subscribed month, YYYY-MM; not before the
                current month. Defaults to the first occurrence's month
            end_month: Last subscribed month, YYYY-MM; after start_month.
                Open-ended when omitted

        Raises:
            ValidationError, NotFoundError, ConflictError as for book_lesson;
            ConflictError also if an ACTIVE slot already holds this weekly time
        """
        validate_day_of_week(day_of_week_number)
        start_time = normalize_time_of_day(start_time)
        if start_month is not None:
            parse_month(start_month)
        if end_month is not None:
            parse_month(end_month)
        now = ensure_utc(self.clock())

        async def _book():
            async with self.session_factory() as session:
                teacher = await lookups.get_teacher(session, teacher_id)
                tz = normalize_timezone(teacher.timezone)

                current_month = month_of(local_date(now, tz))
                if start_month is not None and start_month < current_month:
                    raise ValidationError(
                        "Start month cannot be in the past",
                        details={"start_month": start_month, "current_month": current_month},
                    )

                not_before = month_bounds(start_month)[0] if start_month else None
                first_day = first_occurrence_after(now, day_of_week_number, start_time, tz, not_before=not_before)
                first_start = local_to_utc(first_day, start_time, tz)
                reference_month = month_of(first_day)

                if end_month is not None and end_month <= reference_month:
                    raise ValidationError(
                        "End month must be after start month",
                        details={"start_month": reference_month, "end_month": end_month},
                    )

                settings = await self._check_bookable(
                    session, teacher, student_id, first_start, duration_minutes, now, check_horizon=False
                )

                duplicate = await session.execute(
                    select(RecurringSlot.id).where(
                        RecurringSlot.teacher_id == teacher.id,
                        RecurringSlot.day_of_week == day_of_week_number,
                        RecurringSlot.start_time == start_time,
                        RecurringSlot.status == SlotStatus.ACTIVE,
                    )
                )
                if duplicate.first() is not None:
                    raise ConflictError(
                        f"{day_name(day_of_week_number)} {format_slot_time(start_time, duration_minutes)} "
                        f"is already a recurring slot"
                    )
                await self._check_conflicts(
                    session, teacher.id, first_start, first_start + timedelta(minutes=duration_minutes)
                )

                rate = settings.price_for(duration_minutes)
                monthly_rate = monthly_rate_for_slot(rate, day_of_week_number, reference_month)
                student_uuid = lookups.as_uuid(student_id, "student id")

                slot = RecurringSlot(
                    teacher_id=teacher.id,
                    student_id=student_uuid,
                    day_of_week=day_of_week_number,
                    start_time=start_time,
                    duration_minutes=duration_minutes,
                    rate_per_lesson=rate,
                    monthly_rate=monthly_rate,
                    status=SlotStatus.ACTIVE,
                    booked_at=now,
                )
                session.add(slot)
                await session.flush()
                session.add(SlotSubscription(
                    slot_id=slot.id,
                    student_id=student_uuid,
                    start_month=reference_month,
                    end_month=end_month,
                    monthly_rate=monthly_rate,
                    status=SubscriptionStatus.ACTIVE,
                ))
                await session.commit()
                return slot

        slot = await with_retry(_book, CRITICAL_RETRY_POLICY, operation_name="book_recurring_slot")
        logger.info(
            f"Booked recurring slot {slot.id}: teacher {slot.teacher_id}, {day_name(slot.day_of_week)} "
            f"{slot.start_time}, monthly rate {slot.monthly_rate}"
        )

        try:
            created, skipped = await self.materializer.generate_for_teacher(slot.teacher_id)
            logger.info(f"Materialized {created} lessons ({skipped} skipped) for new slot {slot.id}")
        except Exception as e:
            # The daily materialization job picks these up on its next run
            logger.error(f"Lesson generation after booking slot {slot.id} failed: {e}", exc_info=True)

        return slot

    async def cancel_lesson(self, lesson_id) -> Lesson:
        """Cancel a SCHEDULED lesson that starts more than the buffer from now."""
        now = ensure_utc(self.clock())

        async def _cancel():
            async with self.session_factory() as session:
                lesson = await session.get(Lesson, lookups.as_uuid(lesson_id, "lesson id"))
                if lesson is None:
                    raise NotFoundError(f"Lesson {lesson_id} not found", details={"lesson_id": str(lesson_id)})

                allowed, reason = can_cancel_lesson(lesson.start_time, lesson.status, now)
                if not allowed:
                    raise ValidationError(reason, details={"lesson_id": str(lesson_id)})

                lesson.status = LessonStatus.CANCELLED
                await session.commit()
                return lesson

        lesson = await with_retry(_cancel, DATABASE_RETRY_POLICY, operation_name="cancel_lesson")
        logger.info(f"Cancelled lesson {lesson.id}")
        return lesson

    async def cancel_recurring_slot(self, slot_id, cancel_date: Optional[date] = None) -> SlotCancellation:
        """
        Soft-cancel a recurring slot, its subscriptions and its future lessons.

        If the cancellation month was already billed the student is refunded
        for the occurrences on or after cancel_date. A cancellation email is
        sent but delivery problems never fail the cancellation.

        Args:
            slot_id: RecurringSlot UUID
            cancel_date: Teacher-local date the cancellation takes effect,
                defaults to today in the teacher's timezone

        Raises:
            ValidationError: cancel_date before today, or slot already cancelled
            NotFoundError: unknown slot
        """
        now = ensure_utc(self.clock())

        async def _cancel():
            async with self.session_factory() as session:
                slot = await session.get(RecurringSlot, lookups.as_uuid(slot_id, "slot id"))
                if slot is None:
                    raise NotFoundError(f"Recurring slot {slot_id} not found", details={"slot_id": str(slot_id)})
                if slot.status == SlotStatus.CANCELLED:
                    raise ValidationError("Recurring slot is already cancelled", details={"slot_id": str(slot_id)})

                teacher = await lookups.get_teacher(session, slot.teacher_id)
                tz = normalize_timezone(teacher.timezone)
                today = local_date(now, tz)
                if cancel_date is not None and cancel_date < today:
                    raise ValidationError(
                        "Cancel date cannot be in the past",
                        details={"cancel_date": cancel_date.isoformat(), "today": today.isoformat()},
                    )
                effective = cancel_date or today
                month = month_of(effective)
                cutoff = max(now, local_to_utc(effective, "00:00", tz))

                # An occurrence that has already started today is not refunded
                started_today = (
                    day_of_week(today) == slot.day_of_week
                    and local_to_utc(today, slot.start_time, tz) <= now
                )
                refund_from = today + timedelta(days=1) if effective == today and started_today else effective

                subs_result = await session.execute(
                    select(SlotSubscription).where(
                        SlotSubscription.slot_id == slot.id,
                        SlotSubscription.status.in_((SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED)),
                    )
                )
                refund = None
                for subscription in subs_result.scalars().all():
                    billed = await session.execute(
                        select(BillingRecord.id).where(
                            BillingRecord.subscription_id == subscription.id,
                            BillingRecord.month == month,
                            BillingRecord.status.in_(REFUNDABLE_BILLING_STATUSES),
                        )
                    )
                    if billed.first() is not None:
                        refund = refund_for_cancellation(
                            subscription.monthly_rate, slot.day_of_week, month, refund_from
                        )
                    subscription.status = SubscriptionStatus.CANCELLED
                    subscription.end_month = month

                lessons_result = await session.execute(
                    update(Lesson)
                    .where(
                        Lesson.recurring_slot_id == slot.id,
                        Lesson.status == LessonStatus.SCHEDULED,
                        Lesson.start_time >= cutoff,
                    )
                    .values(status=LessonStatus.CANCELLED)
                )

                slot.status = SlotStatus.CANCELLED
                slot.cancelled_at = now
                student = await session.get(Student, slot.student_id)
                await session.commit()
                return slot, effective, lessons_result.rowcount or 0, refund, student

        slot, effective, cancelled_count, refund, student = await with_retry(
            _cancel, CRITICAL_RETRY_POLICY, operation_name="cancel_recurring_slot"
        )
        logger.info(
            f"Cancelled recurring slot {slot.id} effective {effective.isoformat()}: "
            f"{cancelled_count} lessons cancelled, refund {refund.refund_amount if refund else 0}"
        )

        email_sent = False
        if student is not None:
            email_sent = await self._send_cancellation_email(student, slot, effective, refund)

        return SlotCancellation(
            slot_id=str(slot.id),
            cancel_date=effective,
            lessons_cancelled=cancelled_count,
            refund=refund,
            email_sent=email_sent,
        )

    async def _send_cancellation_email(
        self,
        student: Student,
        slot: RecurringSlot,
        effective: date,
        refund: Optional[RefundCalculation],
    ) -> bool:
        body = (
            f"<p>Hi {student.name},</p>"
            f"<p>Your weekly lesson on {day_name(slot.day_of_week)} at "
            f"{format_slot_time(slot.start_time, slot.duration_minutes)} is cancelled "
            f"from {effective.isoformat()}.</p>"
        )
        if refund is not None and refund.refund_amount > 0:
            body += (
                f"<p>{refund.remaining_lessons} remaining lesson(s) this month will be refunded: "
                f"{format_cents(refund.refund_amount)}.</p>"
            )
        kwargs = {"sleep": self.email_sleep} if self.email_sleep is not None else {}
        return await send_email_with_retry(
            self._sender(), student.email, "Recurring Lesson Cancelled", body, **kwargs
        )


# Global service instance
_service: Optional[BookingService] = None


def get_booking_service() -> BookingService:
    """Get or create global BookingService instance."""
    global _service
    if _service is None:
        _service = BookingService()
    return _service
