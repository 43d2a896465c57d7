"""
Monthly Invoice Generator

Background job run daily. For each ACTIVE subscription whose slot is still
ACTIVE and that has no BillingRecord for the month yet, it computes the
month's bill from the slot weekday's actual occurrence count and stores a
BillingRecord. Re-running skips months already invoiced, so only the first
run of a month (or the first run after a mid-month booking) creates records.

A slot's first month is prorated: only occurrences from the first lesson on
are billed, counted the same way as cancellation refunds.

The previous month's records are reconciled at the same time: actual_lessons
is set from the slot's COMPLETED lessons.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy import exc as sa_exc

from lessonbook.config import INVOICE_DUE_DAYS
from lessonbook.database import AsyncSessionLocal
from lessonbook.models import BillingRecord, Lesson, RecurringSlot, SlotSubscription, Student
from lessonbook.models.enums import BillingStatus, LessonStatus, SlotStatus, SubscriptionStatus
from lessonbook.services import lookups
from lessonbook.services.billing_calculator import (
    MonthlyBilling,
    format_cents,
    monthly_billing,
    prorated_monthly_billing,
)
from lessonbook.services.email import EmailSender, get_email_sender, send_email_with_retry
from lessonbook.services.job_results import JobResult
from lessonbook.services.retry import CRITICAL_RETRY_POLICY, DATABASE_RETRY_POLICY, with_retry
from lessonbook.services.time_utils import (
    ensure_utc,
    first_occurrence_after,
    local_date,
    month_bounds,
    month_of,
    normalize_timezone,
    parse_month,
    shift_month,
    utcnow,
)

logger = logging.getLogger(__name__)

JOB_NAME = "generate-monthly-invoices"
INVOICE_PREFIX = "INV"


def first_lesson_date(subscription: SlotSubscription, slot: RecurringSlot, tz_name: str):
    """Local date of the slot's first billable occurrence."""
    starts, _ = month_bounds(subscription.start_month)
    return first_occurrence_after(
        ensure_utc(slot.booked_at), slot.day_of_week, slot.start_time, tz_name, not_before=starts
    )


def subscription_billing(
    subscription: SlotSubscription, slot: RecurringSlot, month: str, tz_name: str
) -> MonthlyBilling:
    """Bill for one month, prorated when it is the month of the first lesson."""
    first_lesson = first_lesson_date(subscription, slot, tz_name)
    if month_of(first_lesson) == month:
        return prorated_monthly_billing(subscription.monthly_rate, slot.day_of_week, month, first_lesson)
    return monthly_billing(subscription.monthly_rate, slot.day_of_week, month)


def format_invoice_number(year: int, sequence: int) -> str:
    return f"{INVOICE_PREFIX}-{year}-{sequence:03d}"


def next_invoice_sequence(existing_numbers: List[str]) -> int:
    """Sequence after the highest of a teacher's numbers for one year, or 1."""
    sequences = [int(number.rsplit("-", 1)[1]) for number in existing_numbers if number]
    return max(sequences, default=0) + 1


class InvoiceGenerator:
    """Creates monthly BillingRecords for recurring slot subscriptions"""

    def __init__(
        self,
        session_factory=None,
        clock: Callable[[], datetime] = utcnow,
        email_sender: Optional[EmailSender] = None,
        email_sleep=None,
        due_days: int = INVOICE_DUE_DAYS,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.clock = clock
        self.email_sender = email_sender
        self.email_sleep = email_sleep
        self.due_days = due_days

    def _sender(self) -> EmailSender:
        return self.email_sender or get_email_sender()

    async def generate_monthly_invoices(self, month: Optional[str] = None) -> JobResult:
        """
        Invoice every billable subscription for the month.

        Args:
            month: Billing month YYYY-MM; defaults to the clock's current month

        Returns:
            JobResult with invoices_created, invoices_skipped, records_reconciled
            and one error entry per failed subscription
        """
        start_time = time.time()
        now = ensure_utc(self.clock())
        month = month or month_of(now.date())
        parse_month(month)

        result = JobResult(JOB_NAME)
        for counter in ("invoices_created", "invoices_skipped", "records_reconciled"):
            result.increment(counter, 0)

        logger.info(f"Starting monthly invoice generation for {month}")

        try:
            candidates = await with_retry(
                lambda: self._billable_subscriptions(month),
                DATABASE_RETRY_POLICY,
                operation_name="load_billable_subscriptions",
            )
        except Exception as e:
            logger.error(f"Fatal error loading subscriptions for {month}: {e}", exc_info=True)
            result.add_error("job", JOB_NAME, "load_subscriptions", e)
            return result

        for subscription, slot in candidates:
            try:
                record = await self._invoice_subscription(subscription, slot, month, now)
            except Exception as e:
                logger.error(
                    f"Failed to create invoice for subscription {subscription.id} "
                    f"(teacher {slot.teacher_id}, month {month}): {e}",
                    exc_info=True,
                )
                result.add_error("subscription", subscription.id, "create_invoice", e)
                continue

            if record is None:
                result.increment("invoices_skipped")
                continue

            result.increment("invoices_created")
            if not await self._send_invoice_email(record):
                result.add_error("subscription", subscription.id, "send_invoice_email", "Invoice email could not be delivered")

        await self._reconcile_month(shift_month(month, -1), result)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Monthly invoice generation for {month} complete: {result.count('invoices_created')} created, "
            f"{result.count('invoices_skipped')} skipped, {len(result.errors)} errors, {duration_ms:.2f}ms"
        )
        return result

    async def _billable_subscriptions(self, month: str) -> List[Tuple[SlotSubscription, RecurringSlot]]:
        async with self.session_factory() as session:
            rows = await session.execute(
                select(SlotSubscription, RecurringSlot)
                .join(RecurringSlot, SlotSubscription.slot_id == RecurringSlot.id)
                .where(
                    SlotSubscription.status == SubscriptionStatus.ACTIVE,
                    RecurringSlot.status == SlotStatus.ACTIVE,
                )
            )
            return [(sub, slot) for sub, slot in rows.all() if sub.covers_month(month)]

    async def _invoice_subscription(
        self,
        subscription: SlotSubscription,
        slot: RecurringSlot,
        month: str,
        now: datetime,
    ) -> Optional[BillingRecord]:
        """Create the month's record, or return None if it already exists."""

        async def _create():
            async with self.session_factory() as session:
                existing = await session.execute(
                    select(BillingRecord.id).where(
                        BillingRecord.subscription_id == subscription.id,
                        BillingRecord.month == month,
                    )
                )
                if existing.first() is not None:
                    return None

                teacher = await lookups.get_teacher(session, slot.teacher_id)
                tz = normalize_timezone(teacher.timezone)
                billing = subscription_billing(subscription, slot, month, tz)

                billed_on = local_date(now, tz)
                prefix = f"{INVOICE_PREFIX}-{billed_on.year}-"
                numbers = await session.execute(
                    select(BillingRecord.invoice_number).where(
                        BillingRecord.teacher_id == slot.teacher_id,
                        BillingRecord.invoice_number.like(f"{prefix}%"),
                    )
                )
                sequence = next_invoice_sequence([row[0] for row in numbers.all()])

                record = BillingRecord(
                    subscription_id=subscription.id,
                    teacher_id=slot.teacher_id,
                    student_id=subscription.student_id,
                    month=month,
                    invoice_number=format_invoice_number(billed_on.year, sequence),
                    due_date=billed_on + timedelta(days=self.due_days),
                    expected_lessons=billing.expected_lessons,
                    actual_lessons=0,
                    rate_per_lesson=billing.rate_per_lesson,
                    total_amount=billing.total_amount,
                    status=BillingStatus.BILLED,
                    billed_at=now,
                )
                session.add(record)

                sub = await session.get(SlotSubscription, subscription.id)
                sub.last_billed_month = month
                await session.commit()
                return record

        try:
            record = await with_retry(_create, CRITICAL_RETRY_POLICY, operation_name=f"create_invoice[{subscription.id}]")
        except sa_exc.IntegrityError:
            # Another run invoiced this subscription, or took the invoice number,
            # between the check and the insert; the next run picks it up
            logger.info(f"Subscription {subscription.id} already invoiced for {month} or invoice number taken")
            return None

        if record is not None:
            logger.info(
                f"Invoiced subscription {subscription.id} for {month} as {record.invoice_number}: "
                f"{record.expected_lessons} lessons x {record.rate_per_lesson} = {record.total_amount}"
            )
        return record

    async def _send_invoice_email(self, record: BillingRecord) -> bool:
        async with self.session_factory() as session:
            student = await session.get(Student, record.student_id)
        if student is None:
            logger.warning(f"No student {record.student_id} for invoice {record.id}; email not sent")
            return False

        due = f"{record.due_date:%B} {record.due_date.day}, {record.due_date.year}"
        body = (
            f"<p>Hi {student.name},</p>"
            f"<p>Invoice #: {record.invoice_number}<br>Due Date: {due}</p>"
            f"<p>Your lesson invoice for {record.month}: {record.expected_lessons} lessons at "
            f"{format_cents(record.rate_per_lesson)} each, total {format_cents(record.total_amount)}.</p>"
            f"<p>Please include the invoice number {record.invoice_number} in your payment reference.</p>"
        )
        kwargs = {"sleep": self.email_sleep} if self.email_sleep is not None else {}
        return await send_email_with_retry(
            self._sender(),
            student.email,
            f"Invoice {record.invoice_number} - {record.month} - Due {due}",
            body,
            **kwargs,
        )

    async def _reconcile_month(self, month: str, result: JobResult) -> None:
        """Set actual_lessons on a month's records from COMPLETED lessons."""
        try:
            records = await with_retry(
                lambda: self._records_for_month(month),
                DATABASE_RETRY_POLICY,
                operation_name="load_records_for_reconcile",
            )
        except Exception as e:
            logger.error(f"Failed to load billing records for reconciliation of {month}: {e}", exc_info=True)
            result.add_error("job", JOB_NAME, "reconcile_load", e)
            return

        for record_id, subscription_id in records:
            try:
                await with_retry(
                    lambda: self._reconcile_record(record_id, month),
                    DATABASE_RETRY_POLICY,
                    operation_name=f"reconcile[{record_id}]",
                )
                result.increment("records_reconciled")
            except Exception as e:
                logger.error(f"Failed to reconcile billing record {record_id} for {month}: {e}", exc_info=True)
                result.add_error("subscription", subscription_id, "reconcile_actual_lessons", e)

    async def _records_for_month(self, month: str):
        async with self.session_factory() as session:
            rows = await session.execute(
                select(BillingRecord.id, BillingRecord.subscription_id).where(BillingRecord.month == month)
            )
            return list(rows.all())

    async def _reconcile_record(self, record_id, month: str) -> int:
        first, last = month_bounds(month)
        window_start = datetime.combine(first - timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
        window_end = datetime.combine(last + timedelta(days=2), datetime.min.time(), tzinfo=timezone.utc)
        async with self.session_factory() as session:
            record = await session.get(BillingRecord, record_id)
            subscription = await session.get(SlotSubscription, record.subscription_id)

            # Widen by a day on each side, then filter on the lesson's local date
            lessons = await session.execute(
                select(Lesson.start_time, Lesson.timezone).where(
                    Lesson.recurring_slot_id == subscription.slot_id,
                    Lesson.status == LessonStatus.COMPLETED,
                    Lesson.start_time >= window_start,
                    Lesson.start_time < window_end,
                )
            )
            actual = sum(
                1 for start, tz in lessons.all()
                if first <= local_date(start, tz) <= last
            )
            record.actual_lessons = actual
            await session.commit()
            return actual


# Global generator instance
_generator: Optional[InvoiceGenerator] = None


def get_invoice_generator() -> InvoiceGenerator:
    """Get or create global InvoiceGenerator instance."""
    global _generator
    if _generator is None:
        _generator = InvoiceGenerator()
    return _generator
