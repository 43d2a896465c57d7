"""
Recurring Slot Billing Calculator

Month-granular billing arithmetic for weekly recurring slots. A weekday occurs
4 or 5 times in a month, so occurrences are always recomputed for the specific
month being billed or refunded rather than assumed constant.

All amounts are integer cents. Rounding (half up) happens exactly once, when
the per-lesson rate is derived; totals are always rate * count.
"""
from dataclasses import dataclass, asdict
from datetime import date
from typing import Any, Dict, List, Optional

from lessonbook.errors import ValidationError
from lessonbook.services.time_utils import (
    month_bounds,
    months_between,
    occurrence_dates,
    occurrences_in_month,
)


@dataclass(frozen=True)
class MonthlyBilling:
    expected_lessons: int
    rate_per_lesson: int
    total_amount: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RefundCalculation:
    total_lessons: int
    remaining_lessons: int
    refund_amount: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _validate_amount(name: str, value: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer amount in cents, got {value!r}")
    if value < 0:
        raise ValidationError(f"{name} must not be negative, got {value}")
    return value


def round_half_up_div(numerator: int, denominator: int) -> int:
    """
    Integer division rounded half up, for non-negative numerator.

    >>> round_half_up_div(26000, 4)
    6500
    >>> round_half_up_div(5, 2)
    3
    """
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    return (2 * numerator + denominator) // (2 * denominator)


def format_cents(amount: int) -> str:
    """Display form of a cent amount, e.g. 10400 -> "$104.00"."""
    return f"${amount // 100:,}.{amount % 100:02d}"


def rate_per_lesson(monthly_rate: int, lesson_count: int) -> int:
    """Per-lesson share of a monthly rate; 0 when there are no lessons."""
    if lesson_count == 0:
        return 0
    return round_half_up_div(monthly_rate, lesson_count)


def monthly_billing(monthly_rate: int, day_of_week: int, month: str) -> MonthlyBilling:
    """
    Compute the bill for one month of a weekly slot.

    Args:
        monthly_rate: Subscription monthly rate in cents
        day_of_week: Slot weekday (0=Sunday)
        month: Billing month, YYYY-MM

    Returns:
        MonthlyBilling with expected lessons, rounded per-lesson rate and total.
        A weekday with no occurrences bills 0, it is not an error.
    """
    _validate_amount("monthly_rate", monthly_rate)
    expected = occurrences_in_month(day_of_week, month)
    rate = rate_per_lesson(monthly_rate, expected)
    return MonthlyBilling(
        expected_lessons=expected,
        rate_per_lesson=rate,
        total_amount=rate * expected,
    )


def prorated_monthly_billing(
    monthly_rate: int,
    day_of_week: int,
    month: str,
    first_lesson_date: date,
) -> MonthlyBilling:
    """
    Bill for a slot's first month when it starts after the 1st.

    Only occurrences on or after first_lesson_date are billed, at the same
    rounded per-lesson rate as a full month. This is the mirror image of
    refund_for_cancellation, which counts occurrences the same way.
    """
    _validate_amount("monthly_rate", monthly_rate)
    rate = rate_per_lesson(monthly_rate, occurrences_in_month(day_of_week, month))
    expected = len(occurrence_dates(day_of_week, month, on_or_after=first_lesson_date))
    return MonthlyBilling(
        expected_lessons=expected,
        rate_per_lesson=rate,
        total_amount=rate * expected,
    )


def refund_for_cancellation(
    monthly_rate: int,
    day_of_week: int,
    month: str,
    cancel_date: date,
) -> RefundCalculation:
    """
    Refund for the lessons left in a month after a mid-month cancellation.

    Remaining lessons are the slot's weekdays on or after cancel_date within
    the month. The refund uses the same rounded per-lesson rate as
    monthly_billing so billing and refunds reconcile.

    Args:
        monthly_rate: Subscription monthly rate in cents
        day_of_week: Slot weekday (0=Sunday)
        month: Month being refunded, YYYY-MM
        cancel_date: Local calendar date the cancellation takes effect

    Returns:
        RefundCalculation with total, remaining lessons and refund amount
    """
    _validate_amount("monthly_rate", monthly_rate)
    total = occurrences_in_month(day_of_week, month)
    remaining = len(occurrence_dates(day_of_week, month, on_or_after=cancel_date))
    rate = rate_per_lesson(monthly_rate, total)
    return RefundCalculation(
        total_lessons=total,
        remaining_lessons=remaining,
        refund_amount=rate * remaining,
    )


def monthly_rate_for_slot(lesson_rate: int, day_of_week: int, reference_month: str) -> int:
    """Canonical monthly rate: per-lesson price times occurrences in the reference month."""
    _validate_amount("lesson_rate", lesson_rate)
    return lesson_rate * occurrences_in_month(day_of_week, reference_month)


def billing_schedule(
    monthly_rate: int,
    day_of_week: int,
    start_month: str,
    end_month: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Per-month billing preview from start_month to end_month inclusive."""
    schedule = []
    for month in months_between(start_month, end_month):
        billing = monthly_billing(monthly_rate, day_of_week, month)
        entry = {"month": month}
        entry.update(billing.to_dict())
        schedule.append(entry)
    return schedule


def is_within_month(day: date, month: str) -> bool:
    first, last = month_bounds(month)
    return first <= day <= last
