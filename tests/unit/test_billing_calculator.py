"""
Unit tests for the recurring slot billing calculator

Tests monthly billing, mid-month refunds, rounding and previews.
"""

import pytest
from datetime import date

from lessonbook.errors import ValidationError
from lessonbook.services.billing_calculator import (
    billing_schedule,
    format_cents,
    monthly_billing,
    monthly_rate_for_slot,
    prorated_monthly_billing,
    rate_per_lesson,
    refund_for_cancellation,
    round_half_up_div,
)


class TestMonthlyBilling:
    """Per-month billing from actual weekday occurrences"""

    def test_five_monday_month(self):
        billing = monthly_billing(26000, 1, "2025-09")

        assert billing.expected_lessons == 5
        assert billing.rate_per_lesson == 5200
        assert billing.total_amount == 26000

    def test_four_occurrence_month_uses_four_lessons(self):
        billing = monthly_billing(26000, 0, "2025-09")

        assert billing.expected_lessons == 4
        assert billing.rate_per_lesson == 6500
        assert billing.total_amount == 26000

    def test_total_is_rate_times_lessons(self):
        billing = monthly_billing(10000, 1, "2025-09")

        assert billing.rate_per_lesson == 2000
        assert billing.total_amount == billing.rate_per_lesson * billing.expected_lessons

    def test_rounding_stays_within_one_cent_per_lesson(self):
        """Sweep rates across a 4- and a 5-occurrence month"""
        for monthly_rate in range(1, 3000, 7):
            for dow, month in ((1, "2025-09"), (0, "2025-09")):
                billing = monthly_billing(monthly_rate, dow, month)
                assert abs(billing.total_amount - monthly_rate) <= billing.expected_lessons

    def test_rounded_up_rate_can_exceed_monthly_rate(self):
        billing = monthly_billing(1003, 0, "2025-09")

        assert billing.rate_per_lesson == 251
        assert billing.total_amount == 1004

    def test_zero_rate(self):
        billing = monthly_billing(0, 1, "2025-09")
        assert billing.total_amount == 0

    @pytest.mark.parametrize("bad", [-1, 10.5, "100", True])
    def test_rejects_bad_amounts(self, bad):
        with pytest.raises(ValidationError):
            monthly_billing(bad, 1, "2025-09")

    def test_rejects_bad_month(self):
        with pytest.raises(ValidationError):
            monthly_billing(26000, 1, "September")


class TestProratedBilling:
    """First month of a slot booked after the month began"""

    def test_bills_occurrences_from_first_lesson(self):
        # Booked Wednesday 2025-09-10, Mondays 15, 22 and 29 remain
        billing = prorated_monthly_billing(15000, 1, "2025-09", date(2025, 9, 15))

        assert billing.expected_lessons == 3
        assert billing.rate_per_lesson == 3000
        assert billing.total_amount == 9000

    def test_first_lesson_on_first_occurrence_is_a_full_month(self):
        assert prorated_monthly_billing(26000, 1, "2025-09", date(2025, 9, 1)) == monthly_billing(26000, 1, "2025-09")

    def test_matches_refund_for_the_same_day(self):
        """Billing from a day and refunding from that day cancel out"""
        billing = prorated_monthly_billing(10002, 1, "2025-09", date(2025, 9, 16))
        refund = refund_for_cancellation(10002, 1, "2025-09", date(2025, 9, 16))

        assert billing.expected_lessons == refund.remaining_lessons
        assert billing.total_amount == refund.refund_amount

    def test_rejects_bad_amounts(self):
        with pytest.raises(ValidationError):
            prorated_monthly_billing(-5, 1, "2025-09", date(2025, 9, 15))


class TestRounding:
    """Round-half-up integer division"""

    def test_half_rounds_up(self):
        assert round_half_up_div(5, 2) == 3
        assert round_half_up_div(10002, 4) == 2501

    def test_below_half_rounds_down(self):
        assert round_half_up_div(10001, 4) == 2500

    def test_rate_for_zero_lessons_is_zero(self):
        assert rate_per_lesson(26000, 0) == 0


class TestRefunds:
    """Refunds for lessons remaining after a mid-month cancellation"""

    def test_cancel_mid_month(self):
        refund = refund_for_cancellation(26000, 1, "2025-09", date(2025, 9, 16))

        assert refund.total_lessons == 5
        assert refund.remaining_lessons == 2
        assert refund.refund_amount == 10400

    def test_cancel_before_month_refunds_everything(self):
        refund = refund_for_cancellation(26000, 1, "2025-09", date(2025, 8, 30))

        assert refund.remaining_lessons == 5
        assert refund.refund_amount == 26000

    def test_cancel_after_last_occurrence_refunds_nothing(self):
        refund = refund_for_cancellation(26000, 1, "2025-09", date(2025, 9, 30))

        assert refund.remaining_lessons == 0
        assert refund.refund_amount == 0

    def test_refund_uses_billing_rate(self):
        """Refund rate matches the billed per-lesson rate, so the two reconcile"""
        billing = monthly_billing(10002, 1, "2025-09")
        refund = refund_for_cancellation(10002, 1, "2025-09", date(2025, 9, 1))

        assert refund.refund_amount == billing.total_amount


class TestPreviews:
    """Canonical monthly rate and billing schedules"""

    def test_monthly_rate_for_slot(self):
        assert monthly_rate_for_slot(5200, 1, "2025-09") == 26000
        assert monthly_rate_for_slot(5200, 0, "2025-09") == 20800

    def test_billing_schedule(self):
        schedule = billing_schedule(26000, 1, "2025-09", "2025-11")

        assert [entry["month"] for entry in schedule] == ["2025-09", "2025-10", "2025-11"]
        assert schedule[0]["expected_lessons"] == 5
        assert schedule[1]["expected_lessons"] == 4
        assert schedule[1]["rate_per_lesson"] == 6500
        assert all(entry["total_amount"] == 26000 for entry in schedule)


class TestFormatCents:

    @pytest.mark.parametrize("amount, expected", [
        (10400, "$104.00"),
        (5, "$0.05"),
        (123456789, "$1,234,567.89"),
        (0, "$0.00"),
    ])
    def test_format(self, amount, expected):
        assert format_cents(amount) == expected
