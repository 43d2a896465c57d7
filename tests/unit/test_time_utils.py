"""
Unit tests for time arithmetic utilities

Tests weekday occurrence counting, month parsing, time-of-day slots and
timezone conversion.
"""

import pytest
import calendar
from datetime import date, datetime, timezone

from lessonbook.errors import ValidationError
from lessonbook.services.time_utils import (
    day_of_week,
    ensure_utc,
    first_occurrence_after,
    format_in_timezone,
    format_slot_time,
    generate_time_slots,
    local_date,
    local_to_utc,
    month_bounds,
    months_between,
    normalize_time_of_day,
    normalize_timezone,
    occurrence_dates,
    occurrences_in_month,
    parse_month,
    parse_time_of_day,
    shift_month,
)


class TestOccurrences:
    """Weekday occurrence counting within months"""

    def test_five_mondays_in_september_2025(self):
        assert occurrences_in_month(1, "2025-09") == 5
        assert occurrence_dates(1, "2025-09") == [
            date(2025, 9, 1), date(2025, 9, 8), date(2025, 9, 15), date(2025, 9, 22), date(2025, 9, 29)
        ]

    def test_four_sundays_in_september_2025(self):
        assert occurrences_in_month(0, "2025-09") == 4

    def test_weekdays_sum_to_days_in_month(self):
        """Every month from 2024 through 2026, including leap February"""
        for year in (2024, 2025, 2026):
            for month_num in range(1, 13):
                month = f"{year}-{month_num:02d}"
                counts = [occurrences_in_month(dow, month) for dow in range(7)]
                assert all(c in (4, 5) for c in counts), month
                assert sum(counts) == calendar.monthrange(year, month_num)[1], month

    def test_leap_february_has_one_five_count_weekday(self):
        counts = [occurrences_in_month(dow, "2024-02") for dow in range(7)]
        assert counts.count(5) == 1

    def test_on_or_after_filters_dates(self):
        dates = occurrence_dates(1, "2025-09", on_or_after=date(2025, 9, 16))
        assert dates == [date(2025, 9, 22), date(2025, 9, 29)]

    def test_on_or_after_same_day_included(self):
        dates = occurrence_dates(1, "2025-09", on_or_after=date(2025, 9, 22))
        assert dates[0] == date(2025, 9, 22)

    def test_invalid_day_of_week(self):
        with pytest.raises(ValidationError):
            occurrences_in_month(7, "2025-09")

    def test_sunday_is_zero(self):
        assert day_of_week(date(2025, 9, 7)) == 0
        assert day_of_week(date(2025, 9, 8)) == 1
        assert day_of_week(date(2025, 9, 13)) == 6


class TestMonths:
    """YYYY-MM parsing and ranges"""

    def test_parse_month(self):
        assert parse_month("2025-09") == (2025, 9)

    @pytest.mark.parametrize("bad", ["2025-13", "2025-9", "25-09", "", "2025/09", None])
    def test_parse_month_rejects_malformed(self, bad):
        with pytest.raises(ValidationError, match="Invalid month"):
            parse_month(bad)

    def test_shift_month_across_years(self):
        assert shift_month("2025-12", 1) == "2026-01"
        assert shift_month("2025-01", -1) == "2024-12"

    def test_months_between_inclusive(self):
        assert months_between("2025-11", "2026-02") == ["2025-11", "2025-12", "2026-01", "2026-02"]

    def test_months_between_defaults_to_twelve_ahead(self):
        months = months_between("2025-09")
        assert months[0] == "2025-09"
        assert months[-1] == "2026-09"
        assert len(months) == 13

    def test_month_bounds(self):
        assert month_bounds("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))


class TestTimeOfDay:
    """HH:MM parsing and slot enumeration"""

    def test_generate_time_slots_fits_duration(self):
        assert generate_time_slots("09:00", "10:30", 30) == ["09:00", "09:30", "10:00"]
        assert generate_time_slots("09:00", "10:30", 60) == ["09:00", "09:30"]

    def test_window_shorter_than_duration_is_empty(self):
        assert generate_time_slots("09:00", "09:20", 30) == []

    @pytest.mark.parametrize("bad", ["24:00", "9:60", "nine", ""])
    def test_parse_time_rejects_malformed(self, bad):
        with pytest.raises(ValidationError, match="Invalid time format"):
            parse_time_of_day(bad)

    def test_format_slot_time(self):
        assert format_slot_time("09:00", 30) == "9:00 AM - 9:30 AM"
        assert format_slot_time("11:30", 60) == "11:30 AM - 12:30 PM"

    @pytest.mark.parametrize("value, expected", [
        ("9:00", "09:00"), ("09:00", "09:00"), ("0:05", "00:05"), ("23:59", "23:59"),
    ])
    def test_normalize_time_of_day_pads_hours(self, value, expected):
        assert normalize_time_of_day(value) == expected


class TestTimezones:
    """Local/UTC conversion and timezone normalization"""

    def test_local_to_utc_during_daylight_time(self):
        assert local_to_utc(date(2025, 9, 8), "10:00", "America/Chicago") == datetime(
            2025, 9, 8, 15, 0, tzinfo=timezone.utc
        )

    def test_local_to_utc_during_standard_time(self):
        assert local_to_utc(date(2025, 12, 8), "10:00", "America/Chicago") == datetime(
            2025, 12, 8, 16, 0, tzinfo=timezone.utc
        )

    def test_local_date_crosses_midnight(self):
        late_utc = datetime(2025, 9, 9, 3, 0, tzinfo=timezone.utc)
        assert local_date(late_utc, "America/Chicago") == date(2025, 9, 8)

    def test_ensure_utc_tags_naive_values(self):
        naive = datetime(2025, 9, 1, 12, 0)
        assert ensure_utc(naive).tzinfo == timezone.utc

    def test_normalize_timezone_falls_back(self):
        assert normalize_timezone("Not/AZone") == "America/Chicago"
        assert normalize_timezone("") == "America/Chicago"
        assert normalize_timezone(None, default="UTC") == "UTC"
        assert normalize_timezone(" Europe/London ") == "Europe/London"

    def test_format_in_timezone(self):
        instant = datetime(2025, 9, 8, 15, 0, tzinfo=timezone.utc)
        assert format_in_timezone(instant, "America/New_York", "%H:%M") == "11:00"


class TestFirstOccurrence:
    """First weekly occurrence after an instant, Monday 15:00 in Chicago"""

    def test_later_in_the_week(self):
        wednesday = datetime(2025, 9, 10, 12, 0, tzinfo=timezone.utc)
        assert first_occurrence_after(wednesday, 1, "15:00", "America/Chicago") == date(2025, 9, 15)

    def test_same_day_before_start(self):
        monday_morning = datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc)
        assert first_occurrence_after(monday_morning, 1, "15:00", "America/Chicago") == date(2025, 9, 1)

    def test_same_day_after_start_moves_a_week(self):
        monday_evening = datetime(2025, 9, 1, 21, 0, tzinfo=timezone.utc)
        assert first_occurrence_after(monday_evening, 1, "15:00", "America/Chicago") == date(2025, 9, 8)

    def test_not_before_a_later_month(self):
        monday_morning = datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc)
        first = first_occurrence_after(monday_morning, 1, "15:00", "America/Chicago", not_before=date(2025, 10, 1))
        assert first == date(2025, 10, 6)

    def test_naive_instant_is_utc(self):
        assert first_occurrence_after(datetime(2025, 9, 10, 12, 0), 1, "15:00", "America/Chicago") == date(2025, 9, 15)
