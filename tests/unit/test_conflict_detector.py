"""
Unit tests for the conflict detector

Half-open interval overlap against blocked time and scheduled lessons.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from lessonbook.services.conflict_detector import (
    Interval,
    find_conflict,
    has_conflict,
    intervals_overlap,
    lesson_intervals_from,
)


def at(hour, minute=0):
    return datetime(2025, 9, 8, hour, minute, tzinfo=timezone.utc)


class TestOverlap:
    """Half-open [start, end) semantics"""

    def test_touching_intervals_do_not_overlap(self):
        assert not intervals_overlap(at(10), at(11), at(11), at(12))
        assert not intervals_overlap(at(11), at(12), at(10), at(11))

    def test_partial_overlap(self):
        assert intervals_overlap(at(10), at(11), at(10, 30), at(11, 30))

    def test_containment(self):
        assert intervals_overlap(at(9), at(17), at(12), at(12, 30))


class TestConflicts:
    """Candidate lesson against a teacher's calendar"""

    def test_no_intervals_no_conflict(self):
        assert not has_conflict(at(10), at(10, 30), [], [])

    def test_blocked_interval_conflicts(self):
        blocked = [Interval(at(9), at(12))]

        assert has_conflict(at(10), at(10, 30), blocked, [])
        assert find_conflict(at(10), at(10, 30), blocked, []) == "blocked"

    def test_scheduled_lesson_conflicts(self):
        lessons = [Interval(at(10), at(10, 30))]

        assert find_conflict(at(10), at(11), [], lessons) == "lesson"

    def test_adjacent_lesson_is_fine(self):
        lessons = [Interval(at(10), at(10, 30))]

        assert not has_conflict(at(10, 30), at(11), [], lessons)
        assert not has_conflict(at(9, 30), at(10), [], lessons)

    def test_naive_and_aware_inputs_compare(self):
        """Rows read back from SQLite come without tzinfo"""
        lessons = [Interval(datetime(2025, 9, 8, 10, 0), datetime(2025, 9, 8, 10, 30))]

        assert has_conflict(at(10, 15), at(10, 45), [], lessons)

    def test_lesson_intervals_from_rows(self):
        rows = [SimpleNamespace(start_time=at(10), duration_minutes=60)]

        intervals = lesson_intervals_from(rows)

        assert intervals == [Interval(at(10), at(10) + timedelta(minutes=60))]
