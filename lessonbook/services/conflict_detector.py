"""
Conflict Detector

Pure overlap checks between a candidate lesson interval and the teacher's
blocked intervals / already-scheduled lessons. Callers fetch the relevant
superset of intervals (same teacher, overlapping window) beforehand.

All intervals are half-open [start, end): touching intervals do not conflict.
"""
from datetime import datetime, timedelta
from typing import Iterable, List, NamedTuple, Optional

from lessonbook.services.time_utils import ensure_utc


class Interval(NamedTuple):
    start: datetime
    end: datetime


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """[a_start, a_end) and [b_start, b_end) overlap iff a_start < b_end and b_start < a_end."""
    return a_start < b_end and b_start < a_end


def has_conflict(
    candidate_start: datetime,
    candidate_end: datetime,
    blocked_intervals: Iterable[Interval],
    scheduled_intervals: Iterable[Interval],
) -> bool:
    """
    Check a candidate interval against blocked and scheduled intervals.

    Args:
        candidate_start: Candidate start (aware or naive UTC)
        candidate_end: Candidate end
        blocked_intervals: Teacher's blocked intervals
        scheduled_intervals: Teacher's existing lesson intervals

    Returns:
        True if the candidate overlaps any supplied interval
    """
    return find_conflict(candidate_start, candidate_end, blocked_intervals, scheduled_intervals) is not None


def find_conflict(
    candidate_start: datetime,
    candidate_end: datetime,
    blocked_intervals: Iterable[Interval],
    scheduled_intervals: Iterable[Interval],
) -> Optional[str]:
    """Like has_conflict, but names what was hit: "blocked", "lesson" or None."""
    start = ensure_utc(candidate_start)
    end = ensure_utc(candidate_end)

    for blocked in blocked_intervals:
        if intervals_overlap(start, end, ensure_utc(blocked.start), ensure_utc(blocked.end)):
            return "blocked"

    for scheduled in scheduled_intervals:
        if intervals_overlap(start, end, ensure_utc(scheduled.start), ensure_utc(scheduled.end)):
            return "lesson"

    return None


def blocked_intervals_from(rows) -> List[Interval]:
    """Build intervals from BlockedInterval rows."""
    return [Interval(ensure_utc(row.start_time), ensure_utc(row.end_time)) for row in rows]


def lesson_intervals_from(rows) -> List[Interval]:
    """Build [start, start + duration) intervals from Lesson rows."""
    intervals = []
    for row in rows:
        start = ensure_utc(row.start_time)
        intervals.append(Interval(start, start + timedelta(minutes=row.duration_minutes)))
    return intervals
