"""
Integration tests for weekly availability and blocked time
"""
import pytest
import uuid
from datetime import datetime, timedelta, timezone
from sqlalchemy import select

from lessonbook.errors import ConflictError, NotFoundError, ValidationError
from lessonbook.models import BlockedInterval, Lesson, WeeklyAvailability
from lessonbook.models.enums import LessonStatus
from lessonbook.services.availability_service import (
    AvailabilityService,
    AvailabilityWindow,
    check_availability_windows,
)

TEN_AM = datetime(2025, 9, 8, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def availability(session_factory, clock):
    return AvailabilityService(session_factory, clock)


class TestCheckAvailabilityWindows:

    def test_touching_windows_allowed(self):
        check_availability_windows([
            AvailabilityWindow(1, "09:00", "12:00"),
            AvailabilityWindow(1, "12:00", "17:00"),
            AvailabilityWindow(3, "09:00", "12:00"),
        ])

    def test_overlap_on_same_day(self):
        with pytest.raises(ValidationError, match="Overlapping time slots on Monday"):
            check_availability_windows([
                AvailabilityWindow(1, "09:00", "12:00"),
                AvailabilityWindow(1, "11:30", "14:00"),
            ])

    def test_same_hours_on_different_days(self):
        check_availability_windows([
            AvailabilityWindow(1, "09:00", "12:00"),
            AvailabilityWindow(2, "09:00", "12:00"),
        ])

    @pytest.mark.parametrize("window", [
        AvailabilityWindow(1, "12:00", "09:00"),
        AvailabilityWindow(1, "09:00", "09:00"),
        AvailabilityWindow(7, "09:00", "12:00"),
        AvailabilityWindow(1, "9am", "12:00"),
        AvailabilityWindow(1, "09:00", "24:30"),
    ])
    def test_invalid_windows(self, window):
        with pytest.raises(ValidationError):
            check_availability_windows([window])

    def test_empty_schedule_is_valid(self):
        check_availability_windows([])


class TestReplaceWeeklyAvailability:

    async def test_replaces_whole_schedule(self, availability, seeder, session_factory):
        teacher = await seeder.teacher(windows=((1, "09:00", "17:00"), (2, "09:00", "17:00")))

        await availability.replace_weekly_availability(teacher.id, [
            AvailabilityWindow(3, "10:00", "12:00"),
            AvailabilityWindow(3, "13:00", "15:00"),
        ])

        async with session_factory() as session:
            rows = (await session.execute(
                select(WeeklyAvailability)
                .where(WeeklyAvailability.teacher_id == teacher.id)
                .order_by(WeeklyAvailability.start_time)
            )).scalars().all()
        assert [(r.day_of_week, r.start_time, r.end_time) for r in rows] == [
            (3, "10:00", "12:00"),
            (3, "13:00", "15:00"),
        ]

    async def test_invalid_schedule_leaves_existing_rows(self, availability, seeder, session_factory):
        teacher = await seeder.teacher()

        with pytest.raises(ValidationError):
            await availability.replace_weekly_availability(teacher.id, [
                AvailabilityWindow(1, "09:00", "12:00"),
                AvailabilityWindow(1, "10:00", "11:00"),
            ])

        async with session_factory() as session:
            rows = (await session.execute(
                select(WeeklyAvailability).where(WeeklyAvailability.teacher_id == teacher.id)
            )).scalars().all()
        assert len(rows) == 1

    async def test_unknown_teacher(self, availability):
        with pytest.raises(NotFoundError):
            await availability.replace_weekly_availability(uuid.uuid4(), [AvailabilityWindow(1, "09:00", "10:00")])


class TestBlockedTime:

    async def test_add_blocked_interval(self, availability, seeder, session_factory):
        teacher = await seeder.teacher()

        blocked = await availability.add_blocked_interval(
            teacher.id, TEN_AM, TEN_AM + timedelta(hours=2), reason="Recital"
        )

        assert blocked.reason == "Recital"
        async with session_factory() as session:
            stored = await session.get(BlockedInterval, blocked.id)
        assert stored is not None

    async def test_end_before_start(self, availability, seeder):
        teacher = await seeder.teacher()

        with pytest.raises(ValidationError, match="End time must be after start time"):
            await availability.validate_blocked_time(teacher.id, TEN_AM, TEN_AM)

    async def test_past_start(self, availability, seeder):
        teacher = await seeder.teacher()
        yesterday = datetime(2025, 8, 31, 15, 0, tzinfo=timezone.utc)

        with pytest.raises(ValidationError, match="past"):
            await availability.validate_blocked_time(teacher.id, yesterday, yesterday + timedelta(hours=1))

    async def test_unknown_teacher(self, availability):
        with pytest.raises(NotFoundError):
            await availability.validate_blocked_time(uuid.uuid4(), TEN_AM, TEN_AM + timedelta(hours=1))

    async def test_scheduled_lesson_inside_interval(self, availability, seeder, session_factory):
        teacher = await seeder.teacher()
        student = await seeder.student()
        async with session_factory() as session:
            session.add(Lesson(
                teacher_id=teacher.id,
                student_id=student.id,
                start_time=TEN_AM + timedelta(minutes=30),
                duration_minutes=30,
                status=LessonStatus.SCHEDULED,
                price=3000,
                timezone=teacher.timezone,
            ))
            await session.commit()

        with pytest.raises(ConflictError, match="1 lesson"):
            await availability.add_blocked_interval(teacher.id, TEN_AM, TEN_AM + timedelta(hours=2))

    async def test_lesson_ending_at_interval_start_is_fine(self, availability, seeder, session_factory):
        teacher = await seeder.teacher()
        student = await seeder.student()
        async with session_factory() as session:
            session.add(Lesson(
                teacher_id=teacher.id,
                student_id=student.id,
                start_time=TEN_AM - timedelta(minutes=30),
                duration_minutes=30,
                status=LessonStatus.SCHEDULED,
                price=3000,
                timezone=teacher.timezone,
            ))
            await session.commit()

        await availability.validate_blocked_time(teacher.id, TEN_AM, TEN_AM + timedelta(hours=1))

    async def test_prune_expired(self, availability, seeder, session_factory, clock):
        teacher = await seeder.teacher()
        await availability.add_blocked_interval(teacher.id, TEN_AM, TEN_AM + timedelta(hours=1))
        await availability.add_blocked_interval(teacher.id, TEN_AM + timedelta(days=7), TEN_AM + timedelta(days=8))
        clock.now = TEN_AM + timedelta(days=1)

        deleted = await availability.prune_expired_blocked_intervals()

        assert deleted == 1
        async with session_factory() as session:
            remaining = (await session.execute(select(BlockedInterval))).scalars().all()
        assert len(remaining) == 1
