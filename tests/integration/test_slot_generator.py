"""
Integration tests for the availability slot generator

Weekly windows combined with blocked time and existing lessons, against a
real (in-memory) database.
"""
import pytest
import uuid
from datetime import datetime, timedelta, timezone

from lessonbook.errors import NotFoundError, ValidationError
from lessonbook.models import BlockedInterval, Lesson
from lessonbook.models.enums import LessonStatus
from lessonbook.services.slot_generator import SlotGenerator

# Monday 2025-09-08, 09:00-17:00 America/Chicago (CDT, UTC-5)
RANGE_START = datetime(2025, 9, 8, 14, 0, tzinfo=timezone.utc)
RANGE_END = datetime(2025, 9, 8, 22, 0, tzinfo=timezone.utc)
TEN_AM = datetime(2025, 9, 8, 15, 0, tzinfo=timezone.utc)


async def add_lesson(session_factory, teacher, student, start, duration=30, status=LessonStatus.SCHEDULED):
    async with session_factory() as session:
        lesson = Lesson(
            teacher_id=teacher.id,
            student_id=student.id,
            start_time=start,
            duration_minutes=duration,
            status=status,
            price=3000,
            timezone=teacher.timezone,
        )
        session.add(lesson)
        await session.commit()
        return lesson


@pytest.fixture
def generator(session_factory, clock):
    return SlotGenerator(session_factory, clock)


class TestSlotGeneration:
    """Slots for a teacher with Monday 09:00-17:00 availability"""

    async def test_existing_lesson_marks_only_its_slot(self, generator, seeder, session_factory):
        teacher = await seeder.teacher()
        student = await seeder.student()
        await add_lesson(session_factory, teacher, student, TEN_AM)

        slots = list(await generator.get_available_slots(teacher.id, RANGE_START, RANGE_END))

        assert len(slots) == 16
        unavailable = [s for s in slots if not s.available]
        assert [s.start for s in unavailable] == [TEN_AM]
        assert unavailable[0].unavailable_reason == "booked"
        assert all(s.available for s in slots if s.start != TEN_AM)

    async def test_slots_carry_price_and_duration(self, generator, seeder):
        teacher = await seeder.teacher(allows_60=True, price_30=3000, price_60=5500)

        slots = list(await generator.get_available_slots(teacher.id, RANGE_START, RANGE_END))

        thirty = [s for s in slots if s.duration == 30]
        sixty = [s for s in slots if s.duration == 60]
        assert len(thirty) == 16
        assert len(sixty) == 15  # 16:30 start would overrun 17:00
        assert {s.price for s in thirty} == {3000}
        assert {s.price for s in sixty} == {5500}
        assert all(s.end - s.start == timedelta(minutes=s.duration) for s in slots)

    async def test_sixty_minute_slot_overlapping_lesson_is_booked(self, generator, seeder, session_factory):
        teacher = await seeder.teacher(allows_60=True)
        student = await seeder.student()
        await add_lesson(session_factory, teacher, student, TEN_AM)

        slots = list(await generator.get_available_slots(teacher.id, RANGE_START, RANGE_END))

        nine_thirty_hour = [s for s in slots if s.duration == 60 and s.start == TEN_AM - timedelta(minutes=30)]
        assert nine_thirty_hour[0].unavailable_reason == "booked"

    async def test_cancelled_lessons_do_not_block(self, generator, seeder, session_factory):
        teacher = await seeder.teacher()
        student = await seeder.student()
        await add_lesson(session_factory, teacher, student, TEN_AM, status=LessonStatus.CANCELLED)

        slots = list(await generator.get_available_slots(teacher.id, RANGE_START, RANGE_END))

        assert all(s.available for s in slots)

    async def test_blocked_interval(self, generator, seeder, session_factory):
        teacher = await seeder.teacher()
        async with session_factory() as session:
            session.add(BlockedInterval(
                teacher_id=teacher.id,
                start_time=RANGE_START,
                end_time=RANGE_START + timedelta(hours=1),
                reason="Dentist",
            ))
            await session.commit()

        slots = list(await generator.get_available_slots(teacher.id, RANGE_START, RANGE_END))

        blocked = [s for s in slots if s.unavailable_reason == "blocked"]
        assert len(blocked) == 2
        assert sum(1 for s in slots if s.available) == 14

    async def test_past_slots_unavailable(self, generator, seeder, clock):
        teacher = await seeder.teacher()
        clock.now = TEN_AM + timedelta(minutes=1)

        slots = list(await generator.get_available_slots(teacher.id, RANGE_START, RANGE_END))

        past = [s for s in slots if s.unavailable_reason == "past"]
        assert len(past) == 3  # 09:00, 09:30, 10:00

    async def test_beyond_booking_horizon(self, generator, seeder):
        teacher = await seeder.teacher(advance_booking_days=1)

        slots = list(await generator.get_available_slots(teacher.id, RANGE_START, RANGE_END))

        assert {s.unavailable_reason for s in slots} == {"beyond_booking_horizon"}

    async def test_display_time_in_student_timezone(self, generator, seeder):
        teacher = await seeder.teacher()

        slots = list(await generator.get_available_slots(
            teacher.id, RANGE_START, RANGE_END, student_timezone="America/New_York"
        ))

        ten_am = next(s for s in slots if s.start == TEN_AM)
        assert ten_am.display_time == "Mon Sep 08, 11:00 AM EDT"

    async def test_invalid_student_timezone_falls_back(self, generator, seeder):
        teacher = await seeder.teacher()

        slots = list(await generator.get_available_slots(
            teacher.id, RANGE_START, RANGE_END, student_timezone="Mars/Olympus"
        ))

        ten_am = next(s for s in slots if s.start == TEN_AM)
        assert ten_am.display_time == "Mon Sep 08, 10:00 AM CDT"

    async def test_other_weekdays_have_no_slots(self, generator, seeder):
        teacher = await seeder.teacher()
        tuesday = RANGE_START + timedelta(days=1)

        slots = list(await generator.get_available_slots(teacher.id, tuesday, tuesday + timedelta(hours=8)))

        assert slots == []


class TestSlotGenerationEdgeCases:

    async def test_unknown_teacher(self, generator):
        with pytest.raises(NotFoundError):
            await generator.get_available_slots(uuid.uuid4(), RANGE_START, RANGE_END)

    async def test_end_before_start(self, generator, seeder):
        teacher = await seeder.teacher()

        with pytest.raises(ValidationError):
            await generator.get_available_slots(teacher.id, RANGE_END, RANGE_START)

    async def test_no_settings_yields_nothing(self, generator, seeder):
        teacher = await seeder.teacher(with_settings=False)

        assert list(await generator.get_available_slots(teacher.id, RANGE_START, RANGE_END)) == []

    async def test_no_availability_yields_nothing(self, generator, seeder):
        teacher = await seeder.teacher(windows=())

        assert list(await generator.get_available_slots(teacher.id, RANGE_START, RANGE_END)) == []
