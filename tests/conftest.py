"""
Shared fixtures: in-memory SQLite database, fixed clock and data seeding helpers.

Services take a session factory and a clock, so every test runs against a
fresh schema at a known instant.
"""
import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from lessonbook.database import Base
from lessonbook.models import (
    RecurringSlot,
    SlotSubscription,
    Student,
    Teacher,
    TeacherLessonSettings,
    WeeklyAvailability,
)
from lessonbook.models.enums import SlotStatus, SubscriptionStatus
from lessonbook.services.email import ConsoleEmailSender


class FixedClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class Seeder:
    """Inserts teachers, students, availability and recurring slots"""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def teacher(
        self,
        timezone_name: str = "America/Chicago",
        windows=((1, "09:00", "17:00"),),
        allows_30: bool = True,
        allows_60: bool = False,
        price_30: int = 3000,
        price_60: int = 5500,
        advance_booking_days: int = 21,
        with_settings: bool = True,
    ) -> Teacher:
        n = self._next()
        async with self.session_factory() as session:
            teacher = Teacher(name=f"Teacher {n}", email=f"teacher{n}@example.com", timezone=timezone_name)
            session.add(teacher)
            await session.flush()
            if with_settings:
                session.add(TeacherLessonSettings(
                    teacher_id=teacher.id,
                    allows_30_min=allows_30,
                    allows_60_min=allows_60,
                    price_30_min=price_30,
                    price_60_min=price_60,
                    advance_booking_days=advance_booking_days,
                ))
            for dow, start, end in windows:
                session.add(WeeklyAvailability(
                    teacher_id=teacher.id, day_of_week=dow, start_time=start, end_time=end, is_active=True
                ))
            await session.commit()
            return teacher

    async def student(self, timezone_name: str = "America/New_York") -> Student:
        n = self._next()
        async with self.session_factory() as session:
            student = Student(name=f"Student {n}", email=f"student{n}@example.com", timezone=timezone_name)
            session.add(student)
            await session.commit()
            return student

    async def recurring_slot(
        self,
        teacher: Teacher,
        student: Student,
        day_of_week: int = 1,
        start_time: str = "15:00",
        duration: int = 30,
        rate_per_lesson: int = 5200,
        monthly_rate: int = 26000,
        booked_at: datetime = datetime(2025, 8, 1, tzinfo=timezone.utc),
        start_month: str = "2025-08",
        with_subscription: bool = True,
        status: SlotStatus = SlotStatus.ACTIVE,
    ):
        async with self.session_factory() as session:
            slot = RecurringSlot(
                teacher_id=teacher.id,
                student_id=student.id,
                day_of_week=day_of_week,
                start_time=start_time,
                duration_minutes=duration,
                rate_per_lesson=rate_per_lesson,
                monthly_rate=monthly_rate,
                status=status,
                booked_at=booked_at,
            )
            session.add(slot)
            await session.flush()
            subscription = None
            if with_subscription:
                subscription = SlotSubscription(
                    slot_id=slot.id,
                    student_id=student.id,
                    start_month=start_month,
                    monthly_rate=monthly_rate,
                    status=SubscriptionStatus.ACTIVE,
                )
                session.add(subscription)
            await session.commit()
            return slot, subscription


@pytest.fixture
async def engine():
    """Fresh in-memory database per test"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock():
    # Monday 2025-09-01 07:00 in America/Chicago
    return FixedClock(datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def seeder(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def email_sender():
    return ConsoleEmailSender(sender="lessons@example.com")


@pytest.fixture
def no_sleep():
    """Sleep stub for retry backoff; records requested delays"""
    delays = []

    async def _sleep(seconds):
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
