"""
Demo Data Loader

Creates demo teachers with lesson settings and weekly availability, students,
and a few recurring slots, then materializes their lessons.
Usage: python -m lessonbook.scripts.load_demo --teachers 3 --students 10
"""
import asyncio
import argparse
import random
from sqlalchemy import text
from faker import Faker

from lessonbook.database import AsyncSessionLocal
from lessonbook.models import Student, Teacher, TeacherLessonSettings
from lessonbook.services.availability_service import AvailabilityWindow, get_availability_service
from lessonbook.services.booking_service import get_booking_service
from lessonbook.services.background_jobs import generate_future_lessons

# Initialize Faker for realistic data generation
fake = Faker()

TIMEZONES = ["America/Chicago", "America/New_York", "America/Los_Angeles", "Europe/London"]

# Weekday afternoons plus Saturday morning
DEFAULT_WINDOWS = [
    AvailabilityWindow(1, "14:00", "19:00"),
    AvailabilityWindow(2, "14:00", "19:00"),
    AvailabilityWindow(3, "14:00", "19:00"),
    AvailabilityWindow(4, "14:00", "19:00"),
    AvailabilityWindow(6, "09:00", "13:00"),
]


async def clear_demo_data():
    """Clear all existing data"""
    async with AsyncSessionLocal() as session:
        tables = [
            "billing_records", "lessons", "slot_subscriptions", "recurring_slots",
            "blocked_intervals", "weekly_availability", "teacher_lesson_settings",
            "students", "teachers", "job_executions",
        ]
        for table in tables:
            await session.execute(text(f"DELETE FROM {table}"))
        await session.commit()
    print("✓ Cleared existing data")


async def create_people(teacher_count: int, student_count: int, seed: int):
    Faker.seed(seed)
    random.seed(seed)

    async with AsyncSessionLocal() as session:
        teachers = []
        for _ in range(teacher_count):
            teacher = Teacher(
                name=fake.name(),
                email=fake.unique.email(),
                timezone=random.choice(TIMEZONES),
            )
            session.add(teacher)
            teachers.append(teacher)
        await session.flush()

        for teacher in teachers:
            price_30 = random.choice([2500, 3000, 3500])
            session.add(TeacherLessonSettings(
                teacher_id=teacher.id,
                allows_30_min=True,
                allows_60_min=True,
                price_30_min=price_30,
                price_60_min=price_30 * 2 - 500,
                advance_booking_days=random.choice([14, 21, 30]),
            ))

        students = []
        for _ in range(student_count):
            student = Student(name=fake.name(), email=fake.unique.email(), timezone=random.choice(TIMEZONES))
            session.add(student)
            students.append(student)

        await session.commit()

    print(f"  Created {len(teachers)} teachers and {len(students)} students")
    return teachers, students


async def load_demo(teacher_count: int, student_count: int, slots_per_teacher: int, seed: int):
    await clear_demo_data()
    teachers, students = await create_people(teacher_count, student_count, seed)

    availability = get_availability_service()
    booking = get_booking_service()

    for teacher in teachers:
        await availability.replace_weekly_availability(teacher.id, DEFAULT_WINDOWS)

    booked = 0
    for teacher in teachers:
        starts = random.sample(["14:00", "15:00", "16:00", "17:00", "18:00"], k=min(slots_per_teacher, 5))
        for start_time in starts:
            window = random.choice(DEFAULT_WINDOWS[:4])
            student = random.choice(students)
            try:
                await booking.book_recurring_slot(
                    teacher.id, student.id, window.day_of_week, start_time, random.choice([30, 60])
                )
                booked += 1
            except Exception as e:
                print(f"  Skipped slot {start_time} for {teacher.name}: {e}")

    print(f"  Booked {booked} recurring slots")

    summary = await generate_future_lessons()
    print(f"  Lesson generation: {summary['lessons_generated']} generated, {summary['lessons_skipped']} skipped")
    print("\n✅ Demo data loaded")


def main():
    """CLI entry point"""
    parser = argparse.ArgumentParser(description="Load demo teachers, students and recurring slots")
    parser.add_argument("--teachers", "-t", type=int, default=3, help="Number of teachers")
    parser.add_argument("--students", "-s", type=int, default=10, help="Number of students")
    parser.add_argument("--slots", type=int, default=3, help="Recurring slots per teacher")
    parser.add_argument("--seed", type=int, default=42, help="Random seed for reproducible data")

    args = parser.parse_args()

    asyncio.run(load_demo(args.teachers, args.students, args.slots, args.seed))


if __name__ == "__main__":
    main()
