"""
Integration tests for job runners, the execution audit trail and the
system health check
"""
import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy import select

from lessonbook.models import JobExecutionRecord, Lesson, TeacherLessonSettings
from lessonbook.models.enums import LessonStatus
from lessonbook.services import background_jobs
from lessonbook.services.availability_service import AvailabilityService
from lessonbook.services.background_jobs import JobMonitor
from lessonbook.services.invoice_generator import InvoiceGenerator
from lessonbook.services.job_results import JobResult
from lessonbook.services.lesson_cleanup import MISSED_NOTE, LessonCleanup
from lessonbook.services.lesson_materializer import LessonMaterializer


@pytest.fixture
def monitor(session_factory, clock):
    return JobMonitor(session_factory, clock)


class TestJobMonitor:

    async def test_history_newest_first(self, monitor, clock):
        first = JobResult("generate-future-lessons", counts={"lessons_generated": 4})
        await monitor.record_execution(first)
        clock.advance(hours=1)
        second = JobResult("generate-monthly-invoices", counts={"invoices_created": 2})
        second.add_error("subscription", "s-1", "send_invoice_email", "bounced")
        await monitor.record_execution(second)

        history = await monitor.get_job_history()

        assert [h["job_name"] for h in history] == ["generate-monthly-invoices", "generate-future-lessons"]
        assert history[0]["success"] is False
        assert history[0]["errors"][0]["operation"] == "send_invoice_email"
        assert history[1]["counts"] == {"lessons_generated": 4}

    async def test_history_filter_and_limit(self, monitor, clock):
        for _ in range(3):
            await monitor.record_execution(JobResult("mark-missed-lessons"))
            clock.advance(minutes=5)
        await monitor.record_execution(JobResult("generate-future-lessons"))

        assert len(await monitor.get_job_history(limit=2)) == 2
        assert len(await monitor.get_job_history(job_name="mark-missed-lessons")) == 3

    async def test_record_failure_is_swallowed(self, clock):
        def broken_factory():
            raise RuntimeError("database down")

        await JobMonitor(broken_factory, clock).record_execution(JobResult("generate-future-lessons"))

    async def test_cleanup_old_records(self, monitor, clock, session_factory):
        await monitor.record_execution(JobResult("mark-missed-lessons"))
        clock.advance(days=40)
        await monitor.record_execution(JobResult("mark-missed-lessons"))

        deleted = await monitor.cleanup_job_logs(days=30)

        assert deleted == 1
        async with session_factory() as session:
            remaining = (await session.execute(select(JobExecutionRecord))).scalars().all()
        assert len(remaining) == 1


class TestSystemHealth:

    async def test_healthy_when_empty(self, monitor):
        health = await monitor.validate_system_health()

        assert health == {"is_healthy": True, "issues": [], "suggestions": []}

    async def test_slot_without_subscription(self, monitor, seeder):
        teacher = await seeder.teacher()
        student = await seeder.student()
        await seeder.recurring_slot(teacher, student, with_subscription=False)

        health = await monitor.validate_system_health()

        assert not health["is_healthy"]
        assert "1 active recurring slot(s) have no active subscription" in health["issues"]

    async def test_teacher_without_settings(self, monitor, seeder, session_factory):
        teacher = await seeder.teacher()
        student = await seeder.student()
        await seeder.recurring_slot(teacher, student)
        async with session_factory() as session:
            settings = (await session.execute(
                select(TeacherLessonSettings).where(TeacherLessonSettings.teacher_id == teacher.id)
            )).scalar_one()
            await session.delete(settings)
            await session.commit()

        health = await monitor.validate_system_health()

        assert any("no lesson settings" in issue for issue in health["issues"])

    async def test_old_slots_are_only_a_suggestion(self, monitor, seeder):
        teacher = await seeder.teacher()
        student = await seeder.student()
        await seeder.recurring_slot(teacher, student, booked_at=datetime(2024, 1, 8, tzinfo=timezone.utc))

        health = await monitor.validate_system_health()

        assert health["is_healthy"]
        assert any("more than 6 months ago" in s for s in health["suggestions"])

    async def test_failed_last_run(self, monitor):
        failed = JobResult("generate-monthly-invoices")
        failed.add_error("subscription", "s-1", "invoice_subscription", "timeout")
        await monitor.record_execution(failed)

        health = await monitor.validate_system_health()

        assert health["issues"] == ["Last run of generate-monthly-invoices reported 1 error(s)"]


class TestJobRunners:

    async def test_generate_future_lessons_records_execution(self, session_factory, clock, monitor, seeder):
        teacher = await seeder.teacher()
        student = await seeder.student()
        await seeder.recurring_slot(teacher, student)

        outcome = await background_jobs.generate_future_lessons(LessonMaterializer(session_factory, clock), monitor)

        assert outcome["success"] is True
        assert outcome["lessons_generated"] == 12
        [entry] = await monitor.get_job_history()
        assert entry["job_name"] == "generate-future-lessons"

    async def test_generate_monthly_invoices(self, session_factory, clock, monitor, seeder, email_sender, no_sleep):
        teacher = await seeder.teacher()
        student = await seeder.student()
        await seeder.recurring_slot(teacher, student)
        generator = InvoiceGenerator(session_factory, clock, email_sender=email_sender, email_sleep=no_sleep)

        outcome = await background_jobs.generate_monthly_invoices("2025-09", generator, monitor)

        assert outcome["invoices_created"] == 1
        assert outcome["errors"] == []

    async def test_mark_missed_lessons(self, session_factory, clock, monitor, seeder):
        teacher = await seeder.teacher()
        student = await seeder.student()
        async with session_factory() as session:
            for start, status in (
                (clock() - timedelta(days=1), LessonStatus.SCHEDULED),
                (clock() - timedelta(days=2), LessonStatus.COMPLETED),
                (clock() + timedelta(days=1), LessonStatus.SCHEDULED),
            ):
                session.add(Lesson(
                    teacher_id=teacher.id,
                    student_id=student.id,
                    start_time=start,
                    duration_minutes=30,
                    status=status,
                    price=3000,
                    timezone=teacher.timezone,
                ))
            await session.commit()

        outcome = await background_jobs.mark_missed_lessons(LessonCleanup(session_factory, clock), monitor)

        assert outcome == {"success": True, "job_name": "mark-missed-lessons", "lessons_updated": 1, "errors": []}
        async with session_factory() as session:
            missed = (await session.execute(
                select(Lesson).where(Lesson.status == LessonStatus.MISSED)
            )).scalars().all()
        assert len(missed) == 1
        assert missed[0].notes == MISSED_NOTE

    async def test_prune_blocked_intervals(self, session_factory, clock, monitor):
        outcome = await background_jobs.prune_blocked_intervals(AvailabilityService(session_factory, clock), monitor)

        assert outcome["blocked_intervals_pruned"] == 0
        assert outcome["success"] is True

    async def test_cleanup_job_logs(self, monitor):
        outcome = await background_jobs.cleanup_job_logs(30, monitor)

        assert outcome == {"success": True, "job_name": "cleanup-job-logs", "records_deleted": 0, "errors": []}
