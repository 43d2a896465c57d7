"""
Unit tests for the job schedule
"""
import pytest

from lessonbook.services.scheduler import configure_scheduler, scheduler


@pytest.fixture
def configured():
    configure_scheduler()
    yield scheduler
    scheduler.remove_all_jobs()


def cron_fields(job):
    return {field.name: str(field) for field in job.trigger.fields}


class TestConfigureScheduler:

    def test_registers_all_jobs(self, configured):
        assert {job.id for job in configured.get_jobs()} == {
            "generate_future_lessons",
            "generate_monthly_invoices",
            "mark_missed_lessons",
            "housekeeping",
        }

    def test_invoices_run_every_day(self, configured):
        """A subscription booked mid-month is invoiced the next morning, not next month"""
        fields = cron_fields(configured.get_job("generate_monthly_invoices"))

        assert fields["day"] == "*"
        assert fields["hour"] == "6"
        assert fields["minute"] == "0"
