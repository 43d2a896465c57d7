"""
Background job runners and monitoring.

Every job entry point here is called identically by the APScheduler cron
jobs and by the admin HTTP triggers, so both produce the same
{success, <counts>, errors[]} shape. Each run is appended to the
job_executions audit table; failing to write that row is logged and never
fails the job.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, select

from lessonbook.config import JOB_LOG_RETENTION_DAYS
from lessonbook.database import AsyncSessionLocal
from lessonbook.models import JobExecutionRecord, RecurringSlot, SlotSubscription, TeacherLessonSettings
from lessonbook.models.enums import SlotStatus, SubscriptionStatus
from lessonbook.services.availability_service import get_availability_service
from lessonbook.services.invoice_generator import JOB_NAME as INVOICE_JOB_NAME
from lessonbook.services.invoice_generator import get_invoice_generator
from lessonbook.services.job_results import JobResult
from lessonbook.services.lesson_cleanup import get_lesson_cleanup
from lessonbook.services.lesson_materializer import JOB_NAME as MATERIALIZE_JOB_NAME
from lessonbook.services.lesson_materializer import get_lesson_materializer
from lessonbook.services.retry import DATABASE_RETRY_POLICY, with_retry
from lessonbook.services.time_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

PRUNE_JOB_NAME = "prune-blocked-intervals"
CLEANUP_JOB_NAME = "cleanup-job-logs"

# Slots older than this are flagged for review by the health check
STALE_SLOT_DAYS = 180


class JobMonitor:
    """Audit trail and health checks for the background jobs"""

    def __init__(self, session_factory=None, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory or AsyncSessionLocal
        self.clock = clock

    async def record_execution(self, result: JobResult) -> None:
        """Append a JobExecutionRecord. Never raises."""
        try:
            async with self.session_factory() as session:
                session.add(JobExecutionRecord(
                    job_name=result.job_name,
                    executed_at=ensure_utc(self.clock()),
                    success=result.success,
                    counts=dict(result.counts),
                    errors=[e.to_dict() for e in result.errors],
                ))
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to record execution of {result.job_name}: {e}", exc_info=True)

    async def get_job_history(self, limit: int = 10, job_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent job executions, newest first."""
        async with self.session_factory() as session:
            query = select(JobExecutionRecord).order_by(JobExecutionRecord.executed_at.desc())
            if job_name:
                query = query.where(JobExecutionRecord.job_name == job_name)
            rows = await session.execute(query.limit(limit))
            return [
                {
                    "id": str(row.id),
                    "job_name": row.job_name,
                    "executed_at": ensure_utc(row.executed_at).isoformat(),
                    "success": row.success,
                    "counts": row.counts or {},
                    "errors": row.errors or [],
                }
                for row in rows.scalars().all()
            ]

    async def cleanup_job_logs(self, days: int = JOB_LOG_RETENTION_DAYS) -> int:
        """Delete execution records older than the retention window."""
        cutoff = ensure_utc(self.clock()) - timedelta(days=days)

        async def _cleanup():
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(JobExecutionRecord).where(JobExecutionRecord.executed_at < cutoff)
                )
                await session.commit()
                return result.rowcount or 0

        deleted_count = await with_retry(_cleanup, DATABASE_RETRY_POLICY, operation_name="cleanup_job_logs")
        logger.info(f"Deleted {deleted_count} job execution records older than {days} days")
        return deleted_count

    async def validate_system_health(self) -> Dict[str, Any]:
        """
        Check stored state the background jobs depend on.

        Returns:
            Dict with is_healthy (no issues), issues and suggestions lists
        """
        issues: List[str] = []
        suggestions: List[str] = []
        now = ensure_utc(self.clock())

        async with self.session_factory() as session:
            missing_settings = await session.execute(
                select(RecurringSlot.teacher_id)
                .outerjoin(TeacherLessonSettings, TeacherLessonSettings.teacher_id == RecurringSlot.teacher_id)
                .where(RecurringSlot.status == SlotStatus.ACTIVE, TeacherLessonSettings.id.is_(None))
                .distinct()
            )
            teacher_ids = [row[0] for row in missing_settings.all()]
            if teacher_ids:
                issues.append(f"{len(teacher_ids)} teacher(s) have active recurring slots but no lesson settings")
                suggestions.append("Configure lesson durations and prices for these teachers")

            subscribed = select(SlotSubscription.slot_id).where(
                SlotSubscription.status == SubscriptionStatus.ACTIVE
            )
            orphaned = await session.execute(
                select(RecurringSlot.id).where(
                    RecurringSlot.status == SlotStatus.ACTIVE,
                    RecurringSlot.id.not_in(subscribed),
                )
            )
            orphaned_ids = [row[0] for row in orphaned.all()]
            if orphaned_ids:
                issues.append(f"{len(orphaned_ids)} active recurring slot(s) have no active subscription")
                suggestions.append("Create subscriptions for these slots or cancel them so they are not left unbilled")

            stale = await session.execute(
                select(RecurringSlot.id).where(
                    RecurringSlot.status == SlotStatus.ACTIVE,
                    RecurringSlot.booked_at < now - timedelta(days=STALE_SLOT_DAYS),
                )
            )
            stale_ids = [row[0] for row in stale.all()]
            if stale_ids:
                suggestions.append(f"Review {len(stale_ids)} recurring slot(s) booked more than 6 months ago")

            for job_name in (MATERIALIZE_JOB_NAME, INVOICE_JOB_NAME):
                latest = await session.execute(
                    select(JobExecutionRecord)
                    .where(JobExecutionRecord.job_name == job_name)
                    .order_by(JobExecutionRecord.executed_at.desc())
                    .limit(1)
                )
                record = latest.scalar_one_or_none()
                if record is not None and not record.success:
                    issues.append(f"Last run of {job_name} reported {len(record.errors or [])} error(s)")
                    suggestions.append(f"Inspect job history for {job_name} and re-run it")

        if issues:
            logger.warning(f"System health check found {len(issues)} issue(s): {issues}")
        return {"is_healthy": not issues, "issues": issues, "suggestions": suggestions}


# Global monitor instance
_monitor: Optional[JobMonitor] = None


def get_job_monitor() -> JobMonitor:
    """Get or create global JobMonitor instance."""
    global _monitor
    if _monitor is None:
        _monitor = JobMonitor()
    return _monitor


async def generate_future_lessons(materializer=None, monitor: Optional[JobMonitor] = None) -> Dict[str, Any]:
    """Materialize upcoming lessons from every active recurring slot."""
    result = await (materializer or get_lesson_materializer()).generate_future_lessons()
    await (monitor or get_job_monitor()).record_execution(result)
    return result.to_dict()


async def generate_monthly_invoices(
    month: Optional[str] = None,
    generator=None,
    monitor: Optional[JobMonitor] = None,
) -> Dict[str, Any]:
    """Invoice every billable subscription for the month (default: current month)."""
    result = await (generator or get_invoice_generator()).generate_monthly_invoices(month)
    await (monitor or get_job_monitor()).record_execution(result)
    return result.to_dict()


async def mark_missed_lessons(cleanup=None, monitor: Optional[JobMonitor] = None) -> Dict[str, Any]:
    result = await (cleanup or get_lesson_cleanup()).mark_missed_lessons()
    await (monitor or get_job_monitor()).record_execution(result)
    return result.to_dict()


async def prune_blocked_intervals(availability=None, monitor: Optional[JobMonitor] = None) -> Dict[str, Any]:
    result = JobResult(PRUNE_JOB_NAME, counts={"blocked_intervals_pruned": 0})
    try:
        pruned = await (availability or get_availability_service()).prune_expired_blocked_intervals()
        result.increment("blocked_intervals_pruned", pruned)
    except Exception as e:
        logger.error(f"Failed to prune blocked intervals: {e}", exc_info=True)
        result.add_error("job", PRUNE_JOB_NAME, "prune", e)
    await (monitor or get_job_monitor()).record_execution(result)
    return result.to_dict()


async def cleanup_job_logs(days: int = JOB_LOG_RETENTION_DAYS, monitor: Optional[JobMonitor] = None) -> Dict[str, Any]:
    monitor = monitor or get_job_monitor()
    result = JobResult(CLEANUP_JOB_NAME, counts={"records_deleted": 0})
    try:
        result.increment("records_deleted", await monitor.cleanup_job_logs(days))
    except Exception as e:
        logger.error(f"Failed to clean up job logs: {e}", exc_info=True)
        result.add_error("job", CLEANUP_JOB_NAME, "cleanup", e)
    return result.to_dict()
