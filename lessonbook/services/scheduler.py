"""
APScheduler Configuration

Cron schedule for lesson materialization, monthly invoicing and the
housekeeping jobs. The job bodies are the same functions the admin API
triggers.
"""
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from lessonbook.config import DEFAULT_TIMEZONE
from lessonbook.services import background_jobs

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler(timezone=DEFAULT_TIMEZONE)


async def generate_future_lessons_job():
    """
    Daily job to materialize recurring slots into lessons.

    Logs the summary; per-teacher failures are already in the job result.
    """
    logger.info("Starting daily lesson generation")

    try:
        summary = await background_jobs.generate_future_lessons()

        logger.info(
            f"Lesson generation finished: {summary['lessons_generated']} generated, "
            f"{summary['lessons_skipped']} skipped, {len(summary['errors'])} errors"
        )

        if not summary["success"]:
            logger.warning(f"Lesson generation ALERT: {len(summary['errors'])} teachers failed")

    except Exception as e:
        logger.error(f"Failed to generate future lessons: {e}", exc_info=True)


async def generate_monthly_invoices_job():
    """
    Daily job to invoice recurring slot subscriptions for the current month.

    Subscriptions already invoiced for the month are skipped, so only the 1st
    and days after a mid-month booking create records.
    """
    logger.info("Starting monthly invoice generation")

    try:
        summary = await background_jobs.generate_monthly_invoices()

        logger.info(
            f"Invoice generation finished: {summary['invoices_created']} created, "
            f"{summary['invoices_skipped']} skipped, {len(summary['errors'])} errors"
        )

        if not summary["success"]:
            logger.warning(f"Invoice generation ALERT: {len(summary['errors'])} subscriptions failed")

    except Exception as e:
        logger.error(f"Failed to generate monthly invoices: {e}", exc_info=True)


async def mark_missed_lessons_job():
    try:
        summary = await background_jobs.mark_missed_lessons()
        logger.info(f"Missed lesson cleanup finished: {summary['lessons_updated']} updated")
    except Exception as e:
        logger.error(f"Failed to mark missed lessons: {e}", exc_info=True)


async def housekeeping_job():
    """Daily pruning of expired blocked intervals and old job logs."""
    try:
        pruned = await background_jobs.prune_blocked_intervals()
        cleaned = await background_jobs.cleanup_job_logs()
        logger.info(
            f"Housekeeping finished: {pruned['blocked_intervals_pruned']} blocked intervals pruned, "
            f"{cleaned['records_deleted']} job records deleted"
        )
    except Exception as e:
        logger.error(f"Housekeeping failed: {e}", exc_info=True)


def configure_scheduler():
    """
    Configure APScheduler with all scheduled jobs.

    Jobs:
        - Lesson generation: Daily at 02:00
        - Monthly invoices: daily at 06:00 (idempotent per subscription and month)
        - Missed lesson cleanup: Every hour at :05
        - Housekeeping: Daily at 03:30
    """
    scheduler.add_job(
        generate_future_lessons_job,
        trigger=CronTrigger(hour=2, minute=0),
        id='generate_future_lessons',
        name='Generate Future Lessons',
        replace_existing=True,
        coalesce=True,  # Combine missed runs into single execution
        max_instances=1  # Only one instance at a time
    )

    scheduler.add_job(
        generate_monthly_invoices_job,
        trigger=CronTrigger(hour=6, minute=0),
        id='generate_monthly_invoices',
        name='Generate Monthly Invoices',
        replace_existing=True,
        coalesce=True,
        max_instances=1
    )

    scheduler.add_job(
        mark_missed_lessons_job,
        trigger=CronTrigger(hour='*', minute=5),
        id='mark_missed_lessons',
        name='Mark Missed Lessons',
        replace_existing=True,
        coalesce=True,
        max_instances=1
    )

    scheduler.add_job(
        housekeeping_job,
        trigger=CronTrigger(hour=3, minute=30),
        id='housekeeping',
        name='Prune Blocked Intervals and Job Logs',
        replace_existing=True,
        coalesce=True,
        max_instances=1
    )

    logger.info("Scheduler configured with lesson generation, invoicing, cleanup and housekeeping jobs")


def start_scheduler():
    """Start the APScheduler"""
    configure_scheduler()
    scheduler.start()
    logger.info("Scheduler started")


def stop_scheduler():
    """Stop the APScheduler"""
    scheduler.shutdown()
    logger.info("Scheduler stopped")
