"""
Admin Job API Endpoints

Authenticated triggers for the background jobs plus job history and the
system health check. The triggers run exactly the functions the scheduler
runs, so the response shape is the job result itself.
"""
import logging
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from lessonbook.api.auth import require_admin
from lessonbook.services import background_jobs
from lessonbook.services.background_jobs import JobMonitor, get_job_monitor
from lessonbook.services.invoice_generator import InvoiceGenerator, get_invoice_generator
from lessonbook.services.lesson_cleanup import LessonCleanup, get_lesson_cleanup
from lessonbook.services.lesson_materializer import LessonMaterializer, get_lesson_materializer

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/admin/jobs",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


class JobErrorResponse(BaseModel):
    item_type: str
    item_id: str
    operation: str
    message: str


class JobExecutionResponse(BaseModel):
    id: str
    job_name: str
    executed_at: str
    success: bool
    counts: Dict[str, int]
    errors: List[JobErrorResponse]


class SystemHealthResponse(BaseModel):
    is_healthy: bool
    issues: List[str]
    suggestions: List[str]


@router.post("/generate-lessons")
async def trigger_generate_lessons(
    materializer: LessonMaterializer = Depends(get_lesson_materializer),
    monitor: JobMonitor = Depends(get_job_monitor),
) -> Dict[str, Any]:
    """Run lesson materialization now; returns {success, lessons_generated, ..., errors}."""
    logger.info("Lesson generation triggered via admin API")
    return await background_jobs.generate_future_lessons(materializer, monitor)


@router.post("/generate-invoices")
async def trigger_generate_invoices(
    month: Optional[str] = Query(None, description="YYYY-MM, defaults to the current month"),
    generator: InvoiceGenerator = Depends(get_invoice_generator),
    monitor: JobMonitor = Depends(get_job_monitor),
) -> Dict[str, Any]:
    logger.info(f"Invoice generation triggered via admin API for {month or 'current month'}")
    return await background_jobs.generate_monthly_invoices(month, generator, monitor)


@router.post("/mark-missed")
async def trigger_mark_missed(
    cleanup: LessonCleanup = Depends(get_lesson_cleanup),
    monitor: JobMonitor = Depends(get_job_monitor),
) -> Dict[str, Any]:
    return await background_jobs.mark_missed_lessons(cleanup, monitor)


@router.get("/history", response_model=List[JobExecutionResponse])
async def get_job_history(
    limit: int = Query(10, ge=1, le=100),
    job_name: Optional[str] = Query(None),
    monitor: JobMonitor = Depends(get_job_monitor),
) -> List[Dict[str, Any]]:
    """Recent job executions, newest first."""
    return await monitor.get_job_history(limit, job_name)


@router.get("/health", response_model=SystemHealthResponse)
async def get_system_health(
    monitor: JobMonitor = Depends(get_job_monitor),
) -> Dict[str, Any]:
    return await monitor.validate_system_health()
