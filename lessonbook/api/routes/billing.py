"""
Billing Preview API Endpoints

Read-only previews of monthly billing, cancellation refunds and
multi-month schedules for a recurring weekly slot. Amounts are in cents.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from lessonbook.errors import ValidationError
from lessonbook.services.billing_calculator import (
    billing_schedule,
    monthly_billing,
    monthly_rate_for_slot,
    refund_for_cancellation,
)
from lessonbook.services.time_utils import day_name, occurrence_dates, validate_day_of_week

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


class MonthlyBillingResponse(BaseModel):
    month: str
    expected_lessons: int = Field(..., ge=0)
    rate_per_lesson: int = Field(..., ge=0)
    total_amount: int = Field(..., ge=0)


class RefundResponse(BaseModel):
    month: str
    cancel_date: date
    total_lessons: int = Field(..., ge=0)
    remaining_lessons: int = Field(..., ge=0)
    refund_amount: int = Field(..., ge=0)


class OccurrencesResponse(BaseModel):
    month: str
    day_of_week: int
    day_name: str
    count: int
    dates: List[date]


@router.get("/monthly", response_model=MonthlyBillingResponse)
async def get_monthly_billing(
    monthly_rate: int = Query(..., ge=0, description="Monthly rate in cents"),
    day_of_week: int = Query(..., description="0=Sunday"),
    month: str = Query(..., description="YYYY-MM"),
) -> Dict[str, Any]:
    billing = monthly_billing(monthly_rate, validate_day_of_week(day_of_week), month)
    return {"month": month, **billing.to_dict()}


@router.get("/refund", response_model=RefundResponse)
async def get_refund_preview(
    monthly_rate: int = Query(..., ge=0, description="Monthly rate in cents"),
    day_of_week: int = Query(..., description="0=Sunday"),
    month: str = Query(..., description="YYYY-MM"),
    cancel_date: date = Query(..., description="Date the cancellation takes effect"),
) -> Dict[str, Any]:
    """Refund for the lessons on or after cancel_date in an already billed month."""
    refund = refund_for_cancellation(monthly_rate, validate_day_of_week(day_of_week), month, cancel_date)
    return {"month": month, "cancel_date": cancel_date, **refund.to_dict()}


@router.get("/schedule", response_model=List[MonthlyBillingResponse])
async def get_billing_schedule(
    day_of_week: int = Query(..., description="0=Sunday"),
    start_month: str = Query(..., description="YYYY-MM"),
    end_month: Optional[str] = Query(None, description="YYYY-MM, defaults to 12 months from start"),
    monthly_rate: Optional[int] = Query(None, ge=0, description="Monthly rate in cents"),
    lesson_rate: Optional[int] = Query(
        None, ge=0, description="Per-lesson price; the monthly rate is derived from start_month"
    ),
) -> List[Dict[str, Any]]:
    """
    Month-by-month billing preview.

    Either monthly_rate or lesson_rate must be given. With lesson_rate the
    monthly rate is lesson_rate times the occurrences in start_month.
    """
    validate_day_of_week(day_of_week)
    if monthly_rate is None:
        if lesson_rate is None:
            raise ValidationError("Either monthly_rate or lesson_rate is required")
        monthly_rate = monthly_rate_for_slot(lesson_rate, day_of_week, start_month)
    return billing_schedule(monthly_rate, day_of_week, start_month, end_month)


@router.get("/occurrences", response_model=OccurrencesResponse)
async def get_occurrences(
    day_of_week: int = Query(..., description="0=Sunday"),
    month: str = Query(..., description="YYYY-MM"),
) -> Dict[str, Any]:
    dates = occurrence_dates(validate_day_of_week(day_of_week), month)
    return {
        "month": month,
        "day_of_week": day_of_week,
        "day_name": day_name(day_of_week),
        "count": len(dates),
        "dates": dates,
    }
