"""
Scheduling API Endpoints

Slot search, teacher availability, blocked time, and lesson and recurring
slot bookings. Domain errors propagate to the application's error handler,
which maps them to 400/404/409/503 responses.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from lessonbook.services.availability_service import (
    AvailabilityService,
    AvailabilityWindow,
    get_availability_service,
)
from lessonbook.services.booking_service import BookingService, get_booking_service
from lessonbook.services.slot_generator import SlotGenerator, get_slot_generator
from lessonbook.services.time_utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/scheduling", tags=["scheduling"])


# Pydantic models for request/response validation


class SlotResponse(BaseModel):
    start: datetime
    end: datetime
    duration: int
    price: int = Field(..., ge=0, description="Price in cents")
    available: bool
    unavailable_reason: Optional[str] = None
    display_time: Optional[str] = None


class SlotListData(BaseModel):
    """Wrapper for slot search results"""
    data: List[SlotResponse]
    metadata: Dict[str, Any]


class AvailabilityWindowModel(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0=Sunday")
    start_time: str = Field(..., description="HH:MM in the teacher's timezone")
    end_time: str = Field(..., description="HH:MM in the teacher's timezone")


class AvailabilityRequest(BaseModel):
    windows: List[AvailabilityWindowModel]


class BlockedTimeRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    reason: Optional[str] = Field(None, max_length=500)


class LessonBookingRequest(BaseModel):
    teacher_id: str
    student_id: str
    start_time: datetime
    duration_minutes: int = Field(..., description="30 or 60")
    timezone: Optional[str] = None
    notes: Optional[str] = None


class LessonResponse(BaseModel):
    id: str
    teacher_id: str
    student_id: str
    start_time: datetime
    duration_minutes: int
    status: str
    price: int
    recurring_slot_id: Optional[str] = None


class RecurringSlotRequest(BaseModel):
    teacher_id: str
    student_id: str
    day_of_week: int = Field(..., ge=0, le=6, description="0=Sunday")
    start_time: str = Field(..., description="HH:MM in the teacher's timezone")
    duration_minutes: int = Field(..., description="30 or 60")
    start_month: Optional[str] = Field(None, description="YYYY-MM, defaults to the first lesson's month")
    end_month: Optional[str] = Field(None, description="YYYY-MM, open-ended when omitted")


class RecurringSlotResponse(BaseModel):
    id: str
    teacher_id: str
    student_id: str
    day_of_week: int
    start_time: str
    duration_minutes: int
    rate_per_lesson: int
    monthly_rate: int
    status: str


class SlotCancellationRequest(BaseModel):
    cancel_date: Optional[date] = Field(None, description="Defaults to today in the teacher's timezone")


def _lesson_payload(lesson) -> Dict[str, Any]:
    return {
        "id": str(lesson.id),
        "teacher_id": str(lesson.teacher_id),
        "student_id": str(lesson.student_id),
        "start_time": lesson.start_time,
        "duration_minutes": lesson.duration_minutes,
        "status": lesson.status.value,
        "price": lesson.price,
        "recurring_slot_id": str(lesson.recurring_slot_id) if lesson.recurring_slot_id else None,
    }


def _slot_payload(slot) -> Dict[str, Any]:
    return {
        "id": str(slot.id),
        "teacher_id": str(slot.teacher_id),
        "student_id": str(slot.student_id),
        "day_of_week": slot.day_of_week,
        "start_time": slot.start_time,
        "duration_minutes": slot.duration_minutes,
        "rate_per_lesson": slot.rate_per_lesson,
        "monthly_rate": slot.monthly_rate,
        "status": slot.status.value,
    }


# API Endpoints


@router.get("/teachers/{teacher_id}/slots", response_model=SlotListData)
async def get_available_slots(
    teacher_id: str,
    start: datetime = Query(..., description="Range start (ISO 8601)"),
    end: datetime = Query(..., description="Range end (ISO 8601)"),
    student_timezone: Optional[str] = Query(None, description="IANA timezone for display times"),
    available_only: bool = Query(False),
    generator: SlotGenerator = Depends(get_slot_generator),
) -> Dict[str, Any]:
    """
    Candidate slots for a teacher in a date range.

    Unavailable slots are included with a reason unless available_only is set.
    """
    slots = await generator.get_available_slots(teacher_id, start, end, student_timezone)
    data = [s.to_dict() for s in slots if s.available or not available_only]
    return {
        "data": data,
        "metadata": {
            "timestamp": utcnow().isoformat(),
            "count": len(data),
        }
    }


@router.put("/teachers/{teacher_id}/availability")
async def replace_availability(
    teacher_id: str,
    request: AvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> Dict[str, Any]:
    """Replace the teacher's whole weekly schedule."""
    windows = [AvailabilityWindow(w.day_of_week, w.start_time, w.end_time) for w in request.windows]
    rows = await service.replace_weekly_availability(teacher_id, windows)
    return {
        "data": [
            {"day_of_week": r.day_of_week, "start_time": r.start_time, "end_time": r.end_time}
            for r in rows
        ]
    }


@router.post("/teachers/{teacher_id}/availability/validate")
async def validate_availability(
    teacher_id: str,
    request: AvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> Dict[str, Any]:
    windows = [AvailabilityWindow(w.day_of_week, w.start_time, w.end_time) for w in request.windows]
    await service.validate_availability(teacher_id, windows)
    return {"data": {"valid": True}}


@router.post("/teachers/{teacher_id}/blocked-time", status_code=status.HTTP_201_CREATED)
async def add_blocked_time(
    teacher_id: str,
    request: BlockedTimeRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> Dict[str, Any]:
    """Block a one-off interval; rejected with 409 if lessons are already scheduled in it."""
    blocked = await service.add_blocked_interval(teacher_id, request.start_time, request.end_time, request.reason)
    return {
        "data": {
            "id": str(blocked.id),
            "teacher_id": str(blocked.teacher_id),
            "start_time": blocked.start_time.isoformat(),
            "end_time": blocked.end_time.isoformat(),
            "reason": blocked.reason,
        }
    }


@router.post("/lessons", status_code=status.HTTP_201_CREATED)
async def book_lesson(
    request: LessonBookingRequest,
    service: BookingService = Depends(get_booking_service),
) -> Dict[str, Any]:
    lesson = await service.book_lesson(
        request.teacher_id,
        request.student_id,
        request.start_time,
        request.duration_minutes,
        timezone=request.timezone,
        notes=request.notes,
    )
    return {"data": LessonResponse(**_lesson_payload(lesson))}


@router.post("/lessons/{lesson_id}/cancel")
async def cancel_lesson(
    lesson_id: str,
    service: BookingService = Depends(get_booking_service),
) -> Dict[str, Any]:
    lesson = await service.cancel_lesson(lesson_id)
    return {"data": LessonResponse(**_lesson_payload(lesson))}


@router.post("/recurring-slots", status_code=status.HTTP_201_CREATED)
async def book_recurring_slot(
    request: RecurringSlotRequest,
    service: BookingService = Depends(get_booking_service),
) -> Dict[str, Any]:
    """Book a weekly slot; its lessons are generated immediately."""
    slot = await service.book_recurring_slot(
        request.teacher_id,
        request.student_id,
        request.day_of_week,
        request.start_time,
        request.duration_minutes,
        start_month=request.start_month,
        end_month=request.end_month,
    )
    return {"data": RecurringSlotResponse(**_slot_payload(slot))}


@router.post("/recurring-slots/{slot_id}/cancel")
async def cancel_recurring_slot(
    slot_id: str,
    request: Optional[SlotCancellationRequest] = None,
    service: BookingService = Depends(get_booking_service),
) -> Dict[str, Any]:
    """Cancel a weekly slot and refund the rest of an already billed month."""
    cancel_date = request.cancel_date if request else None
    outcome = await service.cancel_recurring_slot(slot_id, cancel_date)
    return {"data": outcome.to_dict()}
