from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from lingoclass.models import AttendanceRole, BookingStatus


class BookingForm(BaseModel):
    teacher_id: Optional[int] = None  # defaults to the calling teacher
    student_id: int
    day: date
    time_slot: str
    enrollment_id: Optional[int] = None
    notes: Optional[str] = None
    status: BookingStatus = BookingStatus.CONFIRMED


class PaidBookingForm(BaseModel):
    teacher_id: int
    day: date
    time_slot: str
    cost: int = Field(gt=0)
    enrollment_id: Optional[int] = None
    notes: Optional[str] = None


class RescheduleForm(BaseModel):
    day: date
    time_slot: str


class AttendanceForm(BaseModel):
    role: AttendanceRole
