from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lingoclass.dependencies import get_current_user, get_db, require_admin, require_role, require_staff
from lingoclass.errors import Forbidden
from lingoclass.models import BookingStatus, RoleName, User
from lingoclass.schemas.booking import AttendanceForm, BookingForm, PaidBookingForm, RescheduleForm
from lingoclass.services import bookings

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("", name="bookings.list")
def list_bookings(
    status: Optional[BookingStatus] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    items = bookings.list_bookings(session, current_user.id, status=status, start=start, end=end)
    return {"items": [b.to_dict() for b in items]}


@router.get("/stats", name="bookings.stats")
def booking_stats(current_user: User = Depends(require_admin), session: Session = Depends(get_db)):
    return bookings.booking_stats(session)


@router.get("/available-teachers", name="bookings.available_teachers")
def available_teachers(
    day: date,
    time_slot: str,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    teachers = bookings.available_teachers(session, day, time_slot)
    return {"items": [t.to_dict() for t in teachers]}


@router.post("", status_code=201, name="bookings.create")
def create_booking(
    form: BookingForm,
    current_user: User = Depends(require_staff),
    session: Session = Depends(get_db),
):
    teacher_id = form.teacher_id or current_user.id
    if teacher_id != current_user.id and not current_user.has_role(RoleName.ADMIN):
        raise Forbidden("Teachers can only schedule their own classes")
    booking = bookings.create_booking(
        session,
        teacher_id=teacher_id,
        student_id=form.student_id,
        day=form.day,
        time_slot=form.time_slot,
        enrollment_id=form.enrollment_id,
        notes=form.notes,
        status=form.status,
    )
    return booking.to_dict()


@router.post("/paid", status_code=201, name="bookings.book_with_credits")
def book_with_credits(
    form: PaidBookingForm,
    current_user: User = Depends(require_role(RoleName.STUDENT)),
    session: Session = Depends(get_db),
):
    booking = bookings.book_with_credits(
        session,
        student_id=current_user.id,
        teacher_id=form.teacher_id,
        day=form.day,
        time_slot=form.time_slot,
        cost=form.cost,
        enrollment_id=form.enrollment_id,
        notes=form.notes,
    )
    return booking.to_dict()


@router.get("/{booking_id}", name="bookings.detail")
def get_booking(booking_id: int, current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    return bookings.get_booking_for_participant(session, booking_id, current_user.id).to_dict()


@router.post("/{booking_id}/confirm", name="bookings.confirm")
def confirm_booking(booking_id: int, current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    return bookings.confirm_booking(session, booking_id, current_user.id).to_dict()


@router.post("/{booking_id}/cancel", name="bookings.cancel")
def cancel_booking(booking_id: int, current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    return bookings.cancel_booking(session, booking_id, current_user.id).to_dict()


@router.post("/{booking_id}/complete", name="bookings.complete")
def complete_booking(booking_id: int, current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    return bookings.complete_booking(session, booking_id, current_user.id).to_dict()


@router.post("/{booking_id}/reschedule", name="bookings.reschedule")
def reschedule_booking(
    booking_id: int,
    form: RescheduleForm,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    booking = bookings.reschedule_booking(session, booking_id, current_user.id, day=form.day, time_slot=form.time_slot)
    return booking.to_dict()


@router.post("/{booking_id}/attendance", name="bookings.attendance")
def mark_attendance(
    booking_id: int,
    form: AttendanceForm,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    attendance, created = bookings.mark_attendance(session, booking_id, current_user.id, form.role)
    return {"attendance": attendance.to_dict(), "created": created}
