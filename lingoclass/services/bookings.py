"""Class bookings: participant checks, status transitions and attendance.

Only the booking's teacher or student may act on it. Status changes are
conditional UPDATEs on the current status, so two concurrent requests cannot
both cancel (and refund) or both complete the same booking.
"""
from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lingoclass.config import settings
from lingoclass.errors import Forbidden, InvalidState, NotFound, SlotUnavailable, ValidationFailed
from lingoclass.models import (
    AttendanceRole,
    BookingAttendance,
    BookingStatus,
    ClassBooking,
    Enrollment,
    Role,
    RoleName,
    TransactionType,
    User,
)
from lingoclass.services import ledger
from lingoclass.services.notifications import notify
from lingoclass.services.timeslots import check_class_window, overlaps_any, parse_time_slot
from lingoclass.utils import utcnow

log = logging.getLogger(__name__)

ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


def get_booking(session: Session, booking_id: int) -> ClassBooking:
    booking = session.get(ClassBooking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def get_booking_for_participant(session: Session, booking_id: int, user_id: int) -> ClassBooking:
    booking = get_booking(session, booking_id)
    if not booking.is_participant(user_id):
        log.warning("User %s is not a participant of booking %s", user_id, booking_id)
        raise Forbidden("You do not have permission for this class")
    return booking


def _ensure_slot_free(
    session: Session,
    *,
    teacher_id: int,
    student_id: int,
    day: date,
    time_slot: str,
    exclude_id: int | None = None,
) -> None:
    slot = parse_time_slot(time_slot)
    query = session.query(ClassBooking).filter(
        ClassBooking.day == day,
        ClassBooking.status != BookingStatus.CANCELLED,
    )
    if exclude_id is not None:
        query = query.filter(ClassBooking.id != exclude_id)

    teacher_slots = [b.time_slot for b in query.filter(ClassBooking.teacher_id == teacher_id)]
    if overlaps_any(slot, teacher_slots):
        raise SlotUnavailable()
    student_slots = [b.time_slot for b in query.filter(ClassBooking.student_id == student_id)]
    if overlaps_any(slot, student_slots):
        raise SlotUnavailable("The student already has a class in this time slot")


def _transition(
    session: Session,
    booking: ClassBooking,
    allowed: tuple[BookingStatus, ...],
    target: BookingStatus,
    **values,
) -> None:
    result = session.execute(
        update(ClassBooking)
        .where(ClassBooking.id == booking.id, ClassBooking.status.in_(allowed))
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.refresh(booking)
        log.warning("Booking %s: %s -> %s rejected", booking.id, booking.status.value, target.value)
        raise InvalidState(f"Cannot move a {booking.status.value} booking to {target.value}")
    session.expire(booking)


def create_booking(
    session: Session,
    *,
    teacher_id: int,
    student_id: int,
    day: date,
    time_slot: str,
    enrollment_id: int | None = None,
    notes: str | None = None,
    status: BookingStatus = BookingStatus.CONFIRMED,
    credit_cost: int = 0,
    commit: bool = True,
) -> ClassBooking:
    if teacher_id == student_id:
        raise ValidationFailed("Teacher and student must be different users")
    if status not in ACTIVE_STATUSES:
        raise ValidationFailed("New bookings must be PENDING or CONFIRMED")
    teacher = session.get(User, teacher_id)
    if teacher is None or not teacher.has_role(RoleName.TEACHER):
        raise NotFound("Teacher not found")
    if session.get(User, student_id) is None:
        raise NotFound("Student not found")
    if enrollment_id is not None:
        enrollment = session.get(Enrollment, enrollment_id)
        if enrollment is None or enrollment.student_id != student_id:
            raise NotFound("Enrollment not found")

    time_slot = str(parse_time_slot(time_slot))
    _ensure_slot_free(session, teacher_id=teacher_id, student_id=student_id, day=day, time_slot=time_slot)

    booking = ClassBooking(
        teacher_id=teacher_id,
        student_id=student_id,
        enrollment_id=enrollment_id,
        day=day,
        time_slot=time_slot,
        status=status,
        notes=notes,
        credit_cost=credit_cost,
    )
    session.add(booking)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        raise SlotUnavailable() from None
    if commit:
        session.commit()
    log.info("Booking %s created teacher=%s student=%s %s %s", booking.id, teacher_id, student_id, day, time_slot)
    return booking


def book_with_credits(
    session: Session,
    *,
    student_id: int,
    teacher_id: int,
    day: date,
    time_slot: str,
    cost: int,
    enrollment_id: int | None = None,
    notes: str | None = None,
) -> ClassBooking:
    """Create a confirmed booking paid with ``cost`` credits; both or neither are stored."""
    if cost <= 0:
        raise ValidationFailed("Cost must be positive")
    try:
        booking = create_booking(
            session,
            teacher_id=teacher_id,
            student_id=student_id,
            day=day,
            time_slot=time_slot,
            enrollment_id=enrollment_id,
            notes=notes,
            credit_cost=cost,
            commit=False,
        )
        ledger.spend_credits(
            session,
            student_id,
            cost,
            TransactionType.SPEND_CLASS,
            f"Class on {day.isoformat()} {booking.time_slot}",
            related_entity_id=booking.id,
            related_entity_type="class_booking",
            commit=False,
        )
    except Exception:
        session.rollback()
        raise
    session.commit()
    return booking


def confirm_booking(session: Session, booking_id: int, user_id: int) -> ClassBooking:
    booking = get_booking_for_participant(session, booking_id, user_id)
    if booking.teacher_id != user_id:
        raise Forbidden("Only the teacher can confirm this class")
    _transition(session, booking, (BookingStatus.PENDING,), BookingStatus.CONFIRMED)
    session.commit()
    return booking


def cancel_booking(session: Session, booking_id: int, user_id: int, *, now: datetime | None = None) -> ClassBooking:
    booking = get_booking_for_participant(session, booking_id, user_id)
    _transition(
        session,
        booking,
        ACTIVE_STATUSES,
        BookingStatus.CANCELLED,
        cancelled_at=now or utcnow(),
        cancelled_by_id=user_id,
    )
    if booking.credit_cost:
        ledger.add_credits(
            session,
            booking.student_id,
            booking.credit_cost,
            TransactionType.REFUND,
            f"Refund for cancelled class on {booking.day.isoformat()} {booking.time_slot}",
            related_entity_id=booking.id,
            related_entity_type="class_booking",
            commit=False,
        )
    session.commit()
    log.info("Booking %s cancelled by user %s", booking.id, user_id)
    notify(f"Class on {booking.day.isoformat()} {booking.time_slot} (booking {booking.id}) was cancelled.")
    return booking


def complete_booking(session: Session, booking_id: int, user_id: int, *, now: datetime | None = None) -> ClassBooking:
    booking = get_booking_for_participant(session, booking_id, user_id)
    if booking.teacher_id != user_id:
        raise Forbidden("Only the teacher can complete this class")
    _transition(session, booking, (BookingStatus.CONFIRMED,), BookingStatus.COMPLETED, completed_at=now or utcnow())
    session.commit()
    log.info("Booking %s completed", booking.id)
    return booking


def reschedule_booking(session: Session, booking_id: int, user_id: int, *, day: date, time_slot: str) -> ClassBooking:
    booking = get_booking_for_participant(session, booking_id, user_id)
    if booking.status not in ACTIVE_STATUSES:
        raise InvalidState(f"Cannot reschedule a {booking.status.value} booking")
    time_slot = str(parse_time_slot(time_slot))
    _ensure_slot_free(
        session,
        teacher_id=booking.teacher_id,
        student_id=booking.student_id,
        day=day,
        time_slot=time_slot,
        exclude_id=booking.id,
    )
    try:
        # Rejected if the booking was cancelled or completed since it was read.
        _transition(session, booking, ACTIVE_STATUSES, BookingStatus.CONFIRMED, day=day, time_slot=time_slot)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise SlotUnavailable() from None
    log.info("Booking %s rescheduled to %s %s by user %s", booking.id, day, time_slot, user_id)
    return booking


def mark_attendance(
    session: Session,
    booking_id: int,
    user_id: int,
    role: AttendanceRole,
    *,
    now: datetime | None = None,
) -> tuple[BookingAttendance, bool]:
    """
    Record that the teacher or the student joined the class.
    Returns (attendance, created); marking the same side twice is a no-op.
    """
    role = AttendanceRole(role)
    booking = get_booking_for_participant(session, booking_id, user_id)
    if booking.participant_id(role) != user_id:
        raise Forbidden(f"You are not the {role.value.lower()} of this class")
    if booking.status not in ACTIVE_STATUSES:
        raise InvalidState(f"Cannot mark attendance on a {booking.status.value} booking")
    check_class_window(
        booking.day,
        parse_time_slot(booking.time_slot),
        now or utcnow(),
        early_minutes=settings.EARLY_ENTRY_MINUTES,
        late_minutes=settings.LATE_ENTRY_MINUTES,
    )

    existing = (session.query(BookingAttendance)
                .filter_by(booking_id=booking.id, role=role)
                .first())
    if existing:
        return existing, False

    attendance = BookingAttendance(booking_id=booking.id, user_id=user_id, role=role, marked_at=now or utcnow())
    session.add(attendance)
    try:
        session.flush()
        if role == AttendanceRole.STUDENT and booking.enrollment_id:
            session.execute(
                update(Enrollment)
                .where(Enrollment.id == booking.enrollment_id)
                .values(classes_attended=Enrollment.classes_attended + 1)
                .execution_options(synchronize_session=False)
            )
        session.commit()
    except IntegrityError:
        # A concurrent request recorded this side first.
        session.rollback()
        existing = (session.query(BookingAttendance)
                    .filter_by(booking_id=booking_id, role=role)
                    .one())
        return existing, False
    log.info("Attendance booking=%s role=%s user=%s", booking.id, role.value, user_id)
    return attendance, True


def list_bookings(
    session: Session,
    user_id: int,
    *,
    status: BookingStatus | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[ClassBooking]:
    query = session.query(ClassBooking).filter(
        (ClassBooking.teacher_id == user_id) | (ClassBooking.student_id == user_id)
    )
    if status is not None:
        query = query.filter(ClassBooking.status == status)
    if start is not None:
        query = query.filter(ClassBooking.day >= start)
    if end is not None:
        query = query.filter(ClassBooking.day <= end)
    return query.order_by(ClassBooking.day, ClassBooking.time_slot).all()


def booking_stats(session: Session) -> dict:
    rows = session.query(ClassBooking.status, func.count(ClassBooking.id)).group_by(ClassBooking.status).all()
    counts = {s.value: 0 for s in BookingStatus}
    for status, count in rows:
        counts[status.value] = count
    counts["total"] = sum(counts.values())
    return counts


def available_teachers(session: Session, day: date, time_slot: str) -> list[User]:
    """Active teachers with no non-cancelled booking overlapping the slot on that day."""
    slot = parse_time_slot(time_slot)
    busy: dict[int, list[str]] = {}
    for teacher_id, booked in (session.query(ClassBooking.teacher_id, ClassBooking.time_slot)
                               .filter(ClassBooking.day == day, ClassBooking.status != BookingStatus.CANCELLED)):
        busy.setdefault(teacher_id, []).append(booked)

    teachers = (session.query(User)
                .join(User.roles)
                .filter(Role.name == RoleName.TEACHER.value, User.is_active.is_(True))
                .order_by(User.last_name, User.first_name, User.id)
                .all())
    return [t for t in teachers if not overlaps_any(slot, busy.get(t.id, ()))]
