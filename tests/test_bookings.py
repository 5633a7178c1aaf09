from datetime import date, datetime, timedelta

import pytest

from lingoclass.errors import (
    Forbidden,
    InsufficientCredits,
    InvalidState,
    NotFound,
    OutsideClassWindow,
    SlotUnavailable,
    ValidationFailed,
)
from lingoclass.models import (
    AttendanceRole,
    BookingAttendance,
    BookingStatus,
    ClassBooking,
    CreditTransaction,
    RoleName,
    TransactionType,
)
from lingoclass.services import bookings, ledger

CLASS_DAY = date(2030, 3, 4)
DURING_CLASS = datetime.combine(CLASS_DAY, datetime.min.time()) + timedelta(hours=10, minutes=5)


def _book(session, teacher, student, slot="10:00-11:00", **kwargs):
    return bookings.create_booking(
        session, teacher_id=teacher.id, student_id=student.id, day=CLASS_DAY, time_slot=slot, **kwargs
    )


def test_create_normalizes_slot(session, teacher, student):
    booking = _book(session, teacher, student, slot="9:00 - 10:00")
    assert booking.time_slot == "09:00-10:00"
    assert booking.status == BookingStatus.CONFIRMED


def test_overlapping_slot_rejected_for_teacher_and_student(session, teacher, student, make_user):
    _book(session, teacher, student)
    other_student = make_user()
    other_teacher = make_user(RoleName.TEACHER)

    with pytest.raises(SlotUnavailable):
        _book(session, teacher, other_student, slot="10:30-11:30")
    with pytest.raises(SlotUnavailable):
        _book(session, other_teacher, student, slot="10:30-11:30")

    # Adjacent is fine.
    assert _book(session, teacher, other_student, slot="11:00-12:00").id


def test_cancelled_slot_can_be_booked_again(session, teacher, student):
    first = _book(session, teacher, student)
    bookings.cancel_booking(session, first.id, student.id)
    second = _book(session, teacher, student)
    assert second.id != first.id
    assert session.query(ClassBooking).count() == 2


def test_teacher_must_have_teacher_role(session, student, make_user):
    not_a_teacher = make_user()
    with pytest.raises(NotFound):
        _book(session, not_a_teacher, student)
    with pytest.raises(ValidationFailed):
        bookings.create_booking(session, teacher_id=student.id, student_id=student.id,
                                day=CLASS_DAY, time_slot="10:00-11:00")


def test_participant_lookup(session, teacher, student, make_user):
    booking = _book(session, teacher, student)
    assert bookings.get_booking_for_participant(session, booking.id, teacher.id) is booking
    with pytest.raises(Forbidden):
        bookings.get_booking_for_participant(session, booking.id, make_user().id)
    with pytest.raises(NotFound):
        bookings.get_booking_for_participant(session, 9999, teacher.id)


def test_cancel_completed_booking_rejected(session, teacher, student):
    booking = _book(session, teacher, student)
    bookings.complete_booking(session, booking.id, teacher.id)

    with pytest.raises(InvalidState):
        bookings.cancel_booking(session, booking.id, student.id)
    session.refresh(booking)
    assert booking.status == BookingStatus.COMPLETED
    assert booking.cancelled_at is None


def test_cancel_twice_rejected(session, teacher, student):
    booking = _book(session, teacher, student)
    bookings.cancel_booking(session, booking.id, teacher.id)
    assert booking.status == BookingStatus.CANCELLED
    assert booking.cancelled_by_id == teacher.id
    with pytest.raises(InvalidState):
        bookings.cancel_booking(session, booking.id, student.id)


def test_only_teacher_confirms_and_completes(session, teacher, student):
    booking = _book(session, teacher, student, status=BookingStatus.PENDING)
    with pytest.raises(Forbidden):
        bookings.confirm_booking(session, booking.id, student.id)
    bookings.confirm_booking(session, booking.id, teacher.id)
    assert booking.status == BookingStatus.CONFIRMED
    with pytest.raises(InvalidState):
        bookings.confirm_booking(session, booking.id, teacher.id)
    with pytest.raises(Forbidden):
        bookings.complete_booking(session, booking.id, student.id)


def test_complete_requires_confirmed(session, teacher, student):
    booking = _book(session, teacher, student, status=BookingStatus.PENDING)
    with pytest.raises(InvalidState):
        bookings.complete_booking(session, booking.id, teacher.id)


def test_reschedule_checks_slot_and_ignores_itself(session, teacher, student, make_user):
    booking = _book(session, teacher, student)
    _book(session, teacher, make_user(), slot="14:00-15:00")

    moved = bookings.reschedule_booking(session, booking.id, student.id, day=CLASS_DAY, time_slot="10:30-11:30")
    assert moved.time_slot == "10:30-11:30"
    with pytest.raises(SlotUnavailable):
        bookings.reschedule_booking(session, booking.id, student.id, day=CLASS_DAY, time_slot="14:30-15:30")


def test_reschedule_cannot_revive_a_booking_cancelled_meanwhile(session, other_session, teacher, student):
    ledger.add_credits(session, student.id, 10, TransactionType.PURCHASE, "Pack")
    booking = bookings.book_with_credits(
        session, student_id=student.id, teacher_id=teacher.id, day=CLASS_DAY, time_slot="10:00-11:00", cost=4
    )
    assert booking.status == BookingStatus.CONFIRMED

    # The teacher cancels from another request; this session still holds the old status.
    bookings.cancel_booking(other_session, booking.id, teacher.id)

    with pytest.raises(InvalidState):
        bookings.reschedule_booking(session, booking.id, student.id, day=CLASS_DAY, time_slot="12:00-13:00")

    other_session.expire_all()
    stored = other_session.get(ClassBooking, booking.id)
    assert stored.status == BookingStatus.CANCELLED
    assert stored.time_slot == "10:00-11:00"
    assert ledger.get_balance(other_session, student.id).available_credits == 10


def test_available_teachers(session, teacher, student, make_user):
    other = make_user(RoleName.TEACHER)
    retired = make_user(RoleName.TEACHER)
    retired.is_active = False
    session.commit()
    _book(session, teacher, student)
    dropped = _book(session, other, make_user(), slot="10:30-11:30")
    bookings.cancel_booking(session, dropped.id, other.id)

    free = bookings.available_teachers(session, CLASS_DAY, "10:30-11:30")
    assert [t.id for t in free] == [other.id]

    later = bookings.available_teachers(session, CLASS_DAY, "11:00-12:00")
    assert {t.id for t in later} == {teacher.id, other.id}

    with pytest.raises(ValidationFailed):
        bookings.available_teachers(session, CLASS_DAY, "noon")


def test_book_with_credits_spends_and_refunds_on_cancel(session, teacher, student):
    ledger.add_credits(session, student.id, 10, TransactionType.PURCHASE, "Pack")
    booking = bookings.book_with_credits(
        session, student_id=student.id, teacher_id=teacher.id, day=CLASS_DAY, time_slot="10:00-11:00", cost=4
    )
    assert booking.credit_cost == 4
    assert ledger.get_balance(session, student.id).available_credits == 6

    bookings.cancel_booking(session, booking.id, student.id)
    balance = ledger.get_balance(session, student.id)
    assert balance.available_credits == 10
    refund = session.query(CreditTransaction).filter_by(transaction_type=TransactionType.REFUND).one()
    assert refund.amount == 4
    assert refund.related_entity_id == str(booking.id)


def test_book_with_credits_is_all_or_nothing(session, teacher, student):
    ledger.add_credits(session, student.id, 2, TransactionType.PURCHASE, "Pack")
    with pytest.raises(InsufficientCredits):
        bookings.book_with_credits(
            session, student_id=student.id, teacher_id=teacher.id, day=CLASS_DAY, time_slot="10:00-11:00", cost=4
        )
    assert session.query(ClassBooking).count() == 0
    assert ledger.get_balance(session, student.id).available_credits == 2


def test_mark_attendance_twice_creates_one_row(session, teacher, student, enrollment):
    booking = _book(session, teacher, student, enrollment_id=enrollment.id)

    first, created = bookings.mark_attendance(session, booking.id, student.id, AttendanceRole.STUDENT,
                                              now=DURING_CLASS)
    second, created_again = bookings.mark_attendance(session, booking.id, student.id, AttendanceRole.STUDENT,
                                                     now=DURING_CLASS + timedelta(minutes=1))
    assert created and not created_again
    assert second.id == first.id
    assert session.query(BookingAttendance).filter_by(booking_id=booking.id).count() == 1

    session.refresh(enrollment)
    assert enrollment.classes_attended == 1


def test_teacher_attendance_does_not_count_for_enrollment(session, teacher, student, enrollment):
    booking = _book(session, teacher, student, enrollment_id=enrollment.id)
    bookings.mark_attendance(session, booking.id, teacher.id, AttendanceRole.TEACHER, now=DURING_CLASS)
    session.refresh(enrollment)
    assert enrollment.classes_attended == 0
    assert booking.to_dict()["attendance"] == ["TEACHER"]


def test_attendance_role_must_match_user(session, teacher, student):
    booking = _book(session, teacher, student)
    with pytest.raises(Forbidden):
        bookings.mark_attendance(session, booking.id, student.id, AttendanceRole.TEACHER, now=DURING_CLASS)


def test_attendance_outside_window(session, teacher, student):
    booking = _book(session, teacher, student)
    too_early = DURING_CLASS - timedelta(hours=1)
    with pytest.raises(OutsideClassWindow) as exc:
        bookings.mark_attendance(session, booking.id, student.id, AttendanceRole.STUDENT, now=too_early)
    assert exc.value.detail["minutes_until_open"] == 40


def test_attendance_rejected_on_cancelled_booking(session, teacher, student):
    booking = _book(session, teacher, student)
    bookings.cancel_booking(session, booking.id, teacher.id)
    with pytest.raises(InvalidState):
        bookings.mark_attendance(session, booking.id, student.id, AttendanceRole.STUDENT, now=DURING_CLASS)


def test_list_and_stats(session, teacher, student, make_user):
    a = _book(session, teacher, student)
    _book(session, teacher, make_user(), slot="12:00-13:00")
    bookings.cancel_booking(session, a.id, student.id)

    assert [b.id for b in bookings.list_bookings(session, student.id)] == [a.id]
    assert len(bookings.list_bookings(session, teacher.id, status=BookingStatus.CONFIRMED)) == 1
    stats = bookings.booking_stats(session)
    assert stats["CANCELLED"] == 1 and stats["CONFIRMED"] == 1 and stats["total"] == 2
