from enum import Enum

from lingoclass.extensions import db
from lingoclass.utils import utcnow


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class AttendanceRole(str, Enum):
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"


class Enrollment(db.Model):
    __tablename__ = "enrollments"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    course_title = db.Column(db.String(200), nullable=False)
    classes_total = db.Column(db.Integer, nullable=False, default=0)
    classes_attended = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)

    student = db.relationship("User")

    __table_args__ = (
        db.CheckConstraint("classes_attended >= 0", name="ck_enrollment_attended_nonneg"),
    )


class ClassBooking(db.Model):
    __tablename__ = "class_bookings"

    id = db.Column(db.Integer, primary_key=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    enrollment_id = db.Column(db.Integer, db.ForeignKey("enrollments.id"), nullable=True)
    day = db.Column(db.Date, nullable=False)
    time_slot = db.Column(db.String(11), nullable=False)  # "HH:MM-HH:MM"
    status = db.Column(db.Enum(BookingStatus, name="booking_status"), nullable=False, default=BookingStatus.PENDING)
    notes = db.Column(db.Text)
    credit_cost = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)
    cancelled_at = db.Column(db.DateTime)
    cancelled_by_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    completed_at = db.Column(db.DateTime)

    teacher = db.relationship("User", foreign_keys=[teacher_id])
    student = db.relationship("User", foreign_keys=[student_id])
    cancelled_by = db.relationship("User", foreign_keys=[cancelled_by_id])
    enrollment = db.relationship("Enrollment")
    attendance = db.relationship(
        "BookingAttendance",
        back_populates="booking",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        # Cancelled rows are kept as history and must not block the slot.
        db.Index(
            "uq_booking_teacher_slot_active",
            "teacher_id", "day", "time_slot",
            unique=True,
            sqlite_where=db.text("status <> 'CANCELLED'"),
            postgresql_where=db.text("status <> 'CANCELLED'"),
        ),
        db.CheckConstraint("teacher_id <> student_id", name="ck_booking_distinct_parties"),
        db.CheckConstraint("credit_cost >= 0", name="ck_booking_cost_nonneg"),
        db.Index("ix_booking_student_day", "student_id", "day"),
        db.Index("ix_booking_teacher_day", "teacher_id", "day"),
    )

    def is_participant(self, user_id: int) -> bool:
        return user_id in (self.teacher_id, self.student_id)

    def participant_id(self, role: AttendanceRole) -> int:
        return self.teacher_id if role == AttendanceRole.TEACHER else self.student_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "teacher_id": self.teacher_id,
            "student_id": self.student_id,
            "enrollment_id": self.enrollment_id,
            "day": self.day.isoformat(),
            "time_slot": self.time_slot,
            "status": self.status.value,
            "notes": self.notes,
            "credit_cost": self.credit_cost,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancelled_by_id": self.cancelled_by_id,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "attendance": sorted(a.role.value for a in self.attendance),
        }

    def __repr__(self):
        return f"<ClassBooking id={self.id} {self.day} {self.time_slot} status={self.status}>"


class BookingAttendance(db.Model):
    __tablename__ = "booking_attendance"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("class_bookings.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    role = db.Column(db.Enum(AttendanceRole, name="attendance_role"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="PRESENT")
    marked_at = db.Column(db.DateTime, default=utcnow)

    booking = db.relationship("ClassBooking", back_populates="attendance")
    user = db.relationship("User")

    # One row per side of a booking; concurrent double marks collide here.
    __table_args__ = (
        db.UniqueConstraint("booking_id", "role", name="uq_attendance_booking_role"),
    )

    def __repr__(self):
        return f"<BookingAttendance booking_id={self.booking_id} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "booking_id": self.booking_id,
            "user_id": self.user_id,
            "role": self.role.value,
            "status": self.status,
            "marked_at": self.marked_at.isoformat() if self.marked_at else None,
        }
