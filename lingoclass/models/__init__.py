# Re-export models so external code can keep using: from lingoclass.models import User, ClassBooking, ...
from .user import User, Role, RoleName, user_roles
from .booking import AttendanceRole, BookingAttendance, BookingStatus, ClassBooking, Enrollment
from .credits import (
    BONUS_TYPES,
    GRANT_TYPES,
    SPEND_TYPES,
    CreditBalance,
    CreditPackage,
    CreditPackagePurchase,
    CreditTransaction,
    TransactionType,
)
from .rewards import PointBalance, RewardTransaction, UserStreak, ledger_total_points
from .activity import Activity, ActivityStatus, ActivityType, UserActivity
from .exam import AUTO_GRADABLE, AttemptStatus, Exam, ExamAnswer, ExamAttempt, ExamQuestion, QuestionType

__all__ = [
    # core
    "User", "Role", "RoleName", "user_roles",
    # bookings
    "ClassBooking", "BookingStatus", "BookingAttendance", "AttendanceRole", "Enrollment",
    # credits
    "CreditBalance", "CreditTransaction", "TransactionType", "CreditPackage", "CreditPackagePurchase",
    "GRANT_TYPES", "BONUS_TYPES", "SPEND_TYPES",
    # gamification
    "PointBalance", "RewardTransaction", "UserStreak", "ledger_total_points",
    "Activity", "ActivityStatus", "ActivityType", "UserActivity",
    # exams
    "Exam", "ExamQuestion", "ExamAttempt", "ExamAnswer", "QuestionType", "AttemptStatus", "AUTO_GRADABLE",
]
