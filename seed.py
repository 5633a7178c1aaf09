from decimal import Decimal

from lingoclass.extensions import db
from lingoclass.models import ActivityType, Enrollment, QuestionType, RoleName
from lingoclass.services import activities, exams, ledger, users

db.drop_all()
db.create_all()
session = db.session

# Staff
admin = users.register_user(session, email="admin@example.com", first_name="Ada", last_name="Admin",
                            password="Admin123!", roles=[RoleName.ADMIN])
teacher = users.register_user(session, email="teacher@example.com", first_name="Terry", last_name="Teacher",
                              password="Teacher123!", roles=[RoleName.TEACHER])

# Students
s1 = users.register_user(session, email="s1@example.com", first_name="Kai", last_name="Nguyen", password="ChangeMe123!")
s2 = users.register_user(session, email="s2@example.com", first_name="Mia", last_name="Singh", password="ChangeMe123!")

enrollment = Enrollment(student_id=s1.id, course_title="English A2", classes_total=12)
session.add(enrollment)
session.commit()

# Credit packages
starter = ledger.create_package(session, name="Starter", credits=10, price=Decimal("29.00"))
ledger.create_package(session, name="Intensive", credits=40, bonus_credits=5, price=Decimal("99.00"), is_popular=True)
ledger.purchase_package(session, s1.id, starter.id, "seed-payment-0001")

# Activities
activities.create_activity(session, title="Ordering at a cafe", activity_type=ActivityType.SPEAKING,
                           level=1, points=15, is_published=True, created_by_id=teacher.id)
activities.create_activity(session, title="Past simple irregular verbs", activity_type=ActivityType.VOCABULARY,
                           level=2, points=10, is_published=True, created_by_id=teacher.id)

# Exam
exams.create_exam(
    session,
    title="A2 placement check",
    time_limit_minutes=30,
    is_published=True,
    created_by_id=teacher.id,
    questions=[
        {"question_type": QuestionType.MULTIPLE_CHOICE, "prompt": "She ___ to school every day.",
         "options": ["go", "goes", "going"], "correct_answer": "goes", "points": 2},
        {"question_type": QuestionType.FILL_BLANK, "prompt": "Yesterday I ___ (see) a film.",
         "correct_answer": ["saw"], "points": 2, "partial_credit": True},
        {"question_type": QuestionType.ESSAY, "prompt": "Describe your last holiday.", "points": 6},
    ],
)

print("Database seeded. Admin login: admin@example.com / Admin123!")
