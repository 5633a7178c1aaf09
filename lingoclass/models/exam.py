from enum import Enum

from lingoclass.extensions import db
from lingoclass.utils import utcnow


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TRUE_FALSE = "TRUE_FALSE"
    FILL_BLANK = "FILL_BLANK"
    SHORT_ANSWER = "SHORT_ANSWER"
    ESSAY = "ESSAY"


AUTO_GRADABLE = frozenset({
    QuestionType.MULTIPLE_CHOICE,
    QuestionType.TRUE_FALSE,
    QuestionType.FILL_BLANK,
    QuestionType.SHORT_ANSWER,
})


class AttemptStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"  # waiting for manual review
    COMPLETED = "COMPLETED"
    TIMED_OUT = "TIMED_OUT"


class Exam(db.Model):
    __tablename__ = "exams"
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    instructions = db.Column(db.Text)
    time_limit_minutes = db.Column(db.Integer)  # None = untimed
    passing_score = db.Column(db.Float, nullable=False, default=70.0)
    max_attempts = db.Column(db.Integer, nullable=False, default=3)
    is_published = db.Column(db.Boolean, nullable=False, default=False)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=utcnow)

    questions = db.relationship(
        "ExamQuestion",
        back_populates="exam",
        cascade="all, delete-orphan",
        order_by="ExamQuestion.position",
    )

    __table_args__ = (
        db.CheckConstraint("max_attempts >= 1", name="ck_exam_max_attempts"),
    )

    @property
    def max_points(self) -> float:
        return sum(q.points for q in self.questions)

    def to_dict(self, include_questions: bool = False) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "instructions": self.instructions,
            "time_limit_minutes": self.time_limit_minutes,
            "passing_score": self.passing_score,
            "max_attempts": self.max_attempts,
            "is_published": self.is_published,
            "question_count": len(self.questions),
            "max_points": self.max_points,
        }
        if include_questions:
            data["questions"] = [q.to_dict() for q in self.questions]
        return data


class ExamQuestion(db.Model):
    __tablename__ = "exam_questions"
    id = db.Column(db.Integer, primary_key=True)
    exam_id = db.Column(db.Integer, db.ForeignKey("exams.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    question_type = db.Column(db.Enum(QuestionType, name="question_type"), nullable=False)
    prompt = db.Column(db.Text, nullable=False)
    options = db.Column(db.JSON)
    correct_answer = db.Column(db.JSON)  # str or list of accepted answers
    points = db.Column(db.Float, nullable=False, default=1.0)
    case_sensitive = db.Column(db.Boolean, nullable=False, default=False)
    partial_credit = db.Column(db.Boolean, nullable=False, default=False)
    explanation = db.Column(db.Text)

    exam = db.relationship("Exam", back_populates="questions")

    def to_dict(self) -> dict:
        # Correct answers are never serialized to students.
        return {
            "id": self.id,
            "position": self.position,
            "type": self.question_type.value,
            "prompt": self.prompt,
            "options": self.options,
            "points": self.points,
        }


class ExamAttempt(db.Model):
    __tablename__ = "exam_attempts"
    id = db.Column(db.Integer, primary_key=True)
    exam_id = db.Column(db.Integer, db.ForeignKey("exams.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    attempt_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.Enum(AttemptStatus, name="attempt_status"), nullable=False, default=AttemptStatus.IN_PROGRESS)
    started_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    submitted_at = db.Column(db.DateTime)
    score = db.Column(db.Float)
    total_points = db.Column(db.Float)
    max_points = db.Column(db.Float)
    time_spent_minutes = db.Column(db.Integer)

    exam = db.relationship("Exam")
    answers = db.relationship("ExamAnswer", back_populates="attempt", cascade="all, delete-orphan")

    __table_args__ = (
        db.UniqueConstraint("exam_id", "user_id", "attempt_number", name="uq_attempt_number"),
        db.Index("ix_attempt_exam_user", "exam_id", "user_id"),
    )

    @property
    def passed(self) -> bool | None:
        if self.status != AttemptStatus.COMPLETED or self.score is None:
            return None
        return self.score >= self.exam.passing_score

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "exam_id": self.exam_id,
            "attempt_number": self.attempt_number,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "score": self.score,
            "total_points": self.total_points,
            "max_points": self.max_points,
            "time_spent_minutes": self.time_spent_minutes,
            "passed": self.passed,
        }


class ExamAnswer(db.Model):
    __tablename__ = "exam_answers"
    id = db.Column(db.Integer, primary_key=True)
    attempt_id = db.Column(db.Integer, db.ForeignKey("exam_attempts.id"), nullable=False)
    question_id = db.Column(db.Integer, db.ForeignKey("exam_questions.id"), nullable=False)
    answer = db.Column(db.JSON)
    is_correct = db.Column(db.Boolean)
    points_earned = db.Column(db.Float, nullable=False, default=0.0)
    needs_review = db.Column(db.Boolean, nullable=False, default=False)
    feedback = db.Column(db.Text)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    attempt = db.relationship("ExamAttempt", back_populates="answers")
    question = db.relationship("ExamQuestion")

    __table_args__ = (
        db.UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
    )

    def to_dict(self) -> dict:
        return {
            "question_id": self.question_id,
            "answer": self.answer,
            "is_correct": self.is_correct,
            "points_earned": self.points_earned,
            "needs_review": self.needs_review,
            "feedback": self.feedback,
        }
