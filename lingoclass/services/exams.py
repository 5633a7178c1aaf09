"""Exam attempts: start, answer, submit, review and time out.

An attempt closes exactly once. Closing is a conditional UPDATE on
``status = IN_PROGRESS`` so a submit racing the expiry sweep (or a double
submit) leaves a single outcome.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lingoclass.errors import Forbidden, InvalidState, NotFound, ValidationFailed
from lingoclass.models import AttemptStatus, Exam, ExamAnswer, ExamAttempt, ExamQuestion, QuestionType, RoleName, User
from lingoclass.services.grading import grade_answer
from lingoclass.utils import utcnow

log = logging.getLogger(__name__)

# Reviewed answers at or above this share of the question's points count as correct.
REVIEW_CORRECT_RATIO = 0.6


def _score(earned: float, maximum: float) -> float:
    return round(earned / maximum * 100, 2) if maximum > 0 else 0.0


def create_exam(
    session: Session,
    *,
    title: str,
    questions: Iterable[dict[str, Any]] = (),
    description: str | None = None,
    instructions: str | None = None,
    time_limit_minutes: int | None = None,
    passing_score: float = 70.0,
    max_attempts: int = 3,
    is_published: bool = False,
    created_by_id: int | None = None,
) -> Exam:
    if max_attempts < 1:
        raise ValidationFailed("max_attempts must be at least 1")
    if time_limit_minutes is not None and time_limit_minutes <= 0:
        raise ValidationFailed("time_limit_minutes must be positive")
    if not 0 <= passing_score <= 100:
        raise ValidationFailed("passing_score must be between 0 and 100")

    exam = Exam(
        title=title.strip(),
        description=description,
        instructions=instructions,
        time_limit_minutes=time_limit_minutes,
        passing_score=passing_score,
        max_attempts=max_attempts,
        is_published=is_published,
        created_by_id=created_by_id,
    )
    for position, data in enumerate(questions):
        qtype = QuestionType(data["question_type"])
        if qtype != QuestionType.ESSAY and data.get("correct_answer") in (None, "", []):
            raise ValidationFailed(f"Question {position + 1} needs a correct answer")
        if data.get("points", 1.0) <= 0:
            raise ValidationFailed(f"Question {position + 1} must be worth some points")
        exam.questions.append(ExamQuestion(
            position=position,
            question_type=qtype,
            prompt=data["prompt"],
            options=data.get("options"),
            correct_answer=data.get("correct_answer"),
            points=data.get("points", 1.0),
            case_sensitive=data.get("case_sensitive", False),
            partial_credit=data.get("partial_credit", False),
            explanation=data.get("explanation"),
        ))
    session.add(exam)
    session.commit()
    log.info("Exam %s created with %s questions", exam.id, len(exam.questions))
    return exam


def get_exam(session: Session, exam_id: int) -> Exam:
    exam = session.get(Exam, exam_id)
    if exam is None:
        raise NotFound("Exam not found")
    return exam


def list_exams(session: Session, *, published_only: bool = True) -> list[Exam]:
    query = session.query(Exam)
    if published_only:
        query = query.filter(Exam.is_published.is_(True))
    return query.order_by(Exam.created_at.desc(), Exam.id.desc()).all()


def set_published(session: Session, exam_id: int, published: bool = True) -> Exam:
    exam = get_exam(session, exam_id)
    if published and not exam.questions:
        raise InvalidState("An exam needs questions before it can be published")
    exam.is_published = published
    session.commit()
    return exam


def deadline(attempt: ExamAttempt) -> datetime | None:
    limit = attempt.exam.time_limit_minutes
    if not limit:
        return None
    return attempt.started_at + timedelta(minutes=limit)


def is_expired(attempt: ExamAttempt, now: datetime) -> bool:
    ends = deadline(attempt)
    return ends is not None and now > ends


def _close(session: Session, attempt: ExamAttempt, status: AttemptStatus, closed_at: datetime) -> None:
    answers = session.query(ExamAnswer).filter(ExamAnswer.attempt_id == attempt.id).all()
    earned = sum(a.points_earned or 0.0 for a in answers)
    maximum = attempt.exam.max_points
    minutes = round((closed_at - attempt.started_at).total_seconds() / 60)

    result = session.execute(
        update(ExamAttempt)
        .where(ExamAttempt.id == attempt.id, ExamAttempt.status == AttemptStatus.IN_PROGRESS)
        .values(
            status=status,
            submitted_at=closed_at,
            total_points=earned,
            max_points=maximum,
            score=_score(earned, maximum),
            time_spent_minutes=max(minutes, 0),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.rollback()
        raise InvalidState("This attempt has already been submitted")
    session.expire(attempt)
    log.info("Attempt %s closed as %s", attempt.id, status.value)


def _time_out(session: Session, attempt: ExamAttempt) -> None:
    _close(session, attempt, AttemptStatus.TIMED_OUT, deadline(attempt))


def start_attempt(session: Session, exam_id: int, user_id: int, *, now: datetime | None = None) -> tuple[ExamAttempt, bool]:
    """
    Returns (attempt, resumed). An attempt still in progress is resumed
    instead of counting against ``max_attempts``.
    """
    now = now or utcnow()
    exam = get_exam(session, exam_id)
    if not exam.is_published:
        raise InvalidState("This exam is not available")

    current = (session.query(ExamAttempt)
               .filter_by(exam_id=exam_id, user_id=user_id, status=AttemptStatus.IN_PROGRESS)
               .first())
    if current is not None:
        if not is_expired(current, now):
            return current, True
        _time_out(session, current)
        session.commit()

    used = session.query(ExamAttempt).filter_by(exam_id=exam_id, user_id=user_id).count()
    if used >= exam.max_attempts:
        raise InvalidState("You have reached the maximum number of attempts", max_attempts=exam.max_attempts)

    attempt = ExamAttempt(
        exam_id=exam_id,
        user_id=user_id,
        attempt_number=used + 1,
        status=AttemptStatus.IN_PROGRESS,
        started_at=now,
    )
    session.add(attempt)
    try:
        session.commit()
    except IntegrityError:
        # A concurrent start took this attempt number.
        session.rollback()
        current = (session.query(ExamAttempt)
                   .filter_by(exam_id=exam_id, user_id=user_id, status=AttemptStatus.IN_PROGRESS)
                   .first())
        if current is None:
            raise InvalidState("You have reached the maximum number of attempts") from None
        return current, True
    log.info("Attempt %s started exam=%s user=%s number=%s", attempt.id, exam_id, user_id, attempt.attempt_number)
    return attempt, False


def get_attempt_for_user(session: Session, attempt_id: int, user_id: int) -> ExamAttempt:
    attempt = session.get(ExamAttempt, attempt_id)
    if attempt is None:
        raise NotFound("Attempt not found")
    if attempt.user_id != user_id:
        raise Forbidden("This attempt belongs to another user")
    return attempt


def _open_attempt(session: Session, attempt_id: int, user_id: int, now: datetime) -> ExamAttempt:
    attempt = get_attempt_for_user(session, attempt_id, user_id)
    if attempt.status != AttemptStatus.IN_PROGRESS:
        raise InvalidState("This attempt has already been submitted")
    if is_expired(attempt, now):
        _time_out(session, attempt)
        session.commit()
        raise InvalidState("The time limit for this attempt has expired")
    return attempt


def save_answer(
    session: Session,
    attempt_id: int,
    user_id: int,
    question_id: int,
    answer: Any,
    *,
    now: datetime | None = None,
) -> ExamAnswer:
    """Grade and store one answer; saving the same question again replaces it."""
    now = now or utcnow()
    attempt = _open_attempt(session, attempt_id, user_id, now)
    question = session.get(ExamQuestion, question_id)
    if question is None or question.exam_id != attempt.exam_id:
        raise NotFound("Question not found in this exam")

    result = grade_answer(question, answer)
    row = session.query(ExamAnswer).filter_by(attempt_id=attempt.id, question_id=question_id).first()
    if row is None:
        row = ExamAnswer(attempt_id=attempt.id, question_id=question_id)
        session.add(row)
    row.answer = answer
    row.is_correct = result.is_correct
    row.points_earned = result.points_earned
    row.needs_review = result.needs_review
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        row = session.query(ExamAnswer).filter_by(attempt_id=attempt.id, question_id=question_id).one()
        row.answer = answer
        row.is_correct = result.is_correct
        row.points_earned = result.points_earned
        row.needs_review = result.needs_review
        session.commit()
    return row


def submit_attempt(session: Session, attempt_id: int, user_id: int, *, now: datetime | None = None) -> ExamAttempt:
    """
    Score the attempt. It is COMPLETED when every answer is graded and
    SUBMITTED while essays still wait for review. Past the time limit it
    closes as TIMED_OUT with whatever was saved.
    """
    now = now or utcnow()
    attempt = get_attempt_for_user(session, attempt_id, user_id)
    if attempt.status != AttemptStatus.IN_PROGRESS:
        raise InvalidState("This attempt has already been submitted")
    if is_expired(attempt, now):
        _time_out(session, attempt)
    else:
        pending = (session.query(ExamAnswer)
                   .filter_by(attempt_id=attempt.id, needs_review=True)
                   .count())
        status = AttemptStatus.SUBMITTED if pending else AttemptStatus.COMPLETED
        _close(session, attempt, status, now)
    session.commit()
    return attempt


def review_answer(
    session: Session,
    answer_id: int,
    points_earned: float,
    *,
    feedback: str | None = None,
    reviewer: User | None = None,
) -> ExamAnswer:
    """Grade one answer by hand. A ``reviewer`` must be an admin or the exam's author."""
    answer = session.get(ExamAnswer, answer_id)
    if answer is None:
        raise NotFound("Answer not found")
    attempt = answer.attempt
    if reviewer is not None and not _may_review(reviewer, attempt.exam):
        log.warning("User %s may not review answers of exam %s", reviewer.id, attempt.exam_id)
        raise Forbidden("Only the exam's author can review its answers")
    if attempt.status == AttemptStatus.IN_PROGRESS:
        raise InvalidState("The attempt has not been submitted yet")
    maximum = answer.question.points
    if not 0 <= points_earned <= maximum:
        raise ValidationFailed(f"Points must be between 0 and {maximum}")

    answer.points_earned = points_earned
    answer.feedback = feedback
    answer.is_correct = points_earned >= maximum * REVIEW_CORRECT_RATIO
    answer.needs_review = False
    session.flush()

    answers = session.query(ExamAnswer).filter(ExamAnswer.attempt_id == attempt.id).all()
    earned = sum(a.points_earned or 0.0 for a in answers)
    attempt.total_points = earned
    attempt.score = _score(earned, attempt.max_points or 0.0)
    if attempt.status == AttemptStatus.SUBMITTED and not any(a.needs_review for a in answers):
        attempt.status = AttemptStatus.COMPLETED
    session.commit()
    log.info("Answer %s reviewed: %s/%s", answer.id, points_earned, maximum)
    return answer


def _may_review(user: User, exam: Exam) -> bool:
    return user.has_role(RoleName.ADMIN) or exam.created_by_id == user.id


def pending_reviews(
    session: Session,
    exam_id: int | None = None,
    *,
    author_id: int | None = None,
) -> list[ExamAttempt]:
    query = session.query(ExamAttempt).filter(ExamAttempt.status == AttemptStatus.SUBMITTED)
    if author_id is not None:
        query = query.join(Exam, Exam.id == ExamAttempt.exam_id).filter(Exam.created_by_id == author_id)
    if exam_id is not None:
        query = query.filter(ExamAttempt.exam_id == exam_id)
    return query.order_by(ExamAttempt.submitted_at).all()


def expire_attempts(session: Session, now: datetime | None = None) -> int:
    """Close every in-progress attempt whose time limit has passed. Returns how many."""
    now = now or utcnow()
    candidates = (session.query(ExamAttempt)
                  .join(Exam, Exam.id == ExamAttempt.exam_id)
                  .filter(ExamAttempt.status == AttemptStatus.IN_PROGRESS,
                          Exam.time_limit_minutes.isnot(None))
                  .all())
    closed = 0
    for attempt in candidates:
        if not is_expired(attempt, now):
            continue
        try:
            _time_out(session, attempt)
        except InvalidState:
            # Submitted meanwhile.
            continue
        session.commit()
        closed += 1
    return closed


def attempt_results(session: Session, attempt_id: int, user_id: int) -> dict:
    """Attempt summary with answers; correct answers are revealed only after closing."""
    attempt = get_attempt_for_user(session, attempt_id, user_id)
    data = attempt.to_dict()
    reveal = attempt.status != AttemptStatus.IN_PROGRESS
    answers = []
    for a in sorted(attempt.answers, key=lambda a: a.question.position):
        item = a.to_dict()
        if reveal:
            item["correct_answer"] = a.question.correct_answer
            item["explanation"] = a.question.explanation
        answers.append(item)
    data["answers"] = answers
    return data
