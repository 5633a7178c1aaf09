from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lingoclass.dependencies import get_current_user, get_db, require_staff
from lingoclass.models import RoleName, User
from lingoclass.schemas.exam import AnswerForm, ExamForm, ReviewForm
from lingoclass.services import exams

router = APIRouter(prefix="/exams", tags=["exams"])


@router.get("", name="exams.list")
def list_exams(current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    staff = current_user.has_role(RoleName.ADMIN, RoleName.TEACHER)
    return {"items": [e.to_dict() for e in exams.list_exams(session, published_only=not staff)]}


@router.post("", status_code=201, name="exams.create")
def create_exam(form: ExamForm, current_user: User = Depends(require_staff), session: Session = Depends(get_db)):
    data = form.model_dump()
    exam = exams.create_exam(session, created_by_id=current_user.id, **data)
    return exam.to_dict(include_questions=True)


@router.post("/{exam_id}/publish", name="exams.publish")
def publish_exam(exam_id: int, current_user: User = Depends(require_staff), session: Session = Depends(get_db)):
    return exams.set_published(session, exam_id, True).to_dict()


@router.post("/{exam_id}/attempts", name="exams.start")
def start_attempt(exam_id: int, current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    attempt, resumed = exams.start_attempt(session, exam_id, current_user.id)
    return {
        "attempt": attempt.to_dict(),
        "resumed": resumed,
        "exam": attempt.exam.to_dict(include_questions=True),
    }


@router.put("/attempts/{attempt_id}/answers", name="exams.save_answer")
def save_answer(
    attempt_id: int,
    form: AnswerForm,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    answer = exams.save_answer(session, attempt_id, current_user.id, form.question_id, form.answer)
    # Grading details stay hidden until the attempt is submitted.
    return {"question_id": answer.question_id, "saved": True}


@router.post("/attempts/{attempt_id}/submit", name="exams.submit")
def submit_attempt(attempt_id: int, current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    exams.submit_attempt(session, attempt_id, current_user.id)
    return exams.attempt_results(session, attempt_id, current_user.id)


@router.get("/attempts/{attempt_id}", name="exams.results")
def attempt_results(attempt_id: int, current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    return exams.attempt_results(session, attempt_id, current_user.id)


@router.get("/reviews/pending", name="exams.pending_reviews")
def pending_reviews(
    exam_id: Optional[int] = None,
    current_user: User = Depends(require_staff),
    session: Session = Depends(get_db),
):
    author_id = None if current_user.has_role(RoleName.ADMIN) else current_user.id
    return {"items": [a.to_dict() for a in exams.pending_reviews(session, exam_id, author_id=author_id)]}


@router.post("/answers/{answer_id}/review", name="exams.review")
def review_answer(
    answer_id: int,
    form: ReviewForm,
    current_user: User = Depends(require_staff),
    session: Session = Depends(get_db),
):
    answer = exams.review_answer(
        session, answer_id, form.points_earned, feedback=form.feedback, reviewer=current_user
    )
    return {"answer": answer.to_dict(), "attempt": answer.attempt.to_dict()}


@router.post("/attempts/expire", name="exams.expire")
def expire_attempts(current_user: User = Depends(require_staff), session: Session = Depends(get_db)):
    return {"closed": exams.expire_attempts(session)}
