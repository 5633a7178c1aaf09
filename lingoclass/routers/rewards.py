from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from lingoclass.dependencies import get_current_user, get_db, require_staff
from lingoclass.models import User
from lingoclass.schemas.reward import PointAdjustmentForm
from lingoclass.services import rewards, streaks
from lingoclass.utils import paginate

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.get("/progress", name="rewards.progress")
def progress(current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    return rewards.user_progress(session, current_user.id)


@router.get("/streak", name="rewards.streak")
def streak(current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    return streaks.streak_summary(session, current_user.id)


@router.get("/history", name="rewards.history")
def history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    items, total = rewards.list_history(session, current_user.id, limit=limit, offset=offset)
    return {"items": [e.to_dict() for e in items], **paginate(limit, offset, total)}


@router.get("/leaderboard", name="rewards.leaderboard")
def leaderboard(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    return {"items": rewards.leaderboard(session, limit=limit)}


@router.post("/adjust", name="rewards.adjust")
def adjust(form: PointAdjustmentForm, current_user: User = Depends(require_staff), session: Session = Depends(get_db)):
    entry, created = rewards.grant_points(
        session,
        form.user_id,
        form.delta,
        form.reason.strip(),
        source="manual",
        idempotency_key=form.idempotency_key,
        issued_by_id=current_user.id,
    )
    return {"entry": entry.to_dict(), "created": created, "total_points": rewards.total_points(session, form.user_id)}
