from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lingoclass.dependencies import get_current_user, get_db, require_staff
from lingoclass.models import User
from lingoclass.schemas.activity import ActivityForm, AssignForm, ProgressForm
from lingoclass.services import activities

router = APIRouter(prefix="/activities", tags=["activities"])


@router.get("", name="activities.list")
def list_activities(
    level: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    return {"items": activities.list_activities(session, level=level, user_id=current_user.id)}


@router.post("", status_code=201, name="activities.create")
def create_activity(form: ActivityForm, current_user: User = Depends(require_staff), session: Session = Depends(get_db)):
    activity = activities.create_activity(session, created_by_id=current_user.id, **form.model_dump())
    return activity.to_dict()


@router.post("/{activity_id}/assign", name="activities.assign")
def assign_activity(
    activity_id: int,
    form: AssignForm,
    current_user: User = Depends(require_staff),
    session: Session = Depends(get_db),
):
    row, created = activities.assign_activity(session, form.user_id, activity_id, current_user.id)
    return {"assignment": row.to_dict(), "created": created}


@router.post("/{activity_id}/progress", name="activities.progress")
def update_progress(
    activity_id: int,
    form: ProgressForm,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    row = activities.update_progress(session, current_user.id, activity_id, form.status, form.score)
    return row.to_dict()
