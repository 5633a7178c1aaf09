from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lingoclass.errors import InvalidState, NotFound, ValidationFailed
from lingoclass.models import Activity, ActivityStatus, ActivityType, UserActivity
from lingoclass.services import rewards, streaks
from lingoclass.utils import utcnow, utctoday

log = logging.getLogger(__name__)


def create_activity(
    session: Session,
    *,
    title: str,
    activity_type: ActivityType,
    level: int = 1,
    points: int = 10,
    description: str | None = None,
    duration_minutes: int | None = None,
    is_published: bool = False,
    created_by_id: int | None = None,
) -> Activity:
    if points < 0:
        raise ValidationFailed("Points cannot be negative")
    activity = Activity(
        title=title.strip(),
        description=description,
        activity_type=ActivityType(activity_type),
        level=level,
        points=points,
        duration_minutes=duration_minutes,
        is_published=is_published,
        created_by_id=created_by_id,
    )
    session.add(activity)
    session.commit()
    return activity


def get_activity(session: Session, activity_id: int) -> Activity:
    activity = session.get(Activity, activity_id)
    if activity is None:
        raise NotFound("Activity not found")
    return activity


def list_activities(session: Session, *, level: int | None = None, user_id: int | None = None) -> list[dict]:
    """Published activities, optionally for one level, flagged with the user's completion."""
    query = session.query(Activity).filter(Activity.is_published.is_(True))
    if level is not None:
        query = query.filter(Activity.level == level)
    activities = query.order_by(Activity.created_at, Activity.id).all()

    completed: set[int] = set()
    if user_id is not None:
        completed = {
            row.activity_id
            for row in session.query(UserActivity.activity_id)
            .filter(UserActivity.user_id == user_id, UserActivity.status == ActivityStatus.COMPLETED)
        }
    return [{**a.to_dict(), "completed": a.id in completed} for a in activities]


def _progress_row(session: Session, user_id: int, activity_id: int) -> UserActivity | None:
    return session.query(UserActivity).filter_by(user_id=user_id, activity_id=activity_id).first()


def assign_activity(session: Session, user_id: int, activity_id: int, assigned_by_id: int) -> tuple[UserActivity, bool]:
    """Returns (user_activity, created); assigning twice keeps the existing progress."""
    get_activity(session, activity_id)
    existing = _progress_row(session, user_id, activity_id)
    if existing:
        return existing, False
    row = UserActivity(
        user_id=user_id,
        activity_id=activity_id,
        assigned_by_id=assigned_by_id,
        status=ActivityStatus.ASSIGNED,
    )
    session.add(row)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return _progress_row(session, user_id, activity_id), False
    return row, True


def update_progress(
    session: Session,
    user_id: int,
    activity_id: int,
    status: ActivityStatus,
    score: float | None = None,
    today: date | None = None,
) -> UserActivity:
    """
    Record an attempt on an activity. Completing it advances the user's
    streak, grants the activity's points (once per user and activity) and any
    streak milestone bonus, all in the same transaction.
    """
    status = ActivityStatus(status)
    if status == ActivityStatus.ASSIGNED:
        raise ValidationFailed("Progress status must be IN_PROGRESS or COMPLETED")
    today = today or utctoday()
    activity = get_activity(session, activity_id)
    if not activity.is_published:
        raise InvalidState("Activity is not published")

    row = _progress_row(session, user_id, activity_id)
    if row is None:
        row = UserActivity(user_id=user_id, activity_id=activity_id, attempts=0, status=ActivityStatus.ASSIGNED)
        try:
            with session.begin_nested():
                session.add(row)
        except IntegrityError:
            # A concurrent request created the row; this attempt is recorded on it.
            log.warning("Concurrent progress insert user=%s activity=%s", user_id, activity_id)
            row = _progress_row(session, user_id, activity_id)
    if row.status == ActivityStatus.COMPLETED and status == ActivityStatus.IN_PROGRESS:
        # A finished activity stays finished; the attempt is still counted.
        status = ActivityStatus.COMPLETED

    now = utcnow()
    row.status = status
    row.attempts = (row.attempts or 0) + 1
    row.last_attempt_at = now
    if status == ActivityStatus.COMPLETED:
        row.completed_at = row.completed_at or now
        if score is not None:
            row.score = score
    session.flush()

    if status == ActivityStatus.COMPLETED:
        update = streaks.record_activity(session, user_id, today, commit=False)
        if activity.points:
            rewards.grant_points(
                session,
                user_id,
                activity.points,
                f"Activity: {activity.title}",
                source="activity",
                idempotency_key=f"activity:{activity.id}",
                commit=False,
            )
        if update.advanced:
            rewards.grant_streak_milestone(session, user_id, update.current_streak, today, commit=False)
    session.commit()
    log.info("Activity progress user=%s activity=%s status=%s", user_id, activity_id, status.value)
    return row
