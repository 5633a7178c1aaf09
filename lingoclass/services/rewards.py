from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lingoclass.config import settings
from lingoclass.errors import NotFound, ValidationFailed
from lingoclass.models import PointBalance, RewardTransaction, Role, RoleName, User
from lingoclass.services import streaks
from lingoclass.utils import utctoday

log = logging.getLogger(__name__)


def _ensure_balance(session: Session, user_id: int) -> PointBalance:
    balance = session.get(PointBalance, user_id)
    if balance is not None:
        return balance
    balance = PointBalance(user_id=user_id, total_points=0)
    try:
        with session.begin_nested():
            session.add(balance)
    except IntegrityError:
        balance = session.get(PointBalance, user_id)
    return balance


def _find_grant(session: Session, user_id: int, idempotency_key: str) -> RewardTransaction | None:
    return (session.query(RewardTransaction)
            .filter_by(user_id=user_id, idempotency_key=idempotency_key)
            .first())


def grant_points(
    session: Session,
    user_id: int,
    delta: int,
    reason: str,
    *,
    source: str = "manual",
    idempotency_key: str | None = None,
    issued_by_id: int | None = None,
    commit: bool = True,
) -> tuple[RewardTransaction, bool]:
    """
    Add ``delta`` points and append the matching ledger row in one transaction.
    Returns (transaction, created). With an ``idempotency_key`` a retried grant
    returns the original row; the unique constraint settles concurrent retries.
    If commit=True (default), commits the session; otherwise caller is
    responsible for committing/rolling back.
    """
    if delta == 0:
        raise ValidationFailed("Point delta must be non-zero")
    if session.get(User, user_id) is None:
        raise NotFound("User not found")

    if idempotency_key:
        existing = _find_grant(session, user_id, idempotency_key)
        if existing:
            return existing, False

    entry = RewardTransaction(
        user_id=user_id,
        delta=delta,
        reason=reason,
        source=source,
        idempotency_key=idempotency_key,
        issued_by_id=issued_by_id,
    )
    try:
        # A lost race undoes only this insert; the caller's pending work stays.
        with session.begin_nested():
            session.add(entry)
    except IntegrityError:
        existing = _find_grant(session, user_id, idempotency_key)
        if commit:
            session.commit()
        log.info("Points grant user=%s key=%s already recorded", user_id, idempotency_key)
        return existing, False

    balance = _ensure_balance(session, user_id)
    session.execute(
        update(PointBalance)
        .where(PointBalance.user_id == user_id)
        .values(total_points=PointBalance.total_points + delta)
        .execution_options(synchronize_session=False)
    )
    session.expire(balance)

    if commit:
        session.commit()
    log.info("Points granted user=%s delta=%s source=%s key=%s", user_id, delta, source, idempotency_key)
    return entry, True


def total_points(session: Session, user_id: int) -> int:
    balance = session.get(PointBalance, user_id)
    return balance.total_points if balance else 0


def grant_streak_milestone(
    session: Session,
    user_id: int,
    current_streak: int,
    today: date,
    *,
    commit: bool = True,
) -> RewardTransaction | None:
    """Grant the configured bonus when a streak lands exactly on a milestone day."""
    points = settings.STREAK_MILESTONES.get(current_streak)
    if not points:
        return None
    run_started = today - timedelta(days=current_streak - 1)
    entry, _ = grant_points(
        session,
        user_id,
        points,
        f"{current_streak}-day streak",
        source="streak",
        idempotency_key=f"streak:{current_streak}:{run_started.isoformat()}",
        commit=commit,
    )
    return entry


def list_history(session: Session, user_id: int, *, limit: int = 50, offset: int = 0) -> tuple[list[RewardTransaction], int]:
    query = session.query(RewardTransaction).filter(RewardTransaction.user_id == user_id)
    total = query.count()
    items = (query.order_by(RewardTransaction.created_at.desc(), RewardTransaction.id.desc())
             .offset(offset).limit(limit).all())
    return items, total


def user_progress(session: Session, user_id: int, today: date | None = None) -> dict:
    today = today or utctoday()
    experience = total_points(session, user_id)
    per_level = settings.POINTS_PER_LEVEL
    level = max(experience, 0) // per_level + 1
    streak = streaks.streak_summary(session, user_id, today)
    return {
        "current_level": level,
        "experience": experience,
        "next_level_xp": level * per_level,
        "streak": streak["current_streak"],
        "longest_streak": streak["longest_streak"],
    }


def leaderboard(session: Session, limit: int = 20) -> list[dict]:
    rows = (
        session.query(
            User.id,
            User.first_name,
            User.last_name,
            func.coalesce(PointBalance.total_points, 0).label("points"),
        )
        .join(User.roles)
        .outerjoin(PointBalance, PointBalance.user_id == User.id)
        .filter(Role.name == RoleName.STUDENT.value, User.is_active.is_(True))
        .order_by(func.coalesce(PointBalance.total_points, 0).desc(), User.last_name)
        .limit(limit)
        .all()
    )
    return [
        {"user_id": r.id, "name": f"{r.first_name} {r.last_name}", "points": int(r.points)}
        for r in rows
    ]
