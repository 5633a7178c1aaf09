"""Consecutive-day activity streaks.

A streak is ACTIVE while the last recorded activity is today or yesterday,
BROKEN once a full calendar day has been skipped, and NONE before the first
activity. A broken streak reports 0 until the next activity restarts it at 1.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lingoclass.models import UserStreak
from lingoclass.utils import utctoday

log = logging.getLogger(__name__)


class StreakState(str, Enum):
    NONE = "NONE"
    ACTIVE = "ACTIVE"
    BROKEN = "BROKEN"


@dataclass
class StreakUpdate:
    current_streak: int
    longest_streak: int
    last_activity_date: date
    advanced: bool


def streak_state(last_activity_date: date | None, today: date) -> StreakState:
    if last_activity_date is None:
        return StreakState.NONE
    if (today - last_activity_date).days <= 1:
        return StreakState.ACTIVE
    return StreakState.BROKEN


def next_streak(current: int, longest: int, last_activity_date: date | None, today: date) -> StreakUpdate:
    """Pure transition for one activity on ``today``."""
    if last_activity_date is None:
        current = 1
    else:
        gap = (today - last_activity_date).days
        if gap <= 0:
            return StreakUpdate(current, longest, last_activity_date, advanced=False)
        current = current + 1 if gap == 1 else 1
    return StreakUpdate(current, max(longest, current), today, advanced=True)


def record_activity(session: Session, user_id: int, today: date | None = None, *, commit: bool = True) -> StreakUpdate:
    today = today or utctoday()
    streak = session.get(UserStreak, user_id)
    if streak is None:
        streak = UserStreak(user_id=user_id, current_streak=0, longest_streak=0)
        try:
            with session.begin_nested():
                session.add(streak)
        except IntegrityError:
            # Created by a concurrent request; only the savepoint is rolled back.
            streak = session.get(UserStreak, user_id)

    update = next_streak(streak.current_streak, streak.longest_streak, streak.last_activity_date, today)
    if update.advanced:
        streak.current_streak = update.current_streak
        streak.longest_streak = update.longest_streak
        streak.last_activity_date = update.last_activity_date
        log.info("Streak user=%s current=%s longest=%s", user_id, update.current_streak, update.longest_streak)
    if commit:
        session.commit()
    return update


def streak_summary(session: Session, user_id: int, today: date | None = None) -> dict:
    today = today or utctoday()
    streak = session.get(UserStreak, user_id)
    if streak is None:
        return {"state": StreakState.NONE.value, "current_streak": 0, "longest_streak": 0, "last_activity_date": None}
    state = streak_state(streak.last_activity_date, today)
    return {
        "state": state.value,
        "current_streak": streak.current_streak if state == StreakState.ACTIVE else 0,
        "longest_streak": streak.longest_streak,
        "last_activity_date": streak.last_activity_date.isoformat() if streak.last_activity_date else None,
    }
