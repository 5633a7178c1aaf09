"""Parsing and comparison of "HH:MM-HH:MM" class time slots (UTC)."""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable

from lingoclass.errors import OutsideClassWindow, ValidationFailed

SLOT_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})\s*$")


@dataclass(frozen=True)
class TimeSlot:
    start: time
    end: time

    @property
    def start_minutes(self) -> int:
        return self.start.hour * 60 + self.start.minute

    @property
    def end_minutes(self) -> int:
        return self.end.hour * 60 + self.end.minute

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes

    def overlaps(self, other: "TimeSlot") -> bool:
        # Adjacent slots (10:00-11:00 / 11:00-12:00) do not overlap.
        return self.start_minutes < other.end_minutes and other.start_minutes < self.end_minutes

    def __str__(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


def parse_time_slot(value: str) -> TimeSlot:
    m = SLOT_RE.match(value or "")
    if not m:
        raise ValidationFailed(f"Invalid time slot format: {value!r}")
    sh, sm, eh, em = (int(g) for g in m.groups())
    try:
        slot = TimeSlot(time(sh, sm), time(eh, em))
    except ValueError:
        raise ValidationFailed(f"Invalid time in slot: {value!r}") from None
    if slot.end_minutes <= slot.start_minutes:
        raise ValidationFailed("Slot must end after it starts")
    return slot


def try_parse_time_slot(value: str | None) -> TimeSlot | None:
    try:
        return parse_time_slot(value or "")
    except ValidationFailed:
        return None


def overlaps_any(slot: TimeSlot, booked: Iterable[str | None]) -> bool:
    """Malformed entries in ``booked`` are skipped."""
    for raw in booked:
        other = try_parse_time_slot(raw)
        if other is not None and slot.overlaps(other):
            return True
    return False


def class_bounds(day: date, slot: TimeSlot) -> tuple[datetime, datetime]:
    return datetime.combine(day, slot.start), datetime.combine(day, slot.end)


def check_class_window(
    day: date,
    slot: TimeSlot,
    now: datetime,
    *,
    early_minutes: int,
    late_minutes: int,
) -> None:
    """Raise OutsideClassWindow unless ``now`` is within the padded class time."""
    starts, ends = class_bounds(day, slot)
    opens = starts - timedelta(minutes=early_minutes)
    closes = ends + timedelta(minutes=late_minutes)
    if now < opens:
        minutes = math.ceil((opens - now).total_seconds() / 60)
        raise OutsideClassWindow(
            f"The class has not started yet. You can join in {minutes} minutes.",
            minutes_until_open=minutes,
        )
    if now > closes:
        raise OutsideClassWindow("The class has already finished.")
