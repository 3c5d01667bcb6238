"""Turn accepted assignments into concrete single-occurrence entries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, List

from .models import Frequency, ScheduledAssignment
from .recurrence import recurring_weeks


@dataclass(frozen=True)
class MaterializedEntry:
    week: int
    start_time: datetime
    end_time: datetime
    # always empty: every materialized entry is one occurrence in one week
    recurrence_rule: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "recurrence_rule": self.recurrence_rule,
        }


def materialize_entry(assignment: ScheduledAssignment, anchor_date: date, week: int) -> MaterializedEntry:
    """Start/end timestamps (local, naive) of an accepted assignment in `week`."""

    if not assignment.accepted or assignment.timing is None:
        raise ValueError(f"assignment for {assignment.participant.name!r} was not accepted")
    if week < 0:
        raise ValueError("week must be >= 0")

    window = assignment.timing.window
    days_to_add = (window.day.number - anchor_date.weekday()) % 7 + week * 7
    day_start = datetime.combine(anchor_date + timedelta(days=days_to_add), time.min)

    return MaterializedEntry(
        week=week,
        start_time=day_start + timedelta(minutes=window.start_minutes),
        end_time=day_start + timedelta(minutes=window.end_minutes),
    )


def materialize_weeks(assignment: ScheduledAssignment, anchor_date: date, total_weeks: int) -> List[MaterializedEntry]:
    """One entry per week the accepted timing recurs in; `once` yields week 0 only."""

    if assignment.timing is None:
        raise ValueError(f"assignment for {assignment.participant.name!r} has no timing")
    if assignment.timing.frequency == Frequency.ONCE:
        weeks = range(0, min(1, total_weeks))
    else:
        weeks = recurring_weeks(total_weeks, assignment.timing.frequency)
    return [materialize_entry(assignment, anchor_date, w) for w in weeks]
