"""Greedy recurring-slot scheduler.

Assigns each participant one of their (up to 3) ranked preferred timings,
avoiding booked entries and earlier participants across a multi-week horizon.

Algorithm
---------
1. Build an `AvailabilityGrid` (free ticks per week/day) from booked entries.
2. For each participant, strictly in input order:
   - try ranks 1..3; a rank conflicts if any tick of its window is taken in
     any week the timing recurs in (every `interval` weeks from week 0)
   - the first conflict-free rank is booked into the grid immediately
   - otherwise the participant is reported unscheduled
3. Participants without a usable rank get a `no_usable_preferences` record
   (or are dropped when `drop_unusable_participants` is set).

There is no backtracking: the first participant in the list has first claim
on any slot. Runs are deterministic and the grid never outlives a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import json
import logging

from .availability import AvailabilityGrid, build_availability_grid
from .models import (
    NO_USABLE_PREFERENCES_REASON,
    REJECTION_REASON,
    BookedEntry,
    Frequency,
    OutcomeStatus,
    Participant,
    ScheduledAssignment,
    SchedulingResult,
    SchedulingSettings,
    TimeWindow,
    booked_entry_from_dict,
    parse_date,
    participant_from_form,
)
from .recurrence import recurring_weeks, weeks_between


logger = logging.getLogger(__name__)


# ----------------------------
# Problem definition
# ----------------------------


@dataclass(frozen=True)
class SchedulingProblem:
    anchor_date: date
    total_weeks: int
    participants: Tuple[Participant, ...]
    booked_entries: Tuple[BookedEntry, ...] = ()
    # entry_id -> dates on which that entry does not take place
    exceptions: Dict[str, Tuple[date, ...]] = field(default_factory=dict)
    settings: SchedulingSettings = field(default_factory=SchedulingSettings)


def load_scheduling_problem_from_json(path: str) -> SchedulingProblem:
    """Load a `SchedulingProblem` from a JSON file.

    Either `total_weeks` or `end_date` must be given next to `start_date`.
    """

    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return scheduling_problem_from_dict(raw)


def scheduling_problem_from_dict(raw: Dict[str, Any]) -> SchedulingProblem:
    if not raw.get("start_date"):
        raise ValueError("start_date is required")
    anchor = parse_date(raw["start_date"])

    if raw.get("total_weeks") is not None:
        total_weeks = int(raw["total_weeks"])
    elif raw.get("end_date"):
        total_weeks = weeks_between(anchor, parse_date(raw["end_date"]))
    else:
        raise ValueError("either total_weeks or end_date is required")
    if total_weeks < 1:
        raise ValueError("total_weeks must be >= 1")

    settings = SchedulingSettings.from_dict(raw.get("settings"))

    participants = tuple(
        participant_from_form(p, max_preferences=settings.max_preferences) for p in raw.get("participants", [])
    )
    entries = tuple(booked_entry_from_dict(e, settings.zone) for e in raw.get("booked_entries", []))
    exceptions = {
        str(entry_id): tuple(parse_date(d) for d in dates) for entry_id, dates in (raw.get("exceptions") or {}).items()
    }

    return SchedulingProblem(
        anchor_date=anchor,
        total_weeks=total_weeks,
        participants=participants,
        booked_entries=entries,
        exceptions=exceptions,
        settings=settings,
    )


# ----------------------------
# Conflict checking / booking
# ----------------------------


def timing_conflicts(window: TimeWindow, grid: AvailabilityGrid, total_weeks: int, frequency: Frequency) -> bool:
    """True if any tick of `window` is taken in any week the timing recurs in.

    `once` is checked over the whole horizon, like `weekly`.
    """

    for week in recurring_weeks(total_weeks, frequency):
        if not grid.is_free(week, window.day, window.start_minutes, window.end_minutes):
            return True
    return False


def mark_timing_occupied(window: TimeWindow, grid: AvailabilityGrid, total_weeks: int, frequency: Frequency) -> None:
    """Remove `window` from every week it recurs in. Call only after a conflict-free check."""

    for week in recurring_weeks(total_weeks, frequency):
        grid.occupy(week, window.day, window.start_minutes, window.end_minutes)


# ----------------------------
# Greedy engine
# ----------------------------


def _assign_participant(
    participant: Participant,
    grid: AvailabilityGrid,
    total_weeks: int,
    max_preferences: int,
) -> ScheduledAssignment:
    timings = participant.preferences[:max_preferences]

    for timing in timings:
        if timing_conflicts(timing.window, grid, total_weeks, timing.frequency):
            logger.debug("%s: rank %s (%s) conflicts", participant.name, timing.rank, timing.window.label())
            continue

        mark_timing_occupied(timing.window, grid, total_weeks, timing.frequency)
        logger.debug("%s: booked rank %s (%s)", participant.name, timing.rank, timing.window.label())
        return ScheduledAssignment(
            participant=participant,
            timing=timing,
            rank=timing.rank,
            accepted=True,
            status=OutcomeStatus.SCHEDULED,
        )

    logger.debug("%s: no conflict-free preference", participant.name)
    return ScheduledAssignment(
        participant=participant,
        timing=timings[0],
        rank=0,
        accepted=False,
        status=OutcomeStatus.UNSCHEDULED,
        reason=REJECTION_REASON,
    )


def schedule_participants(
    participants: Sequence[Participant],
    booked_entries: Iterable[BookedEntry],
    anchor_date: date,
    total_weeks: int,
    settings: SchedulingSettings = SchedulingSettings(),
    *,
    exceptions: Optional[Dict[str, Iterable]] = None,
) -> SchedulingResult:
    """Assign participants greedily, in the given order, to their preferred timings."""

    grid = build_availability_grid(
        booked_entries,
        anchor_date,
        total_weeks,
        settings.operating_hours,
        tick_minutes=settings.tick_minutes,
        conflict_mode=settings.conflict_mode,
        exceptions=exceptions,
    )

    assignments: List[ScheduledAssignment] = []
    for participant in participants:
        if not participant.preferences:
            if settings.drop_unusable_participants:
                logger.debug("%s: no usable preferences, dropped", participant.name)
                continue
            assignments.append(
                ScheduledAssignment(
                    participant=participant,
                    timing=None,
                    rank=0,
                    accepted=False,
                    status=OutcomeStatus.NO_USABLE_PREFERENCES,
                    reason=NO_USABLE_PREFERENCES_REASON,
                )
            )
            continue

        assignments.append(_assign_participant(participant, grid, total_weeks, settings.max_preferences))

    result = SchedulingResult(assignments=tuple(assignments))
    logger.info(
        "Scheduled %d of %d participants over %d weeks (%d unassigned, %d need attention)",
        result.total_scheduled,
        len(result.assignments),
        total_weeks,
        result.total_unassigned,
        result.needs_attention,
    )
    return result


def solve_scheduling_problem(problem: SchedulingProblem) -> Tuple[SchedulingResult, Dict[str, float]]:
    result = schedule_participants(
        problem.participants,
        problem.booked_entries,
        problem.anchor_date,
        problem.total_weeks,
        problem.settings,
        exceptions=problem.exceptions,
    )
    return result, compute_metrics(result, problem.total_weeks)


def remaining_availability(problem: SchedulingProblem, result: SchedulingResult) -> AvailabilityGrid:
    """Grid of what is still free once `result` has been booked on top of the problem's entries."""

    settings = problem.settings
    grid = build_availability_grid(
        problem.booked_entries,
        problem.anchor_date,
        problem.total_weeks,
        settings.operating_hours,
        tick_minutes=settings.tick_minutes,
        conflict_mode=settings.conflict_mode,
        exceptions=problem.exceptions,
    )
    for a in result.accepted_assignments():
        mark_timing_occupied(a.timing.window, grid, problem.total_weeks, a.timing.frequency)
    return grid


# ----------------------------
# Verification / metrics
# ----------------------------


def find_double_bookings(
    result: SchedulingResult,
    total_weeks: int,
) -> List[Tuple[ScheduledAssignment, ScheduledAssignment, int]]:
    """Pairs of accepted assignments that overlap, with the first shared week."""

    accepted = list(result.accepted_assignments())
    clashes: List[Tuple[ScheduledAssignment, ScheduledAssignment, int]] = []
    for i, a in enumerate(accepted):
        weeks_a = set(recurring_weeks(total_weeks, a.timing.frequency))
        for b in accepted[i + 1:]:
            if not a.timing.window.overlaps(b.timing.window):
                continue
            shared = weeks_a.intersection(recurring_weeks(total_weeks, b.timing.frequency))
            if shared:
                clashes.append((a, b, min(shared)))
    return clashes


def compute_metrics(result: SchedulingResult, total_weeks: int) -> Dict[str, float]:
    by_rank: Dict[int, int] = {}
    for a in result.accepted_assignments():
        by_rank[a.rank] = by_rank.get(a.rank, 0) + 1

    total = len(result.assignments)
    return {
        "participants": float(total),
        "scheduled": float(result.total_scheduled),
        "unscheduled": float(sum(1 for a in result.assignments if a.status == OutcomeStatus.UNSCHEDULED)),
        "needs_attention": float(result.needs_attention),
        "first_choice": float(by_rank.get(1, 0)),
        "second_choice": float(by_rank.get(2, 0)),
        "third_choice": float(by_rank.get(3, 0)),
        "scheduled_ratio": float(result.total_scheduled / total) if total else 0.0,
        "double_bookings": float(len(find_double_bookings(result, total_weeks))),
    }


# -------------------------------------------------
# Formatting
# -------------------------------------------------


def format_assignments_as_rows(result: SchedulingResult) -> List[Dict[str, str]]:
    """Return a list of rows suitable for tables/CSV."""

    choice_labels = {1: "1st", 2: "2nd", 3: "3rd"}
    rows: List[Dict[str, str]] = []
    for a in result.assignments:
        timing = a.timing
        rows.append(
            {
                "participant": a.participant.name,
                "status": a.status.value,
                "choice": choice_labels.get(a.rank, "-"),
                "timing": timing.window.label() if timing is not None else "-",
                "frequency": timing.frequency.value if timing is not None else "-",
                "reason": a.reason or "",
            }
        )
    return rows
