"""Recurring-slot scheduling (ranked preferences, multi-week horizon)."""

from .availability import AvailabilityGrid, build_availability_grid
from .materializer import MaterializedEntry, materialize_entry, materialize_weeks
from .models import (
    BookedEntry,
    Frequency,
    OperatingHours,
    OutcomeStatus,
    Participant,
    PreferredTiming,
    ScheduledAssignment,
    SchedulingResult,
    SchedulingSettings,
    TimeWindow,
    Weekday,
    booked_entry_from_dict,
    parse_preference,
    participant_from_form,
)
from .recurrence import (
    Occurrence,
    RecurrenceRule,
    expand_entry_occurrences,
    format_recurrence_rule,
    horizon_weeks,
    parse_recurrence_rule,
    weeks_between,
)
from .slot_scheduler import (
    SchedulingProblem,
    compute_metrics,
    find_double_bookings,
    format_assignments_as_rows,
    load_scheduling_problem_from_json,
    mark_timing_occupied,
    remaining_availability,
    schedule_participants,
    solve_scheduling_problem,
    timing_conflicts,
)

__all__ = [
    "AvailabilityGrid",
    "build_availability_grid",
    "MaterializedEntry",
    "materialize_entry",
    "materialize_weeks",
    "BookedEntry",
    "Frequency",
    "OperatingHours",
    "OutcomeStatus",
    "Participant",
    "PreferredTiming",
    "ScheduledAssignment",
    "SchedulingResult",
    "SchedulingSettings",
    "TimeWindow",
    "Weekday",
    "booked_entry_from_dict",
    "parse_preference",
    "participant_from_form",
    "Occurrence",
    "RecurrenceRule",
    "expand_entry_occurrences",
    "format_recurrence_rule",
    "horizon_weeks",
    "parse_recurrence_rule",
    "weeks_between",
    "SchedulingProblem",
    "compute_metrics",
    "find_double_bookings",
    "format_assignments_as_rows",
    "load_scheduling_problem_from_json",
    "mark_timing_occupied",
    "remaining_availability",
    "schedule_participants",
    "solve_scheduling_problem",
    "timing_conflicts",
]
