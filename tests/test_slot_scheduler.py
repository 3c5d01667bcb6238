from __future__ import annotations

import json
import sys
from datetime import date, datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scheduling.availability import AvailabilityGrid
from scheduling.models import (
    NO_USABLE_PREFERENCES_REASON,
    REJECTION_REASON,
    BookedEntry,
    Frequency,
    OperatingHours,
    OutcomeStatus,
    Participant,
    PreferredTiming,
    SchedulingResult,
    SchedulingSettings,
    TimeWindow,
    Weekday,
)
from scheduling.recurrence import recurring_weeks
from scheduling.slot_scheduler import (
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


ANCHOR = date(2026, 3, 2)  # Monday


def _timing(rank: int, day: Weekday, start: str, end: str, freq: Frequency = Frequency.WEEKLY) -> PreferredTiming:
    sh, sm = (int(x) for x in start.split(":"))
    eh, em = (int(x) for x in end.split(":"))
    return PreferredTiming(rank=rank, window=TimeWindow(day, sh, sm, eh, em), frequency=freq)


def _participant(name: str, *timings: PreferredTiming) -> Participant:
    return Participant(participant_id=name.lower(), name=name, preferences=tuple(timings))


def _booked(start: datetime, end: datetime, rule: str = "") -> BookedEntry:
    return BookedEntry(start_time=start, end_time=end, recurrence_rule=rule)


WED_1400 = _booked(datetime(2026, 3, 4, 14, 0), datetime(2026, 3, 4, 15, 0))


def test_end_to_end_rank_two_fallback() -> None:
    alex = _participant(
        "Alex",
        _timing(1, Weekday.WEDNESDAY, "14:00", "15:00"),
        _timing(2, Weekday.THURSDAY, "10:00", "11:00"),
    )

    result = schedule_participants([alex], [WED_1400], ANCHOR, 4)

    assert len(result.assignments) == 1
    a = result.assignments[0]
    assert a.accepted is True
    assert a.rank == 2
    assert a.status == OutcomeStatus.SCHEDULED
    assert a.timing.window == TimeWindow(Weekday.THURSDAY, 10, 0, 11, 0)
    assert a.reason is None


def test_first_participant_wins_shared_slot_and_order_flips_it() -> None:
    p1 = _participant("P1", _timing(1, Weekday.MONDAY, "09:00", "10:00"))
    p2 = _participant("P2", _timing(1, Weekday.MONDAY, "09:00", "10:00"))

    forward = schedule_participants([p1, p2], [], ANCHOR, 4)
    assert [a.accepted for a in forward.assignments] == [True, False]
    assert forward.assignments[1].reason == REJECTION_REASON
    assert forward.assignments[1].rank == 0
    assert forward.assignments[1].status == OutcomeStatus.UNSCHEDULED

    backward = schedule_participants([p2, p1], [], ANCHOR, 4)
    assert [a.participant.name for a in backward.assignments] == ["P2", "P1"]
    assert [a.accepted for a in backward.assignments] == [True, False]


def test_rejected_participant_reports_rank_one_timing() -> None:
    taken = _participant("First", _timing(1, Weekday.FRIDAY, "12:00", "13:00"))
    late = _participant(
        "Late",
        _timing(1, Weekday.FRIDAY, "12:30", "13:30"),
        _timing(2, Weekday.FRIDAY, "11:45", "12:15"),
    )

    result = schedule_participants([taken, late], [], ANCHOR, 2)
    rejected = result.assignments[1]

    assert rejected.accepted is False
    assert rejected.timing.rank == 1
    assert rejected.timing.window == TimeWindow(Weekday.FRIDAY, 12, 30, 13, 30)


def test_every_two_weeks_ignores_odd_week_bookings() -> None:
    week_one = _booked(datetime(2026, 3, 9, 9, 0), datetime(2026, 3, 9, 10, 0))  # Monday, week 1
    biweekly = _participant("B", _timing(1, Weekday.MONDAY, "09:00", "10:00", Frequency.EVERY_2_WEEKS))
    weekly = _participant("W", _timing(1, Weekday.MONDAY, "09:00", "10:00", Frequency.WEEKLY))

    assert schedule_participants([biweekly], [week_one], ANCHOR, 6).assignments[0].accepted
    assert not schedule_participants([weekly], [week_one], ANCHOR, 6).assignments[0].accepted


def test_alternating_two_weekly_participants_share_a_slot() -> None:
    # both are anchored at week 0, so the second one still collides
    a = _participant("A", _timing(1, Weekday.TUESDAY, "15:00", "16:00", Frequency.EVERY_2_WEEKS))
    b = _participant("B", _timing(1, Weekday.TUESDAY, "15:00", "16:00", Frequency.EVERY_4_WEEKS))

    result = schedule_participants([a, b], [], ANCHOR, 8)
    assert [x.accepted for x in result.assignments] == [True, False]


def test_once_frequency_is_checked_over_the_whole_horizon() -> None:
    week_three = _booked(datetime(2026, 3, 23, 9, 0), datetime(2026, 3, 23, 10, 0))
    once = _participant("O", _timing(1, Weekday.MONDAY, "09:00", "10:00", Frequency.ONCE))

    result = schedule_participants([once], [week_three], ANCHOR, 4)
    assert result.assignments[0].accepted is False


def test_timing_outside_operating_hours_is_never_free() -> None:
    early = _participant("Early", _timing(1, Weekday.SATURDAY, "07:00", "08:00"))
    result = schedule_participants([early], [], ANCHOR, 2)
    assert result.assignments[0].accepted is False

    wide = SchedulingSettings(operating_hours=OperatingHours(6, 22))
    assert schedule_participants([early], [], ANCHOR, 2, wide).assignments[0].accepted


def test_booking_commits_before_next_participant() -> None:
    grid = AvailabilityGrid(4, OperatingHours())
    window = TimeWindow(Weekday.THURSDAY, 10, 0, 11, 0)

    assert not timing_conflicts(window, grid, 4, Frequency.EVERY_2_WEEKS)
    mark_timing_occupied(window, grid, 4, Frequency.EVERY_2_WEEKS)

    assert timing_conflicts(window, grid, 4, Frequency.EVERY_2_WEEKS)
    assert timing_conflicts(window, grid, 4, Frequency.WEEKLY)
    assert grid.is_free(1, Weekday.THURSDAY, 10 * 60, 11 * 60)
    assert not grid.is_free(2, Weekday.THURSDAY, 10 * 60, 11 * 60)


def test_participant_without_usable_preferences_needs_attention() -> None:
    empty = _participant("Empty")
    ok = _participant("Ok", _timing(1, Weekday.MONDAY, "09:00", "10:00"))

    result = schedule_participants([empty, ok], [], ANCHOR, 2)

    assert len(result.assignments) == 2
    first = result.assignments[0]
    assert first.status == OutcomeStatus.NO_USABLE_PREFERENCES
    assert first.timing is None
    assert first.rank == 0
    assert first.reason == NO_USABLE_PREFERENCES_REASON
    assert result.needs_attention == 1
    assert result.total_scheduled == 1
    assert result.total_unassigned == 1


def test_drop_unusable_participants_reproduces_silent_drop() -> None:
    empty = _participant("Empty")
    ok = _participant("Ok", _timing(1, Weekday.MONDAY, "09:00", "10:00"))

    result = schedule_participants([empty, ok], [], ANCHOR, 2, SchedulingSettings(drop_unusable_participants=True))

    assert [a.participant.name for a in result.assignments] == ["Ok"]
    assert result.needs_attention == 0


def test_strict_mode_respects_recurring_booked_entries() -> None:
    weekly_tue = _booked(datetime(2026, 3, 3, 16, 0), datetime(2026, 3, 3, 17, 0), rule="FREQ=WEEKLY;BYDAY=TU")
    # needs weeks 0 and 2; `shifted` starts in week 1 and legacy mode blocks only that week
    p = _participant(
        "P",
        _timing(1, Weekday.TUESDAY, "16:00", "17:00", Frequency.EVERY_2_WEEKS),
    )
    shifted = BookedEntry(
        start_time=datetime(2026, 3, 10, 16, 0),
        end_time=datetime(2026, 3, 10, 17, 0),
        recurrence_rule="FREQ=WEEKLY;BYDAY=TU",
    )

    legacy = schedule_participants([p], [shifted], ANCHOR, 4)
    strict = schedule_participants([p], [shifted], ANCHOR, 4, SchedulingSettings(conflict_mode="strict"))

    assert legacy.assignments[0].accepted is True
    assert strict.assignments[0].accepted is False
    # week-0 entry blocks in both modes
    assert not schedule_participants([p], [weekly_tue], ANCHOR, 4).assignments[0].accepted


def test_strict_mode_exceptions_free_a_week() -> None:
    entry = BookedEntry(
        start_time=datetime(2026, 3, 9, 9, 0),
        end_time=datetime(2026, 3, 9, 10, 0),
        recurrence_rule="FREQ=WEEKLY",
        entry_id="E9",
    )
    p = _participant("P", _timing(1, Weekday.MONDAY, "09:00", "10:00", Frequency.EVERY_4_WEEKS))
    settings = SchedulingSettings(conflict_mode="strict")

    # horizon of 5 weeks -> participant needs weeks 0 and 4; entry occupies 1..4
    blocked = schedule_participants([p], [entry], ANCHOR, 5, settings)
    freed = schedule_participants([p], [entry], ANCHOR, 5, settings, exceptions={"E9": [date(2026, 3, 30)]})

    assert blocked.assignments[0].accepted is False
    assert freed.assignments[0].accepted is True


def test_legacy_mode_exception_frees_a_one_off_entry() -> None:
    entry = BookedEntry(
        start_time=datetime(2026, 3, 4, 14, 0),
        end_time=datetime(2026, 3, 4, 15, 0),
        entry_id="E1",
    )
    p = _participant("P", _timing(1, Weekday.WEDNESDAY, "14:00", "15:00"))

    blocked = schedule_participants([p], [entry], ANCHOR, 4)
    freed = schedule_participants([p], [entry], ANCHOR, 4, exceptions={"E1": [date(2026, 3, 4)]})

    assert blocked.assignments[0].accepted is False
    assert freed.assignments[0].accepted is True
    assert freed.assignments[0].rank == 1


def _crowded_participants():
    days = [Weekday.MONDAY, Weekday.TUESDAY]
    freqs = [Frequency.WEEKLY, Frequency.EVERY_2_WEEKS, Frequency.EVERY_4_WEEKS, Frequency.ONCE]
    people = []
    for i in range(12):
        day = days[i % 2]
        freq = freqs[i % 4]
        start = 9 + (i % 3)
        people.append(
            _participant(
                f"P{i}",
                _timing(1, day, f"{start:02d}:00", f"{start + 1:02d}:00", freq),
                _timing(2, day, f"{start:02d}:30", f"{start + 1:02d}:30", freq),
                _timing(3, days[(i + 1) % 2], "13:00", "14:15", freq),
            )
        )
    return people


def test_no_double_booking_across_recurring_weeks() -> None:
    entries = [WED_1400, _booked(datetime(2026, 3, 9, 9, 0), datetime(2026, 3, 9, 10, 0))]
    result = schedule_participants(_crowded_participants(), entries, ANCHOR, 8)

    assert result.total_scheduled > 0
    assert find_double_bookings(result, 8) == []

    accepted = result.accepted_assignments()
    for i, a in enumerate(accepted):
        for b in accepted[i + 1:]:
            shared = set(recurring_weeks(8, a.timing.frequency)) & set(recurring_weeks(8, b.timing.frequency))
            if shared:
                assert not a.timing.window.overlaps(b.timing.window)


def test_find_double_bookings_detects_overlap() -> None:
    a = _participant("A", _timing(1, Weekday.MONDAY, "09:00", "10:00"))
    b = _participant("B", _timing(1, Weekday.MONDAY, "09:30", "10:30"))
    # scheduling them separately gives two accepted records that overlap
    merged = schedule_participants([a], [], ANCHOR, 2).assignments + schedule_participants([b], [], ANCHOR, 2).assignments

    clashes = find_double_bookings(SchedulingResult(assignments=merged), 2)
    assert len(clashes) == 1
    assert clashes[0][2] == 0


def test_runs_are_deterministic() -> None:
    people = _crowded_participants()
    first = schedule_participants(people, [WED_1400], ANCHOR, 8)
    second = schedule_participants(people, [WED_1400], ANCHOR, 8)
    assert first == second


def test_compute_metrics_counts_outcomes() -> None:
    people = [
        _participant("A", _timing(1, Weekday.MONDAY, "09:00", "10:00")),
        _participant("B", _timing(1, Weekday.MONDAY, "09:00", "10:00"), _timing(2, Weekday.MONDAY, "10:00", "11:00")),
        _participant("C", _timing(1, Weekday.MONDAY, "09:00", "10:00")),
        _participant("D"),
    ]
    result = schedule_participants(people, [], ANCHOR, 4)
    metrics = compute_metrics(result, 4)

    assert metrics["participants"] == 4.0
    assert metrics["scheduled"] == 2.0
    assert metrics["unscheduled"] == 1.0
    assert metrics["needs_attention"] == 1.0
    assert metrics["first_choice"] == 1.0
    assert metrics["second_choice"] == 1.0
    assert metrics["double_bookings"] == 0.0
    assert metrics["scheduled_ratio"] == pytest.approx(0.5)

    rows = format_assignments_as_rows(result)
    assert rows[1]["choice"] == "2nd"
    assert rows[2]["reason"] == REJECTION_REASON
    assert rows[3]["timing"] == "-"


def _write_problem(tmp_path: Path, **overrides) -> Path:
    raw = {
        "start_date": "2026-03-02",
        "total_weeks": 4,
        "booked_entries": [
            {"id": "E1", "start_time": "2026-03-04T14:00:00", "end_time": "2026-03-04T15:00:00", "recurrence_rule": ""}
        ],
        "participants": [
            {
                "id": "P1",
                "student_name": "Alex",
                "preferred_1_day": "Wednesday",
                "preferred_1_start": "14:00",
                "preferred_1_end": "15:00",
                "preferred_1_frequency": "weekly",
                "preferred_2_day": "Thursday",
                "preferred_2_start": "10:00",
                "preferred_2_end": "11:00",
                "preferred_2_frequency": "weekly",
            }
        ],
    }
    raw.update(overrides)
    path = tmp_path / "problem.json"
    path.write_text(json.dumps(raw), encoding="utf-8")
    return path


def test_load_and_solve_problem_from_json(tmp_path) -> None:
    problem = load_scheduling_problem_from_json(str(_write_problem(tmp_path)))

    assert problem.anchor_date == ANCHOR
    assert problem.total_weeks == 4
    assert problem.settings.conflict_mode == "legacy"

    result, metrics = solve_scheduling_problem(problem)
    assert result.assignments[0].rank == 2
    assert metrics["second_choice"] == 1.0

    grid = remaining_availability(problem, result)
    assert not grid.is_free(0, Weekday.WEDNESDAY, 14 * 60, 15 * 60)
    assert not grid.is_free(3, Weekday.THURSDAY, 10 * 60, 11 * 60)
    assert grid.is_free(1, Weekday.WEDNESDAY, 14 * 60, 15 * 60)


def test_load_problem_derives_weeks_from_end_date(tmp_path) -> None:
    path = _write_problem(tmp_path, total_weeks=None, end_date="2026-06-01", exceptions={"E1": ["2026-03-04"]})
    problem = load_scheduling_problem_from_json(str(path))

    assert problem.total_weeks == 13
    assert problem.exceptions == {"E1": (date(2026, 3, 4),)}


def test_load_problem_converts_stored_utc_entries_to_settings_timezone(tmp_path) -> None:
    stored = {"id": "E1", "start_time": "2026-03-04T06:00:00Z", "end_time": "2026-03-04T07:00:00Z"}
    path = _write_problem(tmp_path, booked_entries=[stored], settings={"timezone": "Etc/GMT-8"})
    problem = load_scheduling_problem_from_json(str(path))

    assert problem.booked_entries[0].start_time == datetime(2026, 3, 4, 14, 0)

    # Wed 14:00 is taken once the entry is read in +08:00, so Alex falls back to rank 2
    result, _ = solve_scheduling_problem(problem)
    assert result.assignments[0].rank == 2


def test_load_problem_requires_a_horizon(tmp_path) -> None:
    path = _write_problem(tmp_path, total_weeks=None)
    with pytest.raises(ValueError):
        load_scheduling_problem_from_json(str(path))


def test_sample_problem_runs_clean() -> None:
    problem = load_scheduling_problem_from_json(str(ROOT / "data" / "sample_scheduling_problem.json"))
    result, metrics = solve_scheduling_problem(problem)

    assert len(result.assignments) == len(problem.participants)
    assert metrics["double_bookings"] == 0.0
    assert metrics["needs_attention"] == 1.0
