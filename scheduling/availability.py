"""Availability grid: free 15-minute ticks per (week, weekday).

The grid is scratch state for one scheduling run. It starts with every tick
of the operating hours free, booked entries are removed from it, and the
greedy engine removes each accepted timing before it looks at the next
participant.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Set, Tuple

import logging

from .models import BookedEntry, OperatingHours, Weekday, parse_date
from .recurrence import expand_entry_occurrences, week_index


logger = logging.getLogger(__name__)


CellKey = Tuple[int, Weekday]


class AvailabilityGrid:
    def __init__(self, total_weeks: int, operating_hours: OperatingHours, tick_minutes: int = 15):
        if int(total_weeks) < 1:
            raise ValueError("total_weeks must be >= 1")

        self.total_weeks = int(total_weeks)
        self.operating_hours = operating_hours
        self.tick_minutes = int(tick_minutes)

        day_ticks = range(operating_hours.start_hour * 60, operating_hours.end_hour * 60, self.tick_minutes)
        self._cells: Dict[CellKey, Set[int]] = {
            (week, day): set(day_ticks) for week in range(self.total_weeks) for day in Weekday
        }

    def ticks(self, start_minutes: int, end_minutes: int) -> range:
        """Tick minutes covering [start, end); the start is floored to the tick size."""

        aligned = start_minutes - (start_minutes % self.tick_minutes)
        return range(aligned, end_minutes, self.tick_minutes)

    def free_ticks(self, week: int, day: Weekday) -> FrozenSet[int]:
        return frozenset(self._cells.get((week, day), ()))

    def is_free(self, week: int, day: Weekday, start_minutes: int, end_minutes: int) -> bool:
        cell = self._cells.get((week, day))
        if cell is None:
            return False
        return all(t in cell for t in self.ticks(start_minutes, end_minutes))

    def occupy(self, week: int, day: Weekday, start_minutes: int, end_minutes: int) -> int:
        """Remove ticks from a cell; returns how many were free before."""

        cell = self._cells.get((week, day))
        if cell is None:
            return 0
        removed = 0
        for t in self.ticks(start_minutes, end_minutes):
            if t in cell:
                cell.discard(t)
                removed += 1
        return removed

    def free_minutes(self, week: int, day: Weekday) -> int:
        return len(self._cells.get((week, day), ())) * self.tick_minutes

    def cells(self) -> Iterator[Tuple[CellKey, FrozenSet[int]]]:
        for key in sorted(self._cells, key=lambda k: (k[0], k[1].number)):
            yield key, frozenset(self._cells[key])


def _clock_span(start: datetime, end: datetime) -> Tuple[int, int]:
    start_minutes = start.hour * 60 + start.minute
    # an entry running past midnight is clipped to the end of its start day
    if end.date() > start.date():
        return start_minutes, 24 * 60
    return start_minutes, end.hour * 60 + end.minute


def _normalize_exceptions(exceptions: Optional[Mapping[str, Iterable]]) -> Dict[str, Set[date]]:
    out: Dict[str, Set[date]] = {}
    for entry_id, dates in (exceptions or {}).items():
        out[str(entry_id)] = {parse_date(d) for d in (dates or [])}
    return out


def build_availability_grid(
    entries: Iterable[BookedEntry],
    anchor_date: date,
    total_weeks: int,
    operating_hours: OperatingHours,
    *,
    tick_minutes: int = 15,
    conflict_mode: str = "legacy",
    exceptions: Optional[Mapping[str, Iterable]] = None,
) -> AvailabilityGrid:
    """Build the free-tick grid for weeks 0..total_weeks-1.

    conflict_mode:
        "legacy" - each entry blocks only the week of its own start time,
                   whatever its recurrence rule says, unless that date is
                   one of the entry's exception dates.
        "strict" - each entry blocks every occurrence its rule produces inside
                   the horizon, minus per-entry exception dates.
    """

    grid = AvailabilityGrid(total_weeks, operating_hours, tick_minutes=tick_minutes)
    skip = _normalize_exceptions(exceptions)

    for entry in entries:
        cancelled = skip.get(entry.entry_id or "", set())
        if conflict_mode == "strict":
            occurrences = [
                (o.start_time, o.end_time)
                for o in expand_entry_occurrences(entry, anchor_date, grid.total_weeks, cancelled)
            ]
        elif entry.start_time.date() in cancelled:
            logger.debug("Booked entry %s cancelled on %s", entry.entry_id, entry.start_time.date())
            occurrences = []
        else:
            occurrences = [(entry.start_time, entry.end_time)]

        for start, end in occurrences:
            week = week_index(start.date(), anchor_date)
            if week < 0 or week >= grid.total_weeks:
                logger.debug("Ignoring booked entry %s outside horizon (week %s)", entry.entry_id, week)
                continue
            start_minutes, end_minutes = _clock_span(start, end)
            grid.occupy(week, Weekday.from_date(start.date()), start_minutes, end_minutes)

    return grid
