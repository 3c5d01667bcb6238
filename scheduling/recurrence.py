"""Recurrence helpers: week intervals, rule strings and occurrence expansion.

Rule strings follow the format stored on schedule entries, a subset of iCal
RRULE plus two shorthands:

    FREQ=WEEKLY;BYDAY=MO
    FREQ=WEEKLY;INTERVAL=4;BYDAY=TU
    FREQ=2WEEKLY;BYDAY=WE      (every 2 weeks)
    FREQ=MONTHLY;BYDAY=TH      (every 4 weeks)

Weeks are counted from the schedule anchor date: week w covers the seven days
starting at ``anchor + 7*w``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, Optional, Tuple

import logging
import math

from dateutil.relativedelta import relativedelta
from dateutil.rrule import WEEKLY, rrule

from .models import BookedEntry, Frequency, Weekday


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecurrenceRule:
    freq: str
    interval: int = 1
    byday: Tuple[Weekday, ...] = ()

    @property
    def step_weeks(self) -> Optional[int]:
        """Weeks between occurrences, or None for an unsupported FREQ."""

        if self.freq == "WEEKLY":
            return max(1, self.interval)
        if self.freq == "2WEEKLY":
            return 2
        if self.freq == "MONTHLY":
            return 4
        return None


@dataclass(frozen=True)
class Occurrence:
    start_time: datetime
    end_time: datetime


# ----------------------------
# Week arithmetic
# ----------------------------


def week_index(d: date, anchor_date: date) -> int:
    """Week number of `d` relative to the anchor (negative before it)."""

    return (d - anchor_date).days // 7


def recurring_weeks(total_weeks: int, frequency: Frequency, start_week: int = 0) -> range:
    """Weeks in [start_week, total_weeks) on which a timing of `frequency` recurs."""

    return range(max(0, start_week), total_weeks, frequency.interval_weeks)


def weeks_between(start_date: date, end_date: date) -> int:
    """Number of (partial) weeks spanned by a schedule window."""

    days = (end_date - start_date).days
    if days <= 0:
        raise ValueError(f"end date {end_date} must be after start date {start_date}")
    return int(math.ceil(days / 7))


def horizon_weeks(anchor_date: date, months: int = 3) -> int:
    """Week count for a planning horizon of `months` calendar months."""

    return weeks_between(anchor_date, anchor_date + relativedelta(months=months))


# ----------------------------
# Rule strings
# ----------------------------


def parse_recurrence_rule(rule: Optional[str]) -> Optional[RecurrenceRule]:
    """Parse a stored rule string; an empty rule means "no recurrence" (None)."""

    text = str(rule or "").strip()
    if not text:
        return None
    if text.upper().startswith("RRULE:"):
        text = text[len("RRULE:"):]

    parts = {}
    for chunk in text.split(";"):
        if "=" not in chunk:
            continue
        key, _, value = chunk.partition("=")
        parts[key.strip().upper()] = value.strip()

    try:
        interval = int(parts.get("INTERVAL", "1"))
    except ValueError:
        interval = 1

    byday = tuple(
        d for d in (Weekday.parse(code) for code in parts.get("BYDAY", "").split(",") if code) if d is not None
    )

    return RecurrenceRule(freq=parts.get("FREQ", "WEEKLY").upper(), interval=interval, byday=byday)


def format_recurrence_rule(day: Weekday, frequency: Frequency) -> str:
    """Rule string a booking of `frequency` on `day` would be stored with."""

    if frequency == Frequency.ONCE:
        return ""
    if frequency == Frequency.EVERY_2_WEEKS:
        return f"FREQ=2WEEKLY;BYDAY={day.abbrev}"
    if frequency == Frequency.EVERY_4_WEEKS:
        return f"FREQ=WEEKLY;INTERVAL=4;BYDAY={day.abbrev}"
    return f"FREQ=WEEKLY;BYDAY={day.abbrev}"


# ----------------------------
# Expansion
# ----------------------------


def expand_entry_occurrences(
    entry: BookedEntry,
    anchor_date: date,
    total_weeks: int,
    exceptions: Iterable[date] = (),
) -> Iterator[Occurrence]:
    """Yield the concrete occurrences of `entry` inside the schedule horizon.

    The horizon is [anchor_date, anchor_date + 7*total_weeks days). Occurrences
    on an exception date are skipped. A rule with an unsupported FREQ is
    treated as a single occurrence. Every call returns a fresh generator.
    """

    horizon_start = datetime.combine(anchor_date, time.min)
    horizon_end = horizon_start + timedelta(weeks=total_weeks)
    duration = entry.end_time - entry.start_time
    skipped = set(exceptions)

    rule = parse_recurrence_rule(entry.recurrence_rule)
    step = rule.step_weeks if rule is not None else None
    if rule is not None and step is None:
        logger.debug("Unsupported FREQ %r on entry %s; using single occurrence", rule.freq, entry.entry_id)

    if step is None:
        starts: Iterable[datetime] = (entry.start_time,)
    else:
        starts = rrule(WEEKLY, interval=step, dtstart=entry.start_time, until=horizon_end)

    for start in starts:
        if start >= horizon_end:
            break
        if start < horizon_start or start.date() in skipped:
            continue
        yield Occurrence(start_time=start, end_time=start + duration)
