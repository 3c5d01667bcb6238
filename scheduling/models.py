"""Data model for the recurring-slot scheduler.

Everything here is a plain immutable value. Raw payloads (form responses,
stored schedule entries) are converted into these types by the parsing helpers
at the bottom of this module; the scheduler itself never looks at raw dicts.

Data model
----------
- A `Participant` carries an ordered `PreferenceSet` of 1-3 `PreferredTiming`
  values (rank 1 = most preferred).
- A `BookedEntry` is a slot that is already taken (possibly recurring).
- A `ScheduledAssignment` is the outcome for exactly one participant.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import logging

from dateutil import parser as date_parser
from dateutil import tz


logger = logging.getLogger(__name__)


REJECTION_REASON = "All preferred slots are already taken"
NO_USABLE_PREFERENCES_REASON = "No usable preferred timings were submitted"


# ----------------------------
# Enumerations
# ----------------------------


class Weekday(str, Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @property
    def number(self) -> int:
        """Python weekday number (Monday=0 .. Sunday=6)."""

        return _WEEKDAY_ORDER.index(self)

    @property
    def abbrev(self) -> str:
        """Two-letter iCal day code (MO, TU, ...)."""

        return self.value[:2].upper()

    @classmethod
    def from_date(cls, d: date) -> "Weekday":
        return _WEEKDAY_ORDER[d.weekday()]

    @classmethod
    def parse(cls, value: Any) -> Optional["Weekday"]:
        """Accept full names, 3-letter names and iCal codes, case-insensitive."""

        if isinstance(value, Weekday):
            return value
        text = str(value or "").strip().lower()
        if not text:
            return None
        for day in _WEEKDAY_ORDER:
            name = day.value.lower()
            if text in (name, name[:3], name[:2]):
                return day
        return None


_WEEKDAY_ORDER: Tuple[Weekday, ...] = (
    Weekday.MONDAY,
    Weekday.TUESDAY,
    Weekday.WEDNESDAY,
    Weekday.THURSDAY,
    Weekday.FRIDAY,
    Weekday.SATURDAY,
    Weekday.SUNDAY,
)


class Frequency(str, Enum):
    ONCE = "once"
    WEEKLY = "weekly"
    EVERY_2_WEEKS = "2weekly"
    EVERY_4_WEEKS = "monthly"

    @property
    def interval_weeks(self) -> int:
        # `once` shares the weekly interval for conflict purposes
        return _FREQUENCY_INTERVALS[self]

    @classmethod
    def parse(cls, value: Any) -> Optional["Frequency"]:
        """Parse a wire value; empty means weekly, unknown means None."""

        if isinstance(value, Frequency):
            return value
        text = str(value or "").strip().lower()
        if not text:
            return cls.WEEKLY
        return _FREQUENCY_ALIASES.get(text)


_FREQUENCY_INTERVALS: Dict[Frequency, int] = {
    Frequency.ONCE: 1,
    Frequency.WEEKLY: 1,
    Frequency.EVERY_2_WEEKS: 2,
    Frequency.EVERY_4_WEEKS: 4,
}

_FREQUENCY_ALIASES: Dict[str, Frequency] = {
    "once": Frequency.ONCE,
    "weekly": Frequency.WEEKLY,
    "2weekly": Frequency.EVERY_2_WEEKS,
    "every-2-weeks": Frequency.EVERY_2_WEEKS,
    "biweekly": Frequency.EVERY_2_WEEKS,
    "monthly": Frequency.EVERY_4_WEEKS,
    "every-4-weeks": Frequency.EVERY_4_WEEKS,
}


class OutcomeStatus(str, Enum):
    SCHEDULED = "scheduled"
    UNSCHEDULED = "unscheduled"
    NO_USABLE_PREFERENCES = "no_usable_preferences"


# ----------------------------
# Values
# ----------------------------


@dataclass(frozen=True)
class TimeWindow:
    day: Weekday
    start_hour: int
    start_minute: int
    end_hour: int
    end_minute: int

    @property
    def start_minutes(self) -> int:
        return self.start_hour * 60 + self.start_minute

    @property
    def end_minutes(self) -> int:
        return self.end_hour * 60 + self.end_minute

    def overlaps(self, other: "TimeWindow") -> bool:
        if self.day != other.day:
            return False
        return self.start_minutes < other.end_minutes and other.start_minutes < self.end_minutes

    def label(self) -> str:
        return (
            f"{self.day.value} {self.start_hour:02d}:{self.start_minute:02d}"
            f"-{self.end_hour:02d}:{self.end_minute:02d}"
        )


@dataclass(frozen=True)
class PreferredTiming:
    rank: int
    window: TimeWindow
    frequency: Frequency = Frequency.WEEKLY


@dataclass(frozen=True)
class Participant:
    participant_id: str
    name: str
    # PreferenceSet: ordered by rank, at most 3 entries
    preferences: Tuple[PreferredTiming, ...] = ()


@dataclass(frozen=True)
class BookedEntry:
    start_time: datetime
    end_time: datetime
    recurrence_rule: str = ""
    entry_id: Optional[str] = None
    participant_name: str = ""

    @property
    def day(self) -> Weekday:
        return Weekday.from_date(self.start_time.date())

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurrence_rule and self.recurrence_rule.strip())


@dataclass(frozen=True)
class ScheduledAssignment:
    participant: Participant
    timing: Optional[PreferredTiming]
    rank: int
    accepted: bool
    status: OutcomeStatus
    reason: Optional[str] = None


@dataclass(frozen=True)
class SchedulingResult:
    assignments: Tuple[ScheduledAssignment, ...]

    @property
    def total_scheduled(self) -> int:
        return sum(1 for a in self.assignments if a.accepted)

    @property
    def total_unassigned(self) -> int:
        return len(self.assignments) - self.total_scheduled

    @property
    def needs_attention(self) -> int:
        return sum(1 for a in self.assignments if a.status == OutcomeStatus.NO_USABLE_PREFERENCES)

    def accepted_assignments(self) -> Tuple[ScheduledAssignment, ...]:
        return tuple(a for a in self.assignments if a.accepted)


# ----------------------------
# Settings
# ----------------------------


CONFLICT_MODES = ("legacy", "strict")


@dataclass(frozen=True)
class OperatingHours:
    """Daily bookable window; the end hour is exclusive."""

    start_hour: int = 8
    end_hour: int = 21

    def __post_init__(self) -> None:
        if not (0 <= self.start_hour < self.end_hour <= 24):
            raise ValueError(
                f"operating hours must satisfy 0 <= start < end <= 24 (got {self.start_hour}-{self.end_hour})"
            )


@dataclass(frozen=True)
class SchedulingSettings:
    operating_hours: OperatingHours = field(default_factory=OperatingHours)
    tick_minutes: int = 15

    # "legacy": a booked entry blocks only the week of its first occurrence.
    # "strict": a booked entry blocks every week its recurrence rule covers.
    conflict_mode: str = "legacy"

    # True reproduces the old behavior of omitting participants without any usable rank.
    drop_unusable_participants: bool = False

    max_preferences: int = 3

    # IANA zone that offset-carrying timestamps are converted to; None = machine local time.
    timezone: Optional[str] = None

    def __post_init__(self) -> None:
        if self.conflict_mode not in CONFLICT_MODES:
            raise ValueError(f"conflict_mode must be one of: {', '.join(CONFLICT_MODES)}")
        if self.tick_minutes <= 0 or 60 % self.tick_minutes != 0:
            raise ValueError("tick_minutes must be a positive divisor of 60")
        if self.max_preferences < 1:
            raise ValueError("max_preferences must be >= 1")
        if not isinstance(self.drop_unusable_participants, bool):
            raise ValueError(
                f"drop_unusable_participants must be true or false (got {self.drop_unusable_participants!r})"
            )
        if self.timezone is not None and tz.gettz(self.timezone) is None:
            raise ValueError(f"unknown timezone: {self.timezone!r}")

    @property
    def zone(self) -> tzinfo:
        if self.timezone is None:
            return tz.tzlocal()
        return tz.gettz(self.timezone)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "SchedulingSettings":
        raw = raw or {}
        hours = raw.get("operating_hours") or {}
        zone = raw.get("timezone")
        return cls(
            operating_hours=OperatingHours(
                start_hour=int(hours.get("start_hour", 8)),
                end_hour=int(hours.get("end_hour", 21)),
            ),
            tick_minutes=int(raw.get("tick_minutes", 15)),
            conflict_mode=str(raw.get("conflict_mode", "legacy")),
            drop_unusable_participants=raw.get("drop_unusable_participants", False),
            max_preferences=int(raw.get("max_preferences", 3)),
            timezone=str(zone) if zone else None,
        )


# -------------------------------------------------
# Parsing raw payloads
# -------------------------------------------------


def parse_clock(value: Any) -> Tuple[int, int]:
    """Parse "HH:MM" (seconds are ignored) into (hour, minute)."""

    text = str(value or "").strip()
    parts = text.split(":")
    if len(parts) < 2:
        raise ValueError(f"invalid time of day: {value!r}")
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"invalid time of day: {value!r}") from None
    if not (0 <= hour <= 24 and 0 <= minute < 60) or (hour == 24 and minute > 0):
        raise ValueError(f"invalid time of day: {value!r}")
    return hour, minute


def parse_preference(raw: Dict[str, Any], rank: int) -> Optional[PreferredTiming]:
    """Read `preferred_{rank}_*` fields of a form response.

    Returns None when the rank is missing or malformed; that rank simply does
    not exist for the participant.
    """

    prefix = f"preferred_{rank}_"
    day_raw = raw.get(prefix + "day")
    start_raw = raw.get(prefix + "start")
    end_raw = raw.get(prefix + "end")
    if not day_raw or not start_raw or not end_raw:
        return None

    day = Weekday.parse(day_raw)
    frequency = Frequency.parse(raw.get(prefix + "frequency"))
    if day is None or frequency is None:
        logger.debug("Skipping rank %s: unknown day/frequency %r/%r", rank, day_raw, raw.get(prefix + "frequency"))
        return None

    try:
        sh, sm = parse_clock(start_raw)
        eh, em = parse_clock(end_raw)
    except ValueError as exc:
        logger.debug("Skipping rank %s: %s", rank, exc)
        return None

    return PreferredTiming(
        rank=rank,
        window=TimeWindow(day=day, start_hour=sh, start_minute=sm, end_hour=eh, end_minute=em),
        frequency=frequency,
    )


def participant_from_form(raw: Dict[str, Any], *, max_preferences: int = 3) -> Participant:
    """Build a `Participant` from a form-response style dict."""

    pid = str(raw.get("id") or raw.get("participant_id") or "")
    name = str(raw.get("student_name") or raw.get("name") or pid)

    prefs = []
    for rank in range(1, max_preferences + 1):
        timing = parse_preference(raw, rank)
        if timing is not None:
            prefs.append(timing)

    return Participant(participant_id=pid or name, name=name, preferences=tuple(prefs))


def parse_timestamp(value: Any, zone: Optional[tzinfo] = None) -> datetime:
    """Parse an ISO-8601 timestamp into a naive wall-clock datetime.

    Timestamps with an offset (e.g. stored `...Z` values) are first converted
    to `zone` (machine local time when None), so two spellings of the same
    instant land on the same slot. Naive timestamps are taken as-is.
    """

    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value or "").strip()
        if not text:
            raise ValueError("timestamp is required")
        try:
            dt = date_parser.isoparse(text)
        except (ValueError, OverflowError):
            raise ValueError(f"invalid ISO-8601 timestamp: {value!r}") from None
    if dt.tzinfo is not None:
        dt = dt.astimezone(zone or tz.tzlocal())
    return dt.replace(tzinfo=None)


def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_timestamp(value).date()


def booked_entry_from_dict(raw: Dict[str, Any], zone: Optional[tzinfo] = None) -> BookedEntry:
    entry_id = raw.get("id", raw.get("entry_id"))
    return BookedEntry(
        start_time=parse_timestamp(raw.get("start_time"), zone),
        end_time=parse_timestamp(raw.get("end_time"), zone),
        recurrence_rule=str(raw.get("recurrence_rule") or ""),
        entry_id=str(entry_id) if entry_id is not None else None,
        participant_name=str(raw.get("student_name") or raw.get("participant_name") or ""),
    )
