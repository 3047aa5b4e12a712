from __future__ import annotations

import re
from typing import Literal

DayGroupName = Literal["MW", "TTH", "FRI", "SAT", "SUN"]
TimePeriod = Literal["morning", "afternoon"]

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")

WEEK_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DAY_GROUP_DAYS: dict[str, tuple[str, ...]] = {
    "MW": ("monday", "wednesday"),
    "TTH": ("tuesday", "thursday"),
    "FRI": ("friday",),
    "SAT": ("saturday",),
    "SUN": ("sunday",),
}
PAIRED_DAY_GROUPS = frozenset({"MW", "TTH"})
DEFAULT_INCLUDED_DAY_GROUPS: tuple[str, ...] = ("MW", "TTH", "FRI")

NOON_MINUTES = 12 * 60

_DAY_ALIASES = {
    "mon": "monday",
    "tue": "tuesday",
    "tues": "tuesday",
    "wed": "wednesday",
    "thu": "thursday",
    "thur": "thursday",
    "thurs": "thursday",
    "fri": "friday",
    "sat": "saturday",
    "sun": "sunday",
}


def parse_time_to_minutes(value: str) -> int:
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM 24-hour format")
    hours, minutes = value.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def minutes_to_time(value: int) -> str:
    hours, minutes = divmod(int(value), 60)
    return f"{hours:02d}:{minutes:02d}"


def normalize_day(value: str) -> str:
    day = value.strip().lower()
    day = _DAY_ALIASES.get(day, day)
    if day not in WEEK_DAYS:
        raise ValueError(f"Invalid day value: {value}")
    return day


def day_group_for_day(day: str) -> str:
    normalized = normalize_day(day)
    for group, days in DAY_GROUP_DAYS.items():
        if normalized in days:
            return group
    raise ValueError(f"Day {day} does not belong to a day group")


def paired_day(day: str) -> str | None:
    """Return the other meeting day of a paired group (monday <-> wednesday)."""
    days = DAY_GROUP_DAYS[day_group_for_day(day)]
    if len(days) != 2:
        return None
    return days[1] if days[0] == normalize_day(day) else days[0]


def is_paired_group(day_group: str) -> bool:
    return day_group in PAIRED_DAY_GROUPS


def meetings_per_week(day_group: str) -> int:
    return len(DAY_GROUP_DAYS[day_group])


def per_meeting_minutes(weekly_minutes: int, day_group: str) -> int:
    return weekly_minutes // meetings_per_week(day_group)


def convert_meeting_minutes(minutes: int, from_group: str, to_group: str) -> int:
    """Per-meeting duration after moving a session between day groups.

    Weekly contact time is preserved: single -> paired halves the meeting,
    paired -> single doubles it, same family keeps it.
    """
    return minutes * meetings_per_week(from_group) // meetings_per_week(to_group)


def time_period(start_minutes: int) -> TimePeriod:
    return "morning" if start_minutes < NOON_MINUTES else "afternoon"
