"""
Five-field cron parsing for the maintenance scheduler.

``CronSchedule.parse("5 * * * *")`` produces an immutable descriptor of the
matching minutes, hours, days, months and weekdays. ``CronScheduleTrigger``
adapts a descriptor to APScheduler so fire times come from this parser
rather than from APScheduler's own cron dialect (whose weekday 0 is Monday).
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import FrozenSet, Optional

from apscheduler.triggers.base import BaseTrigger

from hbstats.exceptions import CronParseError
from hbstats.services.periods import as_utc

# (name, low, high) in field order
FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("day_of_week", 0, 7),
)

MAX_SEARCH = timedelta(days=366 * 5)


def _parse_int(token: str, name: str, expr: str) -> int:
    if not token.isdigit():
        raise CronParseError(f"invalid {name} value {token!r} in {expr!r}")
    return int(token)


def _parse_field(field: str, name: str, low: int, high: int, expr: str) -> FrozenSet[int]:
    values = set()
    for part in field.split(","):
        if not part:
            raise CronParseError(f"empty {name} list item in {expr!r}")
        step = 1
        has_step = "/" in part
        if has_step:
            part, step_str = part.split("/", 1)
            step = _parse_int(step_str, name, expr)
            if step == 0:
                raise CronParseError(f"{name} step must be positive in {expr!r}")
        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_str, end_str = part.split("-", 1)
            start, end = _parse_int(start_str, name, expr), _parse_int(end_str, name, expr)
        else:
            start = _parse_int(part, name, expr)
            # "a/n" means from a to the end of the range
            end = high if has_step else start
        if start < low or end > high or start > end:
            raise CronParseError(f"{name} {part!r} out of range {low}-{high} in {expr!r}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronSchedule:
    """The set of UTC instants (to the minute) matched by a cron expression."""

    expression: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]        # 0 = Sunday
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> "CronSchedule":
        if not isinstance(expression, str):
            raise CronParseError(f"cron expression must be a string, got {expression!r}")
        fields = expression.split()
        if len(fields) != 5:
            raise CronParseError(f"expected 5 fields in {expression!r}, got {len(fields)}")

        parsed = [
            _parse_field(field, name, low, high, expression)
            for field, (name, low, high) in zip(fields, FIELDS)
        ]
        weekdays = frozenset(d % 7 for d in parsed[4])
        return cls(
            expression=expression,
            minutes=parsed[0],
            hours=parsed[1],
            days=parsed[2],
            months=parsed[3],
            weekdays=weekdays,
            day_restricted=not fields[2].startswith("*"),
            weekday_restricted=not fields[4].startswith("*"),
        )

    def _day_matches(self, dt: datetime) -> bool:
        in_days = dt.day in self.days
        in_weekdays = (dt.weekday() + 1) % 7 in self.weekdays
        # Classic cron: when both day fields are restricted either may match
        if self.day_restricted and self.weekday_restricted:
            return in_days or in_weekdays
        return in_days and in_weekdays

    def matches(self, dt: datetime) -> bool:
        dt = as_utc(dt)
        return (
            dt.minute in self.minutes
            and dt.hour in self.hours
            and dt.month in self.months
            and self._day_matches(dt)
        )

    def next_fire_time(self, after: datetime, inclusive: bool = False) -> Optional[datetime]:
        """First matching minute strictly after ``after`` (or at it, when inclusive)."""
        after = as_utc(after)
        t = after.replace(second=0, microsecond=0)
        if not (inclusive and t == after):
            t += timedelta(minutes=1)

        limit = t + MAX_SEARCH
        while t < limit:
            if t.month not in self.months:
                t = (t.replace(day=1) + timedelta(days=32)).replace(day=1, hour=0, minute=0)
                continue
            if not self._day_matches(t):
                t = t.replace(hour=0, minute=0) + timedelta(days=1)
                continue
            if t.hour not in self.hours:
                t = t.replace(minute=0) + timedelta(hours=1)
                continue
            if t.minute not in self.minutes:
                t += timedelta(minutes=1)
                continue
            return t
        # e.g. "0 0 31 2 *"
        return None

    def __str__(self) -> str:
        return self.expression


class CronScheduleTrigger(BaseTrigger):
    """APScheduler trigger firing on the minutes matched by a CronSchedule."""

    def __init__(self, schedule: CronSchedule):
        self.schedule = schedule

    def get_next_fire_time(self, previous_fire_time, now):
        if previous_fire_time is not None:
            return self.schedule.next_fire_time(max(previous_fire_time, now))
        return self.schedule.next_fire_time(now, inclusive=True)

    def __str__(self):
        return f"cron[{self.schedule.expression}]"

    def __repr__(self):
        return f"<{self.__class__.__name__} ({self.schedule.expression!r})>"
