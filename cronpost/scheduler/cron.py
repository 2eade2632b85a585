"""Five-field cron expressions.

Validates "minute hour day-of-month month day-of-week" into a CronSchedule
and computes fire times from it with croniter. Each field accepts ``*``, a
number, ``*/N``, ``base/N``, ``a-b``, ``a-b/N`` or a comma separated list
of those. Day of week runs 0-6 with 0 = Sunday.

croniter accepts a wider grammar (month and weekday names, ``L``, ``#``,
weekday 7, a seconds field), so expressions are checked here first and only
then handed over. Day of month and day of week are ORed when both are
restricted, otherwise both must match.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, Iterator, List, Optional

from croniter import CroniterBadCronError, CroniterBadDateError, croniter

from cronpost.scheduler.exceptions import InvalidScheduleError, UnreachableScheduleError

DEFAULT_SEARCH_YEARS = 5

_NUMBER = re.compile(r"^\d+$", re.ASCII)
_SIGNED_NUMBER = re.compile(r"^-?\d+$", re.ASCII)

SCHEDULE_PRESETS = {
    "* * * * *": "Every minute",
    "*/5 * * * *": "Every 5 minutes",
    "*/15 * * * *": "Every 15 minutes",
    "*/30 * * * *": "Every 30 minutes",
    "0 * * * *": "Every hour",
    "0 0 * * *": "Daily at midnight",
    "0 0 * * 0": "Weekly on Sunday at midnight",
    "0 0 1 * *": "Monthly on the 1st at midnight",
    "0 9 * * *": "Daily at 9:00 AM",
    "0 9 * * 1-5": "Weekdays at 9:00 AM",
}


@dataclass(frozen=True)
class _Field:
    name: str
    low: int
    high: int

    @property
    def all_values(self) -> FrozenSet[int]:
        return frozenset(range(self.low, self.high + 1))


_FIELDS = (
    _Field("minute", 0, 59),
    _Field("hour", 0, 23),
    _Field("day of month", 1, 31),
    _Field("month", 1, 12),
    _Field("day of week", 0, 6),
)


@dataclass(frozen=True)
class CronSchedule:
    """Validated cron expression.

    Attributes:
        expression: The normalized source expression
        minutes: Allowed minutes (0-59)
        hours: Allowed hours (0-23)
        days_of_month: Allowed days of month (1-31)
        months: Allowed months (1-12)
        days_of_week: Allowed weekdays (0-6, 0 = Sunday)
        day_of_month_restricted: Day-of-month field does not cover every day
        day_of_week_restricted: Day-of-week field does not cover every weekday
        search_years: How far ahead next_fire_time looks before giving up
    """

    expression: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days_of_month: FrozenSet[int]
    months: FrozenSet[int]
    days_of_week: FrozenSet[int]
    day_of_month_restricted: bool
    day_of_week_restricted: bool
    search_years: int = field(default=DEFAULT_SEARCH_YEARS, compare=False)

    def matches(self, instant: datetime) -> bool:
        """Check whether the minute containing ``instant`` is a fire time."""
        return bool(croniter.match(self.expression, instant.replace(second=0, microsecond=0)))

    def next_fire_time(self, after: datetime) -> datetime:
        """Get the earliest fire time strictly after ``after``.

        The result has zero seconds and microseconds and is in the same zone
        as ``after`` (naive in, naive out).

        Raises:
            UnreachableScheduleError: If nothing matches within search_years
        """
        try:
            cron = croniter(
                self.expression,
                after,
                day_or=True,
                max_years_between_matches=self.search_years,
            )
            return cron.get_next(datetime)
        except (CroniterBadDateError, CroniterBadCronError) as e:
            # croniter rejects some impossible day/month pairs up front
            raise UnreachableScheduleError(self.expression, self.search_years) from e

    def iter_fire_times(self, after: datetime, count: int) -> Iterator[datetime]:
        """Yield the next ``count`` fire times after ``after``."""
        current = after
        for _ in range(count):
            current = self.next_fire_time(current)
            yield current


def _parse_value(token: str, rule: _Field, expression: str) -> int:
    if not _NUMBER.match(token):
        raise InvalidScheduleError(expression, f"{rule.name} value '{token}' is not a number")
    value = int(token)
    if not rule.low <= value <= rule.high:
        raise InvalidScheduleError(
            expression,
            f"{rule.name} value {value} is out of range {rule.low}-{rule.high}",
        )
    return value


def _parse_range(token: str, rule: _Field, expression: str) -> range:
    """Parse ``*``, ``a`` or ``a-b`` into an inclusive range (no step)."""
    if token == "*":
        return range(rule.low, rule.high + 1)

    start_text, dash, end_text = token.partition("-")
    start = _parse_value(start_text, rule, expression)
    if not dash:
        return range(start, start + 1)

    end = _parse_value(end_text, rule, expression)
    if start > end:
        raise InvalidScheduleError(expression, f"{rule.name} range {token} is inverted")
    return range(start, end + 1)


def _parse_field(text: str, rule: _Field, expression: str) -> FrozenSet[int]:
    values: set[int] = set()

    for part in text.split(","):
        if not part:
            raise InvalidScheduleError(expression, f"empty element in {rule.name} field")

        base, slash, step_text = part.partition("/")
        if not slash:
            values.update(_parse_range(base, rule, expression))
            continue

        if not _SIGNED_NUMBER.match(step_text):
            raise InvalidScheduleError(expression, f"{rule.name} step '{step_text}' is not a number")
        step = int(step_text)
        if step <= 0:
            raise InvalidScheduleError(expression, f"{rule.name} step must be positive, got {step}")

        span = _parse_range(base, rule, expression)
        if base != "*" and "-" not in base:
            # "base/N" runs from base to the top of the field
            span = range(span.start, rule.high + 1)
        values.update(span[::step])

    return frozenset(values)


def parse_schedule(expression: str, search_years: int = DEFAULT_SEARCH_YEARS) -> CronSchedule:
    """Parse a five-field cron expression.

    Args:
        expression: Cron expression, fields separated by whitespace
        search_years: Search bound used by next_fire_time

    Returns:
        Parsed CronSchedule

    Raises:
        InvalidScheduleError: If the expression is malformed
    """
    parts = expression.split()
    if len(parts) != len(_FIELDS):
        raise InvalidScheduleError(
            expression,
            f"expected 5 fields (minute hour day month weekday), got {len(parts)}",
        )

    normalized = " ".join(parts)
    minutes, hours, days, months, weekdays = (
        _parse_field(text, rule, normalized) for text, rule in zip(parts, _FIELDS)
    )

    return CronSchedule(
        expression=normalized,
        minutes=minutes,
        hours=hours,
        days_of_month=days,
        months=months,
        days_of_week=weekdays,
        day_of_month_restricted=days != _FIELDS[2].all_values,
        day_of_week_restricted=weekdays != _FIELDS[4].all_values,
        search_years=search_years,
    )


def next_fire_time(schedule: CronSchedule, after: datetime) -> datetime:
    """Get the earliest fire time of ``schedule`` strictly after ``after``."""
    return schedule.next_fire_time(after)


def validate_schedule(
    expression: str,
    now: Optional[datetime] = None,
    search_years: int = DEFAULT_SEARCH_YEARS,
) -> CronSchedule:
    """Parse an expression and make sure it fires at least once.

    Raises:
        InvalidScheduleError: If the expression is malformed
        UnreachableScheduleError: If it never fires within the search bound
    """
    schedule = parse_schedule(expression, search_years=search_years)
    schedule.next_fire_time(now or datetime.now())
    return schedule


def preview_fire_times(expression: str, after: datetime, count: int = 5) -> List[datetime]:
    """Get the next ``count`` fire times of an expression."""
    return list(parse_schedule(expression).iter_fire_times(after, count))


def describe_schedule(expression: str) -> str:
    """Human-readable label for well-known expressions."""
    return SCHEDULE_PRESETS.get(" ".join(expression.split()), "Custom schedule")
