"""Parsing for run-at specifications and repeat intervals.

``when`` values accepted by ``schedule_at``:

- a ``datetime`` (naive values are taken as UTC)
- a number of seconds from now (``30``)
- a relative phrase: ``"in 5 minutes"``, ``"in 1 hour"``, ``"in 2 days"``
- anything else is read as an ISO-8601 timestamp

Repeat intervals are duration phrases (``"5 minutes"``, ``"1 hour and 30
minutes"``) or 5/6-field cron expressions.
"""

from __future__ import annotations

import math
import re
from datetime import UTC, datetime, timedelta

from croniter import croniter

from cadence.jobs.errors import InvalidScheduleError

_RELATIVE_WHEN = re.compile(
    r"^\s*in\s+(\d+)\s+(second|seconds|minute|minutes|hour|hours|day|days)\s*$",
    re.IGNORECASE,
)

_DURATION_PART = re.compile(
    r"(\d+(?:\.\d+)?|an?|one)\s*"
    r"(milliseconds?|ms|seconds?|secs?|minutes?|mins?|hours?|hrs?|days?|weeks?|months?|years?)",
    re.IGNORECASE,
)
_DURATION_SEPARATORS = re.compile(r"^(?:\s|,|and)*$", re.IGNORECASE)

_UNIT_SECONDS = {
    "ms": 0.001,
    "millisecond": 0.001,
    "sec": 1,
    "second": 1,
    "min": 60,
    "minute": 60,
    "hr": 3600,
    "hour": 3600,
    "day": 86400,
    "week": 7 * 86400,
    "month": 30 * 86400,
    "year": 365 * 86400,
}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _offset(now: datetime, seconds: float, spec: object) -> datetime:
    try:
        return now + timedelta(seconds=seconds)
    except (OverflowError, ValueError):
        raise InvalidScheduleError(f"Run time out of range: {spec!r}") from None


def _unit_seconds(unit: str) -> float:
    unit = unit.lower()
    if unit in _UNIT_SECONDS:
        return _UNIT_SECONDS[unit]
    return _UNIT_SECONDS[unit.rstrip("s")]


def resolve_when(when: datetime | int | float | str, now: datetime) -> datetime:
    """Turn a run-at specification into an absolute UTC timestamp."""
    if isinstance(when, datetime):
        return _as_utc(when)

    if isinstance(when, bool):
        raise InvalidScheduleError(f"Invalid run time: {when!r}")

    if isinstance(when, (int, float)):
        return _offset(now, when, when)

    if isinstance(when, str):
        match = _RELATIVE_WHEN.match(when)
        if match:
            amount = int(match.group(1))
            return _offset(now, amount * _unit_seconds(match.group(2)), when)

        text = when.strip()
        try:
            return _as_utc(datetime.fromisoformat(text))
        except ValueError:
            raise InvalidScheduleError(
                f"Invalid run time: {when!r}. Use an ISO-8601 timestamp, "
                "a number of seconds, or 'in N seconds/minutes/hours/days'"
            ) from None

    raise InvalidScheduleError(f"Invalid run time: {when!r}")


def parse_duration(phrase: str | int | float) -> timedelta:
    """Parse a human duration such as ``"5 minutes"`` or ``"1 hour and 30 minutes"``.

    Bare numbers are seconds.
    """
    if isinstance(phrase, bool):
        raise InvalidScheduleError(f"Invalid interval: {phrase!r}")
    if isinstance(phrase, (int, float)):
        seconds = float(phrase)
    else:
        text = phrase.strip()
        try:
            seconds = float(text)
        except ValueError:
            seconds = 0.0
            position = 0
            for match in _DURATION_PART.finditer(text):
                if not _DURATION_SEPARATORS.match(text[position : match.start()]):
                    raise InvalidScheduleError(f"Invalid interval: {phrase!r}") from None
                amount = match.group(1).lower()
                count = 1.0 if amount in ("a", "an", "one") else float(amount)
                seconds += count * _unit_seconds(match.group(2))
                position = match.end()
            if position == 0 or not _DURATION_SEPARATORS.match(text[position:]):
                raise InvalidScheduleError(f"Invalid interval: {phrase!r}") from None

    if not math.isfinite(seconds) or seconds <= 0:
        raise InvalidScheduleError(f"Interval must be positive: {phrase!r}")
    try:
        return timedelta(seconds=seconds)
    except OverflowError:
        raise InvalidScheduleError(f"Interval out of range: {phrase!r}") from None


def to_croniter_expression(expression: str) -> str | None:
    """Normalize a 5/6-field cron expression for croniter, or None if invalid.

    Six-field patterns put seconds first; croniter expects them last.
    """
    fields = expression.split()
    if len(fields) == 6:
        fields = fields[1:] + fields[:1]
    elif len(fields) != 5:
        return None
    normalized = " ".join(fields)
    if not croniter.is_valid(normalized):
        return None
    return normalized


def is_cron_interval(interval: str) -> bool:
    return to_croniter_expression(interval) is not None


def validate_interval(interval: str) -> str:
    """Return the interval unchanged if it is a duration phrase or cron expression."""
    if not isinstance(interval, str) or not interval.strip():
        raise InvalidScheduleError(f"Invalid interval: {interval!r}")
    if not is_cron_interval(interval):
        parse_duration(interval)
    return interval.strip()


def next_run_at(interval: str, last_scheduled: datetime | None, now: datetime) -> datetime:
    """Next execution time for a recurring job.

    Durations advance from the previous scheduled time in whole steps until
    the result lies after ``now``; missed slots are skipped, not replayed.
    """
    cron_expression = to_croniter_expression(interval)
    if cron_expression is not None:
        base = max(last_scheduled, now) if last_scheduled else now
        return _as_utc(croniter(cron_expression, base).get_next(datetime))

    step = parse_duration(interval)
    base = last_scheduled or now
    try:
        if base + step > now:
            return base + step
        missed = math.floor((now - base) / step) + 1
        return base + step * missed
    except OverflowError:
        raise InvalidScheduleError(f"Next run out of range for interval {interval!r}") from None
