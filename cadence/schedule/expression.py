"""
Schedule expressions — five-field calendar matching at minute granularity.

    ┌──────── minute        0-59
    │ ┌────── hour          0-23
    │ │ ┌──── day of month  1-31
    │ │ │ ┌── month         1-12
    │ │ │ │ ┌ day of week   0-6 (0 = Sunday)
    0 9 * * 1-5

Each field is a comma-separated list of terms. A term is ``*``, a bare
integer, or ``low-high``, optionally followed by ``/step``:

    */15     value % 15 == 0
    9-17/2   9 <= value <= 17 and (value - 9) % 2 == 0
    30       value == 30        (a step on a bare integer is ignored)

Evaluation never raises. A malformed expression or term simply never
matches; shape validation happens when a job is added (see JobStore).

All instants are read after shifting by a fixed signed minute offset
(clamped to -720..+840), so "0 9 * * *" with offset 120 fires at 07:00 UTC.

Usage:
    matches("0 9 * * 1-5", datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))
    next_fire_after("*/15 * * * *", now, offset_minutes=60)
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any

MIN_OFFSET_MINUTES = -720
MAX_OFFSET_MINUTES = 840

# next_fire_after gives up after two days of probing
SEARCH_HORIZON_MINUTES = 2880

_DIGITS = re.compile(r"^\d+$")
_CLOCK = re.compile(r"^(\d{1,2}):(\d{2})$")


# ── Offsets and instants ──────────────────────────────────────────────────────


def clamp_offset(value: Any) -> int:
    """Coerce *value* to whole minutes within the real-world UTC offset range."""
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(minutes):
        return 0
    return max(MIN_OFFSET_MINUTES, min(MAX_OFFSET_MINUTES, math.floor(minutes + 0.5)))


def _as_utc(instant: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def shift(instant: datetime, offset_minutes: int = 0) -> datetime:
    """Wall-clock reading of *instant* at the given fixed offset (UTC-tagged)."""
    return _as_utc(instant) + timedelta(minutes=clamp_offset(offset_minutes))


def day_of_week(moment: datetime) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return (moment.weekday() + 1) % 7


# ── Field matching ────────────────────────────────────────────────────────────


def _term_matches(term: str, value: int) -> bool:
    parts = term.split("/")
    if len(parts) > 2:
        return False
    span = parts[0]
    if len(parts) == 2:
        if not _DIGITS.match(parts[1]):
            return False
        step = int(parts[1])
        if step <= 0:
            return False
    else:
        step = 1

    if span == "*":
        return value % step == 0

    if "-" in span:
        bounds = span.split("-")
        if len(bounds) != 2 or not all(_DIGITS.match(b) for b in bounds):
            return False
        low, high = int(bounds[0]), int(bounds[1])
        return low <= value <= high and (value - low) % step == 0

    if not _DIGITS.match(span):
        return False
    return int(span) == value


def field_matches(field: str, value: int) -> bool:
    """True if any comma-separated term of *field* matches *value*."""
    for raw in str(field).split(","):
        term = raw.strip()
        if term and _term_matches(term, value):
            return True
    return False


def is_well_formed(expression: Any) -> bool:
    """An expression is well-formed iff it has exactly five whitespace-separated fields."""
    if not isinstance(expression, str):
        return False
    return len(expression.split()) == 5


def matches(expression: str, instant: datetime, offset_minutes: int = 0) -> bool:
    """Does *expression* fire during the minute containing *instant*?"""
    if not is_well_formed(expression):
        return False
    minute, hour, dom, month, dow = expression.split()
    local = shift(instant, offset_minutes)
    return (
        field_matches(minute, local.minute)
        and field_matches(hour, local.hour)
        and field_matches(dom, local.day)
        and field_matches(month, local.month)
        and field_matches(dow, day_of_week(local))
    )


def next_fire_after(
    expression: str,
    instant: datetime,
    offset_minutes: int = 0,
) -> datetime | None:
    """
    First matching minute strictly after *instant*, or None within the horizon.

    Probing starts at the minute after *instant* (seconds truncated) and
    stops after SEARCH_HORIZON_MINUTES probes. The result carries the same
    timezone convention as the input: naive in, naive out (UTC); aware in,
    UTC-aware out.
    """
    naive = instant.tzinfo is None
    probe = _as_utc(instant).replace(second=0, microsecond=0) + timedelta(minutes=1)
    for _ in range(SEARCH_HORIZON_MINUTES):
        if matches(expression, probe, offset_minutes):
            return probe.replace(tzinfo=None) if naive else probe
        probe += timedelta(minutes=1)
    return None


# ── Quick-add helpers ─────────────────────────────────────────────────────────


def parse_clock(text: str) -> tuple[int, int] | None:
    """'HH:MM' → (hour, minute), or None when malformed or out of range."""
    m = _CLOCK.match(str(text).strip())
    if not m:
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def schedule_for_clock(text: str) -> str:
    """'09:30' → '30 9 * * *'. Raises ValueError on a malformed clock time."""
    clock = parse_clock(text)
    if clock is None:
        raise ValueError(f"Expected HH:MM, got {text!r}")
    hour, minute = clock
    return f"{minute} {hour} * * *"


def schedule_in_minutes(
    minutes: int,
    now: datetime,
    offset_minutes: int = 0,
) -> str:
    """
    Daily expression for the wall-clock time *minutes* from *now*.

    *minutes* is clamped to 1..1440 (one day ahead at most).
    """
    minutes = max(1, min(1440, int(minutes)))
    target = shift(now, offset_minutes) + timedelta(minutes=minutes)
    return f"{target.minute} {target.hour} * * *"
