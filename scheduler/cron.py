"""Cron expressions: validation, next fire time, managed-scheduler conversion.

Crontab grammar, 5 or 6 fields::

    minute hour day-of-month month day-of-week [year]

Each field is ``*``, ``*/n``, ``a/n``, ``a-b``, ``a,b,c`` or a bare value.
``?`` is accepted in the two day fields and means "any". Weekdays are
numbered 0 (Sunday) to 6 (Saturday).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone as dt_timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

from core.errors import ServiceError


@dataclass(frozen=True)
class _Field:
    name: str
    low: int
    high: int
    allows_any: bool = False   # "?" permitted


_FIELDS = (
    _Field("minute", 0, 59),
    _Field("hour", 0, 23),
    _Field("day", 1, 31, allows_any=True),
    _Field("month", 1, 12),
    _Field("weekday", 0, 6, allows_any=True),
    _Field("year", 1970, 3000),
)

_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")
_NUMBER = re.compile(r"^\d+$")
_SCHEDULER_EXPR = re.compile(r"^\s*cron\((?P<body>.+)\)\s*$")


def _split(expr: str) -> list[str]:
    if not isinstance(expr, str) or not expr.strip():
        raise ServiceError.validation("Cron expression is required")
    parts = expr.split()
    if len(parts) not in (5, 6):
        raise ServiceError.validation(
            f"Cron expression must have 5 or 6 fields: {expr!r}", cronExpression=expr
        )
    return parts


def _number(value: str, field: _Field, expr: str) -> int:
    if not _NUMBER.match(value):
        raise ServiceError.validation(
            f"Invalid {field.name} value: {value}", cronExpression=expr
        )
    num = int(value)
    if not field.low <= num <= field.high:
        raise ServiceError.validation(
            f"Invalid {field.name} value: {value} (allowed {field.low}-{field.high})",
            cronExpression=expr,
        )
    return num


def _expand(part: str, field: _Field, expr: str) -> set[int] | None:
    """Return the set of values *part* matches, or None for "any"."""
    if part == "*" or (part == "?" and field.allows_any):
        return None

    if "/" in part:
        start, _, step = part.partition("/")
        if not _NUMBER.match(step) or int(step) <= 0:
            raise ServiceError.validation(f"Invalid {field.name} step: {step}", cronExpression=expr)
        first = field.low if start == "*" else _number(start, field, expr)
        return set(range(first, field.high + 1, int(step)))

    if "," in part:
        return {_number(v, field, expr) for v in part.split(",")}

    if "-" in part:
        start, _, end = part.partition("-")
        first, last = _number(start, field, expr), _number(end, field, expr)
        if first >= last:
            raise ServiceError.validation(
                f"Invalid {field.name} range: {part} (start must be less than end)",
                cronExpression=expr,
            )
        return set(range(first, last + 1))

    return {_number(part, field, expr)}


def _parse(expr: str) -> list[set[int] | None]:
    parts = _split(expr)
    return [_expand(part, field, expr) for part, field in zip(parts, _FIELDS)]


def validate_cron(expr: str) -> str:
    """Validate *expr* and return it with normalized whitespace."""
    _parse(expr)
    return " ".join(expr.split())


def _zone(timezone: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ServiceError.validation(f"Invalid timezone: {timezone}", timezone=timezone)


def validate_timezone(timezone: str | None) -> str:
    return _zone(timezone).key


def _trigger_value(values: set[int] | None, names: tuple[str, ...] | None = None) -> str:
    if values is None:
        return "*"
    ordered = sorted(values)
    if names:
        return ",".join(names[v] for v in ordered)
    return ",".join(str(v) for v in ordered)


def next_fire_time(expr: str, timezone: str | None = "UTC", now: datetime | None = None) -> datetime:
    """Next instant strictly after *now* at which *expr* fires, in *timezone*.

    Raises ServiceError(VALIDATION) for a bad expression or time zone;
    never falls back to the current time.
    """
    minute, hour, day, month, weekday, *rest = _parse(expr)
    year = rest[0] if rest else None
    tz = _zone(timezone)

    trigger = CronTrigger(
        year=_trigger_value(year),
        month=_trigger_value(month),
        day=_trigger_value(day),
        day_of_week=_trigger_value(weekday, _WEEKDAY_NAMES),
        hour=_trigger_value(hour),
        minute=_trigger_value(minute),
        second=0,
        timezone=tz,
    )
    now = now or datetime.now(dt_timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt_timezone.utc)
    # CronTrigger returns fire times >= now; nudge so an exact hit is skipped
    fire_time = trigger.get_next_fire_time(None, now.astimezone(tz) + timedelta(microseconds=1))
    if fire_time is None:
        raise ServiceError.validation(
            f"Cron expression never fires again: {expr}", cronExpression=expr
        )
    return fire_time


# ── Managed scheduler form ────────────────────────────────────────────────────


def _weekday_to_names(part: str) -> str:
    if part in ("*", "?") or "/" in part:
        return part
    tokens = re.split(r"([,-])", part)
    return "".join(
        _WEEKDAY_NAMES[int(tok)].upper() if _NUMBER.match(tok) else tok for tok in tokens
    )


def _weekday_from_names(part: str) -> str:
    def repl(match: re.Match) -> str:
        return str(_WEEKDAY_NAMES.index(match.group(0).lower()))
    return re.sub(r"(?i)\b(" + "|".join(_WEEKDAY_NAMES) + r")\b", repl, part)


def to_scheduler_expression(expr: str) -> str:
    """Convert a crontab expression to the managed scheduler's ``cron(...)`` form."""
    _parse(expr)
    minute, hour, day, month, weekday, *rest = expr.split()
    year = rest[0] if rest else "*"

    if weekday in ("*", "?"):
        weekday = "?"
        if day == "?":
            day = "*"
    elif day in ("*", "?"):
        day = "?"
    else:
        raise ServiceError.validation(
            "Day-of-month and day-of-week cannot both be restricted", cronExpression=expr
        )
    if "/" in weekday:
        # the scheduler numbers weekdays 1-7, so steps must be spelled out
        values = _expand(weekday, _FIELDS[4], expr) or set()
        weekday = ",".join(str(v) for v in sorted(values))
    return f"cron({minute} {hour} {day} {month} {_weekday_to_names(weekday)} {year})"


def from_scheduler_expression(raw: str) -> str:
    """Parse a ``cron(...)`` schedule expression back into canonical crontab form.

    ``?`` becomes ``*`` and a ``*`` year is dropped, so
    ``cron(0 6 * * ? *)`` reads back as ``0 6 * * *``.
    """
    match = _SCHEDULER_EXPR.match(raw or "")
    if not match:
        raise ServiceError.validation(f"Not a cron schedule expression: {raw!r}")
    parts = match.group("body").split()
    if len(parts) == 6:
        parts[4] = _weekday_from_names(parts[4])
        if parts[5] == "*":
            parts.pop()
    parts = ["*" if p == "?" else p for p in parts]
    expr = " ".join(parts)
    _parse(expr)
    return expr
