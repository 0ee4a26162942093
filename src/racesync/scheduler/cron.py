"""
Five-field cron expressions (minute hour day-of-month month day-of-week).

Parsing and next-occurrence evaluation are delegated to APScheduler's
CronTrigger. APScheduler numbers weekdays from Monday=0, while POSIX cron
uses Sunday=0 (and 7), so the day-of-week field is rewritten to weekday
names before it is handed over:

    "0 2 * * 0"     -> day_of_week="sun"
    "0 2 * * 1-5"   -> day_of_week="mon,tue,wed,thu,fri"
    "0 2 * * */2"   -> day_of_week="sun,tue,thu,sat"

Known difference from POSIX: when both day-of-month and day-of-week are
restricted, APScheduler requires both to match instead of either.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.triggers.cron import CronTrigger

from racesync.errors import ValidationError

_DAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]
_DAY_NUMBERS = {name: i for i, name in enumerate(_DAY_NAMES)}


def _day_number(token: str) -> int:
    token = token.strip().lower()
    if token in _DAY_NUMBERS:
        return _DAY_NUMBERS[token]
    if not token.isdigit() or int(token) > 7:
        raise ValidationError(f"Invalid day-of-week value: {token!r}")
    return int(token) % 7  # 7 is also Sunday


def _translate_day_of_week(field: str) -> str:
    """Rewrite a POSIX day-of-week field into APScheduler weekday names."""
    if field in ("*", "?"):
        return "*"

    days = set()
    for part in field.split(","):
        base, _, step_text = part.partition("/")
        if step_text and (not step_text.isdigit() or int(step_text) == 0):
            raise ValidationError(f"Invalid day-of-week step: {part!r}")
        step = int(step_text) if step_text else 1

        if base == "*":
            first, last = 0, 6
        elif "-" in base:
            start, _, end = base.partition("-")
            first, last = _day_number(start), _day_number(end)
            if end.strip() == "7":
                last = 7
        else:
            first = last = _day_number(base)
            if step_text:
                last = 6  # "1/2" means every 2nd day starting Monday

        if first > last:
            raise ValidationError(f"Invalid day-of-week range: {part!r}")
        days.update(d % 7 for d in range(first, last + 1, step))

    return ",".join(_DAY_NAMES[d] for d in sorted(days))


def build_trigger(cron_expression: str, tz: str = "UTC") -> CronTrigger:
    """
    Parse a standard 5-field cron expression into an APScheduler CronTrigger.

    Raises:
        ValidationError: if the expression is not a valid 5-field cron string.
    """
    if not isinstance(cron_expression, str) or not cron_expression.strip():
        raise ValidationError("Cron expression is required")

    fields = cron_expression.split()
    if len(fields) != 5:
        raise ValidationError(
            f"Invalid cron expression {cron_expression!r}: expected 5 fields, got {len(fields)}"
        )
    minute, hour, day, month, day_of_week = fields

    try:
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_translate_day_of_week(day_of_week),
            timezone=tz,
        )
    except ValidationError:
        raise
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid cron expression {cron_expression!r}: {exc}") from exc


def validate_cron(cron_expression: str) -> None:
    """Raise ValidationError unless `cron_expression` is a valid 5-field expression."""
    build_trigger(cron_expression)


def next_run(
    cron_expression: str, tz: str = "UTC", now: Optional[datetime] = None
) -> Optional[datetime]:
    """
    Next occurrence strictly after `now`, as a naive UTC datetime.

    Returns None if the expression can never fire again (e.g. "0 0 31 2 *").
    """
    trigger = build_trigger(cron_expression, tz)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    fire_time = trigger.get_next_fire_time(None, now)
    if fire_time is not None and fire_time <= now:
        # get_next_fire_time may return `now` itself when it lands on a boundary
        fire_time = trigger.get_next_fire_time(fire_time, now + timedelta(seconds=1))
    if fire_time is None:
        return None
    return fire_time.astimezone(timezone.utc).replace(tzinfo=None)
