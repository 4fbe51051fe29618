"""
Quiet hours (do-not-disturb) window evaluation.

Windows are half-open [start, end) in the recipient's local time. start > end
wraps past midnight (22:00-08:00 covers 23:00 and 02:00). start == end, or a
missing bound, means quiet hours are off.
"""
import re
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from homebase_notify.core.errors import PreferenceValidationError

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::[0-5]\d)?$")


def parse_hhmm(value: str | None) -> time | None:
    """'22:00' -> time(22, 0). Accepts HH:MM or HH:MM:SS (browser time inputs send either)."""
    if value is None or value == "":
        return None
    m = _HHMM.match(value.strip())
    if not m:
        raise PreferenceValidationError(f"Invalid time {value!r}. Use HH:MM.")
    return time(int(m.group(1)), int(m.group(2)))


def resolve_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise PreferenceValidationError(f"Unknown timezone {tz_name!r}") from e


def local_now(tz_name: str, now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(resolve_zone(tz_name))


def is_within_quiet_hours(local_time: time, start: time | None, end: time | None) -> bool:
    if start is None or end is None or start == end:
        return False
    t = local_time.replace(second=0, microsecond=0, tzinfo=None)
    if start < end:
        return start <= t < end
    # Wraps midnight
    return t >= start or t < end


def in_quiet_hours(
    start: str | None,
    end: str | None,
    tz_name: str,
    now: datetime | None = None,
) -> bool:
    """Convenience wrapper over stored HH:MM strings."""
    start_t, end_t = parse_hhmm(start), parse_hhmm(end)
    if start_t is None or end_t is None:
        return False
    return is_within_quiet_hours(local_now(tz_name, now).time(), start_t, end_t)
