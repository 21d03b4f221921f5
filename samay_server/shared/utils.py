from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

# Control characters that survive sanitizing
_KEPT_CONTROL_CHARS = {"\t", "\n", "\r"}


def sanitize_string(value: str) -> str:
    """
    Removes control characters (codepoint < 32) except tab, newline and carriage
    return, then trims surrounding whitespace. Empty strings come back unchanged.
    """
    if not value:
        return value
    return "".join(ch for ch in value if ord(ch) >= 32 or ch in _KEPT_CONTROL_CHARS).strip()


def parse_timestamp(value: str) -> Optional[datetime]:
    """
    Parses an ISO 8601 timestamp as sent by the tracker. Naive values are taken
    as UTC. Returns None for empty or unparsable input.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def local_date_string(value: str, tz_name: str) -> str:
    """YYYY-MM-DD of the timestamp in the given zone, or "" when it cannot be parsed."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return ""
    return parsed.astimezone(ZoneInfo(tz_name)).date().isoformat()


def format_local_time(value: str, tz_name: str) -> str:
    """hh:mm AM/PM in the given zone; the input is returned untouched if it cannot be parsed."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return value
    return parsed.astimezone(ZoneInfo(tz_name)).strftime("%I:%M %p")


def day_bounds(day: date, tz_name: str) -> Tuple[datetime, datetime]:
    """First and last millisecond of a calendar day in the given zone, as UTC datetimes."""
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day, time(23, 59, 59, 999000), tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def next_day_start(day: date, tz_name: str) -> datetime:
    """Midnight after the given day in the zone, as a UTC datetime. Day windows end before it."""
    following = datetime.combine(day + timedelta(days=1), time.min, tzinfo=ZoneInfo(tz_name))
    return following.astimezone(timezone.utc)


def previous_day(tz_name: str, now: Optional[datetime] = None) -> date:
    """Yesterday's date in the given zone."""
    now = now or datetime.now(timezone.utc)
    return (now.astimezone(ZoneInfo(tz_name)) - timedelta(days=1)).date()


def to_iso_utc(value: datetime) -> str:
    """Millisecond ISO 8601 string with a Z suffix, the format the tracker sends."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
