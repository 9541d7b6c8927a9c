from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


# =============================================================================
# BUSINESS-DAY CLOCK
# =============================================================================

def parse_cutoff(value: str | time) -> time:
    """Parse an "HH:MM" cutoff into a time. Raises ValueError on bad input."""
    if isinstance(value, time):
        return value
    s = str(value).strip()
    hours, sep, minutes = s.partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit():
        raise ValueError(f"invalid cutoff time {value!r} (expected HH:MM)")
    return time(int(hours), int(minutes))


def load_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"unknown timezone {name!r}")


@dataclass(frozen=True)
class BusinessClock:
    """
    Wall-clock rules of one physical branch.

    All datetimes going in and out are UTC-naive; only the calculations
    happen in the branch's local time.
    """
    tz: ZoneInfo
    cutoff: time

    @classmethod
    def from_settings(cls, tz_name: str, cutoff: str | time) -> "BusinessClock":
        return cls(tz=load_timezone(tz_name), cutoff=parse_cutoff(cutoff))

    def to_local(self, dt_utc: datetime) -> datetime:
        return dt_utc.replace(tzinfo=timezone.utc).astimezone(self.tz)

    def to_utc(self, dt_local: datetime) -> datetime:
        if dt_local.tzinfo is None:
            dt_local = dt_local.replace(tzinfo=self.tz)
        return dt_local.astimezone(timezone.utc).replace(tzinfo=None)

    def business_date(self, dt_utc: datetime) -> date:
        return self.to_local(dt_utc).date()

    def start_of_day(self, day: date) -> datetime:
        """UTC-naive instant of local midnight starting `day`."""
        return self.to_utc(datetime.combine(day, time.min))

    def cutoff_on(self, day: date) -> datetime:
        """UTC-naive instant of the cutoff on local `day`."""
        return self.to_utc(datetime.combine(day, self.cutoff))

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        """[start, end) of a local business day, as UTC-naive instants."""
        return self.start_of_day(day), self.start_of_day(day + timedelta(days=1))

    def month_bounds(self, day: date) -> tuple[datetime, datetime]:
        first = day.replace(day=1)
        if first.month == 12:
            nxt = first.replace(year=first.year + 1, month=1)
        else:
            nxt = first.replace(month=first.month + 1)
        return self.start_of_day(first), self.start_of_day(nxt)
