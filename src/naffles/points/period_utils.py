"""Leaderboard period boundaries.

Periods are computed in the configured local zone and returned as
timezone-aware UTC datetimes:
- daily: local midnight to next local midnight
- weekly: Sunday 00:00 local to the following Sunday
- monthly: first of the month to first of next month
- all_time: epoch to the 2099-12-31 sentinel
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from naffles.exceptions import InvalidLeaderboardError

PERIODS = ("daily", "weekly", "monthly", "all_time")

ALL_TIME_START = datetime(1970, 1, 1, tzinfo=timezone.utc)
ALL_TIME_END = datetime(2099, 12, 31, tzinfo=timezone.utc)


def _zone(tz: str | None) -> tzinfo:
    if not tz or tz.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(tz)


def _local_midnight(d: date, zone: tzinfo) -> datetime:
    return datetime.combine(d, time.min, tzinfo=zone).astimezone(timezone.utc)


def local_date(now: datetime | None = None, tz: str | None = None) -> date:
    """Calendar date of ``now`` in the local zone."""
    if now is None:
        now = datetime.now(timezone.utc)
    return now.astimezone(_zone(tz)).date()


def get_period_dates(period: str, now: datetime | None = None, tz: str | None = None) -> tuple[datetime, datetime]:
    """Return (period_start, period_end) in UTC for the period containing ``now``."""
    if period not in PERIODS:
        msg = f"Invalid period: {period}"
        raise InvalidLeaderboardError(msg)
    if period == "all_time":
        return ALL_TIME_START, ALL_TIME_END

    zone = _zone(tz)
    today = local_date(now, tz)

    if period == "daily":
        start_day = today
        end_day = today + timedelta(days=1)
    elif period == "weekly":
        # date.weekday(): Monday=0 .. Sunday=6
        days_since_sunday = (today.weekday() + 1) % 7
        start_day = today - timedelta(days=days_since_sunday)
        end_day = start_day + timedelta(days=7)
    else:
        start_day = today.replace(day=1)
        end_day = (start_day.replace(year=start_day.year + 1, month=1) if start_day.month == 12
                   else start_day.replace(month=start_day.month + 1))

    return _local_midnight(start_day, zone), _local_midnight(end_day, zone)


def timeframe_start(timeframe: str, now: datetime | None = None) -> datetime:
    """Start of a rolling analytics window: '7d', '30d' or '90d'."""
    if now is None:
        now = datetime.now(timezone.utc)
    days = {"7d": 7, "30d": 30, "90d": 90}.get(timeframe, 30)
    return now - timedelta(days=days)
