"""
Period arithmetic for partition boundaries.

All boundaries are computed in UTC and are half-open ``[start, end)``:
  daily    2025-01-25  → 2025-01-25T00:00Z .. 2025-01-26T00:00Z
  weekly   2025-W04    → Monday 00:00Z .. next Monday 00:00Z (ISO week)
  monthly  2025-01     → 1st 00:00Z .. 1st of next month 00:00Z
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from trendlog.errors import BadRequestError

KINDS = ("daily", "weekly", "monthly")
DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class PeriodBounds:
    kind: str
    identifier: str
    start_ts: int
    end_ts: int

    def covers(self, ts: int) -> bool:
        return self.start_ts <= ts < self.end_ts


def _utc(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _epoch(dt: datetime) -> int:
    return int(dt.timestamp())


def period_bounds(kind: str, ts: int) -> PeriodBounds:
    """Map a Unix timestamp to the partition period of ``kind`` containing it."""
    if kind not in KINDS:
        raise BadRequestError(f"Unknown partition kind '{kind}' (expected one of {', '.join(KINDS)})")
    try:
        return _bounds(kind, ts)
    except (ValueError, OverflowError, OSError) as e:
        raise BadRequestError(f"Timestamp {ts} is outside the supported date range: {e}") from e


def _bounds(kind: str, ts: int) -> PeriodBounds:
    day = _utc(ts).replace(hour=0, minute=0, second=0, microsecond=0)

    if kind == "daily":
        start, end = day, day + timedelta(days=1)
        identifier = start.strftime("%Y-%m-%d")
    elif kind == "weekly":
        start = day - timedelta(days=day.weekday())
        end = start + timedelta(days=7)
        iso_year, iso_week, _ = start.isocalendar()
        identifier = f"{iso_year}-W{iso_week:02d}"
    elif kind == "monthly":
        start = day.replace(day=1)
        end = (start + timedelta(days=32)).replace(day=1)
        identifier = start.strftime("%Y-%m")

    return PeriodBounds(kind=kind, identifier=identifier, start_ts=_epoch(start), end_ts=_epoch(end))


def format_local(ts: int) -> str:
    """Display string in server-local time, matching the legacy UI."""
    return datetime.fromtimestamp(ts).strftime(DISPLAY_FORMAT)


def days_ago(now_ts: int, days: int) -> int:
    return now_ts - days * 86400
