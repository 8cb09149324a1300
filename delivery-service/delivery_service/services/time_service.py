from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from delivery_service.config import settings

__all__ = [
    "RangeKind",
    "DateRange",
    "resolve_timezone",
    "local_today",
    "local_date",
    "day_range",
    "date_range_for",
]

UTC = timezone.utc


class RangeKind(str, enum.Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    LAST_7_DAYS = "last7days"
    LAST_30_DAYS = "last30days"
    THIS_MONTH = "thisMonth"
    LAST_MONTH = "lastMonth"
    CUSTOM = "custom"


@dataclass(frozen=True, slots=True)
class DateRange:
    """Half-open UTC interval ``[start, end)``."""

    start: datetime
    end: datetime

    def contains(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return self.start <= moment < self.end


def _coerce_zone(zone: Optional[str | ZoneInfo]) -> ZoneInfo:
    if isinstance(zone, ZoneInfo):
        return zone
    candidate = (zone or settings.timezone or "UTC").strip()
    try:
        return ZoneInfo(candidate)
    except ZoneInfoNotFoundError:
        return ZoneInfo("UTC")


def resolve_timezone(zone: Optional[str | ZoneInfo] = None) -> ZoneInfo:
    """Return ZoneInfo for *zone*, falling back to the configured timezone."""
    return _coerce_zone(zone)


def local_today(
    *,
    now: Optional[datetime] = None,
    zone: Optional[str | ZoneInfo] = None,
) -> date:
    tz = _coerce_zone(zone)
    current = now or datetime.now(UTC)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    return current.astimezone(tz).date()


def local_date(moment: datetime, zone: Optional[str | ZoneInfo] = None) -> date:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(_coerce_zone(zone)).date()


def day_range(
    first_day: date,
    last_day: Optional[date] = None,
    *,
    zone: Optional[str | ZoneInfo] = None,
) -> DateRange:
    """UTC range covering local days *first_day* through *last_day* inclusive."""
    tz = _coerce_zone(zone)
    last_day = last_day or first_day
    if last_day < first_day:
        first_day, last_day = last_day, first_day
    start_local = datetime.combine(first_day, time.min, tzinfo=tz)
    end_local = datetime.combine(last_day + timedelta(days=1), time.min, tzinfo=tz)
    return DateRange(start=start_local.astimezone(UTC), end=end_local.astimezone(UTC))


def date_range_for(
    kind: RangeKind | str,
    *,
    custom_start: Optional[date] = None,
    custom_end: Optional[date] = None,
    now: Optional[datetime] = None,
    zone: Optional[str | ZoneInfo] = None,
) -> DateRange:
    """Resolve a dashboard preset into a UTC range.

    ``last7days`` and ``last30days`` start 7/30 days before today and include
    today, matching what the dashboards have always shown.
    """
    kind = RangeKind(kind)
    today = local_today(now=now, zone=zone)
    if kind is RangeKind.TODAY:
        return day_range(today, zone=zone)
    if kind is RangeKind.YESTERDAY:
        return day_range(today - timedelta(days=1), zone=zone)
    if kind is RangeKind.LAST_7_DAYS:
        return day_range(today - timedelta(days=7), today, zone=zone)
    if kind is RangeKind.LAST_30_DAYS:
        return day_range(today - timedelta(days=30), today, zone=zone)
    if kind is RangeKind.THIS_MONTH:
        return day_range(today.replace(day=1), today, zone=zone)
    if kind is RangeKind.LAST_MONTH:
        last_of_previous = today.replace(day=1) - timedelta(days=1)
        return day_range(last_of_previous.replace(day=1), last_of_previous, zone=zone)
    if custom_start is None:
        raise ValueError("custom range requires custom_start")
    return day_range(custom_start, custom_end or custom_start, zone=zone)
