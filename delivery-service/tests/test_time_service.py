from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from delivery_service.services.time_service import (
    DateRange,
    RangeKind,
    date_range_for,
    day_range,
    local_date,
    local_today,
)

UTC = timezone.utc
NOW = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)


def _days(date_range: DateRange) -> tuple[datetime, datetime]:
    return date_range.start, date_range.end


def test_today_and_yesterday_in_utc() -> None:
    assert _days(date_range_for(RangeKind.TODAY, now=NOW, zone="UTC")) == (
        datetime(2025, 3, 15, tzinfo=UTC),
        datetime(2025, 3, 16, tzinfo=UTC),
    )
    assert _days(date_range_for("yesterday", now=NOW, zone="UTC")) == (
        datetime(2025, 3, 14, tzinfo=UTC),
        datetime(2025, 3, 15, tzinfo=UTC),
    )


def test_last_seven_days_include_today() -> None:
    start, end = _days(date_range_for(RangeKind.LAST_7_DAYS, now=NOW, zone="UTC"))
    assert start == datetime(2025, 3, 8, tzinfo=UTC)
    assert end == datetime(2025, 3, 16, tzinfo=UTC)


def test_month_presets() -> None:
    assert _days(date_range_for(RangeKind.THIS_MONTH, now=NOW, zone="UTC")) == (
        datetime(2025, 3, 1, tzinfo=UTC),
        datetime(2025, 3, 16, tzinfo=UTC),
    )
    assert _days(date_range_for(RangeKind.LAST_MONTH, now=NOW, zone="UTC")) == (
        datetime(2025, 2, 1, tzinfo=UTC),
        datetime(2025, 3, 1, tzinfo=UTC),
    )


def test_local_day_boundaries_follow_zone() -> None:
    # 23:30 UTC is already the next day in Cairo
    late = datetime(2025, 1, 10, 23, 30, tzinfo=UTC)
    assert local_today(now=late, zone="Africa/Cairo") == date(2025, 1, 11)
    assert local_date(late, "Africa/Cairo") == date(2025, 1, 11)

    cairo_day = day_range(date(2025, 1, 11), zone="Africa/Cairo")
    assert cairo_day.start == datetime(2025, 1, 10, 22, 0, tzinfo=UTC)
    assert cairo_day.contains(late)


def test_custom_range() -> None:
    span = date_range_for(
        RangeKind.CUSTOM,
        custom_start=date(2025, 1, 1),
        custom_end=date(2025, 1, 3),
        zone="UTC",
    )
    assert _days(span) == (datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 1, 4, tzinfo=UTC))
    single = date_range_for(RangeKind.CUSTOM, custom_start=date(2025, 1, 1), zone="UTC")
    assert single.end == datetime(2025, 1, 2, tzinfo=UTC)
    with pytest.raises(ValueError):
        date_range_for(RangeKind.CUSTOM, zone="UTC")


def test_contains_treats_naive_as_utc() -> None:
    span = day_range(date(2025, 1, 1), zone="UTC")
    assert span.contains(datetime(2025, 1, 1, 0, 0))
    assert not span.contains(datetime(2025, 1, 2, 0, 0))
    assert not span.contains(None)


def test_unknown_zone_falls_back_to_utc() -> None:
    assert local_today(now=NOW, zone="Mars/Olympus") == date(2025, 3, 15)
