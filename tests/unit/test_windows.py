from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from meterhub.domain.windows import (
    day_bounds,
    is_peak_hour,
    iter_day_windows,
    resolve_timezone,
    to_datetime,
    to_millis,
    window_bounds,
    window_end,
    window_start,
)

UTC = resolve_timezone("UTC")
KL = resolve_timezone("Asia/Kuala_Lumpur")
NEW_YORK = resolve_timezone("America/New_York")
WINDOWS_PER_DAY = 48


def _ms(*args: int) -> int:
    return to_millis(datetime(*args, tzinfo=timezone.utc))


def test_millis_round_trip_is_exact():
    moment = datetime(2024, 5, 1, 12, 34, 56, 789000, tzinfo=timezone.utc)
    assert to_datetime(to_millis(moment)) == moment


def test_window_start_truncates_to_half_hour():
    assert window_start(_ms(2024, 5, 1, 14, 17, 42), UTC) == datetime(
        2024, 5, 1, 14, 0, tzinfo=timezone.utc
    )
    assert window_start(_ms(2024, 5, 1, 14, 47, 1), UTC) == datetime(
        2024, 5, 1, 14, 30, tzinfo=timezone.utc
    )


def test_window_start_on_boundary_opens_new_window():
    boundary = _ms(2024, 5, 1, 14, 30)
    assert window_start(boundary, UTC) == datetime(2024, 5, 1, 14, 30, tzinfo=timezone.utc)
    assert window_start(boundary - 1, UTC) == datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)


def test_window_end_is_thirty_minutes_later():
    start = datetime(2024, 5, 1, 23, 30, tzinfo=timezone.utc)
    assert window_end(start) == datetime(2024, 5, 2, 0, 0, tzinfo=timezone.utc)


def test_peak_hours_are_half_open():
    assert not is_peak_hour(datetime(2024, 5, 1, 13, 59, tzinfo=timezone.utc), UTC)
    assert is_peak_hour(datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc), UTC)
    assert is_peak_hour(datetime(2024, 5, 1, 21, 30, tzinfo=timezone.utc), UTC)
    assert not is_peak_hour(datetime(2024, 5, 1, 22, 0, tzinfo=timezone.utc), UTC)


def test_peak_classification_uses_local_time():
    # 06:00 UTC is 14:00 in Kuala Lumpur (UTC+8)
    start, end, peak = window_bounds(_ms(2024, 5, 1, 6, 10), KL)
    assert start == datetime(2024, 5, 1, 6, 0, tzinfo=timezone.utc)
    assert end - start == timedelta(minutes=30)
    assert peak is True
    assert window_bounds(_ms(2024, 5, 1, 6, 10), UTC)[2] is False


def test_day_bounds_are_local_midnights():
    start, end = day_bounds(date(2024, 5, 1), KL)
    assert start == datetime(2024, 4, 30, 16, 0, tzinfo=timezone.utc)
    assert end == datetime(2024, 5, 1, 16, 0, tzinfo=timezone.utc)


def test_regular_day_has_48_windows():
    starts = list(iter_day_windows(date(2024, 5, 1), UTC))
    assert len(starts) == WINDOWS_PER_DAY
    assert starts[0] == datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc)
    assert starts[-1] == datetime(2024, 5, 1, 23, 30, tzinfo=timezone.utc)


def test_dst_days_have_fewer_or_more_windows():
    spring = list(iter_day_windows(date(2024, 3, 10), NEW_YORK))
    autumn = list(iter_day_windows(date(2024, 11, 3), NEW_YORK))
    assert len(spring) == WINDOWS_PER_DAY - 2
    assert len(autumn) == WINDOWS_PER_DAY + 2


def test_resolve_timezone_defaults_to_utc():
    assert resolve_timezone(None) == resolve_timezone("UTC")
    assert resolve_timezone("") == resolve_timezone("UTC")
