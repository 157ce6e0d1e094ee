"""Tests for vitalscore.analytics.features -- windows and numeric helpers."""

from datetime import date, datetime, time

from vitalscore.analytics.features import (
    circular_mean_minutes,
    circular_mean_time,
    clamp,
    clock_minutes,
    day_bounds,
    percent_change,
    round_half_up,
    safe_mean,
    sleep_window,
    trailing_days,
    trailing_window,
)


class TestWindows:
    def test_sleep_window_is_noon_to_noon(self):
        start, end = sleep_window(date(2026, 10, 14))
        assert start == datetime(2026, 10, 13, 12, 0)
        assert end == datetime(2026, 10, 14, 12, 0)

    def test_day_bounds(self):
        start, end = day_bounds(date(2026, 10, 14))
        assert start == datetime(2026, 10, 14)
        assert end == datetime(2026, 10, 15)

    def test_trailing_window_excludes_target_day(self):
        start, end = trailing_window(date(2026, 10, 14), 7)
        assert start == datetime(2026, 10, 7)
        assert end == datetime(2026, 10, 14)

    def test_trailing_days_oldest_first(self):
        days = trailing_days(date(2026, 10, 14), 3)
        assert days == [date(2026, 10, 11), date(2026, 10, 12), date(2026, 10, 13)]


class TestAggregation:
    def test_safe_mean_skips_none(self):
        assert safe_mean([10.0, None, 20.0]) == 15.0

    def test_safe_mean_min_count(self):
        assert safe_mean([10.0, 20.0], min_count=3) is None
        assert safe_mean([]) is None

    def test_percent_change_uses_last_two_present(self):
        assert percent_change([40.0, 50.0, None, 55.0]) == 10.0

    def test_percent_change_needs_two_values(self):
        assert percent_change([None, 50.0]) is None
        assert percent_change([0.0, 5.0]) is None

    def test_clamp(self):
        assert clamp(120.0) == 100.0
        assert clamp(-3.0) == 0.0
        assert clamp(42.0) == 42.0


class TestRounding:
    def test_half_rounds_up(self):
        assert round_half_up(92.5) == 93
        assert round_half_up(0.5) == 1

    def test_below_half_rounds_down(self):
        assert round_half_up(94.0000001) == 94
        assert round_half_up(80.35) == 80

    def test_negative_half_rounds_away_from_zero(self):
        assert round_half_up(-2.5) == -3


class TestCircularMean:
    def test_clock_minutes(self):
        assert clock_minutes(time(23, 45)) == 1425
        assert clock_minutes(datetime(2026, 1, 1, 0, 15)) == 15

    def test_midnight_straddle_averages_to_midnight(self):
        mean = circular_mean_time([time(23, 50), time(0, 10)])
        assert mean == time(0, 0)

    def test_never_noon(self):
        mean = circular_mean_minutes([1430, 10])
        # distance from midnight on the circle
        assert min(mean, 1440 - mean) < 1.0

    def test_same_side_matches_linear_mean(self):
        assert circular_mean_time([time(22, 0), time(23, 0)]) == time(22, 30)

    def test_empty(self):
        assert circular_mean_time([]) is None
