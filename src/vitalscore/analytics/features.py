"""Shared numeric and time-window helpers.

This is the foundation the calculators build on:
  - Calendar windows (whole day, noon-to-noon sleep window, trailing N days)
  - Robust means and percent change
  - Circular clock-time averaging for bedtime / wake baselines
  - Clamping and half-up rounding for composite scores
"""

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta
from typing import Sequence

import numpy as np
from scipy.stats import circmean

MINUTES_PER_DAY = 1440


# ---------------------------------------------------------------------------
# Calendar windows
# ---------------------------------------------------------------------------


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """``[00:00, next 00:00)`` for a calendar day."""
    start = datetime.combine(day, time())
    return start, start + timedelta(days=1)


def sleep_window(day: date) -> tuple[datetime, datetime]:
    """Night attributed to ``day``: previous day 12:00 up to ``day`` 12:00."""
    end = datetime.combine(day, time(12, 0))
    return end - timedelta(days=1), end


def trailing_window(day: date, days: int) -> tuple[datetime, datetime]:
    """``[day - days, day)``; the target day itself is excluded."""
    end = datetime.combine(day, time())
    return end - timedelta(days=days), end


def trailing_days(day: date, days: int) -> list[date]:
    """The ``days`` calendar days before ``day``, oldest first."""
    return [day - timedelta(days=n) for n in range(days, 0, -1)]


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def safe_mean(values: Sequence[float | None], min_count: int = 1) -> float | None:
    """Mean of the non-None values, or None when fewer than ``min_count``."""
    present = [v for v in values if v is not None]
    if len(present) < max(min_count, 1):
        return None
    return float(np.mean(np.asarray(present, dtype=np.float64)))


def percent_change(values: Sequence[float | None]) -> float | None:
    """Change of the last available value relative to the one before it."""
    present = [v for v in values if v is not None]
    if len(present) < 2 or present[-2] == 0:
        return None
    prev, last = present[-2], present[-1]
    return round((last - prev) / prev * 100.0, 1)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (92.5 -> 93)."""
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


# ---------------------------------------------------------------------------
# Clock-time averaging
# ---------------------------------------------------------------------------


def clock_minutes(moment: datetime | time) -> int:
    """Minutes since midnight for a clock time."""
    return moment.hour * 60 + moment.minute


def minutes_to_time(minutes: float) -> time:
    m = int(round(minutes)) % MINUTES_PER_DAY
    return time(m // 60, m % 60)


def circular_mean_minutes(minutes: Sequence[float]) -> float | None:
    """Average minute-of-day positions on a 24 h circle.

    23:50 and 00:10 average to midnight rather than noon.
    """
    if len(minutes) == 0:
        return None
    arr = np.asarray(minutes, dtype=np.float64)
    return float(circmean(arr, high=MINUTES_PER_DAY, low=0))


def circular_mean_time(moments: Sequence[datetime | time]) -> time | None:
    """Circular mean of clock times, ignoring the calendar date."""
    mean = circular_mean_minutes([clock_minutes(m) for m in moments])
    if mean is None:
        return None
    return minutes_to_time(mean)
