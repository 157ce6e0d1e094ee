"""Trailing-window baselines for HRV, resting HR, sleep and stress proxies.

Baselines are the personal reference every ratio-based score is measured
against. Quantity metrics are averaged per calendar day and then across
the window ``[day - N, day)``; bedtime and wake time use a circular mean
so a window straddling midnight averages to midnight, not noon.

The engine keeps a persisted set of "current" baselines (60/14/7/90-day
windows as of the last update) alongside on-demand snapshots for any
reference day.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, fields
from datetime import date, datetime, time, timedelta
from typing import Any, Callable

from vitalscore.cache import DateCache
from vitalscore.config import ScoringConfig
from vitalscore.provider import (
    MetricKind,
    QuantitySample,
    RawMetricsProvider,
    StageInterval,
    guarded_fetch,
)
from vitalscore.analytics.features import (
    circular_mean_time,
    safe_mean,
    sleep_window,
    trailing_days,
    trailing_window,
)
from vitalscore.analytics.sessions import SleepSession, main_session
from vitalscore.storage import StateStore

logger = logging.getLogger(__name__)

# Persisted flag: baselines were rebuilt with circular clock-time averaging
CIRCULAR_MIGRATION_FLAG = "baselines_recalculated_circular_v1"

UPDATE_INTERVAL = timedelta(hours=24)

_QUANTITY_FIELDS = {
    MetricKind.HRV: "hrv",
    MetricKind.RESTING_HR: "rhr",
    MetricKind.WALKING_HR: "walking_hr",
    MetricKind.RESPIRATORY_RATE: "respiratory_rate",
    MetricKind.SPO2: "spo2",
}


@dataclass(frozen=True)
class BaselineSnapshot:
    """Averages over ``[day - window_days, day)``. Absent values are None."""

    day: date
    window_days: int
    hrv: float | None = None
    rhr: float | None = None
    walking_hr: float | None = None
    respiratory_rate: float | None = None
    spo2: float | None = None
    sleep_duration: float | None = None  # seconds asleep per night
    bedtime: time | None = None
    wake_time: time | None = None
    nights: int = 0

    def __repr__(self) -> str:
        hrv = f"{self.hrv:.1f}ms" if self.hrv is not None else "-"
        rhr = f"{self.rhr:.0f}bpm" if self.rhr is not None else "-"
        return (
            f"BaselineSnapshot({self.day}, {self.window_days}d, "
            f"hrv={hrv}, rhr={rhr}, nights={self.nights})"
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["day"] = self.day.isoformat()
        for key in ("bedtime", "wake_time"):
            if data[key] is not None:
                data[key] = data[key].strftime("%H:%M")
        return data


@dataclass
class BaselineMetrics:
    """The engine's current, persisted baselines."""

    hrv60: float | None = None
    hrv14: float | None = None
    rhr60: float | None = None
    rhr14: float | None = None
    sleep_duration14: float | None = None
    sleep_duration90: float | None = None
    bedtime14: time | None = None
    wake14: time | None = None
    bedtime7: time | None = None
    wake7: time | None = None
    walking_hr14: float | None = None
    respiratory_rate14: float | None = None
    spo2_14: float | None = None
    last_updated: datetime | None = None

    _TIME_FIELDS = ("bedtime14", "wake14", "bedtime7", "wake7")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, time):
                value = value.strftime("%H:%M")
            data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BaselineMetrics:
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known or value is None:
                continue
            if key in cls._TIME_FIELDS:
                value = time.fromisoformat(value)
            elif key == "last_updated":
                value = datetime.fromisoformat(value)
            kwargs[key] = value
        return cls(**kwargs)


def daily_means(
    samples: list[QuantitySample], start: datetime, end: datetime
) -> dict[date, float]:
    """Mean value per calendar day for samples inside ``[start, end)``."""
    by_day: dict[date, list[float]] = defaultdict(list)
    for s in samples:
        if start <= s.timestamp < end:
            by_day[s.timestamp.date()].append(s.value)
    return {day: safe_mean(values) for day, values in sorted(by_day.items())}


def nightly_sessions(
    intervals: list[StageInterval], days: list[date]
) -> dict[date, SleepSession]:
    """Main session per wake date, for every date that has one."""
    nights: dict[date, SleepSession] = {}
    for day in days:
        start, end = sleep_window(day)
        session = main_session(i for i in intervals if start <= i.start < end)
        if session is not None and session.time_asleep > 0:
            nights[day] = session
    return nights


class BaselineEngine:
    """Computes, persists and serves personal baselines."""

    def __init__(
        self,
        provider: RawMetricsProvider,
        store: StateStore | None = None,
        config: ScoringConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.provider = provider
        self.store = store or StateStore()
        self.config = config or ScoringConfig()
        self.clock = clock
        self.metrics = BaselineMetrics()
        self._loaded = False
        self._snapshots: dict[int, DateCache[BaselineSnapshot]] = {}

    def __repr__(self) -> str:
        state = "calibrating" if self.calibrating else "ready"
        return f"BaselineEngine({state}, updated={self.metrics.last_updated})"

    # -- persistence ---------------------------------------------------------

    def load_baselines(self) -> BaselineMetrics:
        """Populate in-memory baselines from the store. Safe to call twice."""
        if not self._loaded:
            data = self.store.load_baselines()
            if data:
                self.metrics = BaselineMetrics.from_dict(data)
                logger.debug("loaded baselines updated %s", self.metrics.last_updated)
            self._loaded = True
        return self.metrics

    def _save(self) -> None:
        self.store.save_baselines(self.metrics.to_dict())

    @property
    def calibrating(self) -> bool:
        """True until the core HRV, RHR and clock-time baselines exist."""
        m = self.metrics
        return any(
            v is None
            for v in (m.hrv60, m.rhr60, m.hrv14, m.rhr14, m.bedtime14, m.wake14)
        )

    def should_update(self, now: datetime | None = None) -> bool:
        last = self.metrics.last_updated
        if last is None:
            return True
        return (now or self.clock()) - last > UPDATE_INTERVAL

    # -- computation ---------------------------------------------------------

    async def calculate_baseline(self, day: date, window_days: int) -> BaselineSnapshot:
        """Baseline snapshot for ``day`` over the preceding ``window_days``."""
        cache = self._snapshots.setdefault(window_days, DateCache())
        return await cache.get_or_compute(
            day, lambda: self._compute_snapshot(day, window_days)
        )

    def invalidate_from(self, day: date) -> int:
        """Drop cached snapshots whose window could contain samples from ``day``.

        Those are the reference days from ``day`` through ``day + window``
        for each cached window. Returns the number dropped.
        """
        dropped = 0
        for window, cache in self._snapshots.items():
            last = day + timedelta(days=window)
            for ref in cache.days():
                if day <= ref <= last:
                    dropped += cache.invalidate(ref)
        if dropped:
            logger.debug("dropped %d baseline snapshots covering %s", dropped, day)
        return dropped

    def clear_snapshots(self) -> None:
        for cache in self._snapshots.values():
            cache.clear()

    async def _compute_snapshot(self, day: date, window_days: int) -> BaselineSnapshot:
        start, end = trailing_window(day, window_days)
        timeout = self.config.fetch_timeout_sec
        kinds = list(_QUANTITY_FIELDS)
        days = trailing_days(day, window_days)
        sleep_start, _ = sleep_window(days[0])
        _, sleep_end = sleep_window(days[-1])

        outcomes = await asyncio.gather(
            *(
                guarded_fetch(
                    self.provider.fetch_quantity_series(kind, start, end),
                    f"{kind.value} baseline",
                    timeout,
                )
                for kind in kinds
            ),
            guarded_fetch(
                self.provider.fetch_sleep_session(sleep_start, sleep_end),
                "sleep baseline",
                timeout,
            ),
        )

        min_count = self.config.min_baseline_samples
        values: dict[str, Any] = {}
        for kind, outcome in zip(kinds, outcomes[:-1]):
            daily = list(daily_means(outcome.value_or([]), start, end).values())
            values[_QUANTITY_FIELDS[kind]] = safe_mean(daily, min_count=min_count)

        nights = nightly_sessions(outcomes[-1].value_or([]), days)
        sessions = list(nights.values())
        if len(sessions) >= min_count:
            values["sleep_duration"] = safe_mean([s.time_asleep for s in sessions])
            values["bedtime"] = circular_mean_time([s.start for s in sessions])
            values["wake_time"] = circular_mean_time([s.end for s in sessions])

        snapshot = BaselineSnapshot(
            day=day, window_days=window_days, nights=len(sessions), **values
        )
        logger.debug("computed %r", snapshot)
        return snapshot

    async def update_baselines(self, today: date | None = None) -> BaselineMetrics:
        """Recompute the 60/14/7/90-day windows ending at ``today`` and persist."""
        self.load_baselines()
        now = self.clock()
        today = today or now.date()
        b60, b14, b7, b90 = await asyncio.gather(
            self.calculate_baseline(today, 60),
            self.calculate_baseline(today, 14),
            self.calculate_baseline(today, 7),
            self.calculate_baseline(today, 90),
        )
        self.metrics = BaselineMetrics(
            hrv60=b60.hrv,
            hrv14=b14.hrv,
            rhr60=b60.rhr,
            rhr14=b14.rhr,
            sleep_duration14=b14.sleep_duration,
            sleep_duration90=b90.sleep_duration,
            bedtime14=b14.bedtime,
            wake14=b14.wake_time,
            bedtime7=b7.bedtime,
            wake7=b7.wake_time,
            walking_hr14=b14.walking_hr,
            respiratory_rate14=b14.respiratory_rate,
            spo2_14=b14.spo2,
            last_updated=now,
        )
        self._save()
        for cache in self._snapshots.values():
            cache.prune(today - timedelta(days=1))
        logger.info("baselines updated for %s (calibrating=%s)", today, self.calibrating)
        return self.metrics

    def reset_baselines(self) -> None:
        """Forget every baseline, in memory and on disk."""
        self.metrics = BaselineMetrics()
        self.clear_snapshots()
        self.store.clear_baselines()
        self._loaded = True

    async def force_recalculate_baselines(self, today: date | None = None) -> BaselineMetrics:
        self.reset_baselines()
        return await self.update_baselines(today)

    async def ensure_latest_algorithm(self, today: date | None = None) -> bool:
        """Run the one-time forced recompute if it has not happened yet.

        Returns True when the recompute ran.
        """
        if self.store.get_flag(CIRCULAR_MIGRATION_FLAG):
            return False
        logger.info("recalculating baselines with circular clock-time averaging")
        await self.force_recalculate_baselines(today)
        self.store.set_flag(CIRCULAR_MIGRATION_FLAG)
        return True

    async def update_if_needed(self, today: date | None = None) -> bool:
        self.load_baselines()
        if not self.should_update():
            return False
        await self.update_baselines(today)
        return True
