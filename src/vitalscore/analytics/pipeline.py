"""Score orchestration: one entry point from raw data to a ScoreBundle.

    provider ──> RawDailyMetrics ─┐
             ──> 60-day baseline ─┤
             ──> SleepScoreCalculator ─┐ (concurrent)
             ──> RecoveryScoreCalculator ┘
             ──> 7-day trends ─────┴──> ScoreBundle ──> cache + subscribers

Bundles are cached per calendar day for a short TTL. Today's bundle is
withheld before the configured availability hour since overnight data
usually has not synced yet.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import date, datetime, timedelta
from typing import Callable

from vitalscore.cache import DateCache
from vitalscore.config import ScoringConfig
from vitalscore.errors import DataUnavailable, NoSleepData, ScoreError
from vitalscore.provider import (
    MetricKind,
    RawDailyMetrics,
    RawMetricsProvider,
    ensure_authorized,
    fetch_mean,
    guarded_fetch,
)
from vitalscore.storage import StateStore
from vitalscore.analytics.baseline import BaselineEngine, daily_means, nightly_sessions
from vitalscore.analytics.features import day_bounds, sleep_window
from vitalscore.analytics.recovery import RecoveryScoreCalculator, RecoveryScoreResult
from vitalscore.analytics.sessions import main_session
from vitalscore.analytics.sleep import SleepScoreCalculator, SleepScoreResult
from vitalscore.analytics.summary import (
    BundleStatus,
    ScoreBundle,
    TrendData,
    build_trends,
    recovery_breakdown,
    sleep_breakdown,
)

logger = logging.getLogger(__name__)

BundleCallback = Callable[[ScoreBundle], None]


async def fetch_raw_daily_metrics(
    provider: RawMetricsProvider, day: date, timeout: float | None
) -> RawDailyMetrics:
    """Snapshot of a day's daily means plus its main sleep session."""
    start, end = day_bounds(day)
    night_start, night_end = sleep_window(day)
    kinds = (
        MetricKind.HRV,
        MetricKind.RESTING_HR,
        MetricKind.RESPIRATORY_RATE,
        MetricKind.WALKING_HR,
        MetricKind.SPO2,
    )
    *means, sleep = await asyncio.gather(
        *(fetch_mean(provider, kind, start, end, timeout) for kind in kinds),
        guarded_fetch(provider.fetch_sleep_session(night_start, night_end), "sleep", timeout),
    )
    session = None
    if sleep.ok:
        session = main_session(i for i in sleep.value if night_start <= i.start < night_end)
    hrv, rhr, resp, walking, spo2 = (m.value_or() for m in means)
    return RawDailyMetrics(
        day=day,
        hrv=hrv,
        resting_hr=rhr,
        respiratory_rate=resp,
        walking_hr=walking,
        spo2=spo2,
        sleep=session.summary() if session is not None else None,
    )


class ScoreOrchestrator:
    """Owns the calculators and the bundle cache."""

    def __init__(
        self,
        provider: RawMetricsProvider,
        store: StateStore | None = None,
        config: ScoringConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.config = config or ScoringConfig()
        self.store = store if store is not None else StateStore(self.config.state_dir)
        self.clock = clock
        self.baselines = BaselineEngine(provider, self.store, self.config, clock)
        self.sleep = SleepScoreCalculator(provider, self.baselines, self.config)
        self.recovery = RecoveryScoreCalculator(
            provider, self.baselines, self.sleep, self.config
        )
        self.bundles: DateCache[ScoreBundle] = DateCache(
            ttl=self.config.bundle_ttl_sec, clock=monotonic
        )
        self._subscribers: list[BundleCallback] = []

    def __repr__(self) -> str:
        return f"ScoreOrchestrator(bundles={len(self.bundles)}, {self.baselines!r})"

    # -- lifecycle -----------------------------------------------------------

    async def prepare(self) -> None:
        """Load baselines, run the one-time migration, refresh stale ones."""
        self.baselines.load_baselines()
        today = self.clock().date()
        if not await self.baselines.ensure_latest_algorithm(today):
            await self.baselines.update_if_needed(today)

    def subscribe(self, callback: BundleCallback) -> Callable[[], None]:
        """Register ``callback`` for every published bundle.

        Returns a function that removes the subscription.
        """
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)

    def _publish(self, bundle: ScoreBundle) -> None:
        for callback in list(self._subscribers):
            callback(bundle)

    # -- caching -------------------------------------------------------------

    def is_available(self, day: date, now: datetime | None = None) -> bool:
        now = now or self.clock()
        today = now.date()
        if day > today:
            return False
        return day < today or now.hour >= self.config.availability_hour

    def invalidate(self, day: date) -> None:
        """Drop one day's bundle and sleep result, plus every baseline
        snapshot whose window reaches ``day``."""
        self.bundles.invalidate(day)
        self.sleep.invalidate(day)
        self.baselines.invalidate_from(day)

    def clear_cache(self) -> None:
        """Clear bundles, sleep results and baseline snapshots together."""
        self.bundles.clear()
        self.sleep.clear_cache()
        self.baselines.clear_snapshots()

    async def refresh(self, day: date | None = None) -> ScoreBundle:
        day = day or self.clock().date()
        self.invalidate(day)
        return await self.load_data(day)

    # -- loading -------------------------------------------------------------

    async def load_data(self, day: date | None = None) -> ScoreBundle:
        """Bundle for ``day`` (default today), from cache when fresh.

        Raises:
            DataUnavailable: the provider denied access.
        """
        now = self.clock()
        day = day or now.date()
        if not self.is_available(day, now):
            logger.info("scores for %s not available before %02d:00", day, self.config.availability_hour)
            return ScoreBundle(
                day=day,
                status=BundleStatus.NOT_YET_AVAILABLE,
                generated_at=now,
                message=(
                    f"Scores become available at {self.config.availability_hour:02d}:00 "
                    "once overnight data has synced."
                ),
            )
        return await self.bundles.get_or_compute(day, lambda: self._build(day))

    async def _build(self, day: date) -> ScoreBundle:
        timeout = self.config.fetch_timeout_sec
        await ensure_authorized(self.provider, timeout)

        raw, baseline, (sleep, recovery), trends = await asyncio.gather(
            fetch_raw_daily_metrics(self.provider, day, timeout),
            self.baselines.calculate_baseline(day, 60),
            self._run_calculators(day),
            self._trends(day),
        )

        status = BundleStatus.READY if sleep is not None else BundleStatus.NO_SLEEP_DATA
        bundle = ScoreBundle(
            day=day,
            status=status,
            generated_at=self.clock(),
            recovery=recovery,
            sleep=sleep,
            raw=raw,
            baseline=baseline,
            recovery_components=recovery_breakdown(recovery),
            sleep_components=sleep_breakdown(sleep) if sleep is not None else [],
            trends=trends,
            message=None if sleep is not None else "No sleep data recorded for this night.",
        )
        logger.info("%r", bundle)
        self._publish(bundle)
        return bundle

    async def _run_calculators(
        self, day: date
    ) -> tuple[SleepScoreResult | None, RecoveryScoreResult]:
        sleep, recovery = await asyncio.gather(
            self.sleep.calculate_sleep_score(day),
            self.recovery.calculate_recovery_score(day),
            return_exceptions=True,
        )
        if isinstance(recovery, BaseException):
            raise recovery
        if isinstance(sleep, NoSleepData):
            logger.info("no sleep score for %s: %s", day, sleep)
            sleep = None
        elif isinstance(sleep, DataUnavailable):
            raise sleep
        elif isinstance(sleep, ScoreError):
            logger.warning("sleep score for %s failed: %s", day, sleep)
            sleep = None
        elif isinstance(sleep, BaseException):
            raise sleep
        return sleep, recovery

    async def _trends(self, day: date) -> dict[str, TrendData]:
        timeout = self.config.fetch_timeout_sec
        days = [day - timedelta(days=n) for n in range(self.config.trend_days - 1, -1, -1)]
        start, _ = day_bounds(days[0])
        _, end = day_bounds(day)
        night_start, _ = sleep_window(days[0])
        _, night_end = sleep_window(day)

        hrv, rhr, sleep = await asyncio.gather(
            guarded_fetch(
                self.provider.fetch_quantity_series(MetricKind.HRV, start, end), "hrv trend", timeout
            ),
            guarded_fetch(
                self.provider.fetch_quantity_series(MetricKind.RESTING_HR, start, end),
                "rhr trend",
                timeout,
            ),
            guarded_fetch(
                self.provider.fetch_sleep_session(night_start, night_end), "sleep trend", timeout
            ),
        )
        return build_trends(
            days,
            daily_means(hrv.value_or([]), start, end),
            daily_means(rhr.value_or([]), start, end),
            nightly_sessions(sleep.value_or([]), days),
        )
