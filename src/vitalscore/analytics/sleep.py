"""Sleep Score: five point tables combined into a 0-100 composite.

The night attributed to a date runs from noon the day before to noon on
the date. Stage samples in that window are grouped into sessions, the
longest session is scored, and each sub-score is a step function of
minutes (or of efficiency percent):

    duration     0-30 pts   minutes asleep
    deep         0-25 pts   minutes of deep sleep
    rem          0-20 pts   minutes of REM sleep
    efficiency   0-15 pts   asleep / in bed
    consistency  0-10 pts   bedtime vs. the 7-day circular bedtime

Each sub-score is expressed as a percentage of its maximum and weighted
30/25/20/15/10 into the final score.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Sequence

from vitalscore.cache import DateCache
from vitalscore.config import ScoringConfig
from vitalscore.errors import MissingMetric, NoSleepData
from vitalscore.provider import (
    MetricKind,
    RawMetricsProvider,
    ensure_authorized,
    fetch_mean,
    guarded_fetch,
)
from vitalscore.analytics.baseline import BaselineEngine
from vitalscore.analytics.features import (
    MINUTES_PER_DAY,
    clamp,
    clock_minutes,
    round_half_up,
    sleep_window,
)
from vitalscore.analytics.sessions import SleepSession, main_session

logger = logging.getLogger(__name__)

# Composite weights (sum to 1.0)
W_DURATION = 0.30
W_DEEP = 0.25
W_REM = 0.20
W_EFFICIENCY = 0.15
W_CONSISTENCY = 0.10

MAX_DURATION = 30
MAX_DEEP = 25
MAX_REM = 20
MAX_EFFICIENCY = 15
MAX_CONSISTENCY = 10

# (lower bound, points); first match wins
DURATION_STEPS = (
    (470, 29), (460, 28), (450, 27), (440, 26), (420, 25), (410, 24),
    (400, 22), (390, 20), (380, 18), (370, 16), (360, 15), (330, 10),
    (300, 5),
)
DEEP_STEPS = ((105, 25), (90, 22), (75, 18), (60, 14), (45, 8))
REM_STEPS = ((120, 20), (105, 18), (90, 16), (75, 13), (60, 10))
EFFICIENCY_STEPS = ((95.0, 15), (92.5, 12), (90.0, 10), (85.0, 5))

# Sleeping heart rate is read over this clock window
SLEEP_HR_START = time(22, 0)
SLEEP_HR_END = time(8, 0)
SLEEP_HR_RHR_CAP = 1.10


# ---------------------------------------------------------------------------
# Point tables
# ---------------------------------------------------------------------------


def _step(value: float, steps: Sequence[tuple[float, int]], default: int = 0) -> int:
    for lower, points in steps:
        if value >= lower:
            return points
    return default


def duration_points(minutes_asleep: float) -> int:
    if minutes_asleep > 480:
        return MAX_DURATION
    return _step(minutes_asleep, DURATION_STEPS)


def deep_points(deep_minutes: float) -> int:
    return _step(deep_minutes, DEEP_STEPS)


def rem_points(rem_minutes: float) -> int:
    """REM below an hour earns points in proportion (5 per hour)."""
    return _step(rem_minutes, REM_STEPS, default=int(rem_minutes / 60 * 5))


def efficiency_points(efficiency_pct: float) -> int:
    return _step(efficiency_pct, EFFICIENCY_STEPS)


def bedtime_deviation(actual: datetime | time, target: time) -> int:
    """Minutes the actual bedtime falls after the target.

    Clock times are compared as minutes of the day. A bedtime after
    midnight (before noon) against an evening target is late by the rest
    of the evening plus the minutes past midnight. Earlier bedtimes count
    as on time.
    """
    actual_min = clock_minutes(actual)
    target_min = clock_minutes(target)
    if actual_min >= target_min:
        return actual_min - target_min
    if actual.hour < 12:
        return (MINUTES_PER_DAY - target_min) + actual_min
    return 0


def consistency_points(actual: datetime | time, target: time) -> int:
    deviation = bedtime_deviation(actual, target)
    if deviation == 0:
        return MAX_CONSISTENCY
    return int(max(0.0, MAX_CONSISTENCY - deviation / 10))


def target_bedtime(
    actual: datetime | time,
    bedtime7: time | None = None,
    bedtime14: time | None = None,
) -> tuple[time, str]:
    """Pick the bedtime to score against, with a label for its source.

    The 7-day circular bedtime is preferred, then the 14-day one, as long
    as it falls between 20:00 and 23:59. Otherwise the target is :45 past
    the actual bedtime's hour when that is in the evening, else 23:45.
    """
    baseline = bedtime7 if bedtime7 is not None else bedtime14
    if baseline is not None and 20 <= baseline.hour <= 23:
        source = "7-day average" if bedtime7 is not None else "recent average"
        return baseline, source
    hour = actual.hour if 20 <= actual.hour <= 23 else 23
    return time(hour, 45), "recommended range"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SleepComponent:
    """One weighted sub-score. ``score`` is points as a percent of max."""

    name: str
    points: int
    max_points: int
    weight: float
    description: str

    @property
    def score(self) -> float:
        return self.points / self.max_points * 100.0

    @property
    def contribution(self) -> float:
        return self.score * self.weight

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "points": self.points,
            "max_points": self.max_points,
            "score": round(self.score, 1),
            "weight": self.weight,
            "contribution": round(self.contribution, 2),
            "description": self.description,
        }


@dataclass(frozen=True)
class SleepScoreDetails:
    """Raw figures behind a Sleep Score. Durations in seconds."""

    time_asleep: float
    time_in_bed: float
    deep: float
    rem: float
    core: float
    awake: float
    bedtime: datetime
    wake_time: datetime
    target_bedtime: time
    target_source: str
    bedtime_deviation_min: int
    sleeping_hr: float | None = None
    resting_hr: float | None = None

    @property
    def efficiency(self) -> float:
        return self.time_asleep / self.time_in_bed * 100.0 if self.time_in_bed > 0 else 0.0

    @property
    def deep_pct(self) -> float:
        return self.deep / self.time_asleep * 100.0 if self.time_asleep > 0 else 0.0

    @property
    def rem_pct(self) -> float:
        return self.rem / self.time_asleep * 100.0 if self.time_asleep > 0 else 0.0

    @property
    def fall_asleep_min(self) -> float:
        """Rough time to fall asleep: minutes in bed but not asleep."""
        return max(0.0, self.time_in_bed - self.time_asleep) / 60.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "time_asleep_min": round(self.time_asleep / 60, 1),
            "time_in_bed_min": round(self.time_in_bed / 60, 1),
            "deep_min": round(self.deep / 60, 1),
            "rem_min": round(self.rem / 60, 1),
            "core_min": round(self.core / 60, 1),
            "awake_min": round(self.awake / 60, 1),
            "efficiency": round(self.efficiency, 1),
            "bedtime": self.bedtime.isoformat(),
            "wake_time": self.wake_time.isoformat(),
            "target_bedtime": self.target_bedtime.strftime("%H:%M"),
            "target_source": self.target_source,
            "bedtime_deviation_min": self.bedtime_deviation_min,
            "fall_asleep_min": round(self.fall_asleep_min, 1),
            "sleeping_hr": self.sleeping_hr,
            "resting_hr": self.resting_hr,
        }


@dataclass(frozen=True)
class SleepScoreResult:
    day: date
    final_score: int
    components: tuple[SleepComponent, ...]
    details: SleepScoreDetails
    key_findings: tuple[str, ...] = field(default_factory=tuple)

    def __repr__(self) -> str:
        return (
            f"SleepScoreResult({self.day}: score={self.final_score}, "
            f"asleep={self.details.time_asleep / 60:.0f}min, "
            f"eff={self.details.efficiency:.1f}%)"
        )

    @property
    def directive(self) -> str:
        return sleep_directive(self.final_score)

    def component(self, name: str) -> SleepComponent:
        for c in self.components:
            if c.name == name:
                return c
        raise KeyError(name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "final_score": self.final_score,
            "directive": self.directive,
            "components": [c.to_dict() for c in self.components],
            "details": self.details.to_dict(),
            "key_findings": list(self.key_findings),
        }


def sleep_directive(score: int) -> str:
    if score >= 85:
        return "Excellent sleep quality. Your body is well-rested and ready for optimal performance."
    if score >= 70:
        return "Good sleep quality. Maintain your current sleep habits for continued improvement."
    if score >= 50:
        return "Fair sleep quality. Consider improving your sleep routine for better recovery."
    return "Poor sleep quality. Focus on sleep hygiene and consider adjusting your schedule."


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def _fmt_duration(seconds: float) -> str:
    total = int(seconds // 60)
    return f"{total // 60}h {total % 60}m"


def _key_findings(details: SleepScoreDetails, consistency: SleepComponent) -> list[str]:
    findings = []

    hours = details.time_asleep / 3600
    if 7.5 <= hours <= 8.5:
        findings.append(f"Optimal sleep duration ({hours:.1f} hours)")
    elif hours < 7:
        findings.append(f"Sleep duration below recommended ({hours:.1f} hours)")
    else:
        findings.append(f"Sleep duration above recommended ({hours:.1f} hours)")

    deep = details.deep_pct
    if 13 <= deep <= 23:
        findings.append(f"Deep sleep within optimal range ({deep:.1f}%)")
    elif deep < 13:
        findings.append(f"Deep sleep below optimal ({deep:.1f}%)")
    else:
        findings.append(f"Deep sleep above optimal ({deep:.1f}%)")

    rem_min = details.rem / 60
    rem = details.rem_pct
    if rem_min >= 120:
        findings.append(f"Excellent REM sleep duration ({int(rem_min)} min)")
    elif 20 <= rem <= 25:
        findings.append(f"REM sleep within optimal range ({rem:.1f}%)")
    elif rem < 20:
        findings.append(f"REM sleep below optimal ({rem:.1f}%)")
    else:
        findings.append(f"REM sleep above optimal ({rem:.1f}%)")

    eff = details.efficiency
    if eff >= 90:
        findings.append(f"Excellent sleep efficiency ({int(eff)}%)")
    elif eff >= 80:
        findings.append(f"Good sleep efficiency ({int(eff)}%)")
    else:
        findings.append(f"Sleep efficiency could improve ({int(eff)}%)")

    if consistency.score >= 80:
        findings.append("Consistent sleep schedule maintained")
    elif consistency.score >= 60:
        findings.append("Minor deviation from usual sleep schedule")
    else:
        findings.append("Significant deviation from usual sleep schedule")

    return findings


def score_sleep(
    day: date,
    session: SleepSession,
    bedtime7: time | None = None,
    bedtime14: time | None = None,
    sleeping_hr: float | None = None,
    resting_hr: float | None = None,
) -> SleepScoreResult:
    """Score one night's main session.

    Args:
        day: Wake date the night is attributed to.
        session: The main sleep session.
        bedtime7: 7-day circular bedtime baseline, if known.
        bedtime14: 14-day circular bedtime baseline, used when the 7-day
            one is absent.
        sleeping_hr: Mean heart rate during the night (descriptive only).
        resting_hr: Day's resting heart rate (descriptive only).

    Returns:
        SleepScoreResult with five components in fixed order.

    Raises:
        NoSleepData: the session has no time in bed or no time asleep.
    """
    time_in_bed = session.total_duration
    time_asleep = session.time_asleep
    if time_in_bed <= 0 or time_asleep <= 0:
        raise NoSleepData(day, "empty main session")

    target, source = target_bedtime(session.start, bedtime7, bedtime14)
    deviation = bedtime_deviation(session.start, target)

    if sleeping_hr is not None and resting_hr is not None:
        sleeping_hr = min(sleeping_hr, resting_hr * SLEEP_HR_RHR_CAP)

    details = SleepScoreDetails(
        time_asleep=time_asleep,
        time_in_bed=time_in_bed,
        deep=session.deep,
        rem=session.rem,
        core=session.core,
        awake=session.awake,
        bedtime=session.start,
        wake_time=session.end,
        target_bedtime=target,
        target_source=source,
        bedtime_deviation_min=deviation,
        sleeping_hr=round(sleeping_hr, 1) if sleeping_hr is not None else None,
        resting_hr=round(resting_hr, 1) if resting_hr is not None else None,
    )

    asleep_min = time_asleep / 60
    deep_min = session.deep / 60
    rem_min = session.rem / 60
    efficiency = details.efficiency

    if deviation == 0:
        timing = f"Bedtime {session.start:%H:%M} on target ({source} {target:%H:%M})"
    else:
        timing = f"Bedtime {session.start:%H:%M}, {deviation} min after target ({source} {target:%H:%M})"

    components = (
        SleepComponent(
            "Duration", duration_points(asleep_min), MAX_DURATION, W_DURATION,
            f"{_fmt_duration(time_asleep)} asleep",
        ),
        SleepComponent(
            "Deep Sleep", deep_points(deep_min), MAX_DEEP, W_DEEP,
            f"{_fmt_duration(session.deep)} deep sleep ({details.deep_pct:.0f}% of sleep)",
        ),
        SleepComponent(
            "REM Sleep", rem_points(rem_min), MAX_REM, W_REM,
            f"{_fmt_duration(session.rem)} REM sleep ({details.rem_pct:.0f}% of sleep)",
        ),
        SleepComponent(
            "Efficiency", efficiency_points(efficiency), MAX_EFFICIENCY, W_EFFICIENCY,
            f"{efficiency:.1f}% of time in bed asleep",
        ),
        SleepComponent(
            "Consistency", consistency_points(session.start, target), MAX_CONSISTENCY,
            W_CONSISTENCY, timing,
        ),
    )

    final = round_half_up(clamp(sum(c.contribution for c in components)))
    return SleepScoreResult(
        day=day,
        final_score=final,
        components=components,
        details=details,
        key_findings=tuple(_key_findings(details, components[-1])),
    )


class SleepScoreCalculator:
    """Fetches a night's stage samples and scores them, cached per day."""

    def __init__(
        self,
        provider: RawMetricsProvider,
        baselines: BaselineEngine,
        config: ScoringConfig | None = None,
    ) -> None:
        self.provider = provider
        self.baselines = baselines
        self.config = config or ScoringConfig()
        self.cache: DateCache[SleepScoreResult] = DateCache()

    def clear_cache(self) -> None:
        self.cache.clear()

    def invalidate(self, day: date) -> None:
        self.cache.invalidate(day)

    async def calculate_sleep_score(self, day: date) -> SleepScoreResult:
        """Sleep Score for the night ending on ``day``.

        Raises:
            DataUnavailable: the provider denied access.
            NoSleepData: no qualifying session in the night's window.
        """
        return await self.cache.get_or_compute(day, lambda: self._compute(day))

    async def _compute(self, day: date) -> SleepScoreResult:
        timeout = self.config.fetch_timeout_sec
        await ensure_authorized(self.provider, timeout)

        start, end = sleep_window(day)
        hr_start = datetime.combine(day - timedelta(days=1), SLEEP_HR_START)
        hr_end = datetime.combine(day, SLEEP_HR_END)
        day_start = datetime.combine(day, time())

        sleep, sleeping_hr, resting_hr = await asyncio.gather(
            guarded_fetch(self.provider.fetch_sleep_session(start, end), "sleep", timeout),
            fetch_mean(self.provider, MetricKind.HEART_RATE, hr_start, hr_end, timeout),
            fetch_mean(
                self.provider, MetricKind.RESTING_HR, day_start,
                day_start + timedelta(days=1), timeout,
            ),
        )
        try:
            intervals = sleep.require()
        except MissingMetric as exc:
            raise NoSleepData(day, f"sleep fetch {exc.detail}") from exc

        session = main_session(i for i in intervals if start <= i.start < end)
        if session is None:
            raise NoSleepData(day)

        metrics = self.baselines.load_baselines()
        result = score_sleep(
            day,
            session,
            bedtime7=metrics.bedtime7,
            bedtime14=metrics.bedtime14,
            sleeping_hr=sleeping_hr.value_or(),
            resting_hr=resting_hr.value_or(),
        )
        logger.info("%r", result)
        return result
