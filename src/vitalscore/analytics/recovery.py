"""Recovery Score: baseline-ratio composite of HRV, RHR, sleep and stress.

Each component compares today's value with the personal baseline:

    HRV     50%   today / 60-day baseline (higher is better)
    RHR     25%   60-day baseline / today (lower RHR is better)
    Sleep   15%   the night's Sleep Score, verbatim
    Stress  10%   weighted % deviation of walking HR, respiratory rate and
                  SpO2 from their 14-day baselines

A ratio of 1.0 scores 75. Above it a damped log curve rewards gains
slowly; below it a power curve penalizes drops quickly. Any component
whose input is missing scores a neutral 50.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Any

from vitalscore.config import ScoringConfig
from vitalscore.errors import DataUnauthorized, ScoreError
from vitalscore.provider import MetricKind, RawMetricsProvider, ensure_authorized, fetch_mean
from vitalscore.analytics.baseline import BaselineEngine, BaselineSnapshot
from vitalscore.analytics.features import clamp, day_bounds, round_half_up
from vitalscore.analytics.sleep import SleepScoreCalculator

logger = logging.getLogger(__name__)

# Weights for the composite recovery score
W_HRV = 0.50
W_RHR = 0.25
W_SLEEP = 0.15
W_STRESS = 0.10

NEUTRAL_SCORE = 50.0

HRV_LOG_GAIN = 35.0
HRV_LOG_OFFSET = 0.35
RHR_LOG_GAIN = 45.0
RHR_LOG_OFFSET = 0.25

HRV_COMPONENT = "HRV Recovery"
RHR_COMPONENT = "RHR Recovery"
SLEEP_COMPONENT = "Sleep Quality"
STRESS_COMPONENT = "Stress Indicators"


# ---------------------------------------------------------------------------
# Component formulas
# ---------------------------------------------------------------------------


def _ratio_score(ratio: float, gain: float, offset: float, power: int) -> float:
    if ratio >= 1.0:
        # anchored so ratio == 1.0 lands exactly on 75
        score = 75.0 + gain * (math.log10(ratio + offset) - math.log10(1.0 + offset))
    else:
        score = 75.0 * max(ratio, 0.0) ** power
    return clamp(score)


def hrv_score(ratio: float) -> float:
    """Score for today's HRV / baseline HRV."""
    return _ratio_score(ratio, HRV_LOG_GAIN, HRV_LOG_OFFSET, 3)


def rhr_score(ratio: float) -> float:
    """Score for baseline RHR / today's RHR."""
    return _ratio_score(ratio, RHR_LOG_GAIN, RHR_LOG_OFFSET, 4)


def stress_deviation(today: float, baseline: float, multiplier: float) -> float:
    """Percent deviation from baseline, scaled by the proxy's sensitivity."""
    return abs((today - baseline) / baseline) * 100.0 * multiplier


def stress_score(deviation: float) -> float:
    """Map an averaged weighted deviation (%) onto 0-100."""
    if deviation <= 5:
        score = 100.0 - 2.0 * deviation
    elif deviation <= 15:
        score = 90.0 - 3.0 * (deviation - 5)
    else:
        score = max(0.0, 75.0 - 0.5 * (deviation - 15) ** 2)
    return clamp(score)


def recovery_directive(
    final_score: int,
    hrv: float,
    rhr: float,
    sleep: float,
    stress: float,
) -> str:
    """Training guidance; below 55 it names the weakest signal."""
    if final_score >= 85:
        return "Primed for peak performance. Your body is ready for high-intensity training."
    if final_score >= 70:
        return "Good recovery state. Moderate to high-intensity training is appropriate."
    if final_score >= 55:
        return "Moderate recovery. Consider lighter training or active recovery."
    if hrv < 60:
        return "Nervous system under strain. Prioritize rest and recovery activities."
    if rhr < 60:
        return "Elevated cardiovascular load. Focus on active recovery and stress management."
    if sleep < 50:
        return "Poor sleep quality detected. Prioritize sleep hygiene and recovery."
    if stress < 70:
        return "Stress indicators present. Consider reducing training load."
    return "Recovery needs attention. Focus on rest, nutrition, and stress management."


def _label(score: float) -> str:
    if score >= 85:
        return "Excellent"
    if score >= 70:
        return "Good"
    if score >= 50:
        return "Fair"
    return "Low"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecoveryComponent:
    name: str
    score: float  # 0-100
    weight: float
    description: str
    available: bool = True

    @property
    def contribution(self) -> float:
        return self.score * self.weight

    @property
    def max_score(self) -> float:
        return self.weight * 100.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "score": round(self.score, 1),
            "weight": self.weight,
            "contribution": round(self.contribution, 2),
            "description": self.description,
            "available": self.available,
        }


@dataclass(frozen=True)
class StressProxy:
    kind: MetricKind
    today: float
    baseline: float
    multiplier: float

    @property
    def deviation(self) -> float:
        return stress_deviation(self.today, self.baseline, self.multiplier)


@dataclass(frozen=True)
class RecoveryInputs:
    """Everything the composite was computed from."""

    hrv: float | None
    hrv_baseline: float
    hrv_baseline_source: str
    rhr: float | None
    rhr_baseline: float
    rhr_baseline_source: str
    sleep_score: int | None
    stress_proxies: tuple[StressProxy, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "hrv": self.hrv,
            "hrv_baseline": round(self.hrv_baseline, 1),
            "hrv_baseline_source": self.hrv_baseline_source,
            "rhr": self.rhr,
            "rhr_baseline": round(self.rhr_baseline, 1),
            "rhr_baseline_source": self.rhr_baseline_source,
            "sleep_score": self.sleep_score,
            "stress_proxies": {
                p.kind.value: {
                    "today": p.today,
                    "baseline": round(p.baseline, 2),
                    "deviation": round(p.deviation, 2),
                }
                for p in self.stress_proxies
            },
        }


@dataclass(frozen=True)
class RecoveryScoreResult:
    day: date
    final_score: int
    components: tuple[RecoveryComponent, ...]
    directive: str
    inputs: RecoveryInputs

    def __repr__(self) -> str:
        parts = ", ".join(f"{c.name.split()[0].lower()}={c.score:.0f}" for c in self.components)
        return f"RecoveryScoreResult({self.day}: score={self.final_score}, {parts})"

    def component(self, name: str) -> RecoveryComponent:
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
            "inputs": self.inputs.to_dict(),
        }


# ---------------------------------------------------------------------------
# Composite scoring
# ---------------------------------------------------------------------------


def _hrv_component(hrv: float | None, baseline: float) -> RecoveryComponent:
    if hrv is None or baseline <= 0:
        return RecoveryComponent(
            HRV_COMPONENT, NEUTRAL_SCORE, W_HRV, "No HRV data - using neutral score", False
        )
    score = hrv_score(hrv / baseline)
    pct = (hrv - baseline) / baseline * 100.0
    return RecoveryComponent(
        HRV_COMPONENT,
        score,
        W_HRV,
        f"{_label(score)} HRV - {hrv:.0f} ms (baseline: {baseline:.0f} ms, {pct:+.0f}%)",
    )


def _rhr_component(rhr: float | None, baseline: float) -> RecoveryComponent:
    if rhr is None or rhr <= 0:
        return RecoveryComponent(
            RHR_COMPONENT, NEUTRAL_SCORE, W_RHR, "No resting HR data - using neutral score", False
        )
    score = rhr_score(baseline / rhr)
    pct = (rhr - baseline) / baseline * 100.0
    return RecoveryComponent(
        RHR_COMPONENT,
        score,
        W_RHR,
        f"{_label(score)} RHR - {rhr:.0f} bpm (baseline: {baseline:.0f} bpm, {pct:+.0f}%)",
    )


def _sleep_component(sleep_score: int | None) -> RecoveryComponent:
    if sleep_score is None:
        return RecoveryComponent(
            SLEEP_COMPONENT, NEUTRAL_SCORE, W_SLEEP, "No sleep data - using neutral score", False
        )
    return RecoveryComponent(
        SLEEP_COMPONENT, float(sleep_score), W_SLEEP, f"Sleep score {sleep_score}/100"
    )


def _stress_component(proxies: tuple[StressProxy, ...]) -> RecoveryComponent:
    if not proxies:
        return RecoveryComponent(
            STRESS_COMPONENT, NEUTRAL_SCORE, W_STRESS,
            "No stress indicators - using neutral score", False,
        )
    deviation = sum(p.deviation for p in proxies) / len(proxies)
    names = ", ".join(p.kind.value.replace("_", " ") for p in proxies)
    return RecoveryComponent(
        STRESS_COMPONENT,
        stress_score(deviation),
        W_STRESS,
        f"{deviation:.1f}% weighted deviation ({names})",
    )


def score_recovery(day: date, inputs: RecoveryInputs) -> RecoveryScoreResult:
    """Combine resolved inputs into a RecoveryScoreResult.

    Components come back in fixed order: HRV, RHR, sleep, stress.
    """
    components = (
        _hrv_component(inputs.hrv, inputs.hrv_baseline),
        _rhr_component(inputs.rhr, inputs.rhr_baseline),
        _sleep_component(inputs.sleep_score),
        _stress_component(inputs.stress_proxies),
    )
    final = round_half_up(clamp(sum(c.contribution for c in components)))
    hrv, rhr, sleep, stress = (c.score for c in components)
    return RecoveryScoreResult(
        day=day,
        final_score=final,
        components=components,
        directive=recovery_directive(final, hrv, rhr, sleep, stress),
        inputs=inputs,
    )


def _resolve(
    snapshot_value: float | None,
    persisted: float | None,
    default: float,
) -> tuple[float, str]:
    if snapshot_value is not None:
        return snapshot_value, "60-day"
    if persisted is not None:
        return persisted, "stored"
    return default, "default"


class RecoveryScoreCalculator:
    """Gathers a day's inputs concurrently and scores recovery."""

    def __init__(
        self,
        provider: RawMetricsProvider,
        baselines: BaselineEngine,
        sleep: SleepScoreCalculator,
        config: ScoringConfig | None = None,
    ) -> None:
        self.provider = provider
        self.baselines = baselines
        self.sleep = sleep
        self.config = config or ScoringConfig()

    async def _sleep_score(self, day: date) -> int | None:
        try:
            result = await self.sleep.calculate_sleep_score(day)
        except ScoreError as exc:
            logger.info("recovery %s: sleep component neutral (%s)", day, exc)
            return None
        return result.final_score

    async def calculate_recovery_score(self, day: date) -> RecoveryScoreResult:
        """Recovery Score for ``day``.

        Raises:
            DataUnauthorized: the provider denied access. Checked once,
                before any other fetch.
        """
        timeout = self.config.fetch_timeout_sec
        await ensure_authorized(self.provider, timeout, DataUnauthorized)

        start, end = day_bounds(day)
        stress_kinds = list(self.config.stress_multipliers)

        (
            hrv, rhr, sleep_score, b60, b14, *stress_today
        ) = await asyncio.gather(
            fetch_mean(self.provider, MetricKind.HRV, start, end, timeout),
            fetch_mean(self.provider, MetricKind.RESTING_HR, start, end, timeout),
            self._sleep_score(day),
            self.baselines.calculate_baseline(day, 60),
            self.baselines.calculate_baseline(day, 14),
            *(fetch_mean(self.provider, kind, start, end, timeout) for kind in stress_kinds),
        )

        metrics = self.baselines.load_baselines()
        hrv_base, hrv_source = _resolve(b60.hrv, metrics.hrv60, self.config.default_hrv_baseline)
        rhr_base, rhr_source = _resolve(b60.rhr, metrics.rhr60, self.config.default_rhr_baseline)

        proxies = []
        for kind, outcome in zip(stress_kinds, stress_today):
            baseline = self._stress_baseline(kind, b14)
            if outcome.ok and baseline:
                proxies.append(
                    StressProxy(kind, outcome.value, baseline, self.config.stress_multipliers[kind])
                )

        inputs = RecoveryInputs(
            hrv=hrv.value_or(),
            hrv_baseline=hrv_base,
            hrv_baseline_source=hrv_source,
            rhr=rhr.value_or(),
            rhr_baseline=rhr_base,
            rhr_baseline_source=rhr_source,
            sleep_score=sleep_score,
            stress_proxies=tuple(proxies),
        )
        result = score_recovery(day, inputs)
        logger.info("%r", result)
        return result

    def _stress_baseline(self, kind: MetricKind, snapshot: BaselineSnapshot) -> float | None:
        metrics = self.baselines.metrics
        if kind is MetricKind.WALKING_HR:
            return snapshot.walking_hr if snapshot.walking_hr is not None else metrics.walking_hr14
        if kind is MetricKind.RESPIRATORY_RATE:
            if snapshot.respiratory_rate is not None:
                return snapshot.respiratory_rate
            return metrics.respiratory_rate14
        if kind is MetricKind.SPO2:
            return snapshot.spo2 if snapshot.spo2 is not None else metrics.spo2_14
        return None
