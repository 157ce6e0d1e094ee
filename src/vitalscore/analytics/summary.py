"""Presentation-ready score bundle.

Collects both scores, their component breakdowns and the 7-day trend
arrays into a single ScoreBundle that is JSON-serializable.
"""

from __future__ import annotations

import enum
import json
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Sequence

from vitalscore.provider import RawDailyMetrics
from vitalscore.analytics.baseline import BaselineSnapshot
from vitalscore.analytics.features import percent_change, safe_mean
from vitalscore.analytics.recovery import RecoveryScoreResult
from vitalscore.analytics.sessions import SleepSession
from vitalscore.analytics.sleep import SleepScoreResult


class BundleStatus(str, enum.Enum):
    READY = "ready"
    NOT_YET_AVAILABLE = "not_yet_available"
    NO_SLEEP_DATA = "no_sleep_data"


@dataclass(frozen=True)
class ComponentData:
    """One bar of a score breakdown."""

    name: str
    score: float
    max_score: float
    description: str


@dataclass(frozen=True)
class TrendData:
    """Daily values for one metric, oldest first. Gaps are None."""

    metric: str
    unit: str
    days: tuple[str, ...]
    values: tuple[float | None, ...]
    percent_change: float | None = None

    @property
    def average(self) -> float | None:
        mean = safe_mean(self.values)
        return round(mean, 1) if mean is not None else None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["days"] = list(self.days)
        data["values"] = list(self.values)
        data["average"] = self.average
        return data


@dataclass
class ScoreBundle:
    """Everything the presentation layer shows for one day."""

    day: date
    status: BundleStatus
    generated_at: datetime
    recovery: RecoveryScoreResult | None = None
    sleep: SleepScoreResult | None = None
    raw: RawDailyMetrics | None = None
    baseline: BaselineSnapshot | None = None
    recovery_components: list[ComponentData] = field(default_factory=list)
    sleep_components: list[ComponentData] = field(default_factory=list)
    trends: dict[str, TrendData] = field(default_factory=dict)
    message: str | None = None

    def __repr__(self) -> str:
        return (
            f"ScoreBundle({self.day}: {self.status.value}, "
            f"recovery={self.recovery_score}, sleep={self.sleep_score})"
        )

    @property
    def recovery_score(self) -> int | None:
        return self.recovery.final_score if self.recovery else None

    @property
    def sleep_score(self) -> int | None:
        return self.sleep.final_score if self.sleep else None

    @property
    def directive(self) -> str | None:
        return self.recovery.directive if self.recovery else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict (JSON-friendly)."""
        return {
            "day": self.day.isoformat(),
            "status": self.status.value,
            "generated_at": self.generated_at.isoformat(),
            "message": self.message,
            "recovery_score": self.recovery_score,
            "sleep_score": self.sleep_score,
            "directive": self.directive,
            "recovery": self.recovery.to_dict() if self.recovery else None,
            "sleep": self.sleep.to_dict() if self.sleep else None,
            "baseline": self.baseline.to_dict() if self.baseline else None,
            "recovery_components": [asdict(c) for c in self.recovery_components],
            "sleep_components": [asdict(c) for c in self.sleep_components],
            "trends": {k: t.to_dict() for k, t in self.trends.items()},
        }

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def recovery_breakdown(result: RecoveryScoreResult) -> list[ComponentData]:
    """Components as points out of their weight (HRV out of 50, ...)."""
    return [
        ComponentData(c.name, round(c.contribution, 1), c.max_score, c.description)
        for c in result.components
    ]


def sleep_breakdown(result: SleepScoreResult) -> list[ComponentData]:
    return [
        ComponentData(c.name, float(c.points), float(c.max_points), c.description)
        for c in result.components
    ]


def _trend(metric: str, unit: str, days: Sequence[date], values: list[float | None]) -> TrendData:
    rounded = tuple(round(v, 2) if v is not None else None for v in values)
    return TrendData(
        metric=metric,
        unit=unit,
        days=tuple(d.isoformat() for d in days),
        values=rounded,
        percent_change=percent_change(values),
    )


def build_trends(
    days: Sequence[date],
    hrv: dict[date, float],
    rhr: dict[date, float],
    nights: dict[date, SleepSession],
) -> dict[str, TrendData]:
    """Per-metric daily arrays with percent change over ``days``.

    Args:
        days: Calendar days, oldest first.
        hrv: Daily mean HRV (ms) keyed by day.
        rhr: Daily mean resting HR (bpm) keyed by day.
        nights: Main sleep session keyed by wake date.
    """

    def night(attr: str, scale: float) -> list[float | None]:
        out: list[float | None] = []
        for d in days:
            s = nights.get(d)
            out.append(getattr(s, attr) / scale if s is not None else None)
        return out

    efficiency = [
        (s.time_asleep / s.total_duration * 100.0) if s is not None and s.total_duration > 0 else None
        for s in (nights.get(d) for d in days)
    ]
    fall_asleep = [
        max(0.0, s.total_duration - s.time_asleep) / 60.0 if s is not None else None
        for s in (nights.get(d) for d in days)
    ]

    return {
        "hrv": _trend("hrv", "ms", days, [hrv.get(d) for d in days]),
        "rhr": _trend("rhr", "bpm", days, [rhr.get(d) for d in days]),
        "time_in_bed": _trend("time_in_bed", "h", days, night("total_duration", 3600)),
        "time_asleep": _trend("time_asleep", "h", days, night("time_asleep", 3600)),
        "rem_sleep": _trend("rem_sleep", "h", days, night("rem", 3600)),
        "deep_sleep": _trend("deep_sleep", "h", days, night("deep", 3600)),
        "efficiency": _trend("efficiency", "%", days, efficiency),
        "fall_asleep": _trend("fall_asleep", "min", days, fall_asleep),
    }
