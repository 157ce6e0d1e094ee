"""Runtime configuration for the scoring pipeline.

Defaults match the documented constants; any of them can be overridden
through ``VITALSCORE_*`` environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from vitalscore.provider import MetricKind

# Fallback baselines used when a window has too few samples
DEFAULT_HRV_BASELINE_MS = 35.0
DEFAULT_RHR_BASELINE_BPM = 65.0

# Stress proxy sensitivity multipliers
STRESS_MULTIPLIERS = {
    MetricKind.RESPIRATORY_RATE: 1.5,
    MetricKind.SPO2: 2.0,
    MetricKind.WALKING_HR: 1.2,
}


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return int(raw)


@dataclass
class ScoringConfig:
    """Tunables shared by every pipeline component."""

    fetch_timeout_sec: float = 10.0
    bundle_ttl_sec: float = 300.0
    availability_hour: int = 8  # today's scores are withheld before this hour
    min_baseline_samples: int = 3
    trend_days: int = 7
    default_hrv_baseline: float = DEFAULT_HRV_BASELINE_MS
    default_rhr_baseline: float = DEFAULT_RHR_BASELINE_BPM
    stress_multipliers: dict[MetricKind, float] = field(
        default_factory=lambda: dict(STRESS_MULTIPLIERS)
    )
    critical_metrics: tuple[MetricKind, ...] = (MetricKind.HRV, MetricKind.RESTING_HR)
    state_dir: Path | None = None

    @classmethod
    def from_env(cls) -> ScoringConfig:
        """Build a config from ``VITALSCORE_*`` environment variables."""
        state_dir = os.environ.get("VITALSCORE_STATE_DIR")
        return cls(
            fetch_timeout_sec=_env_float("VITALSCORE_FETCH_TIMEOUT", 10.0),
            bundle_ttl_sec=_env_float("VITALSCORE_BUNDLE_TTL", 300.0),
            availability_hour=_env_int("VITALSCORE_AVAILABILITY_HOUR", 8),
            min_baseline_samples=_env_int("VITALSCORE_MIN_BASELINE_SAMPLES", 3),
            default_hrv_baseline=_env_float(
                "VITALSCORE_DEFAULT_HRV", DEFAULT_HRV_BASELINE_MS
            ),
            default_rhr_baseline=_env_float(
                "VITALSCORE_DEFAULT_RHR", DEFAULT_RHR_BASELINE_BPM
            ),
            state_dir=Path(state_dir).expanduser() if state_dir else None,
        )
