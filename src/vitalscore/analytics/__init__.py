"""Scoring engine for daily sleep and recovery indices.

Modules:
    features   -- Calendar windows, means, circular clock-time averaging
    sessions   -- Grouping of sleep-stage samples into sessions
    baseline   -- Trailing-window personal baselines
    sleep      -- Five-part Sleep Score
    recovery   -- Baseline-ratio Recovery Score
    summary    -- ScoreBundle, breakdowns and 7-day trends
    pipeline   -- ScoreOrchestrator with the bundle cache
"""

from vitalscore.analytics.features import (
    circular_mean_time,
    clock_minutes,
    percent_change,
    round_half_up,
    safe_mean,
    sleep_window,
)
from vitalscore.analytics.sessions import SleepSession, group_sessions, main_session
from vitalscore.analytics.baseline import BaselineEngine, BaselineMetrics, BaselineSnapshot
from vitalscore.analytics.sleep import (
    SleepComponent,
    SleepScoreCalculator,
    SleepScoreResult,
    score_sleep,
)
from vitalscore.analytics.recovery import (
    RecoveryComponent,
    RecoveryScoreCalculator,
    RecoveryScoreResult,
    score_recovery,
)
from vitalscore.analytics.summary import BundleStatus, ComponentData, ScoreBundle, TrendData
from vitalscore.analytics.pipeline import ScoreOrchestrator, fetch_raw_daily_metrics

__all__ = [
    # features
    "circular_mean_time",
    "clock_minutes",
    "percent_change",
    "round_half_up",
    "safe_mean",
    "sleep_window",
    # sessions
    "SleepSession",
    "group_sessions",
    "main_session",
    # baseline
    "BaselineEngine",
    "BaselineMetrics",
    "BaselineSnapshot",
    # sleep
    "SleepComponent",
    "SleepScoreCalculator",
    "SleepScoreResult",
    "score_sleep",
    # recovery
    "RecoveryComponent",
    "RecoveryScoreCalculator",
    "RecoveryScoreResult",
    "score_recovery",
    # summary
    "BundleStatus",
    "ComponentData",
    "ScoreBundle",
    "TrendData",
    # pipeline
    "ScoreOrchestrator",
    "fetch_raw_daily_metrics",
]
