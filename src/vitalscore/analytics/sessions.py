"""Assemble raw sleep-stage samples into contiguous sleep sessions.

Stage samples arrive as a flat, unordered list that can mix the main
night with naps and stray "in bed" markers. Samples are chained into a
session while each one starts within ``MAX_GAP`` of the session's latest
end; the longest session is the night that gets scored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from vitalscore.provider import SleepStage, SleepSummary, StageInterval

MAX_GAP = timedelta(minutes=30)
MAX_IN_BED = timedelta(hours=12)  # longer in-bed samples are artifacts


@dataclass
class SleepSession:
    """One contiguous sleep period."""

    start: datetime
    end: datetime
    intervals: list[StageInterval] = field(default_factory=list)

    def __repr__(self) -> str:
        return (
            f"SleepSession({self.start:%Y-%m-%d %H:%M}-{self.end:%H:%M}, "
            f"asleep={self.time_asleep / 60:.0f}min, "
            f"samples={len(self.intervals)})"
        )

    @property
    def total_duration(self) -> float:
        """Seconds from first start to last end (the time in bed)."""
        return (self.end - self.start).total_seconds()

    def stage_duration(self, stage: SleepStage) -> float:
        return sum(i.duration for i in self.intervals if i.stage is stage)

    @property
    def time_asleep(self) -> float:
        return sum(i.duration for i in self.intervals if i.stage.is_asleep)

    @property
    def deep(self) -> float:
        return self.stage_duration(SleepStage.DEEP)

    @property
    def rem(self) -> float:
        return self.stage_duration(SleepStage.REM)

    @property
    def core(self) -> float:
        return self.stage_duration(SleepStage.CORE)

    @property
    def awake(self) -> float:
        return self.stage_duration(SleepStage.AWAKE)

    def add(self, interval: StageInterval) -> None:
        self.intervals.append(interval)
        if interval.end > self.end:
            self.end = interval.end

    def summary(self) -> SleepSummary:
        return SleepSummary(
            time_asleep=self.time_asleep,
            time_in_bed=self.total_duration,
            deep=self.deep,
            rem=self.rem,
            core=self.core,
            bedtime=self.start,
            wake_time=self.end,
        )


def _is_artifact(interval: StageInterval) -> bool:
    return (
        interval.stage is SleepStage.IN_BED
        and interval.end - interval.start > MAX_IN_BED
    )


def group_sessions(
    intervals: Iterable[StageInterval],
    max_gap: timedelta = MAX_GAP,
) -> list[SleepSession]:
    """Group stage samples into sessions, ordered by start time.

    Args:
        intervals: Raw stage samples in any order.
        max_gap: Largest gap between a session's latest end and the next
            sample's start that still joins the same session.

    Returns:
        Sessions sorted by start; empty if no usable samples.
    """
    usable = sorted(
        (i for i in intervals if not _is_artifact(i) and i.end > i.start),
        key=lambda i: i.start,
    )

    sessions: list[SleepSession] = []
    current: SleepSession | None = None
    for interval in usable:
        if current is not None and interval.start - current.end <= max_gap:
            current.add(interval)
            continue
        current = SleepSession(start=interval.start, end=interval.end, intervals=[interval])
        sessions.append(current)
    return sessions


def main_session(intervals: Iterable[StageInterval]) -> SleepSession | None:
    """The session with the greatest total duration, or None."""
    sessions = group_sessions(intervals)
    if not sessions:
        return None
    return max(sessions, key=lambda s: s.total_duration)
