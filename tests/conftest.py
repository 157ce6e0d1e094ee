"""Shared fixtures and helpers for the vitalscore test suite."""

from __future__ import annotations

import asyncio
import json
from datetime import date, datetime, time, timedelta
from pathlib import Path

import pytest

from vitalscore.config import ScoringConfig
from vitalscore.provider import MetricKind, SleepStage, StageInterval
from vitalscore.replay import ReplayProvider
from vitalscore.storage import StateStore

DAY = date(2026, 10, 14)
MORNING = datetime(2026, 10, 14, 9, 0)


# ---------------------------------------------------------------------------
# Sample-building helpers
# ---------------------------------------------------------------------------


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


def interval(stage: SleepStage, start: datetime, minutes: float) -> StageInterval:
    return StageInterval(stage, start, start + timedelta(minutes=minutes))


def night_intervals(
    wake_day: date,
    bedtime: time = time(23, 45),
    deep_min: float = 105,
    rem_min: float = 120,
    core_min: float = 225,
    awake_min: float = 30,
    in_bed: bool = True,
) -> list[StageInterval]:
    """Stage samples for one night, laid out back to back.

    Order: awake, first half of core, deep, REM, rest of core. An in-bed
    sample spans the whole night when ``in_bed`` is set. The default
    night is 480 min in bed, 450 min asleep.
    """
    bed_day = wake_day if bedtime.hour < 12 else wake_day - timedelta(days=1)
    start = datetime.combine(bed_day, bedtime)
    first_core = core_min / 2
    plan = [
        (SleepStage.AWAKE, awake_min),
        (SleepStage.CORE, first_core),
        (SleepStage.DEEP, deep_min),
        (SleepStage.REM, rem_min),
        (SleepStage.CORE, core_min - first_core),
    ]
    out: list[StageInterval] = []
    cursor = start
    for stage, minutes in plan:
        if minutes <= 0:
            continue
        out.append(interval(stage, cursor, minutes))
        cursor = out[-1].end
    if in_bed:
        out.append(StageInterval(SleepStage.IN_BED, start, cursor))
    return out


def add_night(provider: ReplayProvider, wake_day: date, **kwargs) -> list[StageInterval]:
    intervals = night_intervals(wake_day, **kwargs)
    for i in intervals:
        provider.add_interval(i.stage, i.start, i.end)
    return intervals


def add_day_values(
    provider: ReplayProvider,
    day: date,
    hrv: float | None = 50.0,
    rhr: float | None = 60.0,
    walking_hr: float | None = 100.0,
    respiratory_rate: float | None = 15.0,
    spo2: float | None = 97.0,
) -> None:
    values = {
        MetricKind.HRV: hrv,
        MetricKind.RESTING_HR: rhr,
        MetricKind.WALKING_HR: walking_hr,
        MetricKind.RESPIRATORY_RATE: respiratory_rate,
        MetricKind.SPO2: spo2,
    }
    for kind, value in values.items():
        if value is not None:
            provider.add_sample(kind, at(day, 7), value)


def seed_history(provider: ReplayProvider, day: date, days: int = 60, **values) -> None:
    """Identical daily values for the ``days`` days before ``day``."""
    for n in range(1, days + 1):
        add_day_values(provider, day - timedelta(days=n), **values)


def fixed_clock(moment: datetime):
    return lambda: moment


class FakeMonotonic:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StallingProvider(ReplayProvider):
    """Replay provider whose chosen calls hang until the caller gives up.

    ``stall`` names metric kinds (by value) or ``"sleep"``;
    ``auth_error`` makes the authorization check raise instead.
    """

    def __init__(
        self,
        stall: tuple[str, ...] = (),
        stall_auth: bool = False,
        auth_error: Exception | None = None,
        delay: float = 5.0,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.stall = set(stall)
        self.stall_auth = stall_auth
        self.auth_error = auth_error
        self.delay = delay

    async def fetch_authorization_status(self) -> bool:
        if self.auth_error is not None:
            raise self.auth_error
        if self.stall_auth:
            await asyncio.sleep(self.delay)
        return await super().fetch_authorization_status()

    async def fetch_sleep_session(self, start, end):
        if "sleep" in self.stall:
            await asyncio.sleep(self.delay)
        return await super().fetch_sleep_session(start, end)

    async def fetch_quantity_series(self, kind, start, end):
        if kind.value in self.stall:
            await asyncio.sleep(self.delay)
        return await super().fetch_quantity_series(kind, start, end)


def write_jsonl(path: Path, provider: ReplayProvider) -> Path:
    """Dump a provider's samples in the export format."""
    with open(path, "w") as f:
        for kind, samples in provider.samples.items():
            for s in samples:
                f.write(json.dumps({
                    "kind": kind.value,
                    "timestamp": s.timestamp.isoformat(),
                    "value": s.value,
                }) + "\n")
        for i in provider.intervals:
            f.write(json.dumps({
                "kind": "sleep",
                "stage": i.stage.value,
                "start": i.start.isoformat(),
                "end": i.end.isoformat(),
            }) + "\n")
    return path


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def provider() -> ReplayProvider:
    return ReplayProvider(clock=fixed_clock(MORNING))


@pytest.fixture
def store() -> StateStore:
    return StateStore()


@pytest.fixture
def config() -> ScoringConfig:
    return ScoringConfig(fetch_timeout_sec=2.0)


@pytest.fixture
def fast_config() -> ScoringConfig:
    """Short fetch timeout for tests that let a fetch hang."""
    return ScoringConfig(fetch_timeout_sec=0.05)
