"""Raw-data collaborator interface and sample types.

The scoring core never talks to a health store directly. Everything it
needs comes through a :class:`RawMetricsProvider`, and every fetch is
wrapped by :func:`guarded_fetch` so one slow or failing metric degrades to
"absent" instead of sinking the whole calculation.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, AsyncIterator, Awaitable, Protocol

import numpy as np

from vitalscore.errors import DataUnavailable, MissingMetric

logger = logging.getLogger(__name__)


class MetricKind(str, enum.Enum):
    """Quantity series the provider can deliver."""

    HRV = "hrv"  # SDNN, ms
    RESTING_HR = "resting_hr"  # bpm
    RESPIRATORY_RATE = "respiratory_rate"  # breaths/min
    WALKING_HR = "walking_hr"  # bpm
    SPO2 = "spo2"  # percent
    HEART_RATE = "heart_rate"  # bpm, descriptive enrichment only


class SleepStage(str, enum.Enum):
    DEEP = "deep"
    REM = "rem"
    CORE = "core"
    UNSPECIFIED = "unspecified"
    IN_BED = "in_bed"
    AWAKE = "awake"

    @property
    def is_asleep(self) -> bool:
        return self in ASLEEP_STAGES


ASLEEP_STAGES = frozenset(
    {SleepStage.DEEP, SleepStage.REM, SleepStage.CORE, SleepStage.UNSPECIFIED}
)


@dataclass(frozen=True)
class StageInterval:
    """One sleep-stage sample as reported by the provider."""

    stage: SleepStage
    start: datetime
    end: datetime

    @property
    def duration(self) -> float:
        """Length in seconds."""
        return (self.end - self.start).total_seconds()


@dataclass(frozen=True)
class QuantitySample:
    timestamp: datetime
    value: float


@dataclass(frozen=True)
class SampleArrival:
    """Notification that new samples of ``kind`` reached the store."""

    kind: MetricKind
    received_at: datetime


@dataclass(frozen=True)
class SleepSummary:
    """Durations (seconds) and clock times of one night's main session."""

    time_asleep: float
    time_in_bed: float
    deep: float
    rem: float
    core: float
    bedtime: datetime
    wake_time: datetime

    @property
    def efficiency(self) -> float:
        """Asleep / in-bed as a percentage."""
        if self.time_in_bed <= 0:
            return 0.0
        return self.time_asleep / self.time_in_bed * 100.0


@dataclass(frozen=True)
class RawDailyMetrics:
    """Immutable per-date snapshot of the raw inputs.

    Every field is ``None`` when the provider had nothing for that day.
    """

    day: date
    hrv: float | None = None
    resting_hr: float | None = None
    respiratory_rate: float | None = None
    walking_hr: float | None = None
    spo2: float | None = None
    sleep: SleepSummary | None = None


class RawMetricsProvider(Protocol):
    """What the scoring core consumes from the health store."""

    async def fetch_authorization_status(self) -> bool: ...

    async def fetch_sleep_session(
        self, start: datetime, end: datetime
    ) -> list[StageInterval]: ...

    async def fetch_quantity_series(
        self, kind: MetricKind, start: datetime, end: datetime
    ) -> list[QuantitySample]: ...

    def notify_on_new_sample(self, kind: MetricKind) -> AsyncIterator[SampleArrival]: ...


# ---------------------------------------------------------------------------
# Guarded fetching
# ---------------------------------------------------------------------------


class FetchStatus(str, enum.Enum):
    OK = "ok"
    ABSENT = "absent"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one guarded fetch. Only ``OK`` carries a value."""

    label: str
    status: FetchStatus
    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.OK

    def require(self) -> Any:
        """Return the value or raise :class:`MissingMetric`."""
        if not self.ok:
            raise MissingMetric(self.label, self.status.value)
        return self.value

    def value_or(self, default: Any = None) -> Any:
        return self.value if self.ok else default


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    try:
        return len(value) == 0
    except TypeError:
        return False


async def guarded_fetch(
    awaitable: Awaitable[Any], label: str, timeout: float | None
) -> FetchOutcome:
    """Await one provider call, converting any failure into an outcome.

    Timeouts and provider errors are logged and reported as absent data;
    cancellation still propagates.
    """
    try:
        value = await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        logger.warning("fetch %s timed out after %ss", label, timeout)
        return FetchOutcome(label, FetchStatus.TIMEOUT)
    except Exception as exc:
        logger.warning("fetch %s failed: %s", label, exc)
        return FetchOutcome(label, FetchStatus.FAILED, error=exc)

    if _is_empty(value):
        return FetchOutcome(label, FetchStatus.ABSENT)
    return FetchOutcome(label, FetchStatus.OK, value=value)


async def fetch_mean(
    provider: RawMetricsProvider,
    kind: MetricKind,
    start: datetime,
    end: datetime,
    timeout: float | None,
) -> FetchOutcome:
    """Mean of a quantity series over ``[start, end)``, as a FetchOutcome."""
    outcome = await guarded_fetch(
        provider.fetch_quantity_series(kind, start, end), kind.value, timeout
    )
    if not outcome.ok:
        return outcome
    values = [s.value for s in outcome.value if start <= s.timestamp < end]
    if not values:
        return FetchOutcome(kind.value, FetchStatus.ABSENT)
    return FetchOutcome(
        kind.value, FetchStatus.OK, value=float(np.mean(np.asarray(values, dtype=np.float64)))
    )


async def ensure_authorized(
    provider: RawMetricsProvider,
    timeout: float | None,
    error: type[DataUnavailable] = DataUnavailable,
) -> None:
    """Raise ``error`` unless the provider grants read access.

    A timeout or provider exception during the check counts as no access.
    """
    try:
        granted = await asyncio.wait_for(provider.fetch_authorization_status(), timeout)
    except asyncio.TimeoutError as exc:
        raise error("authorization check timed out") from exc
    except Exception as exc:
        raise error(f"authorization check failed: {exc}") from exc
    if not granted:
        raise error("health data access not authorized")
