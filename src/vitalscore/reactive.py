"""Recompute persisted recovery scores when new samples arrive.

The provider announces arrivals of critical metrics (HRV and resting HR
by default). Each arrival marks today and yesterday as affected, since
late syncs often land overnight data on the previous date. A date that
is already being recomputed is skipped, so at-least-once delivery and
bursts of arrivals cost one computation per date.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable

from vitalscore.errors import ScoreError
from vitalscore.provider import MetricKind, SampleArrival
from vitalscore.storage import ScoreRecord, ScoreType
from vitalscore.analytics.pipeline import ScoreOrchestrator
from vitalscore.analytics.recovery import RecoveryScoreResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoreUpdate:
    """Broadcast after a persisted recovery score was replaced."""

    day: date
    score: int
    previous: int | None
    trigger: str
    updated_at: datetime


@dataclass
class RecalculationStatus:
    observing: bool
    pending: list[date] = field(default_factory=list)
    last_update: datetime | None = None
    observed_metrics: list[str] = field(default_factory=list)
    complete_today: bool = False


UpdateListener = Callable[[ScoreUpdate], None]


class ReactiveRecalculationManager:
    """Turns sample-arrival notifications into deduplicated recomputes."""

    def __init__(self, orchestrator: ScoreOrchestrator) -> None:
        self.orchestrator = orchestrator
        self.provider = orchestrator.provider
        self.store = orchestrator.store
        self.config = orchestrator.config
        self.clock = orchestrator.clock
        self.pending: set[date] = set()
        self.last_update: datetime | None = None
        self._listeners: list[UpdateListener] = []
        self._tasks: list[asyncio.Task] = []
        self._inflight: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return (
            f"ReactiveRecalculationManager(observing={self.observing}, "
            f"pending={sorted(d.isoformat() for d in self.pending)})"
        )

    # -- listeners -----------------------------------------------------------

    def add_listener(self, listener: UpdateListener) -> None:
        self._listeners.append(listener)

    def _broadcast(self, update: ScoreUpdate) -> None:
        for listener in list(self._listeners):
            listener(update)

    # -- recomputation -------------------------------------------------------

    def affected_dates(self, now: datetime | None = None) -> list[date]:
        today = (now or self.clock()).date()
        return [today, today - timedelta(days=1)]

    def _claim(self, day: date) -> bool:
        # check and insert with no await in between
        if day in self.pending:
            return False
        self.pending.add(day)
        return True

    async def recalculate(self, day: date, trigger: str = "manual") -> bool:
        """Recompute and persist the recovery score for ``day``.

        Returns True when a new score was stored, False when the date was
        already pending or the computation failed. On failure the
        previously persisted score is put back.
        """
        if not self._claim(day):
            logger.debug("recalculation for %s already pending", day)
            return False

        try:
            previous = self.store.pop_score(day)
            self.orchestrator.invalidate(day)
            try:
                result = await self.orchestrator.recovery.calculate_recovery_score(day)
            except ScoreError as exc:
                logger.warning("recalculation for %s failed: %s", day, exc)
                self._restore(previous)
                return False
            except Exception:
                self._restore(previous)
                raise

            now = self.clock()
            self._persist(result, now)
            self.last_update = now
            before = previous.score if previous is not None else None
            logger.info(
                "recovery score for %s updated %s -> %d (%s)",
                day, before, result.final_score, trigger,
            )
            self._broadcast(
                ScoreUpdate(
                    day=day,
                    score=result.final_score,
                    previous=before,
                    trigger=trigger,
                    updated_at=now,
                )
            )
            return True
        finally:
            self.pending.discard(day)

    def _persist(self, result: RecoveryScoreResult, now: datetime) -> None:
        inputs = result.inputs
        baseline = dict(
            hrv60=inputs.hrv_baseline,
            rhr60=inputs.rhr_baseline,
            sleep_duration90=self.orchestrator.baselines.metrics.sleep_duration90,
        )
        self.store.put_score(
            ScoreRecord(
                result.day, ScoreType.RECOVERY, result.final_score, now,
                hrv=inputs.hrv, rhr=inputs.rhr, **baseline,
            )
        )
        if inputs.sleep_score is not None:
            self.store.put_score(
                ScoreRecord(result.day, ScoreType.SLEEP, inputs.sleep_score, now, **baseline)
            )

    def _restore(self, previous: ScoreRecord | None) -> None:
        if previous is not None:
            self.store.put_score(previous)

    def has_complete_data(self, day: date | None = None) -> bool:
        """True when the stored recovery score for ``day`` (default today)
        was computed with both HRV and resting HR present."""
        record = self.store.get_score(day or self.clock().date())
        return record is not None and record.has_complete_inputs

    async def handle_arrival(self, arrival: SampleArrival) -> dict[date, bool]:
        """Recompute every affected date concurrently."""
        days = self.affected_dates(arrival.received_at)
        logger.debug("%s samples arrived, recomputing %s", arrival.kind.value, days)
        results = await asyncio.gather(
            *(self.recalculate(d, trigger=arrival.kind.value) for d in days)
        )
        return dict(zip(days, results))

    async def manually_trigger(self, day: date | None = None) -> bool:
        return await self.recalculate(day or self.clock().date(), trigger="manual")

    # -- observation ---------------------------------------------------------

    @property
    def observing(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        """Subscribe to arrivals of each critical metric."""
        if self._tasks:
            return
        queue: asyncio.Queue[SampleArrival] = asyncio.Queue()
        for kind in self.config.critical_metrics:
            self._tasks.append(asyncio.create_task(self._observe(kind, queue)))
        self._tasks.append(asyncio.create_task(self._dispatch(queue)))
        logger.info(
            "observing %s", ", ".join(k.value for k in self.config.critical_metrics)
        )

    async def _observe(self, kind: MetricKind, queue: asyncio.Queue[SampleArrival]) -> None:
        async for arrival in self.provider.notify_on_new_sample(kind):
            await queue.put(arrival)

    async def _dispatch(self, queue: asyncio.Queue[SampleArrival]) -> None:
        while True:
            arrival = await queue.get()
            task = asyncio.create_task(self._run(arrival))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            queue.task_done()

    async def _run(self, arrival: SampleArrival) -> None:
        try:
            await self.handle_arrival(arrival)
        except Exception:
            logger.exception("recalculation after %s arrival failed", arrival.kind.value)

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.gather(*list(self._inflight), return_exceptions=True)
        logger.info("stopped observing")

    def status(self) -> RecalculationStatus:
        return RecalculationStatus(
            observing=self.observing,
            pending=sorted(self.pending),
            last_update=self.last_update,
            observed_metrics=[k.value for k in self.config.critical_metrics],
            complete_today=self.has_complete_data(),
        )
