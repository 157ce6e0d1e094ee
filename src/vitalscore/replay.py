"""Replay exported health samples from JSONL as a RawMetricsProvider.

Each line of an export is one record:

    {"kind": "hrv", "timestamp": "2026-10-17T06:30:00", "value": 48.2}
    {"kind": "sleep", "stage": "deep", "start": "2026-10-17T01:10:00", "end": "2026-10-17T02:05:00"}

Quantity kinds are the MetricKind values. Records can also be pushed in
after loading, which fires arrival notifications the same way a live
health store would.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter, defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterator

from vitalscore.provider import (
    MetricKind,
    QuantitySample,
    SampleArrival,
    SleepStage,
    StageInterval,
)

logger = logging.getLogger(__name__)

SLEEP_KIND = "sleep"

Record = QuantitySample | StageInterval


def parse_record(entry: dict[str, Any]) -> tuple[MetricKind | None, Record]:
    """Decode one export record.

    Returns ``(kind, sample)`` for quantity records and ``(None, interval)``
    for sleep-stage records.

    Raises:
        KeyError, ValueError: the record is malformed.
    """
    kind = entry["kind"]
    if kind == SLEEP_KIND:
        return None, StageInterval(
            stage=SleepStage(entry["stage"]),
            start=datetime.fromisoformat(entry["start"]),
            end=datetime.fromisoformat(entry["end"]),
        )
    return MetricKind(kind), QuantitySample(
        timestamp=datetime.fromisoformat(entry["timestamp"]),
        value=float(entry["value"]),
    )


def read_records(path: str | Path) -> Iterator[tuple[MetricKind | None, Record]]:
    """Yield parsed records from a .jsonl export, skipping bad lines."""
    path = Path(path)
    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield parse_record(json.loads(line))
            except json.JSONDecodeError:
                logger.warning("%s:%d: invalid JSON, skipping", path.name, line_num)
            except (KeyError, ValueError) as exc:
                logger.warning("%s:%d: bad record (%s), skipping", path.name, line_num, exc)


class ReplayProvider:
    """In-memory provider backed by replayed or pushed samples."""

    def __init__(
        self,
        authorized: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.authorized = authorized
        self.clock = clock
        self.samples: dict[MetricKind, list[QuantitySample]] = defaultdict(list)
        self.intervals: list[StageInterval] = []
        self.calls: Counter[str] = Counter()
        self._subscribers: dict[MetricKind, list[asyncio.Queue[SampleArrival]]] = defaultdict(list)

    def __repr__(self) -> str:
        counts = ", ".join(f"{k.value}={len(v)}" for k, v in self.samples.items())
        return f"ReplayProvider({counts}, sleep={len(self.intervals)})"

    @classmethod
    def from_jsonl(cls, path: str | Path, **kwargs: Any) -> ReplayProvider:
        provider = cls(**kwargs)
        loaded = provider.load(path)
        logger.info("replayed %d records from %s", loaded, path)
        return provider

    # -- loading -------------------------------------------------------------

    def load(self, path: str | Path, notify: bool = False) -> int:
        """Add every record in ``path``. Returns the number added."""
        count = 0
        for kind, record in read_records(path):
            if kind is None:
                self.add_interval(record.stage, record.start, record.end)
            else:
                self.add_sample(kind, record.timestamp, record.value, notify=notify)
            count += 1
        return count

    def add_sample(
        self, kind: MetricKind, timestamp: datetime, value: float, notify: bool = False
    ) -> None:
        self.samples[kind].append(QuantitySample(timestamp, value))
        if notify:
            self.notify(kind)

    def add_interval(self, stage: SleepStage, start: datetime, end: datetime) -> None:
        self.intervals.append(StageInterval(stage, start, end))

    def notify(self, kind: MetricKind) -> None:
        arrival = SampleArrival(kind, self.clock())
        for queue in self._subscribers[kind]:
            queue.put_nowait(arrival)

    # -- RawMetricsProvider --------------------------------------------------

    async def fetch_authorization_status(self) -> bool:
        self.calls["authorization"] += 1
        return self.authorized

    async def fetch_sleep_session(
        self, start: datetime, end: datetime
    ) -> list[StageInterval]:
        self.calls["sleep"] += 1
        return sorted(
            (i for i in self.intervals if i.start < end and i.end > start),
            key=lambda i: i.start,
        )

    async def fetch_quantity_series(
        self, kind: MetricKind, start: datetime, end: datetime
    ) -> list[QuantitySample]:
        self.calls[kind.value] += 1
        return sorted(
            (s for s in self.samples[kind] if start <= s.timestamp < end),
            key=lambda s: s.timestamp,
        )

    async def notify_on_new_sample(self, kind: MetricKind) -> AsyncIterator[SampleArrival]:
        queue: asyncio.Queue[SampleArrival] = asyncio.Queue()
        self._subscribers[kind].append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers[kind].remove(queue)

    @property
    def fetch_count(self) -> int:
        """Data fetches so far, excluding authorization checks."""
        return sum(n for name, n in self.calls.items() if name != "authorization")
