"""Exceptions raised by the scoring pipeline."""

from __future__ import annotations

from datetime import date


class ScoreError(Exception):
    """Base class for all scoring failures."""


class DataUnavailable(ScoreError):
    """The raw-data provider is absent or refused access.

    Fatal for the whole call; never retried automatically.
    """


class DataUnauthorized(DataUnavailable):
    """Authorization was denied before any per-component fetch."""


class NoSleepData(ScoreError):
    """No qualifying sleep session exists for the requested night."""

    def __init__(self, day: date, reason: str = "no sleep session") -> None:
        self.day = day
        self.reason = reason
        super().__init__(f"{reason} for {day.isoformat()}")


class MissingMetric(ScoreError):
    """A single enrichment fetch produced nothing.

    Never fatal: the owning component falls back to its neutral value.
    """

    def __init__(self, metric: str, detail: str = "no samples") -> None:
        self.metric = metric
        self.detail = detail
        super().__init__(f"{metric}: {detail}")
