"""JSON persistence for baselines, migration flags and per-date score history.

State lives in three small JSON files under one directory. Passing
``path=None`` keeps everything in memory, which is what tests use.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

BASELINES_FILE = "baselines.json"
FLAGS_FILE = "flags.json"
SCORES_FILE = "scores.json"


class ScoreType(str, enum.Enum):
    RECOVERY = "recovery"
    SLEEP = "sleep"


@dataclass(frozen=True)
class ScoreRecord:
    """One persisted score with the inputs and baseline it was computed from."""

    day: date
    score_type: ScoreType
    score: int
    updated_at: datetime
    hrv: float | None = None
    rhr: float | None = None
    hrv60: float | None = None
    rhr60: float | None = None
    sleep_duration90: float | None = None  # seconds

    _VALUE_FIELDS = ("hrv", "rhr", "hrv60", "rhr60", "sleep_duration90")

    @property
    def has_complete_inputs(self) -> bool:
        """Both HRV and resting HR were present when the score was computed."""
        return bool(self.hrv and self.hrv > 0 and self.rhr and self.rhr > 0)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "score": int(self.score),
            "updated_at": self.updated_at.isoformat(),
        }
        for name in self._VALUE_FIELDS:
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        return data

    @classmethod
    def from_dict(cls, day: date, score_type: ScoreType, data: dict[str, Any]) -> ScoreRecord:
        return cls(
            day=day,
            score_type=score_type,
            score=int(data["score"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            **{name: data.get(name) for name in cls._VALUE_FIELDS},
        )


class StateStore:
    """Write-through store: reads once, writes every mutation to disk."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser() if path is not None else None
        self._baselines: dict[str, Any] | None = self._read(BASELINES_FILE) or None
        self._flags: dict[str, bool] = self._read(FLAGS_FILE)
        self._scores: dict[str, dict[str, dict[str, Any]]] = self._read(SCORES_FILE)

    def __repr__(self) -> str:
        where = str(self.path) if self.path else "memory"
        return f"StateStore({where}, scores={len(self._scores)})"

    # -- file helpers --------------------------------------------------------

    def _read(self, name: str) -> dict:
        if self.path is None:
            return {}
        file = self.path / name
        if not file.exists():
            return {}
        try:
            with open(file) as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            logger.warning("ignoring corrupt state file %s: %s", file, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, name: str, data: dict) -> None:
        if self.path is None:
            return
        self.path.mkdir(parents=True, exist_ok=True)
        file = self.path / name
        tmp = file.with_suffix(".tmp")
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        tmp.replace(file)

    # -- baselines -----------------------------------------------------------

    def load_baselines(self) -> dict[str, Any] | None:
        return dict(self._baselines) if self._baselines else None

    def save_baselines(self, values: dict[str, Any]) -> None:
        self._baselines = dict(values)
        self._write(BASELINES_FILE, self._baselines)

    def clear_baselines(self) -> None:
        self._baselines = None
        self._write(BASELINES_FILE, {})

    # -- flags ---------------------------------------------------------------

    def get_flag(self, name: str) -> bool:
        return bool(self._flags.get(name, False))

    def set_flag(self, name: str, value: bool = True) -> None:
        self._flags[name] = value
        self._write(FLAGS_FILE, self._flags)

    # -- per-date score history ----------------------------------------------

    def get_score(
        self, day: date, score_type: ScoreType = ScoreType.RECOVERY
    ) -> ScoreRecord | None:
        entry = self._scores.get(day.isoformat(), {}).get(score_type.value)
        return None if entry is None else ScoreRecord.from_dict(day, score_type, entry)

    def has_score(self, day: date, score_type: ScoreType = ScoreType.RECOVERY) -> bool:
        return score_type.value in self._scores.get(day.isoformat(), {})

    def put_score(self, record: ScoreRecord) -> None:
        """Store ``record``, replacing any earlier one for its day and type."""
        self._scores.setdefault(record.day.isoformat(), {})[record.score_type.value] = (
            record.to_dict()
        )
        self._write(SCORES_FILE, self._scores)

    def pop_score(
        self, day: date, score_type: ScoreType = ScoreType.RECOVERY
    ) -> ScoreRecord | None:
        key = day.isoformat()
        entry = self._scores.get(key, {}).pop(score_type.value, None)
        if entry is None:
            return None
        if not self._scores[key]:
            del self._scores[key]
        self._write(SCORES_FILE, self._scores)
        return ScoreRecord.from_dict(day, score_type, entry)
