"""Tests for vitalscore.replay -- JSONL parsing and the ReplayProvider."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime

import pytest

from vitalscore.provider import MetricKind, SleepStage
from vitalscore.replay import ReplayProvider, parse_record, read_records

from conftest import DAY, add_day_values, add_night, at, write_jsonl


# ===================================================================
# Record parsing
# ===================================================================


class TestParseRecord:
    def test_quantity_record(self):
        kind, sample = parse_record(
            {"kind": "hrv", "timestamp": "2026-10-14T06:30:00", "value": 48.2}
        )
        assert kind is MetricKind.HRV
        assert sample.timestamp == datetime(2026, 10, 14, 6, 30)
        assert sample.value == 48.2

    def test_sleep_record(self):
        kind, stage = parse_record({
            "kind": "sleep",
            "stage": "rem",
            "start": "2026-10-14T03:00:00",
            "end": "2026-10-14T03:45:00",
        })
        assert kind is None
        assert stage.stage is SleepStage.REM
        assert stage.duration == 45 * 60

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            parse_record({"kind": "steps", "timestamp": "2026-10-14T06:30:00", "value": 1})

    def test_missing_field(self):
        with pytest.raises(KeyError):
            parse_record({"kind": "hrv", "value": 1})


class TestReadRecords:
    def test_bad_lines_skipped(self, tmp_path):
        """Invalid JSON and malformed records are logged and skipped."""
        f = tmp_path / "export.jsonl"
        f.write_text(
            "not json\n"
            "\n"
            + json.dumps({"kind": "steps", "timestamp": "2026-10-14T06:30:00", "value": 3}) + "\n"
            + json.dumps({"kind": "resting_hr", "timestamp": "2026-10-14T06:30:00", "value": 58}) + "\n"
        )
        records = list(read_records(f))
        assert len(records) == 1
        assert records[0][0] is MetricKind.RESTING_HR


# ===================================================================
# ReplayProvider
# ===================================================================


class TestReplayProvider:
    def test_round_trip_through_export(self, tmp_path, provider):
        add_day_values(provider, DAY)
        add_night(provider, DAY)
        f = write_jsonl(tmp_path / "export.jsonl", provider)

        loaded = ReplayProvider.from_jsonl(f)
        assert len(loaded.samples[MetricKind.HRV]) == 1
        assert len(loaded.intervals) == len(provider.intervals)

    def test_quantity_window_half_open(self, provider):
        provider.add_sample(MetricKind.HRV, at(DAY, 0), 40.0)
        provider.add_sample(MetricKind.HRV, at(DAY, 23, 59), 41.0)
        provider.add_sample(MetricKind.HRV, at(DAY, 12), 42.0)
        samples = asyncio.run(
            provider.fetch_quantity_series(MetricKind.HRV, at(DAY, 0), at(DAY, 23, 59))
        )
        assert [s.value for s in samples] == [40.0, 42.0]

    def test_sleep_overlap(self, provider):
        provider.add_interval(SleepStage.CORE, at(DAY, 11), at(DAY, 13))
        provider.add_interval(SleepStage.CORE, at(DAY, 13), at(DAY, 14))
        intervals = asyncio.run(provider.fetch_sleep_session(at(DAY, 0), at(DAY, 12)))
        assert len(intervals) == 1

    def test_calls_counted(self, provider):
        asyncio.run(provider.fetch_authorization_status())
        asyncio.run(provider.fetch_quantity_series(MetricKind.SPO2, at(DAY, 0), at(DAY, 1)))
        assert provider.calls["authorization"] == 1
        assert provider.fetch_count == 1

    def test_notifications_reach_subscribers(self, provider):
        async def scenario():
            stream = provider.notify_on_new_sample(MetricKind.HRV)
            pending = asyncio.ensure_future(stream.__anext__())
            await asyncio.sleep(0)
            provider.add_sample(MetricKind.RESTING_HR, at(DAY, 7), 60.0, notify=True)
            provider.add_sample(MetricKind.HRV, at(DAY, 7), 50.0, notify=True)
            arrival = await asyncio.wait_for(pending, timeout=1)
            await stream.aclose()
            return arrival

        arrival = asyncio.run(scenario())
        assert arrival.kind is MetricKind.HRV
