"""Tests for vitalscore.analytics.recovery -- recovery scoring."""

import asyncio
import math

import pytest

from vitalscore.analytics.baseline import BaselineEngine
from vitalscore.analytics.recovery import (
    W_HRV,
    W_RHR,
    W_SLEEP,
    W_STRESS,
    RecoveryInputs,
    RecoveryScoreCalculator,
    StressProxy,
    hrv_score,
    recovery_directive,
    rhr_score,
    score_recovery,
    stress_deviation,
    stress_score,
)
from vitalscore.analytics.sleep import SleepScoreCalculator
from vitalscore.errors import DataUnauthorized, DataUnavailable
from vitalscore.provider import MetricKind

from conftest import (
    DAY,
    MORNING,
    StallingProvider,
    add_day_values,
    add_night,
    fixed_clock,
    seed_history,
)


def _inputs(**overrides):
    values = dict(
        hrv=None,
        hrv_baseline=35.0,
        hrv_baseline_source="default",
        rhr=None,
        rhr_baseline=65.0,
        rhr_baseline_source="default",
        sleep_score=None,
        stress_proxies=(),
    )
    values.update(overrides)
    return RecoveryInputs(**values)


class TestHRVScore:
    def test_baseline_ratio_is_75(self):
        assert hrv_score(1.0) == 75.0

    def test_monotonic_above_baseline(self):
        ratios = [1.0 + i * 0.05 for i in range(60)]
        scores = [hrv_score(r) for r in ratios]
        assert all(b >= a for a, b in zip(scores, scores[1:]))

    def test_below_baseline_is_cubic(self):
        assert hrv_score(0.8) == pytest.approx(75 * 0.8 ** 3)
        assert hrv_score(0.0) == 0.0

    def test_clamped(self):
        assert hrv_score(1e9) == 100.0


class TestRHRScore:
    def test_baseline_ratio_is_75(self):
        assert rhr_score(1.0) == 75.0

    def test_quartic_below_baseline(self):
        for ratio in (0.1, 0.5, 0.9, 0.99):
            score = rhr_score(ratio)
            assert score == pytest.approx(75 * ratio ** 4)
            assert 0 < score < 75

    def test_zero_only_at_zero(self):
        assert rhr_score(0.0) == 0.0
        assert rhr_score(0.01) > 0.0

    def test_lower_rhr_scores_higher(self):
        assert rhr_score(65 / 55) > rhr_score(1.0)


class TestStress:
    def test_deviation_with_multiplier(self):
        assert stress_deviation(16.5, 15.0, 1.5) == pytest.approx(15.0)

    def test_piecewise_map(self):
        assert stress_score(0.0) == 100.0
        assert stress_score(5.0) == 90.0
        assert stress_score(10.0) == 75.0
        assert stress_score(15.0) == 60.0
        assert stress_score(20.0) == pytest.approx(62.5)
        assert stress_score(40.0) == 0.0

    def test_proxies_averaged(self):
        proxies = (
            StressProxy(MetricKind.WALKING_HR, 100.0, 100.0, 1.2),
            StressProxy(MetricKind.SPO2, 97.0 * 0.95, 97.0, 2.0),  # 10% weighted
        )
        result = score_recovery(DAY, _inputs(stress_proxies=proxies))
        assert result.component("Stress Indicators").score == pytest.approx(stress_score(5.0))


class TestScoreRecovery:
    def test_all_neutral_is_50(self):
        result = score_recovery(DAY, _inputs())
        assert result.final_score == 50
        contributions = [c.contribution for c in result.components]
        assert contributions == [25.0, 12.5, 7.5, 5.0]
        assert not any(c.available for c in result.components)

    def test_weights_sum_to_one(self):
        assert W_HRV + W_RHR + W_SLEEP + W_STRESS == pytest.approx(1.0)

    def test_at_baseline(self):
        result = score_recovery(
            DAY,
            _inputs(hrv=50.0, hrv_baseline=50.0, rhr=60.0, rhr_baseline=60.0, sleep_score=94),
        )
        # 37.5 + 18.75 + 14.1 + 5.0
        assert result.final_score == 75

    def test_final_in_range(self):
        for hrv in (0.0, 1.0, 35.0, 500.0):
            for rhr in (30.0, 65.0, 200.0):
                result = score_recovery(
                    DAY, _inputs(hrv=hrv, rhr=rhr, sleep_score=100)
                )
                assert 0 <= result.final_score <= 100
                assert isinstance(result.final_score, int)

    def test_contribution_is_score_times_weight(self):
        result = score_recovery(DAY, _inputs(hrv=40.0, rhr=58.0, sleep_score=80))
        for c in result.components:
            assert c.contribution == pytest.approx(c.score * c.weight)

    def test_description_mentions_baseline(self):
        result = score_recovery(DAY, _inputs(hrv=42.0, hrv_baseline=35.0))
        assert result.component("HRV Recovery").description.endswith("(baseline: 35 ms, +20%)")

    def test_directive_always_present(self):
        result = score_recovery(DAY, _inputs())
        assert result.directive


class TestDirective:
    def test_high_scores(self):
        assert recovery_directive(90, 80, 80, 80, 80).startswith("Primed")
        assert recovery_directive(72, 80, 80, 80, 80).startswith("Good")
        assert recovery_directive(60, 80, 80, 80, 80).startswith("Moderate")

    def test_weakest_signal_order(self):
        assert recovery_directive(40, 50, 50, 40, 50).startswith("Nervous system")
        assert recovery_directive(40, 70, 50, 40, 50).startswith("Elevated cardiovascular")
        assert recovery_directive(40, 70, 70, 40, 50).startswith("Poor sleep")
        assert recovery_directive(40, 70, 70, 60, 50).startswith("Stress indicators")
        assert recovery_directive(40, 70, 70, 60, 90).startswith("Recovery needs attention")


class TestRecoveryScoreCalculator:
    def _calculator(self, provider, store, config):
        engine = BaselineEngine(provider, store, config, clock=fixed_clock(MORNING))
        sleep = SleepScoreCalculator(provider, engine, config)
        return RecoveryScoreCalculator(provider, engine, sleep, config)

    def test_full_inputs(self, provider, store, config):
        seed_history(provider, DAY, days=60)
        add_day_values(provider, DAY)
        add_night(provider, DAY)
        result = asyncio.run(self._calculator(provider, store, config).calculate_recovery_score(DAY))
        assert [round(c.score, 1) for c in result.components] == [75.0, 75.0, 94.0, 100.0]
        # 37.5 + 18.75 + 14.1 + 10.0
        assert result.final_score == 80
        assert result.inputs.hrv_baseline_source == "60-day"
        assert len(result.inputs.stress_proxies) == 3

    def test_default_baselines_without_history(self, provider, store, config):
        add_day_values(provider, DAY, hrv=35.0, rhr=65.0)
        result = asyncio.run(self._calculator(provider, store, config).calculate_recovery_score(DAY))
        assert result.inputs.hrv_baseline == 35.0
        assert result.inputs.rhr_baseline == 65.0
        assert result.component("HRV Recovery").score == 75.0
        assert result.component("Sleep Quality").score == 50.0
        assert result.component("Stress Indicators").score == 50.0

    def test_persisted_baseline_fallback(self, provider, store, config):
        add_day_values(provider, DAY, hrv=40.0)
        calc = self._calculator(provider, store, config)
        calc.baselines.metrics.hrv60 = 40.0
        result = asyncio.run(calc.calculate_recovery_score(DAY))
        assert result.inputs.hrv_baseline == 40.0
        assert result.inputs.hrv_baseline_source == "stored"

    def test_missing_everything_is_neutral(self, provider, store, config):
        result = asyncio.run(self._calculator(provider, store, config).calculate_recovery_score(DAY))
        assert result.final_score == 50

    def test_higher_hrv_improves_score(self, provider, store, config):
        seed_history(provider, DAY, days=60, hrv=40.0)
        add_day_values(provider, DAY, hrv=60.0)
        result = asyncio.run(self._calculator(provider, store, config).calculate_recovery_score(DAY))
        expected = 75 + 35 * (math.log10(1.5 + 0.35) - math.log10(1.35))
        assert result.component("HRV Recovery").score == pytest.approx(expected)

    def test_unauthorized_checked_first(self, provider, store, config):
        provider.authorized = False
        with pytest.raises(DataUnauthorized):
            asyncio.run(self._calculator(provider, store, config).calculate_recovery_score(DAY))
        assert provider.fetch_count == 0
        assert provider.calls["authorization"] == 1

    def test_failed_fetch_degrades_to_neutral(self, provider, store, config):
        add_day_values(provider, DAY)

        async def broken(kind, start, end):
            if kind is MetricKind.HRV:
                raise ConnectionError("store offline")
            return await original(kind, start, end)

        original = provider.fetch_quantity_series
        provider.fetch_quantity_series = broken
        result = asyncio.run(self._calculator(provider, store, config).calculate_recovery_score(DAY))
        hrv = result.component("HRV Recovery")
        assert hrv.score == 50.0
        assert not hrv.available
        assert result.component("RHR Recovery").available

    def test_hrv_timeout_degrades_to_neutral(self, store, fast_config):
        provider = StallingProvider(stall=("hrv",), clock=fixed_clock(MORNING))
        seed_history(provider, DAY, days=60)
        add_day_values(provider, DAY)
        add_night(provider, DAY)
        calc = self._calculator(provider, store, fast_config)
        result = asyncio.run(calc.calculate_recovery_score(DAY))
        hrv = result.component("HRV Recovery")
        assert hrv.available is False
        assert hrv.score == 50.0
        assert result.inputs.hrv is None
        assert result.component("RHR Recovery").score == 75.0
        # 25 + 18.75 + 14.1 + 10
        assert result.final_score == 68

    def test_authorization_timeout_is_unauthorized(self, store, fast_config):
        provider = StallingProvider(stall_auth=True, clock=fixed_clock(MORNING))
        add_day_values(provider, DAY)
        with pytest.raises(DataUnauthorized, match="timed out"):
            asyncio.run(self._calculator(provider, store, fast_config).calculate_recovery_score(DAY))
        assert provider.fetch_count == 0

    def test_authorization_error_surfaces_as_unavailable(self, store, config):
        provider = StallingProvider(
            auth_error=ConnectionError("health store unreachable"), clock=fixed_clock(MORNING)
        )
        with pytest.raises(DataUnavailable) as info:
            asyncio.run(self._calculator(provider, store, config).calculate_recovery_score(DAY))
        assert isinstance(info.value, DataUnauthorized)
        assert "health store unreachable" in str(info.value)
