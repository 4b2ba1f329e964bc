from __future__ import annotations

import math

import pytest

from matchpulse.analytics.configuration import AnalyticsConfig, SimulationConfig
from matchpulse.analytics.history import HistorySnapshot
from matchpulse.analytics.momentum import MomentumEstimate
from matchpulse.analytics.outcomes import OutcomeKind
from matchpulse.analytics.pipeline import STAGES, ABCPipeline
from matchpulse.analytics.simulation import OutcomeSimulator
from matchpulse.analytics.trend import TrendExtractor


def _momentum(volatility: float = 0.0, confidence: float = 0.5) -> MomentumEstimate:
    return MomentumEstimate(
        drift=0.0,
        volatility=volatility,
        confidence=confidence,
        sample_size=10,
        prior_mean=0.0,
        prior_variance=0.01,
        posterior_mean=0.0,
        posterior_variance=volatility**2,
    )


class ExplodingTrendExtractor(TrendExtractor):
    def smooth(self, values):
        raise RuntimeError("smoothing exploded")


class ExplodingPipeline(ABCPipeline):
    def evaluate(self, *args, **kwargs):
        raise RuntimeError("pipeline exploded")


GOALS = [0.0] * 12 + [1.0] * 8 + [2.0] * 5
POSSESSION = [50.0, 52.0, 55.0, 53.0, 57.0, 60.0, 58.0, 61.0, 63.0, 62.0, 64.0]


@pytest.mark.parametrize(
    ("volatility", "structural_break", "expected"),
    [
        (0.15, False, False),
        (0.1500001, False, True),
        (0.01, True, True),
        (0.0, False, False),
    ],
)
def test_recalibration_rule(
    signal_factory, volatility: float, structural_break: bool, expected: bool
) -> None:
    signal = signal_factory(confidence=0.5, structural_break=structural_break)
    assert ABCPipeline().needs_recalibration(signal, _momentum(volatility)) is expected


def test_integration_confidence_geometric_mean(signal_factory) -> None:
    pipeline = ABCPipeline()
    calm = pipeline.integration_confidence(signal_factory(confidence=0.64), _momentum(confidence=0.81))
    broken = pipeline.integration_confidence(
        signal_factory(confidence=0.64, structural_break=True), _momentum(confidence=0.81)
    )

    assert calm == pytest.approx(math.sqrt(0.64 * 0.81))
    assert broken == pytest.approx(calm * 0.7)
    assert pipeline.integration_confidence(signal_factory(confidence=0.0), _momentum()) == 0.0


def test_analyze_runs_all_stages(pipeline: ABCPipeline) -> None:
    result = pipeline.analyze(POSSESSION, GOALS, 2, 0, 25)

    assert result.diagnostics is not None
    assert result.diagnostics.stages == {name: OutcomeKind.OK for name in STAGES}
    assert result.outcome.simulation_count == 2_000
    assert result.forecast.horizon == 10
    assert result.momentum.sample_size == len(POSSESSION) - 1
    assert 0.0 <= result.integration_confidence <= math.sqrt(
        result.trend_signal.confidence * result.momentum.confidence
    )
    assert result.needs_recalibration is (
        result.trend_signal.structural_break_detected or result.momentum.volatility > 0.15
    )


def test_trend_prior_feeds_momentum(pipeline: ABCPipeline) -> None:
    result = pipeline.analyze(POSSESSION, GOALS, 2, 0, 25)
    expected_prior = pipeline.momentum_estimator.informed_prior(result.trend_signal)
    assert result.momentum.prior_mean == pytest.approx(expected_prior.mean)


def test_short_histories_fall_back_without_raising(pipeline: ABCPipeline) -> None:
    result = pipeline.analyze([50.0], [0.0, 0.0], 0, 0, 80)

    assert result.diagnostics is not None
    assert result.diagnostics.stages["trend"] is OutcomeKind.INSUFFICIENT
    assert result.diagnostics.stages["momentum"] is OutcomeKind.INSUFFICIENT
    assert result.diagnostics.stages["outcome"] is OutcomeKind.OK
    assert result.trend_signal.description == "Insufficient data"
    assert result.integration_confidence == 0.0
    assert result.needs_recalibration is False


def test_unexpected_stage_failure_is_tagged(seeded_simulator: OutcomeSimulator) -> None:
    pipeline = ABCPipeline(ExplodingTrendExtractor(), outcome_simulator=seeded_simulator)

    result = pipeline.analyze(POSSESSION, GOALS, 1, 1, 30)

    assert result.diagnostics is not None
    assert result.diagnostics.unexpected is True
    assert isinstance(result.diagnostics.errors["trend"], RuntimeError)
    assert result.diagnostics.stages["momentum"] is OutcomeKind.OK
    assert result.trend_signal.confidence == 0.0


def test_analyze_never_raises() -> None:
    result = ExplodingPipeline().analyze(POSSESSION, GOALS, 0, 0, 45)

    assert result.integration_confidence == 0.0
    assert result.outcome.expected_final_score == "0-0"
    assert result.diagnostics is not None
    assert set(result.diagnostics.stages.values()) == {OutcomeKind.UNEXPECTED}
    assert "pipeline" in result.diagnostics.errors


def test_seeded_pipeline_is_deterministic() -> None:
    config = AnalyticsConfig(simulation=SimulationConfig(iterations=1_500, seed=99))
    first = ABCPipeline.from_config(config).analyze(POSSESSION, GOALS, 1, 0, 40)
    second = ABCPipeline.from_config(config).analyze(POSSESSION, GOALS, 1, 0, 40)

    assert first.trend_signal == second.trend_signal
    assert first.momentum == second.momentum
    assert first.outcome == second.outcome
    assert first.to_dict() == second.to_dict()


def test_analyze_snapshot_derives_inputs(pipeline: ABCPipeline, event_factory) -> None:
    events = event_factory(count=60, home_goal_minutes=(20,), possession_step=0.2)
    snapshot = HistorySnapshot("ARS-CHE", tuple(events))

    result = pipeline.analyze_snapshot(snapshot)
    direct = pipeline.analyze(
        snapshot.possession_series(), snapshot.goal_series(), 1, 0, 30
    )

    assert result.trend_signal == direct.trend_signal
    assert result.momentum == direct.momentum
    assert result.outcome == direct.outcome


def test_combined_result_to_dict_keys(pipeline: ABCPipeline) -> None:
    payload = pipeline.analyze(POSSESSION, GOALS, 0, 0, 45).to_dict()
    assert set(payload) == {
        "arimaSignal",
        "goalForecast",
        "momentumMetrics",
        "matchPrediction",
        "needsRecalibration",
        "integrationConfidence",
        "diagnostics",
    }
    assert payload["diagnostics"]["trend"] == "ok"
