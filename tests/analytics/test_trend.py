from __future__ import annotations

import math

import pytest

from matchpulse.analytics.configuration import TrendConfig
from matchpulse.analytics.outcomes import OutcomeKind
from matchpulse.analytics.trend import WORST_AIC, TrendExtractor

BREAK_SUFFIX = " [STRUCTURAL BREAK DETECTED - Recalibration needed]"


def _alternating(length: int) -> list[float]:
    return [1.0 + (index % 2) for index in range(length)]


def test_constant_series_has_flat_trend_and_floor_probability() -> None:
    extractor = TrendExtractor()
    series = [1.0] * 12

    signal = extractor.extract_signal(series)
    forecast = extractor.forecast(series)

    assert signal.trend == pytest.approx(0.0)
    assert signal.description == "Attack stable"
    assert signal.structural_break_detected is False
    assert signal.volatility == 0.0
    assert signal.confidence == pytest.approx(1 - 1 / math.sqrt(13))
    assert forecast.predictions == pytest.approx([1.0] * 10)
    assert forecast.lower_bounds == pytest.approx([1.0] * 10)
    assert forecast.next_goal_probability == 0.05
    assert forecast.next_goal_minute == 100
    assert forecast.aic == WORST_AIC
    assert forecast.model_order == "ARIMA(1,1,1)"


def test_linear_series_trend_converges_to_slope() -> None:
    extractor = TrendExtractor()
    series = [float(index) for index in range(60)]

    signal = extractor.extract_signal(series)
    forecast = extractor.forecast(series, horizon=5)

    assert signal.trend == pytest.approx(1.0, abs=1e-3)
    assert signal.description.startswith("Attack increasing")
    assert forecast.horizon == 5
    assert len(forecast.predictions) == 5
    assert all(b > a for a, b in zip(forecast.predictions, forecast.predictions[1:]))
    assert forecast.next_goal_probability == 0.95
    assert forecast.next_goal_minute == 1


def test_short_series_returns_neutral_defaults() -> None:
    extractor = TrendExtractor()
    series = [0.0] * 9

    signal_outcome = extractor.evaluate_signal(series)
    forecast = extractor.forecast(series)

    assert signal_outcome.kind is OutcomeKind.INSUFFICIENT
    assert signal_outcome.value.description == "Insufficient data"
    assert signal_outcome.value.confidence == 0.0
    assert forecast.model_order == "ARIMA(0,0,0)"
    assert forecast.predictions == (0.0,) * 10
    assert forecast.aic == 0.0
    assert extractor.extract_signal(None).trend == 0.0


def test_forecast_bands_are_non_negative_and_widen() -> None:
    extractor = TrendExtractor()
    forecast = extractor.forecast([0.0, 1.0] * 6)

    assert all(lower >= 0.0 for lower in forecast.lower_bounds)
    assert 0.0 in forecast.lower_bounds
    widths = [u - p for u, p in zip(forecast.upper_bounds, forecast.predictions)]
    assert all(b > a for a, b in zip(widths, widths[1:]))


def test_jump_in_recent_window_flags_structural_break() -> None:
    extractor = TrendExtractor()
    baseline = _alternating(20)
    jumped = baseline[:14] + [value + 5.0 for value in baseline[14:]]

    assert extractor.detect_structural_break(baseline) is False
    assert extractor.detect_structural_break(jumped) is True

    signal = extractor.extract_signal(jumped)
    assert signal.structural_break_detected is True
    assert signal.break_magnitude == pytest.approx(5.0)
    assert signal.description.endswith(BREAK_SUFFIX)

    calm = extractor.extract_signal(baseline)
    assert calm.break_magnitude == 0.0
    assert not calm.description.endswith(BREAK_SUFFIX)


def test_zero_variance_never_breaks() -> None:
    assert TrendExtractor().detect_structural_break([2.0] * 15) is False


@pytest.mark.parametrize(("length", "expected"), [(10, 7), (12, 8), (20, 14), (33, 23)])
def test_recent_window_starts_at_seventy_percent(length: int, expected: int) -> None:
    assert TrendExtractor()._split_index(length) == expected


@pytest.mark.parametrize(
    ("percentage", "structural_break", "expected"),
    [
        (3.0, False, "Attack stable"),
        (-4.99, False, "Attack stable"),
        (5.0, False, "Attack increasing 5.0% in trend"),
        (12.34, False, "Attack increasing 12.3% in trend"),
        (-7.0, True, "Attack decreasing 7.0% in trend" + BREAK_SUFFIX),
    ],
)
def test_description_text(percentage: float, structural_break: bool, expected: str) -> None:
    assert TrendExtractor().describe(percentage, structural_break) == expected


def test_aic_sentinel_and_formula() -> None:
    assert TrendExtractor.aic([1.0, 2.0, 3.0]) == WORST_AIC
    assert TrendExtractor.aic([2.0, 2.0, 2.0, 2.0]) == WORST_AIC
    values = [1.0, 2.0, 3.0, 4.0]
    assert TrendExtractor.aic(values) == pytest.approx(4 * math.log(5 / 3) + 6)


def test_non_finite_series_is_degenerate() -> None:
    extractor = TrendExtractor()
    series = [0.0] * 11 + [float("nan")]

    outcome = extractor.evaluate_signal(series)

    assert outcome.kind is OutcomeKind.DEGENERATE
    assert outcome.value.description == "Insufficient data"


def test_configured_horizon_and_threshold() -> None:
    extractor = TrendExtractor(TrendConfig(horizon_minutes=3, min_observations=4))
    forecast = extractor.forecast([0.0, 0.0, 1.0, 1.0])

    assert forecast.horizon == 3
    assert len(forecast.upper_bounds) == 3


@pytest.mark.parametrize(
    ("trend", "expected"),
    [
        (0.4, 3),
        (0.08, 13),
        (0.3, 3),
        (0.0, 100),
        (-0.2, 100),
    ],
)
def test_next_goal_minute_rounds_half_up(trend: float, expected: int) -> None:
    assert TrendExtractor.next_goal_minute(trend) == expected
