"""Goal-trend extraction, forecasting and structural-break detection.

The extractor runs a restricted Holt (double exponential smoothing) model
over a cumulative-goal series.  The smoothed trend feeds the Bayesian
momentum prior, and a CUSUM chart over the most recent observations flags
abrupt regime changes that warrant recalibration downstream.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import statistics
import sys
from typing import Any, Dict, List, Sequence, SupportsFloat, Tuple

from .configuration import TrendConfig
from .outcomes import DegenerateInputError, StageOutcome, run_stage

logger = logging.getLogger(__name__)

WORST_AIC = sys.float_info.max
NEXT_GOAL_FLOOR = 0.05
NEXT_GOAL_CEILING = 0.95
MIN_GOAL_RATE = 0.01
MODEL_PARAMETERS = 3
BREAK_ANNOTATION = " [STRUCTURAL BREAK DETECTED - Recalibration needed]"


@dataclasses.dataclass(frozen=True, slots=True)
class TrendSignal:
    """Trend summary exported to the momentum prior."""

    trend: float
    trend_percentage: float
    structural_break_detected: bool
    break_magnitude: float
    confidence: float
    volatility: float
    description: str

    @classmethod
    def neutral(cls) -> "TrendSignal":
        return cls(
            trend=0.0,
            trend_percentage=0.0,
            structural_break_detected=False,
            break_magnitude=0.0,
            confidence=0.0,
            volatility=0.0,
            description="Insufficient data",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trend": self.trend,
            "trendPercentage": self.trend_percentage,
            "structuralBreakDetected": self.structural_break_detected,
            "breakMagnitude": self.break_magnitude,
            "confidence": self.confidence,
            "volatility": self.volatility,
            "description": self.description,
        }


@dataclasses.dataclass(frozen=True, slots=True)
class GoalForecast:
    """Multi-step cumulative-goal forecast with 95% bands."""

    predictions: Tuple[float, ...]
    lower_bounds: Tuple[float, ...]
    upper_bounds: Tuple[float, ...]
    horizon: int
    model_order: str
    aic: float
    next_goal_probability: float
    next_goal_minute: int
    confidence: float
    next_goal_team: str = "UNKNOWN"

    @classmethod
    def neutral(cls, horizon: int) -> "GoalForecast":
        zeros = tuple(0.0 for _ in range(max(0, horizon)))
        return cls(
            predictions=zeros,
            lower_bounds=zeros,
            upper_bounds=zeros,
            horizon=horizon,
            model_order="ARIMA(0,0,0)",
            aic=0.0,
            next_goal_probability=0.0,
            next_goal_minute=0,
            confidence=0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predictions": list(self.predictions),
            "confidenceIntervalLower": list(self.lower_bounds),
            "confidenceIntervalUpper": list(self.upper_bounds),
            "horizon": self.horizon,
            "modelOrder": self.model_order,
            "aic": self.aic,
            "nextGoalProbability": self.next_goal_probability,
            "nextGoalTeam": self.next_goal_team,
            "nextGoalMinute": self.next_goal_minute,
            "confidence": self.confidence,
        }


def _as_floats(series: Sequence[SupportsFloat] | None) -> List[float]:
    if series is None:
        return []
    return [float(value) for value in series]


def _check_finite(values: Sequence[float]) -> None:
    if not all(math.isfinite(value) for value in values):
        raise DegenerateInputError("series contains non-finite values")


class TrendExtractor:
    """Holt smoothing with CUSUM structural-break detection."""

    def __init__(self, config: TrendConfig | None = None) -> None:
        self.config = config or TrendConfig()

    # -- smoothing ----------------------------------------------------------

    def smooth(self, values: Sequence[float]) -> Tuple[float, float]:
        """Return the final ``(level, trend)`` of the smoothed series."""

        alpha = self.config.alpha
        beta = self.config.beta
        level = values[0]
        trend = (values[-1] - values[0]) / len(values)
        for value in values[1:]:
            previous_level = level
            level = alpha * value + (1.0 - alpha) * (level + trend)
            trend = beta * (level - previous_level) + (1.0 - beta) * trend
        return level, trend

    def _split_index(self, length: int) -> int:
        # rounding strips float noise from e.g. 10 * (1 - 0.3)
        return int(round(length * (1.0 - self.config.break_window_fraction), 9))

    def detect_structural_break(self, values: Sequence[float]) -> bool:
        """CUSUM over the recent window against whole-series statistics."""

        if len(values) < self.config.min_observations:
            return False
        mean = statistics.fmean(values)
        std_dev = statistics.stdev(values)
        if std_dev == 0:
            return False
        threshold = self.config.cusum_threshold_sigma * std_dev
        cusum_pos = 0.0
        cusum_neg = 0.0
        for index in range(self._split_index(len(values)), len(values)):
            deviation = values[index] - mean
            cusum_pos = max(0.0, cusum_pos + deviation)
            cusum_neg = min(0.0, cusum_neg + deviation)
            if abs(cusum_pos) > threshold or abs(cusum_neg) > threshold:
                logger.warning(
                    "Structural break detected at index %d (CUSUM: pos=%.4f, neg=%.4f)",
                    index,
                    cusum_pos,
                    cusum_neg,
                )
                return True
        return False

    def break_magnitude(self, values: Sequence[float]) -> float:
        split = self._split_index(len(values))
        before = values[:split]
        after = values[split:]
        if not before or not after:
            return 0.0
        return abs(statistics.fmean(after) - statistics.fmean(before))

    def describe(self, trend_percentage: float, structural_break: bool) -> str:
        if abs(trend_percentage) < self.config.stable_band_percent:
            text = "Attack stable"
        elif trend_percentage > 0:
            text = f"Attack increasing {trend_percentage:.1f}% in trend"
        else:
            text = f"Attack decreasing {abs(trend_percentage):.1f}% in trend"
        if structural_break:
            text += BREAK_ANNOTATION
        return text

    @staticmethod
    def next_goal_minute(trend: float) -> int:
        """Expected minutes until the next goal, rounded half up."""

        return int(math.floor(1.0 / max(MIN_GOAL_RATE, trend) + 0.5))

    @staticmethod
    def aic(values: Sequence[float], parameters: int = MODEL_PARAMETERS) -> float:
        """Simplified Akaike information criterion of the series."""

        n = len(values)
        if n <= parameters:
            return WORST_AIC
        variance = statistics.variance(values)
        if variance <= 0:
            return WORST_AIC
        return n * math.log(variance) + 2 * parameters

    # -- public API ---------------------------------------------------------

    def evaluate_forecast(
        self, series: Sequence[SupportsFloat] | None, horizon: int | None = None
    ) -> StageOutcome[GoalForecast]:
        steps = self.config.horizon_minutes if horizon is None else int(horizon)
        values = _as_floats(series)
        if len(values) < self.config.min_observations:
            return StageOutcome.insufficient(
                GoalForecast.neutral(steps),
                f"{len(values)} observations < {self.config.min_observations}",
            )

        def compute() -> GoalForecast:
            _check_finite(values)
            level, trend = self.smooth(values)
            std_error = statistics.stdev(values)
            predictions: List[float] = []
            lower: List[float] = []
            upper: List[float] = []
            for step in range(1, steps + 1):
                point = level + step * trend
                margin = self.config.z_score * std_error * math.sqrt(step)
                predictions.append(point)
                lower.append(max(0.0, point - margin))
                upper.append(point + margin)
            probability = min(NEXT_GOAL_CEILING, max(NEXT_GOAL_FLOOR, trend * steps))
            return GoalForecast(
                predictions=tuple(predictions),
                lower_bounds=tuple(lower),
                upper_bounds=tuple(upper),
                horizon=steps,
                model_order="ARIMA(1,1,1)",
                aic=self.aic(values),
                next_goal_probability=probability,
                next_goal_minute=self.next_goal_minute(trend),
                confidence=1.0 - 1.0 / math.sqrt(len(values) + 1),
            )

        return run_stage("goal forecast", compute, lambda: GoalForecast.neutral(steps))

    def evaluate_signal(
        self, series: Sequence[SupportsFloat] | None
    ) -> StageOutcome[TrendSignal]:
        values = _as_floats(series)
        if len(values) < self.config.min_observations:
            return StageOutcome.insufficient(
                TrendSignal.neutral(),
                f"{len(values)} observations < {self.config.min_observations}",
            )

        def compute() -> TrendSignal:
            _check_finite(values)
            _, trend = self.smooth(values)
            structural_break = self.detect_structural_break(values)
            magnitude = self.break_magnitude(values) if structural_break else 0.0
            trend_percentage = trend / self.config.base_goal_rate * 100.0
            description = self.describe(trend_percentage, structural_break)
            logger.info("Trend signal: %s", description)
            return TrendSignal(
                trend=trend,
                trend_percentage=trend_percentage,
                structural_break_detected=structural_break,
                break_magnitude=magnitude,
                confidence=1.0 - 1.0 / math.sqrt(len(values) + 1),
                volatility=statistics.stdev(values),
                description=description,
            )

        return run_stage("trend signal", compute, TrendSignal.neutral)

    def forecast(
        self, series: Sequence[SupportsFloat] | None, horizon: int | None = None
    ) -> GoalForecast:
        return self.evaluate_forecast(series, horizon).value

    def extract_signal(self, series: Sequence[SupportsFloat] | None) -> TrendSignal:
        return self.evaluate_signal(series).value


__all__ = ["GoalForecast", "TrendExtractor", "TrendSignal", "WORST_AIC"]
