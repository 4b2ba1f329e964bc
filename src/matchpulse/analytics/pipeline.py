"""Integrated trend → Bayes → Monte Carlo analysis.

Flow per invocation:

1. the trend extractor smooths the cumulative-goal series and checks for
   structural breaks,
2. the momentum estimator updates a trend-informed prior with the
   possession swings,
3. the outcome simulator samples the remaining minutes using the posterior
   drift,
4. a structural break or excessive volatility raises the recalibration flag.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from typing import TYPE_CHECKING, Any, Dict, Mapping, Sequence, SupportsFloat

from .configuration import AnalyticsConfig, PipelineConfig
from .momentum import MomentumEstimate, MomentumEstimator
from .outcomes import OutcomeKind, StageOutcome
from .simulation import OutcomeDistribution, OutcomeSimulator
from .trend import GoalForecast, TrendExtractor, TrendSignal

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .history import HistorySnapshot

logger = logging.getLogger(__name__)

STAGES = ("trend", "forecast", "momentum", "outcome")


@dataclasses.dataclass(frozen=True, slots=True)
class PipelineDiagnostics:
    """How each stage produced its value during one analysis."""

    stages: Mapping[str, OutcomeKind]
    reasons: Mapping[str, str] = dataclasses.field(default_factory=dict)
    errors: Mapping[str, BaseException] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_outcomes(cls, outcomes: Mapping[str, StageOutcome[Any]]) -> "PipelineDiagnostics":
        return cls(
            stages={name: outcome.kind for name, outcome in outcomes.items()},
            reasons={name: outcome.reason for name, outcome in outcomes.items() if outcome.reason},
            errors={
                name: outcome.error
                for name, outcome in outcomes.items()
                if outcome.error is not None
            },
        )

    @property
    def unexpected(self) -> bool:
        return any(kind is OutcomeKind.UNEXPECTED for kind in self.stages.values())

    @property
    def fallback_stages(self) -> list[str]:
        return [name for name, kind in self.stages.items() if kind is not OutcomeKind.OK]

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {name: kind.value for name, kind in self.stages.items()}
        if self.reasons:
            payload["reasons"] = dict(self.reasons)
        return payload


@dataclasses.dataclass(frozen=True, slots=True)
class CombinedResult:
    trend_signal: TrendSignal
    forecast: GoalForecast
    momentum: MomentumEstimate
    outcome: OutcomeDistribution
    needs_recalibration: bool
    integration_confidence: float
    diagnostics: PipelineDiagnostics | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "arimaSignal": self.trend_signal.to_dict(),
            "goalForecast": self.forecast.to_dict(),
            "momentumMetrics": self.momentum.to_dict(),
            "matchPrediction": self.outcome.to_dict(),
            "needsRecalibration": self.needs_recalibration,
            "integrationConfidence": self.integration_confidence,
        }
        if self.diagnostics is not None:
            payload["diagnostics"] = self.diagnostics.to_dict()
        return payload


class ABCPipeline:
    """Chain the three analytical stages for a single match."""

    def __init__(
        self,
        trend_extractor: TrendExtractor | None = None,
        momentum_estimator: MomentumEstimator | None = None,
        outcome_simulator: OutcomeSimulator | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        self.trend_extractor = trend_extractor or TrendExtractor()
        self.momentum_estimator = momentum_estimator or MomentumEstimator()
        self.outcome_simulator = outcome_simulator or OutcomeSimulator()
        self.config = config or PipelineConfig()

    @classmethod
    def from_config(cls, config: AnalyticsConfig) -> "ABCPipeline":
        return cls(
            TrendExtractor(config.trend),
            MomentumEstimator(config.momentum),
            OutcomeSimulator(config.simulation),
            config.pipeline,
        )

    # -- integration rules ----------------------------------------------------

    def needs_recalibration(self, signal: TrendSignal, momentum: MomentumEstimate) -> bool:
        return (
            signal.structural_break_detected
            or momentum.volatility > self.config.volatility_threshold
        )

    def integration_confidence(self, signal: TrendSignal, momentum: MomentumEstimate) -> float:
        """Geometric mean of stage confidences, penalised during breaks."""

        stability = (
            self.config.break_stability_factor if signal.structural_break_detected else 1.0
        )
        product = max(0.0, signal.confidence) * max(0.0, momentum.confidence)
        combined = math.sqrt(product) * stability
        if not math.isfinite(combined):
            return 0.0
        return min(1.0, max(0.0, combined))

    # -- analysis -------------------------------------------------------------

    def evaluate(
        self,
        possession_series: Sequence[SupportsFloat] | None,
        goal_series: Sequence[SupportsFloat] | None,
        home_score: int,
        away_score: int,
        minutes_remaining: float,
    ) -> CombinedResult:
        """Run all stages and attach per-stage diagnostics."""

        logger.debug(
            "Starting analysis: possession=%d, goals=%d, minutes remaining=%s",
            0 if possession_series is None else len(possession_series),
            0 if goal_series is None else len(goal_series),
            minutes_remaining,
        )
        signal_outcome = self.trend_extractor.evaluate_signal(goal_series)
        forecast_outcome = self.trend_extractor.evaluate_forecast(goal_series)
        signal = signal_outcome.value

        prior = self.momentum_estimator.informed_prior(signal)
        momentum_outcome = self.momentum_estimator.evaluate(possession_series, prior)
        momentum = momentum_outcome.value

        outcome_result = self.outcome_simulator.evaluate(
            home_score,
            away_score,
            momentum.drift,
            momentum.volatility,
            self.outcome_simulator.config.iterations,
            minutes_remaining,
        )

        recalibrate = self.needs_recalibration(signal, momentum)
        if recalibrate:
            logger.warning(
                "Recalibration recommended: break=%s, high volatility=%s",
                signal.structural_break_detected,
                momentum.volatility > self.config.volatility_threshold,
            )

        diagnostics = PipelineDiagnostics.from_outcomes(
            dict(
                zip(
                    STAGES,
                    (signal_outcome, forecast_outcome, momentum_outcome, outcome_result),
                )
            )
        )
        return CombinedResult(
            trend_signal=signal,
            forecast=forecast_outcome.value,
            momentum=momentum,
            outcome=outcome_result.value,
            needs_recalibration=recalibrate,
            integration_confidence=self.integration_confidence(signal, momentum),
            diagnostics=diagnostics,
        )

    def analyze(
        self,
        possession_series: Sequence[SupportsFloat] | None,
        goal_series: Sequence[SupportsFloat] | None,
        home_score: int,
        away_score: int,
        minutes_remaining: float,
    ) -> CombinedResult:
        """Return a structurally valid result for any input; never raises."""

        try:
            return self.evaluate(
                possession_series, goal_series, home_score, away_score, minutes_remaining
            )
        except Exception as exc:
            logger.exception("Combined analysis failed; substituting neutral result")
            return self.neutral_result(exc)

    def analyze_snapshot(
        self, snapshot: "HistorySnapshot", match_length: int | None = None
    ) -> CombinedResult:
        latest = snapshot.latest
        length = self.config.match_length_minutes if match_length is None else match_length
        return self.analyze(
            snapshot.possession_series(),
            snapshot.goal_series(),
            latest.home_score if latest is not None else 0,
            latest.away_score if latest is not None else 0,
            snapshot.minutes_remaining(length),
        )

    def neutral_result(self, error: BaseException | None = None) -> CombinedResult:
        kind = OutcomeKind.UNEXPECTED if error is not None else OutcomeKind.INSUFFICIENT
        diagnostics = PipelineDiagnostics(
            stages={name: kind for name in STAGES},
            errors={"pipeline": error} if error is not None else {},
        )
        return CombinedResult(
            trend_signal=TrendSignal.neutral(),
            forecast=GoalForecast.neutral(self.trend_extractor.config.horizon_minutes),
            momentum=MomentumEstimate.neutral(self.momentum_estimator.config),
            outcome=OutcomeDistribution.neutral(self.outcome_simulator.config.iterations),
            needs_recalibration=False,
            integration_confidence=0.0,
            diagnostics=diagnostics,
        )


__all__ = ["ABCPipeline", "CombinedResult", "PipelineDiagnostics", "STAGES"]
