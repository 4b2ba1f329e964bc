"""Bayesian momentum estimation from possession swings.

Possession changes are treated like returns: the conjugate-normal update
combines a prior (neutral, or informed by the goal-trend signal) with the
sample mean and variance of the changes.  The posterior mean is the match
drift (positive favours the home side) and its standard deviation the
volatility.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import statistics
from typing import Any, Dict, List, Sequence, SupportsFloat

from .configuration import MomentumConfig
from .outcomes import DegenerateInputError, StageOutcome, run_stage
from .trend import TrendSignal

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class MomentumPrior:
    """Normal prior over the mean possession change."""

    mean: float
    variance: float
    pseudo_count: float
    structural_break: bool = False
    informed: bool = False

    @classmethod
    def neutral(cls, config: MomentumConfig | None = None) -> "MomentumPrior":
        cfg = config or MomentumConfig()
        return cls(
            mean=0.0,
            variance=cfg.prior_variance,
            pseudo_count=cfg.prior_pseudo_count,
        )

    @classmethod
    def from_trend(
        cls, signal: TrendSignal, config: MomentumConfig | None = None
    ) -> "MomentumPrior":
        """Shift and tighten the prior using a goal-trend signal.

        Higher trend confidence narrows the prior variance and gives the
        prior more pseudo-observations relative to the sample.
        """

        cfg = config or MomentumConfig()
        confidence = signal.confidence
        return cls(
            mean=signal.trend * cfg.trend_scale,
            variance=cfg.prior_variance * (2.0 - confidence),
            pseudo_count=cfg.prior_pseudo_count + confidence,
            structural_break=signal.structural_break_detected,
            informed=True,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class MomentumEstimate:
    drift: float
    volatility: float
    confidence: float
    sample_size: int
    prior_mean: float
    prior_variance: float
    posterior_mean: float
    posterior_variance: float

    @classmethod
    def neutral(cls, config: MomentumConfig | None = None) -> "MomentumEstimate":
        cfg = config or MomentumConfig()
        return cls(
            drift=0.0,
            volatility=0.0,
            confidence=0.0,
            sample_size=0,
            prior_mean=0.0,
            prior_variance=cfg.prior_variance,
            posterior_mean=0.0,
            posterior_variance=0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "drift": self.drift,
            "volatility": self.volatility,
            "confidence": self.confidence,
            "sampleSize": self.sample_size,
            "priorMean": self.prior_mean,
            "priorVariance": self.prior_variance,
            "posteriorMean": self.posterior_mean,
            "posteriorVariance": self.posterior_variance,
        }


def possession_changes(series: Sequence[SupportsFloat] | None) -> List[float]:
    """Consecutive possession differences scaled from percent to [-1, 1]."""

    if series is None or len(series) == 0:
        return []
    values = [float(value) for value in series]
    return [(current - previous) / 100.0 for previous, current in zip(values, values[1:])]


class MomentumEstimator:
    """Conjugate-normal estimator over possession changes."""

    def __init__(self, config: MomentumConfig | None = None) -> None:
        self.config = config or MomentumConfig()

    def neutral_prior(self) -> MomentumPrior:
        return MomentumPrior.neutral(self.config)

    def informed_prior(self, signal: TrendSignal) -> MomentumPrior:
        return MomentumPrior.from_trend(signal, self.config)

    def evaluate(
        self,
        possession_series: Sequence[SupportsFloat] | None,
        prior: MomentumPrior | None = None,
    ) -> StageOutcome[MomentumEstimate]:
        observations = 0 if possession_series is None else len(possession_series)
        if observations < self.config.min_observations:
            return StageOutcome.insufficient(
                MomentumEstimate.neutral(self.config),
                f"{observations} possession observations < {self.config.min_observations}",
            )
        return self.evaluate_changes(possession_changes(possession_series), prior)

    def evaluate_changes(
        self,
        changes: Sequence[float],
        prior: MomentumPrior | None = None,
    ) -> StageOutcome[MomentumEstimate]:
        if not changes:
            return StageOutcome.insufficient(
                MomentumEstimate.neutral(self.config), "no possession changes"
            )
        active_prior = prior or self.neutral_prior()

        def compute() -> MomentumEstimate:
            samples = [float(change) for change in changes]
            if not all(math.isfinite(sample) for sample in samples):
                raise DegenerateInputError("possession changes contain non-finite values")
            sample_size = len(samples)
            sample_mean = statistics.fmean(samples)
            sample_variance = statistics.variance(samples) if sample_size > 1 else 0.0

            prior_n = active_prior.pseudo_count
            posterior_n = prior_n + sample_size
            posterior_mean = (
                prior_n * active_prior.mean + sample_size * sample_mean
            ) / posterior_n
            posterior_variance = (
                prior_n * active_prior.variance
                + sample_size * sample_variance
                + (prior_n * sample_size / posterior_n)
                * (sample_mean - active_prior.mean) ** 2
            ) / posterior_n
            if not math.isfinite(posterior_variance) or posterior_variance < 0:
                raise DegenerateInputError("posterior variance is not a finite non-negative value")

            confidence = 1.0 - 1.0 / math.sqrt(sample_size + 1)
            if active_prior.informed and active_prior.structural_break:
                confidence *= self.config.break_confidence_penalty

            logger.info(
                "Bayesian update: prior mean=%.6f, posterior mean=%.6f, confidence=%.4f",
                active_prior.mean,
                posterior_mean,
                confidence,
            )
            return MomentumEstimate(
                drift=posterior_mean,
                volatility=math.sqrt(posterior_variance),
                confidence=confidence,
                sample_size=sample_size,
                prior_mean=active_prior.mean,
                prior_variance=active_prior.variance,
                posterior_mean=posterior_mean,
                posterior_variance=posterior_variance,
            )

        return run_stage(
            "momentum estimate", compute, lambda: MomentumEstimate.neutral(self.config)
        )

    def estimate(
        self,
        possession_series: Sequence[SupportsFloat] | None,
        prior: MomentumPrior | None = None,
    ) -> MomentumEstimate:
        return self.evaluate(possession_series, prior).value

    def estimate_from_changes(
        self, changes: Sequence[float], prior: MomentumPrior | None = None
    ) -> MomentumEstimate:
        return self.evaluate_changes(changes, prior).value

    def analyze(self, possession_series: Sequence[SupportsFloat] | None) -> MomentumEstimate:
        """Estimate momentum with the weakly informative neutral prior."""

        return self.estimate(possession_series, self.neutral_prior())

    def analyze_with_trend(
        self,
        possession_series: Sequence[SupportsFloat] | None,
        signal: TrendSignal,
    ) -> MomentumEstimate:
        return self.estimate(possession_series, self.informed_prior(signal))


__all__ = [
    "MomentumEstimate",
    "MomentumEstimator",
    "MomentumPrior",
    "possession_changes",
]
