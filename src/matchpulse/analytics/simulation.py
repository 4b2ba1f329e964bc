"""Monte Carlo simulation of the remaining match time."""

from __future__ import annotations

import collections
import dataclasses
import logging
import math
from typing import Any, Dict, List, Tuple

import numpy as np

from .configuration import SimulationConfig
from .outcomes import DegenerateInputError, StageOutcome, run_stage

logger = logging.getLogger(__name__)

PERCENTILE_LEVELS: Tuple[int, ...] = (5, 25, 50, 75, 95)
TOP_SCORE_LIMIT = 5


@dataclasses.dataclass(frozen=True, slots=True)
class ScoreProbability:
    score: str
    probability: float

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "probability": self.probability}


@dataclasses.dataclass(frozen=True, slots=True)
class GoalPercentile:
    level: int
    total_goals: float

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level, "totalGoals": self.total_goals}


@dataclasses.dataclass(frozen=True, slots=True)
class OutcomeDistribution:
    """Aggregated final-score distribution over all simulated runs."""

    simulation_count: int
    probability_home_win: float
    probability_draw: float
    probability_away_win: float
    expected_final_score: str
    top_scores: Tuple[ScoreProbability, ...]
    probability_additional_goal: float
    expected_total_goals: float
    probability_comeback: float
    probability_hold_lead: float
    goal_count_percentiles: Tuple[GoalPercentile, ...]

    @classmethod
    def neutral(cls, simulation_count: int = 0) -> "OutcomeDistribution":
        return cls(
            simulation_count=simulation_count,
            probability_home_win=0.33,
            probability_draw=0.34,
            probability_away_win=0.33,
            expected_final_score="0-0",
            top_scores=(),
            probability_additional_goal=0.5,
            expected_total_goals=0.0,
            probability_comeback=0.0,
            probability_hold_lead=0.0,
            goal_count_percentiles=(),
        )

    def percentile(self, level: int) -> float:
        for entry in self.goal_count_percentiles:
            if entry.level == level:
                return entry.total_goals
        raise KeyError(f"Percentile level {level} not simulated")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "simulations": self.simulation_count,
            "probabilityHomeWin": self.probability_home_win,
            "probabilityDraw": self.probability_draw,
            "probabilityAwayWin": self.probability_away_win,
            "expectedFinalScore": self.expected_final_score,
            "mostLikelyScores": [entry.to_dict() for entry in self.top_scores],
            "probabilityMoreGoals": self.probability_additional_goal,
            "expectedTotalGoals": self.expected_total_goals,
            "probabilityComeback": self.probability_comeback,
            "probabilityHoldLead": self.probability_hold_lead,
            "percentiles": [entry.to_dict() for entry in self.goal_count_percentiles],
        }


class OutcomeSimulator:
    """Sample remaining goals from momentum-adjusted Poisson processes.

    ``drift`` shifts the per-minute base rate towards the home side
    (``rate * (1 + drift)``) and away from the visitors
    (``rate * (1 - drift)``).  The ``volatility`` argument is accepted so the
    simulator mirrors the momentum estimate, but it does not enter the rate
    model.
    """

    def __init__(self, config: SimulationConfig | None = None, *, seed: int | None = None) -> None:
        self.config = config or SimulationConfig()
        self.seed = seed if seed is not None else self.config.seed

    def _generator(self) -> np.random.Generator:
        # a fresh generator per call keeps seeded runs reproducible and
        # avoids sharing generator state across worker threads
        return np.random.default_rng(self.seed)

    def goal_rates(self, drift: float) -> Tuple[float, float]:
        base = self.config.base_goal_rate
        return max(0.0, base * (1.0 + drift)), max(0.0, base * (1.0 - drift))

    def evaluate(
        self,
        home_score: int,
        away_score: int,
        drift: float,
        volatility: float = 0.0,
        simulation_count: int | None = None,
        minutes_remaining: float | None = None,
    ) -> StageOutcome[OutcomeDistribution]:
        del volatility  # not part of the rate model
        count = self.config.iterations if simulation_count is None else int(simulation_count)
        minutes = (
            self.config.default_horizon_minutes
            if minutes_remaining is None
            else max(0.0, float(minutes_remaining))
        )
        if count <= 0:
            return StageOutcome.degenerate(
                OutcomeDistribution.neutral(max(0, count)), "no simulations requested"
            )

        def compute() -> OutcomeDistribution:
            if not math.isfinite(drift) or not math.isfinite(minutes):
                raise DegenerateInputError("drift and minutes remaining must be finite")
            home_rate, away_rate = self.goal_rates(drift)
            rng = self._generator()
            home_goals = rng.poisson(home_rate * minutes, size=count)
            away_goals = rng.poisson(away_rate * minutes, size=count)
            return self._aggregate(int(home_score), int(away_score), home_goals, away_goals)

        outcome = run_stage(
            "outcome simulation", compute, lambda: OutcomeDistribution.neutral(count)
        )
        if outcome.ok:
            value = outcome.value
            logger.info(
                "Monte Carlo: P(Home)=%.4f, P(Draw)=%.4f, P(Away)=%.4f",
                value.probability_home_win,
                value.probability_draw,
                value.probability_away_win,
            )
        return outcome

    def simulate(
        self,
        home_score: int,
        away_score: int,
        drift: float,
        volatility: float = 0.0,
        simulation_count: int | None = None,
        minutes_remaining: float | None = None,
    ) -> OutcomeDistribution:
        return self.evaluate(
            home_score,
            away_score,
            drift,
            volatility,
            simulation_count,
            minutes_remaining,
        ).value

    @staticmethod
    def _aggregate(
        home_score: int,
        away_score: int,
        home_goals: np.ndarray,
        away_goals: np.ndarray,
    ) -> OutcomeDistribution:
        count = int(home_goals.shape[0])
        final_home = home_goals + home_score
        final_away = away_goals + away_score

        home_wins = int(np.count_nonzero(final_home > final_away))
        away_wins = int(np.count_nonzero(final_home < final_away))
        draws = count - home_wins - away_wins
        added = home_goals + away_goals
        more_goals = int(np.count_nonzero(added > 0))

        # Counter keeps first-seen order, so equal counts rank by first appearance
        frequencies: collections.Counter[str] = collections.Counter(
            f"{home}-{away}" for home, away in zip(final_home.tolist(), final_away.tolist())
        )
        top_scores = tuple(
            ScoreProbability(score=score, probability=occurrences / count)
            for score, occurrences in frequencies.most_common(TOP_SCORE_LIMIT)
        )
        expected_final_score = (
            top_scores[0].score if top_scores else f"{home_score}-{away_score}"
        )

        totals: List[int] = sorted((final_home + final_away).tolist())
        percentiles = tuple(
            GoalPercentile(level=level, total_goals=float(totals[count * level // 100]))
            for level in PERCENTILE_LEVELS
        )

        probability_home_win = home_wins / count
        comeback = probability_home_win if home_score < away_score else 0.0
        hold_lead = probability_home_win if home_score > away_score else 0.0

        return OutcomeDistribution(
            simulation_count=count,
            probability_home_win=probability_home_win,
            probability_draw=draws / count,
            probability_away_win=away_wins / count,
            expected_final_score=expected_final_score,
            top_scores=top_scores,
            probability_additional_goal=more_goals / count,
            expected_total_goals=home_score + away_score + float(np.mean(added)),
            probability_comeback=comeback,
            probability_hold_lead=hold_lead,
            goal_count_percentiles=percentiles,
        )


__all__ = [
    "GoalPercentile",
    "OutcomeDistribution",
    "OutcomeSimulator",
    "PERCENTILE_LEVELS",
    "ScoreProbability",
]
