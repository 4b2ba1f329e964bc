from __future__ import annotations

import datetime as dt
from typing import Any, List, Mapping, Tuple

import pytest

from matchpulse.analytics.configuration import SimulationConfig
from matchpulse.analytics.history import HistoryRegistry, MatchEvent
from matchpulse.analytics.pipeline import ABCPipeline
from matchpulse.analytics.simulation import OutcomeSimulator
from matchpulse.analytics.trend import TrendSignal

KICKOFF = dt.datetime(2024, 8, 17, 14, 0, tzinfo=dt.timezone.utc)


class RecordingSink:
    def __init__(self) -> None:
        self.messages: List[Tuple[str, str, Mapping[str, Any] | None]] = []

    def send(self, subject: str, body: str, *, metadata=None) -> None:
        self.messages.append((subject, body, metadata))


def make_signal(
    trend: float = 0.0,
    confidence: float = 0.0,
    *,
    structural_break: bool = False,
) -> TrendSignal:
    return TrendSignal(
        trend=trend,
        trend_percentage=trend / 0.03 * 100.0,
        structural_break_detected=structural_break,
        break_magnitude=0.0,
        confidence=confidence,
        volatility=0.0,
        description="test signal",
    )


def make_events(
    match_id: str = "ARS-CHE",
    count: int = 20,
    *,
    start_minute: int = 1,
    home_goal_minutes: Tuple[int, ...] = (),
    away_goal_minutes: Tuple[int, ...] = (),
    possession_start: float = 50.0,
    possession_step: float = 0.0,
) -> List[MatchEvent]:
    events: List[MatchEvent] = []
    for index in range(count):
        minute = start_minute + index
        events.append(
            MatchEvent(
                match_id=match_id,
                minute=minute,
                home_score=sum(1 for goal in home_goal_minutes if goal <= minute),
                away_score=sum(1 for goal in away_goal_minutes if goal <= minute),
                possession=possession_start + possession_step * index,
                home_team="Arsenal",
                away_team="Chelsea",
                status="1H" if minute <= 45 else "2H",
                timestamp=KICKOFF + dt.timedelta(minutes=minute),
            )
        )
    return events


@pytest.fixture()
def seeded_simulator() -> OutcomeSimulator:
    return OutcomeSimulator(SimulationConfig(iterations=2_000, seed=11))


@pytest.fixture()
def pipeline(seeded_simulator: OutcomeSimulator) -> ABCPipeline:
    return ABCPipeline(outcome_simulator=seeded_simulator)


@pytest.fixture()
def registry() -> HistoryRegistry:
    return HistoryRegistry()


@pytest.fixture()
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def event_factory():
    return make_events


@pytest.fixture()
def signal_factory():
    return make_signal
