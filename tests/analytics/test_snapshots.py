from __future__ import annotations

import datetime as dt
import sqlite3
from pathlib import Path

import pytest

from matchpulse.analytics.configuration import PipelineConfig
from matchpulse.analytics.history import HistorySnapshot
from matchpulse.analytics.pipeline import ABCPipeline
from matchpulse.analytics.snapshots import (
    InMemorySnapshotRepository,
    MatchSnapshot,
    MatchState,
    SQLiteSnapshotRepository,
)

NOW = dt.datetime(2024, 8, 17, 15, 30, tzinfo=dt.timezone.utc)


@pytest.mark.parametrize(
    ("drift", "expected"),
    [
        (0.25, MatchState.HOME_DOMINATING),
        (0.10, MatchState.HOME_SLIGHT_ADVANTAGE),
        (0.05, MatchState.HOME_SLIGHT_ADVANTAGE),
        (0.03, MatchState.BALANCED),
        (0.0, MatchState.BALANCED),
        (-0.03, MatchState.BALANCED),
        (-0.031, MatchState.AWAY_SLIGHT_ADVANTAGE),
        (-0.10, MatchState.AWAY_SLIGHT_ADVANTAGE),
        (-0.2, MatchState.AWAY_DOMINATING),
    ],
)
def test_match_state_thresholds(drift: float, expected: MatchState) -> None:
    assert MatchState.classify(drift) is expected


def test_match_state_thresholds_are_configurable() -> None:
    config = PipelineConfig(dominating_drift=0.5, slight_advantage_drift=0.2)
    assert MatchState.classify(0.25, config) is MatchState.HOME_SLIGHT_ADVANTAGE
    assert MatchState.classify(0.15, config) is MatchState.BALANCED


@pytest.fixture()
def snapshot(pipeline: ABCPipeline, event_factory) -> MatchSnapshot:
    events = event_factory(count=30, home_goal_minutes=(12,), possession_step=0.5)
    history = HistorySnapshot("ARS-CHE", tuple(events))
    result = pipeline.analyze_snapshot(history)
    return MatchSnapshot.from_result(history, result, pipeline.config, now=NOW)


def test_snapshot_from_result_copies_match_header(snapshot: MatchSnapshot) -> None:
    assert snapshot.match_id == "ARS-CHE"
    assert (snapshot.home_team, snapshot.away_team) == ("Arsenal", "Chelsea")
    assert snapshot.minute == 30
    assert (snapshot.home_score, snapshot.away_score) == (1, 0)
    assert snapshot.sample_size == 30
    assert snapshot.timestamp == NOW
    assert snapshot.prediction["simulations"] == 2_000
    assert "description" in snapshot.trend_signal


def test_snapshot_dict_round_trip(snapshot: MatchSnapshot) -> None:
    restored = MatchSnapshot.from_dict(snapshot.to_dict())
    assert restored.to_dict() == snapshot.to_dict()
    assert restored.match_state is snapshot.match_state


def test_in_memory_repository(snapshot: MatchSnapshot) -> None:
    repository = InMemorySnapshotRepository()
    assert repository.get_latest("ARS-CHE") is None

    repository.save(snapshot)
    assert repository.get_latest("ARS-CHE") is snapshot
    assert repository.match_ids() == ["ARS-CHE"]

    repository.delete("ARS-CHE")
    assert repository.match_ids() == []


def test_sqlite_repository_keeps_latest_snapshot(tmp_path: Path, snapshot: MatchSnapshot) -> None:
    path = tmp_path / "nested" / "snapshots.sqlite3"
    repository = SQLiteSnapshotRepository(path)

    repository.save(snapshot)
    later = MatchSnapshot.from_dict(
        {**snapshot.to_dict(), "minute": 31, "timestamp": (NOW + dt.timedelta(seconds=15)).isoformat()}
    )
    repository.save(later)

    stored = repository.get_latest("ARS-CHE")
    assert stored is not None
    assert stored.minute == 31
    assert stored.to_dict() == later.to_dict()
    assert repository.match_ids() == ["ARS-CHE"]

    with sqlite3.connect(path) as conn:
        keys = [row[0] for row in conn.execute("SELECT key FROM match_snapshots")]
    assert keys == ["latest_match_snapshot:ARS-CHE"]

    reopened = SQLiteSnapshotRepository(path)
    assert reopened.get_latest("ARS-CHE") is not None
    reopened.delete("ARS-CHE")
    assert reopened.get_latest("ARS-CHE") is None
