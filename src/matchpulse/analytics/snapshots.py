"""Persisted per-match snapshots of the latest combined analysis."""

from __future__ import annotations

import dataclasses
import datetime as dt
import enum
import json
import logging
import os
import sqlite3
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Protocol

from .configuration import PipelineConfig

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .history import HistorySnapshot
    from .pipeline import CombinedResult

logger = logging.getLogger(__name__)

SNAPSHOT_KEY_PREFIX = "latest_match_snapshot:"


class MatchState(str, enum.Enum):
    """Qualitative reading of the momentum drift."""

    HOME_DOMINATING = "HOME_DOMINATING"
    HOME_SLIGHT_ADVANTAGE = "HOME_SLIGHT_ADVANTAGE"
    BALANCED = "BALANCED"
    AWAY_SLIGHT_ADVANTAGE = "AWAY_SLIGHT_ADVANTAGE"
    AWAY_DOMINATING = "AWAY_DOMINATING"

    @classmethod
    def classify(cls, drift: float, config: PipelineConfig | None = None) -> "MatchState":
        cfg = config or PipelineConfig()
        if drift > cfg.dominating_drift:
            return cls.HOME_DOMINATING
        if drift > cfg.slight_advantage_drift:
            return cls.HOME_SLIGHT_ADVANTAGE
        if drift < -cfg.dominating_drift:
            return cls.AWAY_DOMINATING
        if drift < -cfg.slight_advantage_drift:
            return cls.AWAY_SLIGHT_ADVANTAGE
        return cls.BALANCED


@dataclasses.dataclass(frozen=True, slots=True)
class MatchSnapshot:
    """Latest analytical view of one match, as published to consumers."""

    match_id: str
    timestamp: dt.datetime
    home_team: str = ""
    away_team: str = ""
    minute: int | None = None
    status: str | None = None
    home_score: int = 0
    away_score: int = 0
    match_state: MatchState = MatchState.BALANCED
    sample_size: int = 0
    needs_recalibration: bool = False
    integration_confidence: float = 0.0
    trend_signal: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    goal_forecast: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    momentum: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    prediction: Mapping[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_result(
        cls,
        history: "HistorySnapshot",
        result: "CombinedResult",
        config: PipelineConfig | None = None,
        *,
        now: dt.datetime | None = None,
    ) -> "MatchSnapshot":
        latest = history.latest
        return cls(
            match_id=history.match_id,
            timestamp=now or dt.datetime.now(dt.timezone.utc),
            home_team=latest.home_team if latest is not None else "",
            away_team=latest.away_team if latest is not None else "",
            minute=latest.minute if latest is not None else None,
            status=latest.status if latest is not None else None,
            home_score=latest.home_score if latest is not None else 0,
            away_score=latest.away_score if latest is not None else 0,
            match_state=MatchState.classify(result.momentum.drift, config),
            sample_size=len(history),
            needs_recalibration=result.needs_recalibration,
            integration_confidence=result.integration_confidence,
            trend_signal=result.trend_signal.to_dict(),
            goal_forecast=result.forecast.to_dict(),
            momentum=result.momentum.to_dict(),
            prediction=result.outcome.to_dict(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matchId": self.match_id,
            "timestamp": self.timestamp.isoformat(),
            "homeTeam": self.home_team,
            "awayTeam": self.away_team,
            "minute": self.minute,
            "status": self.status,
            "homeScore": self.home_score,
            "awayScore": self.away_score,
            "matchState": self.match_state.value,
            "sampleSize": self.sample_size,
            "needsRecalibration": self.needs_recalibration,
            "integrationConfidence": self.integration_confidence,
            "arimaSignal": dict(self.trend_signal),
            "goalForecast": dict(self.goal_forecast),
            "momentumMetrics": dict(self.momentum),
            "matchPrediction": dict(self.prediction),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "MatchSnapshot":
        return cls(
            match_id=str(payload["matchId"]),
            timestamp=dt.datetime.fromisoformat(str(payload["timestamp"])),
            home_team=str(payload.get("homeTeam") or ""),
            away_team=str(payload.get("awayTeam") or ""),
            minute=payload.get("minute"),
            status=payload.get("status"),
            home_score=int(payload.get("homeScore", 0)),
            away_score=int(payload.get("awayScore", 0)),
            match_state=MatchState(payload.get("matchState", MatchState.BALANCED.value)),
            sample_size=int(payload.get("sampleSize", 0)),
            needs_recalibration=bool(payload.get("needsRecalibration", False)),
            integration_confidence=float(payload.get("integrationConfidence", 0.0)),
            trend_signal=dict(payload.get("arimaSignal") or {}),
            goal_forecast=dict(payload.get("goalForecast") or {}),
            momentum=dict(payload.get("momentumMetrics") or {}),
            prediction=dict(payload.get("matchPrediction") or {}),
        )


class SnapshotRepository(Protocol):
    """Storage port for the latest snapshot of each match."""

    def save(self, snapshot: MatchSnapshot) -> None:
        ...

    def get_latest(self, match_id: str) -> MatchSnapshot | None:
        ...

    def delete(self, match_id: str) -> None:
        ...

    def match_ids(self) -> List[str]:
        ...


class InMemorySnapshotRepository:
    """Process-local repository used by tests and offline replays."""

    def __init__(self) -> None:
        self._snapshots: Dict[str, MatchSnapshot] = {}
        self._lock = threading.Lock()

    def save(self, snapshot: MatchSnapshot) -> None:
        with self._lock:
            self._snapshots[snapshot.match_id] = snapshot

    def get_latest(self, match_id: str) -> MatchSnapshot | None:
        with self._lock:
            return self._snapshots.get(match_id)

    def delete(self, match_id: str) -> None:
        with self._lock:
            self._snapshots.pop(match_id, None)

    def match_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._snapshots)


class SQLiteSnapshotRepository:
    """Key/value snapshot store backed by a sqlite file."""

    def __init__(self, storage_path: str | os.PathLike[str]) -> None:
        self.storage_path = Path(storage_path)
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @staticmethod
    def key(match_id: str) -> str:
        return f"{SNAPSHOT_KEY_PREFIX}{match_id}"

    def _init_db(self) -> None:
        with sqlite3.connect(self.storage_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS match_snapshots (
                    key TEXT PRIMARY KEY,
                    match_id TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def save(self, snapshot: MatchSnapshot) -> None:
        payload = json.dumps(snapshot.to_dict(), sort_keys=True)
        with sqlite3.connect(self.storage_path) as conn:
            conn.execute(
                """
                INSERT INTO match_snapshots(key, match_id, payload, updated_at)
                VALUES(?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    payload=excluded.payload,
                    updated_at=excluded.updated_at
                """,
                (
                    self.key(snapshot.match_id),
                    snapshot.match_id,
                    payload,
                    snapshot.timestamp.isoformat(),
                ),
            )
            conn.commit()
        logger.debug("Stored snapshot for match %s", snapshot.match_id)

    def get_latest(self, match_id: str) -> MatchSnapshot | None:
        with sqlite3.connect(self.storage_path) as conn:
            row = conn.execute(
                "SELECT payload FROM match_snapshots WHERE key = ?",
                (self.key(match_id),),
            ).fetchone()
        if row is None:
            return None
        return MatchSnapshot.from_dict(json.loads(row[0]))

    def delete(self, match_id: str) -> None:
        with sqlite3.connect(self.storage_path) as conn:
            conn.execute("DELETE FROM match_snapshots WHERE key = ?", (self.key(match_id),))
            conn.commit()

    def match_ids(self) -> List[str]:
        with sqlite3.connect(self.storage_path) as conn:
            rows = conn.execute(
                "SELECT match_id FROM match_snapshots ORDER BY match_id"
            ).fetchall()
        return [row[0] for row in rows]


__all__ = [
    "InMemorySnapshotRepository",
    "MatchSnapshot",
    "MatchState",
    "SNAPSHOT_KEY_PREFIX",
    "SQLiteSnapshotRepository",
    "SnapshotRepository",
]
