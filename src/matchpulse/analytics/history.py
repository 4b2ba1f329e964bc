"""Per-match event histories and the snapshots the pipeline reads."""

from __future__ import annotations

import dataclasses
import datetime as dt
import json
import logging
import threading
from pathlib import Path
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Sequence,
    SupportsFloat,
    SupportsInt,
    SupportsIndex,
    Tuple,
)

import polars as pl

logger = logging.getLogger(__name__)

# camelCase wire names used by the ingestion feed
_FIELD_ALIASES: Mapping[str, str] = {
    "matchId": "match_id",
    "homeScore": "home_score",
    "awayScore": "away_score",
    "homeTeam": "home_team",
    "awayTeam": "away_team",
    "shotsOnTarget": "shots_on_target",
    "expectedGoals": "expected_goals",
}


def _coerce_int(value: object | None, field: str, default: int | None = None) -> int | None:
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        return default if not stripped else int(float(stripped))
    if isinstance(value, (SupportsInt, SupportsIndex)):
        return int(value)
    raise TypeError(
        f"Field {field} expected int-compatible value, got {type(value).__name__}"
    )


def _coerce_float(value: object | None, field: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip().rstrip("%")
        return None if not stripped else float(stripped)
    if isinstance(value, SupportsFloat):
        return float(value)
    raise TypeError(
        f"Field {field} expected float-compatible value, got {type(value).__name__}"
    )


def _coerce_timestamp(value: object | None) -> dt.datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value if value.tzinfo else value.replace(tzinfo=dt.timezone.utc)
    if isinstance(value, (int, float)):
        return dt.datetime.fromtimestamp(float(value), tz=dt.timezone.utc)
    text = str(value).replace("Z", "+00:00")
    parsed = dt.datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=dt.timezone.utc)


@dataclasses.dataclass(frozen=True, slots=True)
class MatchEvent:
    """A single telemetry tick from a live match."""

    match_id: str
    home_score: int
    away_score: int
    minute: int | None = None
    possession: float | None = None
    home_team: str = ""
    away_team: str = ""
    status: str | None = None
    timestamp: dt.datetime | None = None
    shots: int | None = None
    shots_on_target: int | None = None
    corners: int | None = None
    expected_goals: float | None = None

    @property
    def total_goals(self) -> int:
        return self.home_score + self.away_score

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "MatchEvent":
        """Decode a feed payload using either camelCase or snake_case keys."""

        values: Dict[str, Any] = {}
        for key, value in payload.items():
            values[_FIELD_ALIASES.get(key, key)] = value
        match_id = values.get("match_id")
        if match_id is None or str(match_id).strip() == "":
            raise TypeError("Missing required field match_id")
        return cls(
            match_id=str(match_id),
            home_score=_coerce_int(values.get("home_score"), "home_score", 0) or 0,
            away_score=_coerce_int(values.get("away_score"), "away_score", 0) or 0,
            minute=_coerce_int(values.get("minute"), "minute"),
            possession=_coerce_float(values.get("possession"), "possession"),
            home_team=str(values.get("home_team") or ""),
            away_team=str(values.get("away_team") or ""),
            status=None if values.get("status") is None else str(values["status"]),
            timestamp=_coerce_timestamp(values.get("timestamp")),
            shots=_coerce_int(values.get("shots"), "shots"),
            shots_on_target=_coerce_int(values.get("shots_on_target"), "shots_on_target"),
            corners=_coerce_int(values.get("corners"), "corners"),
            expected_goals=_coerce_float(values.get("expected_goals"), "expected_goals"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matchId": self.match_id,
            "timestamp": None if self.timestamp is None else self.timestamp.isoformat(),
            "minute": self.minute,
            "status": self.status,
            "homeScore": self.home_score,
            "awayScore": self.away_score,
            "homeTeam": self.home_team,
            "awayTeam": self.away_team,
            "possession": self.possession,
            "shots": self.shots,
            "shotsOnTarget": self.shots_on_target,
            "corners": self.corners,
            "expectedGoals": self.expected_goals,
        }


@dataclasses.dataclass(frozen=True, slots=True)
class HistorySnapshot:
    """Immutable view of a match history fixed at the start of a tick."""

    match_id: str
    events: Tuple[MatchEvent, ...]

    def __len__(self) -> int:
        return len(self.events)

    @property
    def latest(self) -> MatchEvent | None:
        return self.events[-1] if self.events else None

    def possession_series(self) -> List[float]:
        return [event.possession for event in self.events if event.possession is not None]

    def goal_series(self) -> List[float]:
        return [float(event.total_goals) for event in self.events]

    def minutes_remaining(self, match_length: int = 90) -> int:
        latest = self.latest
        minute = latest.minute if latest is not None and latest.minute is not None else 0
        return max(0, match_length - minute)

    def to_frame(self) -> pl.DataFrame:
        return events_to_frame(self.events)


class MatchHistory:
    """Append-only, chronologically ordered event buffer for one match."""

    def __init__(self, match_id: str) -> None:
        self.match_id = match_id
        self._events: List[MatchEvent] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._events)

    def append(self, event: MatchEvent) -> None:
        if event.match_id != self.match_id:
            raise ValueError(
                f"Event for match {event.match_id} appended to history of {self.match_id}"
            )
        with self._lock:
            if self._events:
                previous = self._events[-1].minute
                if (
                    previous is not None
                    and event.minute is not None
                    and event.minute < previous
                ):
                    logger.debug(
                        "Dropping out-of-order event for %s (minute %s < %s)",
                        self.match_id,
                        event.minute,
                        previous,
                    )
                    return
            self._events.append(event)

    def snapshot(self) -> HistorySnapshot:
        with self._lock:
            return HistorySnapshot(self.match_id, tuple(self._events))


class HistoryRegistry:
    """Arena of per-match histories keyed by match identifier."""

    def __init__(self) -> None:
        self._histories: Dict[str, MatchHistory] = {}
        self._lock = threading.Lock()

    def __contains__(self, match_id: object) -> bool:
        return match_id in self._histories

    def match_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._histories)

    def _history_locked(self, match_id: str) -> MatchHistory:
        history = self._histories.get(match_id)
        if history is None:
            history = MatchHistory(match_id)
            self._histories[match_id] = history
        return history

    def history(self, match_id: str) -> MatchHistory:
        with self._lock:
            return self._history_locked(match_id)

    def record(self, event: MatchEvent | Mapping[str, Any]) -> MatchEvent:
        """Append an ingested event to its match history."""

        if not isinstance(event, MatchEvent):
            event = MatchEvent.from_mapping(event)
        # appends and retain/discard are serialised on the registry lock
        with self._lock:
            self._history_locked(event.match_id).append(event)
        return event

    def record_many(self, events: Iterable[MatchEvent | Mapping[str, Any]]) -> int:
        count = 0
        for event in events:
            self.record(event)
            count += 1
        return count

    def snapshot(self, match_id: str) -> HistorySnapshot:
        with self._lock:
            history = self._histories.get(match_id)
        if history is None:
            return HistorySnapshot(match_id, ())
        return history.snapshot()

    def discard(self, match_id: str) -> None:
        with self._lock:
            self._histories.pop(match_id, None)

    def retain(self, match_ids: Iterable[str]) -> None:
        keep = set(match_ids)
        with self._lock:
            for match_id in list(self._histories):
                if match_id not in keep:
                    del self._histories[match_id]

    def clear(self) -> None:
        with self._lock:
            self._histories.clear()


def events_to_frame(events: Sequence[MatchEvent]) -> pl.DataFrame:
    """Convert events into a Polars DataFrame with snake_case columns."""

    return pl.DataFrame([dataclasses.asdict(event) for event in events])


def load_events(path: str | Path) -> List[MatchEvent]:
    """Load a recorded event log from CSV, Parquet, JSON or JSON lines."""

    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(source)
    suffix = source.suffix.lower()
    if suffix == ".csv":
        rows = pl.read_csv(source).to_dicts()
    elif suffix == ".parquet":
        rows = pl.read_parquet(source).to_dicts()
    elif suffix in {".jsonl", ".ndjson"}:
        rows = pl.read_ndjson(source).to_dicts()
    elif suffix == ".json":
        payload = json.loads(source.read_text(encoding="utf-8"))
        if isinstance(payload, Mapping):
            payload = payload.get("events", [])
        if not isinstance(payload, list):
            raise TypeError(f"Event log at {source} must be a list of events")
        rows = payload
    else:
        raise ValueError(f"Unsupported event log format: {source.suffix}")
    events = [MatchEvent.from_mapping(row) for row in rows]
    logger.debug("Loaded %d events from %s", len(events), source)
    return events


__all__ = [
    "HistoryRegistry",
    "HistorySnapshot",
    "MatchEvent",
    "MatchHistory",
    "events_to_frame",
    "load_events",
]
