"""FastAPI application exposing the latest match snapshots."""

from __future__ import annotations

from ..snapshots import SnapshotRepository

try:  # pragma: no cover - optional dependency import guard
    from fastapi import Depends, FastAPI, HTTPException
except ModuleNotFoundError:  # pragma: no cover - handled in create_api_app
    Depends = None  # type: ignore[assignment]
    FastAPI = None  # type: ignore[assignment]
    HTTPException = None  # type: ignore[assignment]


def create_api_app(repository: SnapshotRepository) -> "FastAPI":
    """Return a FastAPI app serving stored snapshots as JSON."""

    if FastAPI is None:  # pragma: no cover - protective runtime guard
        raise RuntimeError(
            "fastapi is required for the snapshot API. Install with 'pip install matchpulse[web]'."
        )

    app = FastAPI(title="Matchpulse API")

    def _repository() -> SnapshotRepository:
        return repository

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/matches")
    def matches(store: SnapshotRepository = Depends(_repository)) -> list[dict[str, object]]:
        summaries: list[dict[str, object]] = []
        for match_id in store.match_ids():
            snapshot = store.get_latest(match_id)
            if snapshot is None:
                continue
            summaries.append(
                {
                    "matchId": snapshot.match_id,
                    "homeTeam": snapshot.home_team,
                    "awayTeam": snapshot.away_team,
                    "minute": snapshot.minute,
                    "homeScore": snapshot.home_score,
                    "awayScore": snapshot.away_score,
                    "matchState": snapshot.match_state.value,
                    "needsRecalibration": snapshot.needs_recalibration,
                    "timestamp": snapshot.timestamp.isoformat(),
                }
            )
        return summaries

    @app.get("/matches/{match_id}")
    def match_detail(
        match_id: str, store: SnapshotRepository = Depends(_repository)
    ) -> dict[str, object]:
        snapshot = store.get_latest(match_id)
        if snapshot is None:
            raise HTTPException(status_code=404, detail=f"No snapshot for match {match_id}")
        return snapshot.to_dict()

    return app
