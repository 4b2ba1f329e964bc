"""Asynchronous scheduler and the per-match analysis service it drives."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import random
import threading
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from typing import Any, Dict, List

from .alerts import AlertManager
from .history import HistoryRegistry, HistorySnapshot, MatchEvent
from .pipeline import ABCPipeline
from .snapshots import InMemorySnapshotRepository, MatchSnapshot, SnapshotRepository

logger = logging.getLogger(__name__)


AsyncCallable = Callable[[], Awaitable[Any]]


@dataclasses.dataclass(slots=True)
class ScheduledJob:
    """Representation of a coroutine executed at an interval."""

    name: str | None
    action: AsyncCallable
    interval: float
    jitter: float = 0.0
    retries: int = 0
    retry_backoff: float = 2.0

    async def run(self, stop_event: asyncio.Event) -> None:
        """Execute ``action`` until ``stop_event`` is set."""

        attempt = 0
        while not stop_event.is_set():
            try:
                await self.action()
                attempt = 0
            except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
                raise
            except Exception:
                attempt += 1
                logger.exception("Scheduled job %s failed", self.name)
                if attempt <= self.retries:
                    backoff = max(0.0, self.retry_backoff) * attempt
                    try:
                        await asyncio.wait_for(stop_event.wait(), timeout=backoff)
                        return
                    except asyncio.TimeoutError:
                        continue
                attempt = 0
            delay = max(0.0, self.interval)
            if delay == 0:
                await asyncio.sleep(0)
                continue
            if self.jitter:
                delay = max(0.0, delay + random.uniform(-self.jitter, self.jitter))
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
                return
            except asyncio.TimeoutError:
                continue


class Scheduler:
    """Manage a collection of scheduled asynchronous jobs."""

    def __init__(self) -> None:
        self._jobs: list[ScheduledJob] = []
        self._tasks: list[asyncio.Task[Any]] = []
        self._stop_event = asyncio.Event()

    async def __aenter__(self) -> "Scheduler":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: Any,
    ) -> None:
        del exc_type, exc, traceback
        await self.shutdown()

    @property
    def jobs(self) -> Sequence[ScheduledJob]:
        """Return a snapshot of registered jobs."""

        return tuple(self._jobs)

    def add_job(
        self,
        action: AsyncCallable,
        *,
        interval: float,
        jitter: float = 0.0,
        retries: int = 0,
        retry_backoff: float = 2.0,
        name: str | None = None,
    ) -> ScheduledJob:
        job_name = name or getattr(action, "__name__", "scheduled-job")
        job = ScheduledJob(
            name=job_name,
            action=action,
            interval=interval,
            jitter=jitter,
            retries=retries,
            retry_backoff=retry_backoff,
        )
        self._jobs.append(job)
        return job

    def stop(self) -> None:
        """Signal all jobs to cease execution."""

        self._stop_event.set()

    async def run(self) -> None:
        """Run until ``stop`` is called or all jobs finish."""

        if not self._jobs:
            return
        loop = asyncio.get_running_loop()
        self._stop_event.clear()
        self._tasks = [
            loop.create_task(job.run(self._stop_event), name=job.name)
            for job in self._jobs
        ]
        stop_task = loop.create_task(self._stop_event.wait(), name="scheduler-stop")
        try:
            await asyncio.wait(
                [stop_task, *self._tasks],
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stop_task
            await self.shutdown()

    async def shutdown(self) -> None:
        """Cancel running jobs and wait for them to exit."""

        if not self._tasks:
            return
        for task in self._tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()


class AnalysisService:
    """Recompute and publish the combined analysis of every tracked match.

    Each tick snapshots the history of every tracked match and runs the
    pipeline for each one as an independent task, with the numerical work
    offloaded to a worker thread.  A match whose previous run has not yet
    finished is skipped rather than queued, so at most one analysis per
    match is ever in flight.
    """

    def __init__(
        self,
        pipeline: ABCPipeline | None = None,
        *,
        registry: HistoryRegistry | None = None,
        repository: SnapshotRepository | None = None,
        alert_manager: AlertManager | None = None,
        min_events: int = 10,
        match_length_minutes: int | None = None,
    ) -> None:
        self.pipeline = pipeline or ABCPipeline()
        self.registry = registry or HistoryRegistry()
        self.repository: SnapshotRepository = repository or InMemorySnapshotRepository()
        self.alert_manager = alert_manager
        self.min_events = min_events
        self.match_length_minutes = (
            self.pipeline.config.match_length_minutes
            if match_length_minutes is None
            else match_length_minutes
        )
        self._active: set[str] | None = None
        self._in_flight: set[str] = set()
        self._metrics: Dict[str, int] = {
            "ticks": 0,
            "analyses": 0,
            "skipped_in_flight": 0,
            "skipped_insufficient": 0,
            "unexpected_failures": 0,
        }
        self._metrics_lock = threading.Lock()

    @property
    def metrics(self) -> Mapping[str, int]:
        with self._metrics_lock:
            return dict(self._metrics)

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    def _increment(self, name: str) -> None:
        # analyze_match runs on worker threads
        with self._metrics_lock:
            self._metrics[name] += 1

    # -- match selection ------------------------------------------------------

    def set_active_matches(self, match_ids: Iterable[str]) -> None:
        """Replace the tracked set; histories of dropped matches are released."""

        active = {str(match_id) for match_id in match_ids}
        dropped = [match_id for match_id in self.registry.match_ids() if match_id not in active]
        self._active = active
        self.registry.retain(active)
        if dropped:
            logger.info("Stopped tracking matches: %s", ", ".join(dropped))

    def tracked_matches(self) -> List[str]:
        if self._active is None:
            return self.registry.match_ids()
        return sorted(self._active)

    def record(self, event: MatchEvent | Mapping[str, Any]) -> MatchEvent | None:
        """Append an ingested event unless its match is not being tracked."""

        if not isinstance(event, MatchEvent):
            event = MatchEvent.from_mapping(event)
        if self._active is not None and event.match_id not in self._active:
            logger.debug("Ignoring event for untracked match %s", event.match_id)
            return None
        return self.registry.record(event)

    def record_many(self, events: Iterable[MatchEvent | Mapping[str, Any]]) -> int:
        return sum(1 for event in events if self.record(event) is not None)

    # -- analysis -------------------------------------------------------------

    def analyze_match(self, history: HistorySnapshot) -> MatchSnapshot:
        """Run the pipeline for one history snapshot and publish the result."""

        result = self.pipeline.analyze_snapshot(history, self.match_length_minutes)
        snapshot = MatchSnapshot.from_result(history, result, self.pipeline.config)
        self.repository.save(snapshot)

        diagnostics = result.diagnostics
        if diagnostics is not None and diagnostics.unexpected:
            self._increment("unexpected_failures")
            if self.alert_manager is not None:
                self.alert_manager.notify_unexpected_failure(
                    history.match_id, diagnostics.errors
                )
        if self.alert_manager is not None:
            self.alert_manager.notify_recalibration_needed(snapshot)

        logger.info(
            "Snapshot %s: minute=%s score=%d-%d state=%s confidence=%.3f",
            snapshot.match_id,
            snapshot.minute,
            snapshot.home_score,
            snapshot.away_score,
            snapshot.match_state.value,
            snapshot.integration_confidence,
        )
        return snapshot

    async def _run_match(self, history: HistorySnapshot) -> MatchSnapshot | None:
        try:
            snapshot = await asyncio.to_thread(self.analyze_match, history)
        except Exception as exc:
            logger.exception("Analysis of match %s failed", history.match_id)
            self._increment("unexpected_failures")
            if self.alert_manager is not None:
                self.alert_manager.notify_unexpected_failure(
                    history.match_id, {"service": exc}
                )
            return None
        finally:
            self._in_flight.discard(history.match_id)
        self._increment("analyses")
        return snapshot

    async def run_tick(self) -> List[MatchSnapshot]:
        """Analyse every tracked match with enough history."""

        self._increment("ticks")
        tasks: list[asyncio.Task[MatchSnapshot | None]] = []
        for match_id in self.tracked_matches():
            if match_id in self._in_flight:
                self._increment("skipped_in_flight")
                logger.debug("Skipping match %s; previous analysis still running", match_id)
                continue
            history = self.registry.snapshot(match_id)
            if len(history) < self.min_events:
                self._increment("skipped_insufficient")
                logger.debug(
                    "Skipping match %s; %d events < %d", match_id, len(history), self.min_events
                )
                continue
            self._in_flight.add(match_id)
            tasks.append(asyncio.create_task(self._run_match(history), name=f"analysis-{match_id}"))
        if not tasks:
            return []
        results = await asyncio.gather(*tasks)
        return [snapshot for snapshot in results if snapshot is not None]

    def schedule(
        self,
        scheduler: Scheduler,
        *,
        interval: float = 15.0,
        jitter: float = 0.0,
        retries: int = 0,
        retry_backoff: float = 2.0,
    ) -> ScheduledJob:
        return scheduler.add_job(
            self.run_tick,
            interval=interval,
            jitter=jitter,
            retries=retries,
            retry_backoff=retry_backoff,
            name="match-analysis",
        )


__all__ = [
    "AnalysisService",
    "ScheduledJob",
    "Scheduler",
]
