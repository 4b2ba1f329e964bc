"""Alert routing for analysis failures and recalibration notices."""
from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import random
import signal
import threading
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .snapshots import MatchSnapshot


logger = logging.getLogger(__name__)


class AlertSink(Protocol):
    """Protocol describing a sink that can emit alert messages."""

    def send(self, subject: str, body: str, *, metadata: Mapping[str, Any] | None = None) -> None:
        """Send a formatted alert message."""


def _default_slack_transport(url: str, payload: bytes) -> None:
    from urllib import request

    req = request.Request(url, data=payload, headers={"Content-Type": "application/json"})
    with request.urlopen(req, timeout=10) as response:  # pragma: no branch - tiny wrapper
        response.read()


@dataclasses.dataclass(slots=True)
class SlackAlertSink:
    """Post alerts to a Slack webhook."""

    webhook_url: str
    transport: Callable[[str, bytes], None] = _default_slack_transport

    def send(
        self, subject: str, body: str, *, metadata: Mapping[str, Any] | None = None
    ) -> None:
        payload: dict[str, Any] = {"text": f"*{subject}*\n{body}"}
        if metadata:
            payload["metadata"] = dict(metadata)
        try:
            self.transport(self.webhook_url, json.dumps(payload, default=str).encode("utf-8"))
        except Exception:  # pragma: no cover - logging side effect
            logger.exception("Failed to send Slack alert")


@dataclasses.dataclass(slots=True)
class LoggingAlertSink:
    """Write alerts to a logger; the fallback when no webhook is configured."""

    log: logging.Logger = dataclasses.field(default_factory=lambda: logger)
    level: int = logging.WARNING

    def send(
        self, subject: str, body: str, *, metadata: Mapping[str, Any] | None = None
    ) -> None:
        if metadata:
            meta = ", ".join(f"{key}={value}" for key, value in metadata.items())
            self.log.log(self.level, "%s: %s (%s)", subject, body, meta)
        else:
            self.log.log(self.level, "%s: %s", subject, body)


@dataclasses.dataclass(slots=True)
class AlertManager:
    """Dispatch alert notifications to configured sinks."""

    sinks: Sequence[AlertSink]
    jitter_seconds: float = 0.0
    notify_recalibration: bool = False

    def send(
        self, subject: str, body: str, *, metadata: Mapping[str, Any] | None = None
    ) -> None:
        if not self.sinks:
            return
        delay = 0.0
        if self.jitter_seconds:
            delay = random.uniform(0.0, self.jitter_seconds)
        if delay:
            timer = threading.Timer(delay, self._dispatch, args=(subject, body, metadata))
            timer.daemon = True
            timer.start()
            return
        self._dispatch(subject, body, metadata)

    def _dispatch(
        self, subject: str, body: str, metadata: Mapping[str, Any] | None
    ) -> None:
        for sink in self.sinks:
            try:
                sink.send(subject, body, metadata=metadata)
            except Exception:  # pragma: no cover - sink specific
                logger.exception("Alert sink %s raised", sink)

    def notify_unexpected_failure(
        self, match_id: str, errors: Mapping[str, BaseException]
    ) -> None:
        """Surface stage failures that were masked by neutral defaults."""

        if not errors:
            return
        lines = [
            f"{stage}: {type(error).__name__}: {error}" for stage, error in errors.items()
        ]
        metadata = {"match_id": match_id, "stages": sorted(errors)}
        self.send("Analysis failure", "\n".join(lines), metadata=metadata)

    def notify_recalibration_needed(self, snapshot: "MatchSnapshot") -> None:
        if not self.notify_recalibration or not snapshot.needs_recalibration:
            return
        description = snapshot.trend_signal.get("description", "")
        volatility = snapshot.momentum.get("volatility", 0.0)
        body = (
            f"{snapshot.home_team or 'home'} vs {snapshot.away_team or 'away'} "
            f"at minute {snapshot.minute}: {description} (volatility {volatility:.4f})"
        )
        metadata = {
            "match_id": snapshot.match_id,
            "match_state": snapshot.match_state.value,
            "integration_confidence": round(snapshot.integration_confidence, 4),
        }
        self.send("Recalibration recommended", body, metadata=metadata)


def install_signal_handlers(stop_callback: Callable[[], None]) -> None:
    """Install POSIX signal handlers that trigger ``stop_callback``."""

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_callback)
        except NotImplementedError:  # pragma: no cover - Windows
            signal.signal(sig, lambda *_: stop_callback())


__all__ = [
    "AlertManager",
    "AlertSink",
    "LoggingAlertSink",
    "SlackAlertSink",
    "install_signal_handlers",
]
