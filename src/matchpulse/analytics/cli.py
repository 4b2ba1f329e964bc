"""Command line interface for live match analytics."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import inspect
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Protocol, Sequence, TypeVar

from ..config import get_config
from .alerts import AlertManager, install_signal_handlers
from .configuration import (
    AnalyticsConfig,
    ConfigurationError,
    create_alert_manager,
    create_analysis_service,
    create_snapshot_repository,
    load_analytics_config,
    log_config_warnings,
    validate_analytics_config,
)
from .history import load_events
from .logging import configure_logging
from .scheduler import AnalysisService, Scheduler
from .simulation import OutcomeSimulator
from .snapshots import InMemorySnapshotRepository
from .trend import TrendExtractor


@dataclasses.dataclass(slots=True)
class CommandContext:
    """Runtime objects shared across command handlers."""

    service: AnalysisService
    alert_manager: AlertManager | None
    config: AnalyticsConfig


class ContextCommandHandler(Protocol):
    async def __call__(self, context: CommandContext, args: argparse.Namespace) -> None:
        """Execute a command that relies on a service context."""


class ConfigCommandHandler(Protocol):
    async def __call__(self, config: AnalyticsConfig, args: argparse.Namespace) -> None:
        """Execute a command that only needs configuration data."""


CommandHandler = ContextCommandHandler | ConfigCommandHandler

HandlerT = TypeVar("HandlerT", bound=Callable[..., Any])


@dataclasses.dataclass(slots=True)
class Subcommand:
    """Container describing a CLI sub-command."""

    name: str
    help: str
    configure: Callable[[argparse.ArgumentParser], None]
    handler: CommandHandler
    requires_service: bool

    def add_to_parser(
        self,
        subparsers,
        parent: argparse.ArgumentParser,
    ) -> argparse.ArgumentParser:
        """Create the parser for this subcommand."""

        parser = subparsers.add_parser(self.name, parents=[parent], help=self.help)
        self.configure(parser)
        parser.set_defaults(
            handler=self.handler,
            command=self.name,
            requires_service=self.requires_service,
        )
        return parser


class SubcommandApp:
    """Registry that wires handlers into an :class:`argparse` parser."""

    def __init__(self, description: str | None = None) -> None:
        self._commands: list[Subcommand] = []
        self._description = description

    def command(
        self,
        name: str,
        *,
        help: str,
        configure: Callable[[argparse.ArgumentParser], None],
        requires_service: bool = True,
    ) -> Callable[[HandlerT], HandlerT]:
        """Register ``handler`` as a sub-command with configuration callback."""

        def _decorator(handler: HandlerT) -> HandlerT:
            if not inspect.iscoroutinefunction(handler):
                raise TypeError(f"Command {name} must be a coroutine function")
            self._commands.append(
                Subcommand(
                    name=name,
                    help=help,
                    configure=configure,
                    handler=handler,
                    requires_service=requires_service,
                )
            )
            return handler

        return _decorator

    @property
    def commands(self) -> Sequence[Subcommand]:
        return tuple(self._commands)

    def build_parser(self) -> argparse.ArgumentParser:
        parent = argparse.ArgumentParser(add_help=False)
        parent.add_argument("--config", dest="config_file")
        parent.add_argument("--environment", dest="config_environment")
        parent.add_argument("--storage")
        parent.add_argument("--in-memory", action="store_true", default=False)
        parent.add_argument("--log-level")
        parent.add_argument("--seed", type=int)

        parser = argparse.ArgumentParser(prog="matchpulse", description=self._description)
        subparsers = parser.add_subparsers(dest="command", required=True)
        for command in self._commands:
            command.add_to_parser(subparsers, parent)
        return parser


APP = SubcommandApp(description=__doc__)


def _parse_series(raw: str) -> List[float]:
    tokens = [token.strip() for token in raw.split(",")]
    try:
        return [float(token) for token in tokens if token]
    except ValueError as exc:
        raise SystemExit(f"Invalid series value: {exc}") from exc


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _configure_analyze_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--events", required=True, help="CSV, Parquet or JSON event log")
    parser.add_argument("--match-id", action="append", dest="match_ids")
    parser.add_argument("--iterations", type=int)
    parser.add_argument(
        "--interval",
        type=float,
        help="Seconds between ticks; defaults to service.snapshot_interval_seconds, 0 replays once",
    )
    parser.add_argument("--jitter", type=float)
    parser.add_argument("--retries", type=int)
    parser.add_argument("--retry-backoff", type=float)


def _configure_forecast_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--series", required=True, help="Comma separated cumulative goals")
    parser.add_argument("--horizon", type=int)


def _configure_simulate_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--home-score", type=int, default=0)
    parser.add_argument("--away-score", type=int, default=0)
    parser.add_argument("--drift", type=float, default=0.0)
    parser.add_argument("--volatility", type=float, default=0.0)
    parser.add_argument("--iterations", type=int)
    parser.add_argument("--minutes-remaining", type=float)


def _configure_validate_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--warnings-as-errors",
        action="store_true",
        help="Fail validation when configuration warnings are encountered.",
    )


def _apply_overrides(config: AnalyticsConfig, args: argparse.Namespace) -> AnalyticsConfig:
    simulation: Dict[str, Any] = {}
    seed = args.seed if args.seed is not None else get_config().seed
    if seed is not None:
        simulation["seed"] = seed
    if getattr(args, "iterations", None) is not None:
        simulation["iterations"] = args.iterations
    if not simulation:
        return config
    return config.model_copy(
        update={"simulation": config.simulation.model_copy(update=simulation)}
    )


def _apply_service_defaults(args: argparse.Namespace, config: AnalyticsConfig) -> None:
    service = config.service
    if getattr(args, "interval", None) is None:
        args.interval = service.snapshot_interval_seconds
    if getattr(args, "jitter", None) is None:
        args.jitter = service.jitter_seconds
    if getattr(args, "retries", None) is None:
        args.retries = service.retries
    if getattr(args, "retry_backoff", None) is None:
        args.retry_backoff = service.retry_backoff


def _storage_target(args: argparse.Namespace, config: AnalyticsConfig) -> str | None:
    if args.in_memory:
        return None
    if args.storage:
        return str(args.storage)
    settings = get_config()
    if settings.snapshot_db is not None:
        return str(settings.snapshot_db)
    storage_path = config.service.storage_path
    if storage_path is None:
        return None
    path = Path(storage_path).expanduser()
    if path.is_absolute():
        return str(path)
    return str(settings.snapshot_path(str(path)))


@APP.command(
    "validate-config",
    help="Validate analytics configuration",
    configure=_configure_validate_parser,
    requires_service=False,
)
async def _cmd_validate_config(
    config: AnalyticsConfig, args: argparse.Namespace
) -> None:
    try:
        warnings = validate_analytics_config(config)
    except ConfigurationError as exc:
        print("Configuration invalid:")
        for line in str(exc).splitlines():
            text = line if line.startswith("-") else f"- {line}"
            print(text)
        raise SystemExit(1) from exc

    print(f"Configuration '{config.environment}' is valid.")
    if warnings:
        print("Warnings:")
        for message in warnings:
            print(f"- {message}")
        if getattr(args, "warnings_as_errors", False):
            raise SystemExit(2)


@APP.command(
    "forecast",
    help="Trend signal and goal forecast for a cumulative-goal series",
    configure=_configure_forecast_parser,
    requires_service=False,
)
async def _cmd_forecast(config: AnalyticsConfig, args: argparse.Namespace) -> None:
    series = _parse_series(args.series)
    extractor = TrendExtractor(config.trend)
    _print_json(
        {
            "arimaSignal": extractor.extract_signal(series).to_dict(),
            "goalForecast": extractor.forecast(series, args.horizon).to_dict(),
        }
    )


@APP.command(
    "simulate",
    help="Simulate the remaining minutes from a score and momentum drift",
    configure=_configure_simulate_parser,
    requires_service=False,
)
async def _cmd_simulate(config: AnalyticsConfig, args: argparse.Namespace) -> None:
    simulator = OutcomeSimulator(config.simulation)
    distribution = simulator.simulate(
        args.home_score,
        args.away_score,
        args.drift,
        args.volatility,
        args.iterations,
        args.minutes_remaining,
    )
    _print_json(distribution.to_dict())


@APP.command(
    "analyze",
    help="Replay an event log and print the combined analysis per match",
    configure=_configure_analyze_parser,
)
async def _cmd_analyze(context: CommandContext, args: argparse.Namespace) -> None:
    service = context.service
    if args.match_ids:
        service.set_active_matches(args.match_ids)
    recorded = service.record_many(load_events(args.events))
    if not recorded:
        raise SystemExit(f"No events for the selected matches in {args.events}")

    if args.interval <= 0:
        snapshots = [
            service.analyze_match(service.registry.snapshot(match_id))
            for match_id in service.tracked_matches()
        ]
        _print_json([snapshot.to_dict() for snapshot in snapshots])
        return

    async with Scheduler() as scheduler:
        service.schedule(
            scheduler,
            interval=args.interval,
            jitter=args.jitter,
            retries=args.retries,
            retry_backoff=args.retry_backoff,
        )
        install_signal_handlers(scheduler.stop)
        print("Starting analysis scheduler. Press Ctrl+C to stop.")
        await scheduler.run()


def _build_parser() -> argparse.ArgumentParser:
    return APP.build_parser()


async def _dispatch(args: argparse.Namespace) -> None:
    settings = get_config()
    configure_logging(args.log_level or settings.log_level)
    config_file = args.config_file or settings.config_file
    try:
        config = load_analytics_config(
            base_path=config_file,
            environment=args.config_environment,
        )
    except (FileNotFoundError, TypeError, ValueError) as exc:
        raise SystemExit(f"Unable to load configuration: {exc}") from exc
    config = _apply_overrides(config, args)

    handler = args.handler
    if not getattr(args, "requires_service", True):
        await handler(config, args)
        return

    try:
        warnings = validate_analytics_config(config)
    except ConfigurationError as exc:
        raise SystemExit(str(exc)) from exc
    log_config_warnings(warnings)

    _apply_service_defaults(args, config)
    alert_manager = create_alert_manager(config)
    target = _storage_target(args, config)
    repository = (
        InMemorySnapshotRepository()
        if target is None
        else create_snapshot_repository(config, storage_path=target)
    )
    service = create_analysis_service(
        config,
        repository=repository,
        alert_manager=alert_manager,
    )
    context = CommandContext(service=service, alert_manager=alert_manager, config=config)
    await handler(context, args)


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    asyncio.run(_dispatch(args))


__all__ = ["APP", "main"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
