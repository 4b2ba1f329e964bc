from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Iterable,
    Mapping,
    MutableMapping,
    Sequence,
)

import yaml
from pydantic import BaseModel, Field

ENVIRONMENT_VARIABLE = "MATCHPULSE_ENV"
EXTRA_CONFIG_VARIABLE = "MATCHPULSE_CONFIG"
ENV_OVERRIDE_PREFIX = "MATCHPULSE__"
DEFAULT_CONFIG_PATH = Path("config/analytics.yaml")

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from .alerts import AlertManager
    from .history import HistoryRegistry
    from .pipeline import ABCPipeline
    from .scheduler import AnalysisService
    from .snapshots import SnapshotRepository


class TrendConfig(BaseModel):
    """Smoothing, forecasting and break-detection constants."""

    alpha: float = 0.3
    beta: float = 0.1
    base_goal_rate: float = 0.03
    min_observations: int = 10
    horizon_minutes: int = 10
    z_score: float = 1.96
    cusum_threshold_sigma: float = 3.0
    break_window_fraction: float = 0.3
    stable_band_percent: float = 5.0


class MomentumConfig(BaseModel):
    """Prior and update constants for the Bayesian momentum estimate."""

    prior_variance: float = 0.01
    prior_pseudo_count: float = 1.0
    trend_scale: float = 10.0
    min_observations: int = 2
    break_confidence_penalty: float = 0.7


class SimulationConfig(BaseModel):
    """Monte Carlo outcome simulation settings."""

    iterations: int = 10_000
    base_goal_rate: float = 0.03
    default_horizon_minutes: int = 45
    seed: int | None = None


class PipelineConfig(BaseModel):
    """Integration thresholds for the combined analysis."""

    volatility_threshold: float = 0.15
    break_stability_factor: float = 0.7
    match_length_minutes: int = 90
    dominating_drift: float = 0.10
    slight_advantage_drift: float = 0.03


class ServiceConfig(BaseModel):
    """Scheduling and storage of the per-match analysis service."""

    snapshot_interval_seconds: float = 15.0
    jitter_seconds: float = 0.0
    retries: int = 3
    retry_backoff: float = 2.0
    min_events: int = 10
    storage_path: str | None = "matchpulse_snapshots.sqlite3"
    active_matches: list[str] = Field(default_factory=list)


class AlertsConfig(BaseModel):
    """Routing of operator alerts."""

    enabled: bool = False
    slack_webhook: str | None = None
    notify_recalibration: bool = False
    jitter_seconds: float = 0.0


class AnalyticsConfig(BaseModel):
    """Aggregate configuration for the analytics stack."""

    environment: str = "default"
    trend: TrendConfig = Field(default_factory=TrendConfig)
    momentum: MomentumConfig = Field(default_factory=MomentumConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)


class ConfigurationError(ValueError):
    """Raised when analytics configuration validation fails."""


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise TypeError(f"Configuration at {path} must be a mapping")
    return dict(data)


def _merge_layers(base: Dict[str, Any], layer: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in layer.items():
        if (
            key in merged
            and isinstance(merged[key], Mapping)
            and isinstance(value, Mapping)
        ):
            merged[key] = _merge_layers(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _resolve_env_tokens(value: Any) -> Any:
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda match: os.getenv(match.group(1), ""), value)
    if isinstance(value, Mapping):
        return {k: _resolve_env_tokens(v) for k, v in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_resolve_env_tokens(item) for item in value]
    return value


def _coerce_env_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        lowered = raw.lower()
        if lowered in {"true", "false"}:
            return lowered == "true"
        return raw


def _set_nested(mapping: MutableMapping[str, Any], path: Iterable[str], value: Any) -> None:
    segments = list(path)
    if not segments:
        return
    head, *tail = segments
    key = head.lower().replace("-", "_")
    if not tail:
        mapping[key] = value
        return
    child = mapping.get(key)
    if not isinstance(child, MutableMapping):
        child = {}
    else:
        child = dict(child)
    mapping[key] = child
    _set_nested(child, tail, value)


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    updated = dict(data)
    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_OVERRIDE_PREFIX):
            continue
        suffix = key[len(ENV_OVERRIDE_PREFIX) :]
        if not suffix:
            continue
        path = [segment for segment in suffix.split("__") if segment]
        if not path:
            continue
        _set_nested(updated, path, _coerce_env_value(raw_value))
    return updated


def load_analytics_config(
    *,
    base_path: str | os.PathLike[str] | None = None,
    environment: str | None = None,
    extra_paths: Sequence[str | os.PathLike[str]] | None = None,
) -> AnalyticsConfig:
    """Load layered configuration for the analytics stack.

    The loader merges ``config/analytics.yaml`` with optional
    environment-specific overrides (``config/analytics.<env>.yaml``),
    additional override files, and environment variable overrides that use
    ``MATCHPULSE__`` prefixes.  An explicitly requested ``base_path`` must
    exist; when the default file is absent the built-in defaults are used.
    """

    config_path = Path(base_path) if base_path is not None else DEFAULT_CONFIG_PATH
    if base_path is None and not config_path.exists():
        data: Dict[str, Any] = {}
    else:
        data = _load_yaml(config_path)

    env_name = environment or os.getenv(ENVIRONMENT_VARIABLE) or data.get("environment")
    if isinstance(env_name, str):
        env_path = config_path.with_name(f"{config_path.stem}.{env_name}{config_path.suffix}")
        if env_path.exists():
            data = _merge_layers(data, _load_yaml(env_path))
        data["environment"] = env_name

    merged = dict(data)
    override_sources: list[Path] = []
    if extra_paths:
        override_sources.extend(Path(path) for path in extra_paths)
    env_overrides = os.getenv(EXTRA_CONFIG_VARIABLE)
    if env_overrides:
        override_sources.extend(Path(token) for token in env_overrides.split(os.pathsep) if token)

    for override in override_sources:
        if override.exists():
            merged = _merge_layers(merged, _load_yaml(override))

    merged = _apply_env_overrides(merged)
    merged = _resolve_env_tokens(merged)

    return AnalyticsConfig.model_validate(merged)


def validate_analytics_config(config: AnalyticsConfig) -> list[str]:
    """Validate an :class:`AnalyticsConfig` instance.

    Args:
        config: Parsed configuration object to validate.

    Returns:
        A list of warning messages. The function raises
        :class:`ConfigurationError` if any fatal issues are detected.
    """

    errors: list[str] = []
    warnings: list[str] = []

    trend = config.trend
    for name in ("alpha", "beta"):
        value = getattr(trend, name)
        if not 0 < value <= 1:
            errors.append(f"trend.{name} must be within (0, 1]")
    if trend.base_goal_rate <= 0:
        errors.append("trend.base_goal_rate must be greater than zero")
    if trend.min_observations < 2:
        errors.append("trend.min_observations must be at least 2")
    if trend.horizon_minutes <= 0:
        errors.append("trend.horizon_minutes must be greater than zero")
    if trend.z_score <= 0:
        errors.append("trend.z_score must be greater than zero")
    if trend.cusum_threshold_sigma <= 0:
        errors.append("trend.cusum_threshold_sigma must be greater than zero")
    if not 0 < trend.break_window_fraction < 1:
        errors.append("trend.break_window_fraction must be within (0, 1)")
    if trend.stable_band_percent < 0:
        errors.append("trend.stable_band_percent must be non-negative")

    momentum = config.momentum
    if momentum.prior_variance <= 0:
        errors.append("momentum.prior_variance must be greater than zero")
    if momentum.prior_pseudo_count <= 0:
        errors.append("momentum.prior_pseudo_count must be greater than zero")
    if momentum.min_observations < 2:
        errors.append("momentum.min_observations must be at least 2")
    if not 0 < momentum.break_confidence_penalty <= 1:
        errors.append("momentum.break_confidence_penalty must be within (0, 1]")

    simulation = config.simulation
    if simulation.iterations <= 0:
        errors.append("simulation.iterations must be greater than zero")
    elif simulation.iterations < 1_000:
        warnings.append(
            "simulation.iterations is below 1000; outcome probabilities will be noisy"
        )
    if simulation.base_goal_rate <= 0:
        errors.append("simulation.base_goal_rate must be greater than zero")
    if simulation.default_horizon_minutes < 0:
        errors.append("simulation.default_horizon_minutes must be non-negative")

    pipeline = config.pipeline
    if pipeline.volatility_threshold <= 0:
        errors.append("pipeline.volatility_threshold must be greater than zero")
    if not 0 < pipeline.break_stability_factor <= 1:
        errors.append("pipeline.break_stability_factor must be within (0, 1]")
    if pipeline.match_length_minutes <= 0:
        errors.append("pipeline.match_length_minutes must be greater than zero")
    if pipeline.slight_advantage_drift < 0:
        errors.append("pipeline.slight_advantage_drift must be non-negative")
    if pipeline.dominating_drift < pipeline.slight_advantage_drift:
        errors.append(
            "pipeline.dominating_drift must not be below pipeline.slight_advantage_drift"
        )

    service = config.service
    if service.snapshot_interval_seconds < 0:
        errors.append("service.snapshot_interval_seconds must be non-negative")
    if service.jitter_seconds < 0:
        errors.append("service.jitter_seconds must be non-negative")
    if service.retries < 0:
        errors.append("service.retries must be non-negative")
    if service.retry_backoff < 0:
        errors.append("service.retry_backoff must be non-negative")
    if service.min_events < trend.min_observations:
        warnings.append(
            "service.min_events is below trend.min_observations; early ticks will "
            "publish neutral trend signals"
        )
    if service.storage_path is not None and not str(service.storage_path).strip():
        errors.append("service.storage_path cannot be empty")
    if service.snapshot_interval_seconds and service.snapshot_interval_seconds < 1:
        warnings.append(
            "service snapshot interval is below one second; each tick runs "
            f"{simulation.iterations} simulations per match"
        )

    alerts = config.alerts
    if alerts.jitter_seconds < 0:
        errors.append("alerts.jitter_seconds must be non-negative")
    if alerts.enabled and not alerts.slack_webhook:
        warnings.append(
            "alerts.enabled is true but no slack_webhook is configured; alerts are only logged"
        )

    if errors:
        bullet_list = "\n".join(f"- {message}" for message in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{bullet_list}")

    return warnings


def create_pipeline(config: AnalyticsConfig) -> "ABCPipeline":
    """Construct an :class:`ABCPipeline` with configured stages."""

    from .pipeline import ABCPipeline

    return ABCPipeline.from_config(config)


def create_alert_manager(config: AnalyticsConfig) -> "AlertManager | None":
    """Build the operator alert manager, or ``None`` when alerts are disabled."""

    from .alerts import AlertManager, LoggingAlertSink, SlackAlertSink

    alerts = config.alerts
    if not alerts.enabled:
        return None
    sinks: list[Any] = [LoggingAlertSink()]
    if alerts.slack_webhook:
        sinks.append(SlackAlertSink(alerts.slack_webhook))
    return AlertManager(
        sinks=sinks,
        jitter_seconds=alerts.jitter_seconds,
        notify_recalibration=alerts.notify_recalibration,
    )


def create_snapshot_repository(
    config: AnalyticsConfig,
    *,
    storage_path: str | os.PathLike[str] | None = None,
) -> "SnapshotRepository":
    """Return a sqlite repository, or an in-memory one when no path is set."""

    from .snapshots import InMemorySnapshotRepository, SQLiteSnapshotRepository

    target = storage_path or config.service.storage_path
    if not target:
        return InMemorySnapshotRepository()
    return SQLiteSnapshotRepository(target)


def create_analysis_service(
    config: AnalyticsConfig,
    *,
    registry: "HistoryRegistry | None" = None,
    repository: "SnapshotRepository | None" = None,
    alert_manager: "AlertManager | None" = None,
    storage_path: str | os.PathLike[str] | None = None,
) -> "AnalysisService":
    """Build an :class:`AnalysisService` from configuration."""

    from .history import HistoryRegistry
    from .scheduler import AnalysisService

    service = AnalysisService(
        create_pipeline(config),
        registry=registry or HistoryRegistry(),
        repository=repository
        or create_snapshot_repository(config, storage_path=storage_path),
        alert_manager=alert_manager if alert_manager is not None else create_alert_manager(config),
        min_events=config.service.min_events,
        match_length_minutes=config.pipeline.match_length_minutes,
    )
    if config.service.active_matches:
        service.set_active_matches(config.service.active_matches)
    return service


def log_config_warnings(warnings: Sequence[str], log: logging.Logger | None = None) -> None:
    target = log or logging.getLogger(__name__)
    for message in warnings:
        target.warning("config-warning: %s", message)


__all__ = [
    "AlertsConfig",
    "AnalyticsConfig",
    "ConfigurationError",
    "MomentumConfig",
    "PipelineConfig",
    "ServiceConfig",
    "SimulationConfig",
    "TrendConfig",
    "create_alert_manager",
    "create_analysis_service",
    "create_pipeline",
    "create_snapshot_repository",
    "load_analytics_config",
    "log_config_warnings",
    "validate_analytics_config",
]
