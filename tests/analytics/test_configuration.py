from __future__ import annotations

import logging
from pathlib import Path

import pytest

from matchpulse.analytics.alerts import LoggingAlertSink, SlackAlertSink
from matchpulse.analytics.configuration import (
    AnalyticsConfig,
    ConfigurationError,
    create_alert_manager,
    create_analysis_service,
    create_pipeline,
    create_snapshot_repository,
    load_analytics_config,
    log_config_warnings,
    validate_analytics_config,
)
from matchpulse.analytics.snapshots import (
    InMemorySnapshotRepository,
    SQLiteSnapshotRepository,
)

REPO_CONFIG = Path(__file__).resolve().parents[2] / "config" / "analytics.yaml"


def test_default_configuration_loads(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MATCHPULSE_SLACK_WEBHOOK", raising=False)
    config = load_analytics_config(base_path=REPO_CONFIG)

    assert isinstance(config, AnalyticsConfig)
    assert config.environment == "default"
    assert config == AnalyticsConfig(
        alerts={"slack_webhook": ""}, environment="default"
    )
    assert validate_analytics_config(config) == []

    pipeline = create_pipeline(config)
    assert pipeline.trend_extractor.config.alpha == pytest.approx(0.3)
    assert pipeline.outcome_simulator.config.iterations == 10_000

    service = create_analysis_service(config, storage_path=tmp_path / "snapshots.sqlite3")
    assert isinstance(service.repository, SQLiteSnapshotRepository)
    assert (tmp_path / "snapshots.sqlite3").exists()
    assert service.alert_manager is None
    assert service.min_events == 10


def test_test_environment_layer(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MATCHPULSE_ENV", "test")

    config = load_analytics_config(base_path=REPO_CONFIG)

    assert config.environment == "test"
    assert config.simulation.iterations == 2_000
    assert config.simulation.seed == 7
    assert config.service.storage_path is None
    assert isinstance(create_snapshot_repository(config), InMemorySnapshotRepository)


def test_configuration_layers_and_env_overrides(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    base = tmp_path / "analytics.yaml"
    base.write_text(
        """
simulation:
  iterations: 5000
  base_goal_rate: 0.04
service:
  storage_path: base.sqlite3
pipeline:
  volatility_threshold: 0.2
"""
    )
    env_override = tmp_path / "analytics.production.yaml"
    env_override.write_text(
        """
service:
  storage_path: prod.sqlite3
pipeline:
  volatility_threshold: 0.25
"""
    )
    extra_override = tmp_path / "override.yaml"
    extra_override.write_text(
        """
pipeline:
  volatility_threshold: 0.3
"""
    )

    monkeypatch.setenv("MATCHPULSE_ENV", "production")
    monkeypatch.setenv("MATCHPULSE_CONFIG", str(extra_override))
    monkeypatch.setenv("MATCHPULSE__service__storage_path", "env.sqlite3")
    monkeypatch.setenv("MATCHPULSE__service__active_matches", '["m1", "m2"]')
    monkeypatch.setenv("MATCHPULSE__alerts__enabled", "true")

    config = load_analytics_config(base_path=base)

    assert config.environment == "production"
    assert config.service.storage_path == "env.sqlite3"
    assert config.service.active_matches == ["m1", "m2"]
    assert config.pipeline.volatility_threshold == pytest.approx(0.3)
    assert config.alerts.enabled is True
    # untouched keys survive every layer
    assert config.simulation.iterations == 5_000
    assert config.simulation.base_goal_rate == pytest.approx(0.04)
    assert config.trend.alpha == pytest.approx(0.3)


def test_environment_token_substitution(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    base = tmp_path / "analytics.yaml"
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "data"))
    monkeypatch.setenv("HOOK_URL", "https://hooks.example.test/abc")
    base.write_text(
        """
service:
  storage_path: "${STORAGE_ROOT}/snapshots.sqlite3"
alerts:
  enabled: true
  slack_webhook: "${HOOK_URL}"
"""
    )

    config = load_analytics_config(base_path=base)

    assert Path(config.service.storage_path) == tmp_path / "data" / "snapshots.sqlite3"
    assert config.alerts.slack_webhook == "https://hooks.example.test/abc"


def test_missing_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with pytest.raises(FileNotFoundError):
        load_analytics_config(base_path=tmp_path / "absent.yaml")

    monkeypatch.chdir(tmp_path)
    assert load_analytics_config() == AnalyticsConfig()


def test_non_mapping_configuration_is_rejected(tmp_path: Path) -> None:
    base = tmp_path / "analytics.yaml"
    base.write_text("- just\n- a list\n")
    with pytest.raises(TypeError):
        load_analytics_config(base_path=base)


def test_validation_collects_every_error() -> None:
    config = AnalyticsConfig(
        trend={"alpha": 0.0, "break_window_fraction": 1.0},
        simulation={"iterations": 0},
        pipeline={"dominating_drift": 0.01, "slight_advantage_drift": 0.05},
        service={"retries": -1},
    )

    with pytest.raises(ConfigurationError) as excinfo:
        validate_analytics_config(config)

    message = str(excinfo.value)
    assert "trend.alpha" in message
    assert "trend.break_window_fraction" in message
    assert "simulation.iterations must be greater than zero" in message
    assert "pipeline.dominating_drift" in message
    assert "service.retries" in message


def test_validation_warnings(caplog: pytest.LogCaptureFixture) -> None:
    config = AnalyticsConfig(
        simulation={"iterations": 500},
        service={"min_events": 5, "snapshot_interval_seconds": 0.5},
        alerts={"enabled": True},
    )

    warnings = validate_analytics_config(config)

    assert len(warnings) == 4
    assert any("below 1000" in message for message in warnings)
    assert any("slack_webhook" in message for message in warnings)

    caplog.set_level(logging.WARNING)
    log_config_warnings(warnings)
    assert sum("config-warning" in record.getMessage() for record in caplog.records) == 4


def test_alert_manager_factory() -> None:
    assert create_alert_manager(AnalyticsConfig()) is None

    logged_only = create_alert_manager(AnalyticsConfig(alerts={"enabled": True}))
    assert logged_only is not None
    assert [type(sink) for sink in logged_only.sinks] == [LoggingAlertSink]

    with_slack = create_alert_manager(
        AnalyticsConfig(
            alerts={
                "enabled": True,
                "slack_webhook": "https://hooks.example.test/abc",
                "notify_recalibration": True,
            }
        )
    )
    assert with_slack is not None
    assert [type(sink) for sink in with_slack.sinks] == [LoggingAlertSink, SlackAlertSink]
    assert with_slack.notify_recalibration is True


def test_service_factory_honours_active_matches() -> None:
    config = AnalyticsConfig(service={"storage_path": None, "active_matches": ["m2", "m1"]})

    service = create_analysis_service(config)

    assert isinstance(service.repository, InMemorySnapshotRepository)
    assert service.tracked_matches() == ["m1", "m2"]
