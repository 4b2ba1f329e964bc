"""Live match analytics: goal trend, Bayesian momentum and Monte Carlo outcomes.

The three stages feed each other.  The trend extracted from the
cumulative-goal series shapes the prior of the momentum estimate, and the
posterior momentum drift tilts the goal rates of the outcome simulation.
:class:`ABCPipeline` chains them for one match, and
:class:`AnalysisService` runs the pipeline for every tracked match on a
schedule and publishes :class:`MatchSnapshot` records.
"""

from .alerts import AlertManager, AlertSink, LoggingAlertSink, SlackAlertSink
from .configuration import (
    AnalyticsConfig,
    ConfigurationError,
    create_alert_manager,
    create_analysis_service,
    create_pipeline,
    create_snapshot_repository,
    load_analytics_config,
    validate_analytics_config,
)
from .history import (
    HistoryRegistry,
    HistorySnapshot,
    MatchEvent,
    MatchHistory,
    events_to_frame,
    load_events,
)
from .momentum import MomentumEstimate, MomentumEstimator, MomentumPrior, possession_changes
from .outcomes import DegenerateInputError, OutcomeKind, StageOutcome
from .pipeline import ABCPipeline, CombinedResult, PipelineDiagnostics
from .scheduler import AnalysisService, ScheduledJob, Scheduler
from .simulation import GoalPercentile, OutcomeDistribution, OutcomeSimulator, ScoreProbability
from .snapshots import (
    InMemorySnapshotRepository,
    MatchSnapshot,
    MatchState,
    SnapshotRepository,
    SQLiteSnapshotRepository,
)
from .trend import GoalForecast, TrendExtractor, TrendSignal

__all__ = [
    "ABCPipeline",
    "AlertManager",
    "AlertSink",
    "AnalysisService",
    "AnalyticsConfig",
    "CombinedResult",
    "ConfigurationError",
    "DegenerateInputError",
    "GoalForecast",
    "GoalPercentile",
    "HistoryRegistry",
    "HistorySnapshot",
    "InMemorySnapshotRepository",
    "LoggingAlertSink",
    "MatchEvent",
    "MatchHistory",
    "MatchSnapshot",
    "MatchState",
    "MomentumEstimate",
    "MomentumEstimator",
    "MomentumPrior",
    "OutcomeDistribution",
    "OutcomeKind",
    "OutcomeSimulator",
    "PipelineDiagnostics",
    "SQLiteSnapshotRepository",
    "ScheduledJob",
    "Scheduler",
    "ScoreProbability",
    "SlackAlertSink",
    "SnapshotRepository",
    "StageOutcome",
    "TrendExtractor",
    "TrendSignal",
    "create_alert_manager",
    "create_analysis_service",
    "create_pipeline",
    "create_snapshot_repository",
    "events_to_frame",
    "load_analytics_config",
    "load_events",
    "possession_changes",
    "validate_analytics_config",
]
