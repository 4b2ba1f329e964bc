"""
matchpulse: live football match analytics.

Goal-trend extraction, Bayesian possession momentum and Monte Carlo outcome
simulation, chained per match and recomputed on a schedule.
"""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - exercised in packaging workflows
    __version__ = version("matchpulse")
except PackageNotFoundError:  # pragma: no cover - local editable installs
    __version__ = "0.0.0"

_EXPORTS = {
    # Analytical stages
    "TrendExtractor": ".analytics.trend",
    "MomentumEstimator": ".analytics.momentum",
    "OutcomeSimulator": ".analytics.simulation",
    "ABCPipeline": ".analytics.pipeline",
    "CombinedResult": ".analytics.pipeline",
    # Histories and snapshots
    "HistoryRegistry": ".analytics.history",
    "MatchEvent": ".analytics.history",
    "load_events": ".analytics.history",
    "MatchSnapshot": ".analytics.snapshots",
    "AnalysisService": ".analytics.scheduler",
    # Configuration
    "load_analytics_config": ".analytics.configuration",
    "get_config": ".config",
    "update_config": ".config",
    "reset_config": ".config",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> object:  # pragma: no cover - thin lazy importer
    from importlib import import_module

    target_module = _EXPORTS.get(name)
    if not target_module:
        raise AttributeError(f"module {__name__} has no attribute {name}")
    module = import_module(target_module, __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(list(globals().keys()) + __all__)
