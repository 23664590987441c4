"""Experimentation engine for online A/B tests.

Components:
- VariantAssignmentEngine: Deterministic subject-to-variant bucketing
- FrequentistAnalyzer: Two-proportion z-test, intervals, power, sample size
- BayesianAnalyzer: Beta-Binomial win probability and deploy/stop verdicts
- ResultsAggregator: Per-variant results and recommendations
- ExperimentLifecycleController: Lifecycle state machine and auto-stop policy
"""

from experiment_engine.experimentation.assignment import (
    VariantAssignmentEngine,
    compute_bucket,
    normalize_traffic_splits,
)
from experiment_engine.experimentation.bayesian import (
    BayesianAnalyzer,
    BayesianVerdict,
    BetaPosterior,
)
from experiment_engine.experimentation.cache import ActiveExperimentCache
from experiment_engine.experimentation.events import (
    EventSink,
    InMemoryEventSink,
    LoggingEventSink,
)
from experiment_engine.experimentation.exceptions import ExperimentEngineError, StoreError
from experiment_engine.experimentation.frequentist import FrequentistAnalyzer
from experiment_engine.experimentation.lifecycle import (
    ExperimentConfig,
    ExperimentLifecycleController,
    VariantConfig,
)
from experiment_engine.experimentation.models import (
    Assignment,
    Experiment,
    ExperimentResults,
    ExperimentStatus,
    Metric,
    MetricGoal,
    MetricType,
    StatisticalSignificance,
    Variant,
)
from experiment_engine.experimentation.results import ResultsAggregator
from experiment_engine.experimentation.store import ExperimentStore, InMemoryExperimentStore

__all__ = [
    "ActiveExperimentCache",
    "Assignment",
    "BayesianAnalyzer",
    "BayesianVerdict",
    "BetaPosterior",
    "EventSink",
    "Experiment",
    "ExperimentConfig",
    "ExperimentEngineError",
    "ExperimentLifecycleController",
    "ExperimentResults",
    "ExperimentStatus",
    "ExperimentStore",
    "FrequentistAnalyzer",
    "InMemoryEventSink",
    "InMemoryExperimentStore",
    "LoggingEventSink",
    "Metric",
    "MetricGoal",
    "MetricType",
    "ResultsAggregator",
    "StatisticalSignificance",
    "StoreError",
    "Variant",
    "VariantAssignmentEngine",
    "VariantConfig",
    "compute_bucket",
    "normalize_traffic_splits",
]
