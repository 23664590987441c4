"""Data model for experiments, variants, metrics and assignments.

Plain dataclasses shared by the assignment engine, the statistical
analyzers and the lifecycle controller. Persistence layout is left to the
store implementation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Current UTC time."""
    return datetime.now(timezone.utc)


class ExperimentStatus(Enum):
    """Experiment lifecycle status."""

    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExperimentStatus.COMPLETED, ExperimentStatus.CANCELLED)


class MetricType(Enum):
    """Kind of metric tracked by an experiment."""

    CONVERSION = "conversion"
    ENGAGEMENT = "engagement"
    REVENUE = "revenue"
    TIME_SPENT = "time_spent"
    CUSTOM = "custom"


class MetricGoal(Enum):
    """Optimization direction of a metric."""

    INCREASE = "increase"
    DECREASE = "decrease"


class BayesianRecommendation(Enum):
    """Decision produced by the Bayesian analyzer."""

    DEPLOY = "deploy"
    CONTINUE_TESTING = "continue_testing"
    STOP_TEST = "stop_test"


@dataclass
class Metric:
    """Metric declared on an experiment."""

    name: str
    type: MetricType = MetricType.CONVERSION
    goal: MetricGoal = MetricGoal.INCREASE
    primary: bool = False
    weight: float = 1.0
    baseline_value: float | None = None
    target_improvement: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "type": self.type.value,
            "goal": self.goal.value,
            "primary": self.primary,
            "weight": self.weight,
            "baseline_value": self.baseline_value,
            "target_improvement": self.target_improvement,
        }


@dataclass
class Variant:
    """One arm of an experiment, including the control."""

    id: str
    name: str
    traffic_split: float  # Percentage of experiment traffic (0-100)
    is_control: bool = False
    description: str = ""
    configuration: dict[str, Any] = field(default_factory=dict)
    sessions: int = 0
    conversions: int = 0

    @property
    def conversion_rate(self) -> float:
        """Conversion rate in percent."""
        if self.sessions == 0:
            return 0.0
        return self.conversions / self.sessions * 100

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "traffic_split": self.traffic_split,
            "is_control": self.is_control,
            "configuration": self.configuration,
            "sessions": self.sessions,
            "conversions": self.conversions,
            "conversion_rate": self.conversion_rate,
        }


@dataclass
class Experiment:
    """Experiment configuration and lifecycle state."""

    id: str
    name: str
    variants: list[Variant]
    metrics: list[Metric] = field(default_factory=list)
    description: str = ""
    business_scenario: str = "default"
    status: ExperimentStatus = ExperimentStatus.DRAFT
    traffic_allocation: float = 100.0  # Share of eligible population (1-100)
    confidence_level: float = 95.0
    minimum_sample_size: int = 1000
    started_at: datetime | None = None
    ended_at: datetime | None = None
    winner_variant_id: str | None = None
    created_by: str = "system"
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def control(self) -> Variant | None:
        """Control variant, if one is marked."""
        for variant in self.variants:
            if variant.is_control:
                return variant
        return None

    @property
    def treatments(self) -> list[Variant]:
        """Non-control variants in declared order."""
        return [v for v in self.variants if not v.is_control]

    def get_variant(self, variant_id: str) -> Variant | None:
        """Get variant by ID."""
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "business_scenario": self.business_scenario,
            "status": self.status.value,
            "traffic_allocation": self.traffic_allocation,
            "variants": [v.to_dict() for v in self.variants],
            "metrics": [m.to_dict() for m in self.metrics],
            "confidence_level": self.confidence_level,
            "minimum_sample_size": self.minimum_sample_size,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "winner_variant_id": self.winner_variant_id,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Assignment:
    """A subject's variant assignment within one experiment."""

    subject_id: str
    experiment_id: str
    variant_id: str
    assigned_at: datetime = field(default_factory=utc_now)
    converted: bool = False
    conversion_value: float | None = None
    session_metrics: dict[str, float] = field(default_factory=dict)
    user_agent: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.subject_id, self.experiment_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "subject_id": self.subject_id,
            "experiment_id": self.experiment_id,
            "variant_id": self.variant_id,
            "assigned_at": self.assigned_at.isoformat(),
            "converted": self.converted,
            "conversion_value": self.conversion_value,
            "session_metrics": self.session_metrics,
            "user_agent": self.user_agent,
        }


@dataclass
class StatisticalSignificance:
    """Frequentist verdict for a treatment compared with control."""

    p_value: float
    confidence_level: float
    is_significant: bool
    power: float
    effect_size: float
    sample_size_recommendation: int
    z_score: float = 0.0
    days_to_significance: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "p_value": self.p_value,
            "confidence_level": self.confidence_level,
            "is_significant": self.is_significant,
            "power": self.power,
            "effect_size": self.effect_size,
            "sample_size_recommendation": self.sample_size_recommendation,
            "z_score": self.z_score,
            "days_to_significance": self.days_to_significance,
        }


@dataclass
class ConfidenceInterval:
    """Confidence interval for one metric of one variant."""

    metric: str
    variant_id: str
    lower_bound: float
    upper_bound: float
    confidence_level: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "metric": self.metric,
            "variant_id": self.variant_id,
            "lower_bound": self.lower_bound,
            "upper_bound": self.upper_bound,
            "confidence_level": self.confidence_level,
        }


@dataclass
class VariantResult:
    """Aggregated results for one variant."""

    variant_id: str
    variant_name: str
    is_control: bool
    sessions: int
    conversions: int
    conversion_rate: float
    confidence_interval: tuple[float, float]
    significance: StatisticalSignificance
    improvement_over_control: float
    metrics_performance: dict[str, float] = field(default_factory=dict)

    @property
    def p_value(self) -> float:
        return self.significance.p_value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        lower, upper = self.confidence_interval
        return {
            "variant_id": self.variant_id,
            "variant_name": self.variant_name,
            "is_control": self.is_control,
            "sessions": self.sessions,
            "conversions": self.conversions,
            "conversion_rate": self.conversion_rate,
            "confidence_interval": {"lower": lower, "upper": upper},
            "p_value": self.p_value,
            "significance": self.significance.to_dict(),
            "improvement_over_control": self.improvement_over_control,
            "metrics_performance": self.metrics_performance,
        }


@dataclass
class ExperimentResults:
    """Full result set for an experiment."""

    experiment_id: str
    total_sessions: int
    total_conversions: int
    overall_conversion_rate: float
    variant_results: list[VariantResult]
    significance: StatisticalSignificance
    recommendations: list[str]
    confidence_intervals: list[ConfidenceInterval]
    effect_size: float
    generated_at: datetime = field(default_factory=utc_now)

    def get_variant_result(self, variant_id: str) -> VariantResult | None:
        """Get result row by variant ID."""
        for result in self.variant_results:
            if result.variant_id == variant_id:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "experiment_id": self.experiment_id,
            "total_sessions": self.total_sessions,
            "total_conversions": self.total_conversions,
            "overall_conversion_rate": self.overall_conversion_rate,
            "variant_results": [v.to_dict() for v in self.variant_results],
            "significance": self.significance.to_dict(),
            "recommendations": self.recommendations,
            "confidence_intervals": [c.to_dict() for c in self.confidence_intervals],
            "effect_size": self.effect_size,
            "generated_at": self.generated_at.isoformat(),
        }
