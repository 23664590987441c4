"""Experiment schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from experiment_engine.experimentation.lifecycle import ExperimentConfig, VariantConfig
from experiment_engine.experimentation.models import (
    Assignment,
    Experiment,
    Metric,
    MetricGoal,
    MetricType,
)


class MetricRequest(BaseModel):
    """Metric definition."""

    name: str = Field(..., description="Metric name")
    type: MetricType = Field(MetricType.CONVERSION, description="Metric type")
    goal: MetricGoal = Field(MetricGoal.INCREASE, description="Optimization direction")
    primary: bool = Field(False, description="Primary metric flag")
    weight: float = Field(1.0, description="Metric weight")
    baseline_value: float | None = Field(None, description="Baseline value")
    target_improvement: float | None = Field(None, description="Target improvement")

    def to_metric(self) -> Metric:
        """Convert to domain metric."""
        return Metric(**self.model_dump())


class VariantRequest(BaseModel):
    """Variant definition."""

    name: str = Field(..., description="Variant name")
    traffic_split: float = Field(..., ge=0, le=100, description="Traffic percentage")
    is_control: bool = Field(False, description="Control variant flag")
    description: str = ""
    configuration: dict[str, Any] = Field(default_factory=dict)


class ExperimentCreate(BaseModel):
    """Experiment creation request."""

    name: str = Field(..., description="Experiment name")
    description: str = ""
    business_scenario: str = Field("default", description="Target population tag")
    variants: list[VariantRequest]
    metrics: list[MetricRequest] = Field(default_factory=list)
    traffic_allocation: float | None = Field(None, description="Percent of traffic enrolled")
    confidence_level: float | None = Field(None, description="Confidence level in percent")
    minimum_sample_size: int | None = None
    created_by: str = "api"

    model_config = {"json_schema_extra": {
        "example": {
            "name": "signup_cta_color",
            "business_scenario": "signup",
            "variants": [
                {"name": "control", "traffic_split": 50, "is_control": True},
                {"name": "green_button", "traffic_split": 50,
                 "configuration": {"cta_button_color": "green"}},
            ],
            "metrics": [{"name": "signup", "type": "conversion", "primary": True}],
            "confidence_level": 95,
            "minimum_sample_size": 1000,
        }
    }}

    def to_config(self) -> ExperimentConfig:
        """Convert to engine configuration."""
        return ExperimentConfig(
            name=self.name,
            description=self.description,
            business_scenario=self.business_scenario,
            variants=[VariantConfig(**v.model_dump()) for v in self.variants],
            metrics=[m.to_metric() for m in self.metrics],
            traffic_allocation=self.traffic_allocation,
            confidence_level=self.confidence_level,
            minimum_sample_size=self.minimum_sample_size,
            created_by=self.created_by,
        )


class VariantResponse(BaseModel):
    """Variant response."""

    id: str
    name: str
    description: str
    traffic_split: float
    is_control: bool
    configuration: dict[str, Any]
    sessions: int
    conversions: int
    conversion_rate: float


class ExperimentResponse(BaseModel):
    """Experiment response."""

    id: str
    name: str
    description: str
    business_scenario: str
    status: str
    traffic_allocation: float
    variants: list[VariantResponse]
    metrics: list[dict[str, Any]]
    confidence_level: float
    minimum_sample_size: int
    started_at: str | None
    ended_at: str | None
    winner_variant_id: str | None
    created_by: str
    created_at: str
    updated_at: str

    @classmethod
    def from_experiment(cls, experiment: Experiment) -> "ExperimentResponse":
        """Build from a domain experiment."""
        return cls(**experiment.to_dict())


class AssignmentRequest(BaseModel):
    """Assignment request."""

    subject_id: str = Field(..., min_length=1, description="Subject (session) ID")
    user_agent: str | None = None


class AssignmentResponse(BaseModel):
    """Assignment response; `assigned` is false when the subject was not enrolled."""

    assigned: bool
    subject_id: str
    experiment_id: str | None = None
    variant_id: str | None = None
    variant_name: str | None = None
    configuration: dict[str, Any] = Field(default_factory=dict)
    assigned_at: datetime | None = None

    @classmethod
    def from_assignment(
        cls,
        subject_id: str,
        assignment: Assignment | None,
        experiment: Experiment | None,
    ) -> "AssignmentResponse":
        """Build from a domain assignment."""
        variant = (
            experiment.get_variant(assignment.variant_id)
            if assignment is not None and experiment is not None
            else None
        )
        if assignment is None or variant is None:
            return cls(assigned=False, subject_id=subject_id)

        return cls(
            assigned=True,
            subject_id=subject_id,
            experiment_id=assignment.experiment_id,
            variant_id=variant.id,
            variant_name=variant.name,
            configuration=variant.configuration,
            assigned_at=assignment.assigned_at,
        )


class ConversionRequest(BaseModel):
    """Conversion tracking request."""

    subject_id: str = Field(..., min_length=1, description="Subject (session) ID")
    value: float | None = Field(None, description="Conversion value, e.g. revenue")
    metrics: dict[str, float] = Field(default_factory=dict, description="Session metrics")


class ConversionResponse(BaseModel):
    """Conversion tracking response."""

    recorded: bool
    subject_id: str
    experiment_id: str
    experiment_status: str


class StopRequest(BaseModel):
    """Manual stop request."""

    reason: str = "Stopped manually"
    declare_winner: bool = True
    winner_variant_id: str | None = None


class CancelRequest(BaseModel):
    """Cancellation request."""

    reason: str = "Cancelled"


class TransitionResponse(BaseModel):
    """Lifecycle transition response."""

    experiment_id: str
    status: str
    winner_variant_id: str | None = None
    winner_name: str | None = None
