"""Pytest fixtures for tests."""

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from experiment_engine.config import EngineSettings
from experiment_engine.experimentation.events import InMemoryEventSink
from experiment_engine.experimentation.lifecycle import (
    ExperimentConfig,
    ExperimentLifecycleController,
    VariantConfig,
)
from experiment_engine.experimentation.models import (
    Assignment,
    Experiment,
    ExperimentStatus,
    Metric,
    MetricType,
    Variant,
)
from experiment_engine.experimentation.store import InMemoryExperimentStore

FIXED_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: float = 0, hours: float = 0) -> None:
        self.now += timedelta(days=days, hours=hours)


def _make_assignments(
    experiment_id: str,
    variant_id: str,
    sessions: int,
    conversions: int,
    prefix: str | None = None,
) -> list[Assignment]:
    """Build assignments where the first `conversions` subjects converted."""
    prefix = prefix or variant_id
    return [
        Assignment(
            subject_id=f"{prefix}-{i}",
            experiment_id=experiment_id,
            variant_id=variant_id,
            converted=i < conversions,
        )
        for i in range(sessions)
    ]


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at a known instant."""
    return FakeClock()


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def engine_settings() -> EngineSettings:
    """Engine settings with a smaller Monte Carlo budget."""
    return EngineSettings(monte_carlo_simulations=2000, random_seed=42)


@pytest.fixture
def store() -> InMemoryExperimentStore:
    """Empty in-memory store."""
    return InMemoryExperimentStore()


@pytest.fixture
def event_sink() -> InMemoryEventSink:
    """Recording event sink."""
    return InMemoryEventSink()


@pytest.fixture
def controller(store, event_sink, engine_settings, clock, rng) -> ExperimentLifecycleController:
    """Lifecycle controller over the in-memory store."""
    return ExperimentLifecycleController(
        store=store,
        event_sink=event_sink,
        engine_settings=engine_settings,
        clock=clock,
        rng=rng,
    )


@pytest.fixture
def experiment_config() -> ExperimentConfig:
    """Two-arm checkout experiment definition."""
    return ExperimentConfig(
        name="checkout_button_color",
        business_scenario="checkout",
        variants=[
            VariantConfig("control", 50, is_control=True, configuration={"color": "blue"}),
            VariantConfig("green_button", 50, configuration={"color": "green"}),
        ],
        metrics=[Metric("purchase", MetricType.CONVERSION, primary=True)],
        minimum_sample_size=100,
    )


@pytest.fixture
def running_experiment(controller, experiment_config) -> Experiment:
    """Created and started experiment."""
    created = controller.create_experiment(experiment_config)
    assert controller.start_experiment(created.experiment.id).success
    return controller.get_experiment(created.experiment.id)


@pytest.fixture
def two_arm_experiment() -> Experiment:
    """Standalone experiment with fixed variant IDs."""
    return Experiment(
        id="exp-1",
        name="Two arms",
        variants=[
            Variant(id="control", name="Control", traffic_split=50, is_control=True),
            Variant(id="treatment", name="Treatment", traffic_split=50),
        ],
        metrics=[Metric("purchase", MetricType.CONVERSION, primary=True)],
        status=ExperimentStatus.RUNNING,
        started_at=FIXED_NOW,
    )


@pytest.fixture
def make_assignments():
    """Factory for synthetic assignments."""
    return _make_assignments
