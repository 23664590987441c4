"""Experiment lifecycle state machine and auto-stop policy.

States: draft -> running -> {completed, cancelled}, with running <-> paused.
Configuration, readiness and state violations come back as structured
results; store failures on the assignment and conversion paths are logged
and degrade to "no assignment" / "not recorded" so the instrumented user
flow is never blocked.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import numpy as np
from loguru import logger

from experiment_engine.config import EngineSettings
from experiment_engine.config import settings as default_settings
from experiment_engine.experimentation import events as event_types
from experiment_engine.experimentation.assignment import (
    VariantAssignmentEngine,
    is_in_allocation,
    normalize_traffic_splits,
    select_experiment_for_subject,
)
from experiment_engine.experimentation.bayesian import BayesianAnalyzer, BayesianVerdict
from experiment_engine.experimentation.cache import ActiveExperimentCache
from experiment_engine.experimentation.events import EventSink, LoggingEventSink
from experiment_engine.experimentation.exceptions import StoreError
from experiment_engine.experimentation.models import (
    Assignment,
    BayesianRecommendation,
    Experiment,
    ExperimentResults,
    ExperimentStatus,
    Metric,
    Variant,
    utc_now,
)
from experiment_engine.experimentation.results import ResultsAggregator, select_winner
from experiment_engine.experimentation.store import ExperimentStore

Clock = Callable[[], datetime]

SECONDS_PER_DAY = 86400


@dataclass
class VariantConfig:
    """Variant definition supplied when creating an experiment."""

    name: str
    traffic_split: float
    is_control: bool = False
    description: str = ""
    configuration: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExperimentConfig:
    """Experiment definition supplied when creating an experiment.

    Unset numeric fields fall back to the engine settings.
    """

    name: str
    variants: list[VariantConfig]
    metrics: list[Metric] = field(default_factory=list)
    description: str = ""
    business_scenario: str = "default"
    traffic_allocation: float | None = None
    confidence_level: float | None = None
    minimum_sample_size: int | None = None
    created_by: str = "system"


@dataclass
class ValidationResult:
    """Outcome of a configuration or readiness check."""

    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def error(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None


@dataclass
class CreateExperimentResult:
    """Outcome of `create_experiment`."""

    experiment: Experiment | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.experiment is not None and not self.errors


@dataclass
class TransitionResult:
    """Outcome of a lifecycle transition."""

    success: bool
    status: ExperimentStatus | None = None
    error: str | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class StopExperimentResult:
    """Outcome of stopping an experiment."""

    success: bool
    winner_variant_id: str | None = None
    winner_name: str | None = None
    reason: str | None = None
    error: str | None = None


def validate_configuration(config: ExperimentConfig, tolerance: float = 0.01) -> ValidationResult:
    """Check an experiment definition before it is created."""
    errors = []

    if not config.name or not config.name.strip():
        errors.append("Experiment name is required")

    if len(config.variants) < 2:
        errors.append("Experiment must have at least 2 variants")

    controls = [v for v in config.variants if v.is_control]
    if len(controls) != 1:
        errors.append("Experiment must have exactly one control variant")

    if any(v.traffic_split < 0 for v in config.variants):
        errors.append("Variant traffic splits must be non-negative")

    total_split = sum(v.traffic_split for v in config.variants)
    if abs(total_split - 100) > tolerance:
        errors.append(f"Variant traffic splits must sum to 100%, got {total_split:g}%")

    if config.traffic_allocation is not None and not 1 <= config.traffic_allocation <= 100:
        errors.append("Traffic allocation must be between 1% and 100%")

    if config.confidence_level is not None and not 0 < config.confidence_level < 100:
        errors.append("Confidence level must be between 0% and 100%")

    if config.minimum_sample_size is not None and config.minimum_sample_size < 0:
        errors.append("Minimum sample size must be non-negative")

    return ValidationResult(errors)


def check_readiness(experiment: Experiment) -> ValidationResult:
    """Check that a draft experiment can start."""
    errors = []

    if len(experiment.variants) < 2:
        errors.append("Experiment needs at least 2 variants")

    if sum(1 for v in experiment.variants if v.is_control) != 1:
        errors.append("Experiment needs exactly one control variant")

    if not experiment.metrics:
        errors.append("Experiment needs at least one metric to track")
    elif not any(m.primary for m in experiment.metrics):
        errors.append("Experiment needs at least one primary metric")

    return ValidationResult(errors)


class ExperimentLifecycleController:
    """Drives experiments through their lifecycle.

    Features:
    - Validated creation and readiness-checked start
    - Idempotent, deterministic subject assignment
    - Conversion tracking with auto-stop evaluation
    - Single-writer stop via compare-and-swap on status

    Usage:
        controller = ExperimentLifecycleController(InMemoryExperimentStore())
        created = controller.create_experiment(config)
        controller.start_experiment(created.experiment.id)

        assignment = controller.assign_subject("session-1", created.experiment.id)
        controller.record_conversion("session-1", created.experiment.id, value=49.0)
    """

    def __init__(
        self,
        store: ExperimentStore,
        event_sink: EventSink | None = None,
        cache: ActiveExperimentCache | None = None,
        engine_settings: EngineSettings | None = None,
        clock: Clock | None = None,
        rng: np.random.Generator | None = None,
        assignment_engine: VariantAssignmentEngine | None = None,
    ):
        """Initialize controller.

        Args:
            store: Persistent store for experiments and assignments.
            event_sink: Audit sink for lifecycle events. Defaults to the log.
            cache: Cache of running experiments.
            engine_settings: Engine settings. Defaults to the global settings.
            clock: Source of current UTC time.
            rng: Random source for Monte Carlo simulation.
            assignment_engine: Variant assignment engine.
        """
        self.store = store
        self.event_sink = event_sink or LoggingEventSink()
        self.cache = cache if cache is not None else ActiveExperimentCache()
        self.settings = engine_settings or default_settings
        self.clock = clock or utc_now
        self.assignment_engine = assignment_engine or VariantAssignmentEngine()

        if rng is None:
            rng = np.random.default_rng(self.settings.random_seed)

        self.aggregator = ResultsAggregator(
            low_conversion_threshold=self.settings.low_conversion_threshold
        )
        self.bayesian = BayesianAnalyzer(
            simulations=self.settings.monte_carlo_simulations,
            rng=rng,
        )

    # Queries

    def load_active_experiments(self) -> int:
        """Populate the active cache from the store."""
        return self.cache.populate(self.store)

    def get_experiment(self, experiment_id: str) -> Experiment | None:
        """Get an experiment from the store."""
        return self.store.get_experiment(experiment_id)

    def list_experiments(
        self,
        status: ExperimentStatus | None = None,
        scenario: str | None = None,
    ) -> list[Experiment]:
        """List experiments from the store."""
        return self.store.list_experiments(status=status, scenario=scenario)

    # Lifecycle transitions

    def create_experiment(self, config: ExperimentConfig) -> CreateExperimentResult:
        """Validate and persist a new draft experiment.

        Args:
            config: Experiment definition.

        Returns:
            The created experiment, or the validation errors.
        """
        validation = validate_configuration(config, self.settings.split_tolerance)
        if not validation.valid:
            logger.warning(f"Rejected experiment '{config.name}': {validation.error}")
            return CreateExperimentResult(errors=validation.errors)

        now = self.clock()
        variants = [
            Variant(
                id=str(uuid.uuid4()),
                name=v.name,
                description=v.description,
                traffic_split=v.traffic_split,
                is_control=v.is_control,
                configuration=dict(v.configuration),
            )
            for v in config.variants
        ]
        normalize_traffic_splits(variants)

        experiment = Experiment(
            id=str(uuid.uuid4()),
            name=config.name,
            description=config.description,
            business_scenario=config.business_scenario,
            variants=variants,
            metrics=list(config.metrics),
            traffic_allocation=(
                config.traffic_allocation
                if config.traffic_allocation is not None
                else self.settings.default_traffic_allocation
            ),
            confidence_level=(
                config.confidence_level
                if config.confidence_level is not None
                else self.settings.default_confidence_level
            ),
            minimum_sample_size=(
                config.minimum_sample_size
                if config.minimum_sample_size is not None
                else self.settings.default_minimum_sample_size
            ),
            created_by=config.created_by,
            created_at=now,
            updated_at=now,
        )

        try:
            experiment = self.store.create_experiment(experiment)
        except StoreError as e:
            logger.error(f"Failed to create experiment '{config.name}': {e}")
            return CreateExperimentResult(errors=[str(e)])

        self.event_sink.emit(experiment.id, event_types.EXPERIMENT_CREATED, {"name": experiment.name})
        logger.info(f"Created experiment: {experiment.name} ({experiment.id})")
        return CreateExperimentResult(experiment=experiment)

    def start_experiment(self, experiment_id: str) -> TransitionResult:
        """Start a draft experiment after a readiness check."""
        experiment = self.store.get_experiment(experiment_id)
        if experiment is None:
            return TransitionResult(False, error=f"Experiment '{experiment_id}' not found")

        if experiment.status != ExperimentStatus.DRAFT:
            return TransitionResult(
                False,
                status=experiment.status,
                error=(
                    f"Experiment can only be started from draft status "
                    f"(current: {experiment.status.value})"
                ),
            )

        readiness = check_readiness(experiment)
        if not readiness.valid:
            return TransitionResult(
                False, status=experiment.status, error=readiness.error, errors=readiness.errors
            )

        now = self.clock()
        result = self._transition(
            experiment,
            ExperimentStatus.RUNNING,
            event_types.EXPERIMENT_STARTED,
            started_at=now,
            updated_at=now,
        )
        if result.success:
            self._refresh_cache(experiment_id)
        return result

    def pause_experiment(self, experiment_id: str) -> TransitionResult:
        """Pause a running experiment; assignments stop until resumed."""
        experiment = self.store.get_experiment(experiment_id)
        if experiment is None:
            return TransitionResult(False, error=f"Experiment '{experiment_id}' not found")

        if experiment.status != ExperimentStatus.RUNNING:
            return TransitionResult(
                False,
                status=experiment.status,
                error=f"Only running experiments can be paused (current: {experiment.status.value})",
            )

        result = self._transition(
            experiment,
            ExperimentStatus.PAUSED,
            event_types.EXPERIMENT_PAUSED,
            updated_at=self.clock(),
        )
        if result.success:
            self.cache.invalidate(experiment_id)
        return result

    def resume_experiment(self, experiment_id: str) -> TransitionResult:
        """Resume a paused experiment."""
        experiment = self.store.get_experiment(experiment_id)
        if experiment is None:
            return TransitionResult(False, error=f"Experiment '{experiment_id}' not found")

        if experiment.status != ExperimentStatus.PAUSED:
            return TransitionResult(
                False,
                status=experiment.status,
                error=f"Only paused experiments can be resumed (current: {experiment.status.value})",
            )

        result = self._transition(
            experiment,
            ExperimentStatus.RUNNING,
            event_types.EXPERIMENT_RESUMED,
            updated_at=self.clock(),
        )
        if result.success:
            self._refresh_cache(experiment_id)
        return result

    def cancel_experiment(self, experiment_id: str, reason: str = "Cancelled") -> TransitionResult:
        """Cancel an experiment that has not finished. Irreversible."""
        experiment = self.store.get_experiment(experiment_id)
        if experiment is None:
            return TransitionResult(False, error=f"Experiment '{experiment_id}' not found")

        if experiment.status.is_terminal:
            return TransitionResult(
                False,
                status=experiment.status,
                error=f"Experiment is already {experiment.status.value}",
            )

        now = self.clock()
        result = self._transition(
            experiment,
            ExperimentStatus.CANCELLED,
            event_types.EXPERIMENT_CANCELLED,
            event_data={"reason": reason},
            ended_at=now,
            updated_at=now,
        )
        if result.success:
            self.cache.invalidate(experiment_id)
        return result

    def stop_experiment(
        self,
        experiment_id: str,
        reason: str = "Stopped manually",
        declare_winner: bool = True,
        winner_variant_id: str | None = None,
    ) -> StopExperimentResult:
        """Complete a running (or paused) experiment.

        Args:
            experiment_id: Experiment ID.
            reason: Reason recorded in the audit log.
            declare_winner: Determine the winner from the final results.
            winner_variant_id: Explicit winner, overriding the computed one.

        Returns:
            Stop outcome with the declared winner, if any.
        """
        try:
            experiment = self.store.get_experiment(experiment_id)
        except StoreError as e:
            logger.error(f"Failed to load experiment {experiment_id}: {e}")
            return StopExperimentResult(False, error=str(e))

        if experiment is None:
            return StopExperimentResult(False, error=f"Experiment '{experiment_id}' not found")

        if experiment.status not in (ExperimentStatus.RUNNING, ExperimentStatus.PAUSED):
            return StopExperimentResult(
                False,
                error=f"Experiment is not currently running (current: {experiment.status.value})",
            )

        if winner_variant_id is not None and experiment.get_variant(winner_variant_id) is None:
            return StopExperimentResult(
                False, error=f"Variant '{winner_variant_id}' not found in experiment"
            )

        try:
            return self._stop(experiment, reason, declare_winner, winner_variant_id)
        except StoreError as e:
            logger.error(f"Failed to stop experiment {experiment_id}: {e}")
            return StopExperimentResult(False, error=str(e))

    # Assignment and conversion tracking

    def assign_subject(
        self,
        subject_id: str,
        experiment_id: str,
        user_agent: str | None = None,
    ) -> Assignment | None:
        """Assign a subject to a variant of a running experiment.

        Repeated calls return the existing assignment. Subjects outside the
        traffic allocation are not enrolled.

        Returns:
            The assignment, or None if the subject was not assigned.
        """
        try:
            experiment = self._get_running_experiment(experiment_id)
            if experiment is None:
                logger.debug(f"Experiment '{experiment_id}' is not running, skipping assignment")
                return None

            existing = self.store.get_assignment(subject_id, experiment_id)
            if existing is not None:
                return existing

            if not is_in_allocation(subject_id, experiment):
                logger.debug(f"Subject {subject_id} outside allocation of {experiment_id}")
                return None

            return self._assign(subject_id, experiment, user_agent)
        except StoreError as e:
            logger.error(f"Assignment failed for {subject_id} in {experiment_id}: {e}")
            return None

    def assign_for_scenario(
        self,
        subject_id: str,
        scenario: str,
        user_agent: str | None = None,
    ) -> Assignment | None:
        """Enroll a subject in one of the running experiments of a scenario.

        Reads the active cache, falling back to the store when the cache has
        no running experiment for the scenario.
        """
        try:
            experiments = self.cache.list_experiments(scenario=scenario)
            if not experiments:
                running = self.store.list_experiments(
                    status=ExperimentStatus.RUNNING, scenario=scenario
                )
                for experiment in running:
                    if self._cache_if_running(experiment) is not None:
                        experiments.append(experiment)
            if not experiments:
                return None

            for experiment in experiments:
                existing = self.store.get_assignment(subject_id, experiment.id)
                if existing is not None:
                    return existing

            selected = select_experiment_for_subject(subject_id, scenario, experiments)
            if selected is None:
                logger.debug(f"Subject {subject_id} not enrolled in scenario '{scenario}'")
                return None

            return self._assign(subject_id, selected, user_agent)
        except StoreError as e:
            logger.error(f"Assignment failed for {subject_id} in scenario '{scenario}': {e}")
            return None

    def record_conversion(
        self,
        subject_id: str,
        experiment_id: str,
        value: float | None = None,
        metrics: dict[str, float] | None = None,
    ) -> bool:
        """Record a conversion for an assigned subject.

        A subject converts at most once; later calls only merge session
        metrics. Running experiments are then checked for auto-stop.

        Returns:
            True if the conversion was recorded.
        """
        try:
            assignment = self.store.get_assignment(subject_id, experiment_id)
            if assignment is None:
                logger.warning(
                    f"Cannot record conversion: no assignment for {subject_id} "
                    f"in experiment {experiment_id}"
                )
                return False

            if self.store.mark_conversion(subject_id, experiment_id, value, metrics):
                self.store.increment_variant_counter(
                    experiment_id, assignment.variant_id, "conversions"
                )
        except StoreError as e:
            logger.error(f"Failed to record conversion for {subject_id} in {experiment_id}: {e}")
            return False

        if self.settings.auto_stop_enabled:
            self.evaluate_auto_stop(experiment_id)

        return True

    def get_variant_configuration(
        self,
        subject_id: str,
        experiment_id: str,
    ) -> dict[str, Any] | None:
        """Configuration payload of the subject's assigned variant."""
        try:
            assignment = self.store.get_assignment(subject_id, experiment_id)
            if assignment is None:
                return None

            experiment = self.store.get_experiment(experiment_id)
        except StoreError as e:
            logger.error(f"Failed to load configuration for {subject_id}: {e}")
            return None

        variant = experiment.get_variant(assignment.variant_id) if experiment else None
        return dict(variant.configuration) if variant else None

    # Analysis

    def compute_results(self, experiment_id: str) -> ExperimentResults | None:
        """Aggregate and persist the current results of an experiment."""
        try:
            experiment = self.store.get_experiment(experiment_id)
            if experiment is None:
                return None

            results = self.aggregator.aggregate(
                experiment, self.store.list_assignments(experiment_id), now=self.clock()
            )
            self.store.save_results(results)
            return results
        except StoreError as e:
            logger.error(f"Failed to compute results for {experiment_id}: {e}")
            return None

    def analyze_bayesian(self, experiment_id: str) -> BayesianVerdict | None:
        """Bayesian comparison of the first treatment against control."""
        try:
            experiment = self.store.get_experiment(experiment_id)
            if experiment is None:
                return None
            return self._bayesian_verdict(experiment, self.store.list_assignments(experiment_id))
        except StoreError as e:
            logger.error(f"Bayesian analysis failed for {experiment_id}: {e}")
            return None

    def evaluate_auto_stop(self, experiment_id: str) -> StopExperimentResult | None:
        """Stop a running experiment if a stopping condition holds.

        Conditions, in order: overall significance, maximum duration, and a
        Bayesian deploy verdict once twice the minimum sample is collected.

        Returns:
            The stop outcome if a stop was attempted, else None.
        """
        try:
            experiment = self.store.get_experiment(experiment_id)
            if experiment is None or experiment.status != ExperimentStatus.RUNNING:
                return None

            assignments = self.store.list_assignments(experiment_id)
            now = self.clock()
            results = self.aggregator.aggregate(experiment, assignments, now=now)

            if results.significance.is_significant:
                return self._stop(
                    experiment, "Statistical significance reached", True, results=results
                )

            if experiment.started_at is not None:
                elapsed_days = (now - experiment.started_at).total_seconds() / SECONDS_PER_DAY
                if elapsed_days > self.settings.max_duration_days:
                    return self._stop(
                        experiment, "Maximum test duration reached", True, results=results
                    )

            if len(assignments) >= experiment.minimum_sample_size * 2:
                verdict = self._bayesian_verdict(experiment, assignments)
                if verdict and verdict.recommendation == BayesianRecommendation.DEPLOY:
                    return self._stop(
                        experiment,
                        "Bayesian analysis recommends deployment",
                        True,
                        results=results,
                    )
        except StoreError as e:
            logger.error(f"Auto-stop evaluation failed for {experiment_id}: {e}")

        return None

    # Internals

    def _get_running_experiment(self, experiment_id: str) -> Experiment | None:
        experiment = self.cache.get(experiment_id)
        if experiment is not None:
            return experiment

        experiment = self.store.get_experiment(experiment_id)
        if experiment is None or experiment.status != ExperimentStatus.RUNNING:
            return None

        return self._cache_if_running(experiment)

    def _cache_if_running(self, experiment: Experiment) -> Experiment | None:
        self.cache.put(experiment)

        # A stop or pause may have invalidated the cache after our read
        current = self.store.get_experiment(experiment.id)
        if current is None or current.status != ExperimentStatus.RUNNING:
            self.cache.invalidate(experiment.id)
            return None
        return experiment

    def _refresh_cache(self, experiment_id: str) -> None:
        experiment = self.store.get_experiment(experiment_id)
        if experiment is not None and experiment.status == ExperimentStatus.RUNNING:
            self.cache.put(experiment)

    def _assign(
        self,
        subject_id: str,
        experiment: Experiment,
        user_agent: str | None,
    ) -> Assignment:
        variant = self.assignment_engine.assign(subject_id, experiment)
        assignment, created = self.store.insert_assignment(
            Assignment(
                subject_id=subject_id,
                experiment_id=experiment.id,
                variant_id=variant.id,
                assigned_at=self.clock(),
                user_agent=user_agent,
            )
        )

        if created:
            self.store.increment_variant_counter(experiment.id, assignment.variant_id, "sessions")
            logger.debug(f"Assigned {subject_id} to {experiment.id}/{variant.name}")

        return assignment

    def _transition(
        self,
        experiment: Experiment,
        new_status: ExperimentStatus,
        event_type: str,
        event_data: dict[str, Any] | None = None,
        **changes: Any,
    ) -> TransitionResult:
        try:
            swapped = self.store.transition_status(
                experiment.id, experiment.status, new_status, **changes
            )
        except StoreError as e:
            logger.error(f"Failed to move {experiment.id} to {new_status.value}: {e}")
            return TransitionResult(False, status=experiment.status, error=str(e))

        if not swapped:
            return TransitionResult(
                False,
                error="Experiment status was changed by a concurrent request",
            )

        self.event_sink.emit(experiment.id, event_type, event_data)
        logger.info(
            f"Experiment {experiment.name} ({experiment.id}): "
            f"{experiment.status.value} -> {new_status.value}"
        )
        return TransitionResult(True, status=new_status)

    def _stop(
        self,
        experiment: Experiment,
        reason: str,
        declare_winner: bool,
        winner_variant_id: str | None = None,
        results: ExperimentResults | None = None,
    ) -> StopExperimentResult:
        winner_id = winner_variant_id
        if winner_id is None and declare_winner:
            if results is None:
                results = self.aggregator.aggregate(
                    experiment,
                    self.store.list_assignments(experiment.id),
                    now=self.clock(),
                )
            winner = select_winner(results, experiment.confidence_level)
            winner_id = winner.variant_id if winner else None

        now = self.clock()
        swapped = self.store.transition_status(
            experiment.id,
            experiment.status,
            ExperimentStatus.COMPLETED,
            ended_at=now,
            winner_variant_id=winner_id,
            updated_at=now,
        )
        if not swapped:
            logger.info(f"Experiment {experiment.id} was already stopped by another request")
            return StopExperimentResult(
                False,
                reason=reason,
                error="Experiment was stopped or changed by a concurrent request",
            )

        if results is not None:
            self.store.save_results(results)
        self.cache.invalidate(experiment.id)

        winner_variant = experiment.get_variant(winner_id) if winner_id else None
        winner_name = winner_variant.name if winner_variant else None

        self.event_sink.emit(
            experiment.id,
            event_types.EXPERIMENT_STOPPED,
            {"reason": reason, "winner": winner_id},
        )
        if winner_id:
            self.event_sink.emit(
                experiment.id,
                event_types.WINNER_DECLARED,
                {"variant_id": winner_id, "variant_name": winner_name},
            )

        logger.info(
            f"Stopped experiment {experiment.name} ({experiment.id}): {reason}"
            + (f", winner: {winner_name}" if winner_name else "")
        )
        return StopExperimentResult(
            True, winner_variant_id=winner_id, winner_name=winner_name, reason=reason
        )

    def _bayesian_verdict(
        self,
        experiment: Experiment,
        assignments: list[Assignment],
    ) -> BayesianVerdict | None:
        control = experiment.control
        treatments = experiment.treatments
        if control is None or not treatments:
            return None

        treatment = treatments[0]
        control_assignments = [a for a in assignments if a.variant_id == control.id]
        treatment_assignments = [a for a in assignments if a.variant_id == treatment.id]

        return self.bayesian.analyze(
            control_conversions=sum(1 for a in control_assignments if a.converted),
            control_sessions=len(control_assignments),
            treatment_conversions=sum(1 for a in treatment_assignments if a.converted),
            treatment_sessions=len(treatment_assignments),
            minimum_sample_size=experiment.minimum_sample_size,
            treatment_variant_id=treatment.id,
        )
