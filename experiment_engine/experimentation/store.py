"""Persistent store interface for experiments, assignments and results.

The engine never computes "current + 1" itself: counter updates, the
(subject, experiment) uniqueness constraint and status transitions are
atomic operations of the store.
"""

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any

from experiment_engine.experimentation.exceptions import StoreError
from experiment_engine.experimentation.models import (
    Assignment,
    Experiment,
    ExperimentResults,
    ExperimentStatus,
)

COUNTERS = ("sessions", "conversions")
TRANSITION_FIELDS = ("started_at", "ended_at", "winner_variant_id", "updated_at")


class ExperimentStore(ABC):
    """Abstract base class for experiment storage backends.

    Implementations raise `StoreError` when the backing store fails.
    """

    @abstractmethod
    def create_experiment(self, experiment: Experiment) -> Experiment:
        """Persist a new experiment."""
        pass

    @abstractmethod
    def get_experiment(self, experiment_id: str) -> Experiment | None:
        """Get a snapshot of an experiment."""
        pass

    @abstractmethod
    def list_experiments(
        self,
        status: ExperimentStatus | None = None,
        scenario: str | None = None,
    ) -> list[Experiment]:
        """List experiments, optionally filtered."""
        pass

    @abstractmethod
    def transition_status(
        self,
        experiment_id: str,
        expected: ExperimentStatus,
        new: ExperimentStatus,
        **changes: Any,
    ) -> bool:
        """Atomically move an experiment from `expected` to `new`.

        Returns:
            True if this call performed the transition, False if the
            experiment was not in the expected status.
        """
        pass

    @abstractmethod
    def insert_assignment(self, assignment: Assignment) -> tuple[Assignment, bool]:
        """Insert an assignment unless one exists for (subject, experiment).

        Returns:
            The stored assignment and whether it was created by this call.
        """
        pass

    @abstractmethod
    def get_assignment(self, subject_id: str, experiment_id: str) -> Assignment | None:
        """Get the assignment for a subject within an experiment."""
        pass

    @abstractmethod
    def list_assignments(self, experiment_id: str) -> list[Assignment]:
        """List all assignments of an experiment."""
        pass

    @abstractmethod
    def mark_conversion(
        self,
        subject_id: str,
        experiment_id: str,
        value: float | None = None,
        metrics: dict[str, float] | None = None,
    ) -> bool:
        """Flag an assignment as converted and merge session metrics.

        Returns:
            True if this call flipped the conversion flag.
        """
        pass

    @abstractmethod
    def increment_variant_counter(
        self,
        experiment_id: str,
        variant_id: str,
        counter: str,
        amount: int = 1,
    ) -> int:
        """Atomically increment a variant counter and return the new value."""
        pass

    @abstractmethod
    def save_results(self, results: ExperimentResults) -> None:
        """Persist the latest results of an experiment."""
        pass

    @abstractmethod
    def get_results(self, experiment_id: str) -> ExperimentResults | None:
        """Get the latest stored results of an experiment."""
        pass


class InMemoryExperimentStore(ExperimentStore):
    """In-memory experiment storage for development/testing.

    All operations run under one re-entrant lock and hand out copies, so
    callers never mutate stored state directly.
    """

    def __init__(self):
        """Initialize store."""
        self._experiments: dict[str, Experiment] = {}
        self._assignments: dict[tuple[str, str], Assignment] = {}
        self._results: dict[str, ExperimentResults] = {}
        self._lock = threading.RLock()

    def create_experiment(self, experiment: Experiment) -> Experiment:
        """Persist a new experiment."""
        with self._lock:
            if experiment.id in self._experiments:
                raise StoreError(f"Experiment '{experiment.id}' already exists")
            self._experiments[experiment.id] = copy.deepcopy(experiment)
            return copy.deepcopy(experiment)

    def get_experiment(self, experiment_id: str) -> Experiment | None:
        """Get a snapshot of an experiment."""
        with self._lock:
            experiment = self._experiments.get(experiment_id)
            return copy.deepcopy(experiment) if experiment else None

    def list_experiments(
        self,
        status: ExperimentStatus | None = None,
        scenario: str | None = None,
    ) -> list[Experiment]:
        """List experiments, optionally filtered."""
        with self._lock:
            experiments = list(self._experiments.values())
            if status:
                experiments = [e for e in experiments if e.status == status]
            if scenario:
                experiments = [e for e in experiments if e.business_scenario == scenario]
            return [copy.deepcopy(e) for e in experiments]

    def transition_status(
        self,
        experiment_id: str,
        expected: ExperimentStatus,
        new: ExperimentStatus,
        **changes: Any,
    ) -> bool:
        """Compare-and-swap the experiment status."""
        unknown = set(changes) - set(TRANSITION_FIELDS)
        if unknown:
            raise StoreError(f"Cannot change fields on transition: {sorted(unknown)}")

        with self._lock:
            experiment = self._experiments.get(experiment_id)
            if experiment is None or experiment.status != expected:
                return False

            experiment.status = new
            for name, value in changes.items():
                setattr(experiment, name, value)
            return True

    def insert_assignment(self, assignment: Assignment) -> tuple[Assignment, bool]:
        """Insert an assignment, honouring (subject, experiment) uniqueness."""
        with self._lock:
            existing = self._assignments.get(assignment.key)
            if existing is not None:
                return copy.deepcopy(existing), False

            self._assignments[assignment.key] = copy.deepcopy(assignment)
            return copy.deepcopy(assignment), True

    def get_assignment(self, subject_id: str, experiment_id: str) -> Assignment | None:
        """Get the assignment for a subject within an experiment."""
        with self._lock:
            assignment = self._assignments.get((subject_id, experiment_id))
            return copy.deepcopy(assignment) if assignment else None

    def list_assignments(self, experiment_id: str) -> list[Assignment]:
        """List all assignments of an experiment."""
        with self._lock:
            return [
                copy.deepcopy(a)
                for a in self._assignments.values()
                if a.experiment_id == experiment_id
            ]

    def mark_conversion(
        self,
        subject_id: str,
        experiment_id: str,
        value: float | None = None,
        metrics: dict[str, float] | None = None,
    ) -> bool:
        """Flag an assignment as converted.

        The conversion value of the first conversion is kept; session
        metrics are merged on every call.
        """
        with self._lock:
            assignment = self._assignments.get((subject_id, experiment_id))
            if assignment is None:
                raise StoreError(
                    f"No assignment for subject '{subject_id}' "
                    f"in experiment '{experiment_id}'"
                )

            if metrics:
                assignment.session_metrics.update(metrics)

            if assignment.converted:
                return False

            assignment.converted = True
            assignment.conversion_value = value
            return True

    def increment_variant_counter(
        self,
        experiment_id: str,
        variant_id: str,
        counter: str,
        amount: int = 1,
    ) -> int:
        """Atomically increment a variant counter."""
        if counter not in COUNTERS:
            raise StoreError(f"Unknown variant counter '{counter}'")

        with self._lock:
            experiment = self._experiments.get(experiment_id)
            variant = experiment.get_variant(variant_id) if experiment else None
            if variant is None:
                raise StoreError(
                    f"Variant '{variant_id}' not found in experiment '{experiment_id}'"
                )

            value = getattr(variant, counter) + amount
            setattr(variant, counter, value)
            return value

    def save_results(self, results: ExperimentResults) -> None:
        """Persist the latest results of an experiment."""
        with self._lock:
            self._results[results.experiment_id] = copy.deepcopy(results)

    def get_results(self, experiment_id: str) -> ExperimentResults | None:
        """Get the latest stored results of an experiment."""
        with self._lock:
            results = self._results.get(experiment_id)
            return copy.deepcopy(results) if results else None

    def clear(self) -> None:
        """Clear all records."""
        with self._lock:
            self._experiments.clear()
            self._assignments.clear()
            self._results.clear()
