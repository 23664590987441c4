"""Cache of running experiments used on the assignment hot path."""

import copy
import threading

from loguru import logger

from experiment_engine.experimentation.models import Experiment, ExperimentStatus
from experiment_engine.experimentation.store import ExperimentStore


class ActiveExperimentCache:
    """Holds snapshots of running experiments keyed by ID.

    The lifecycle controller owns the cache contents: it is populated from
    the store on load, filled on start/resume and invalidated on
    pause/stop/cancel. Counters in cached snapshots are not kept current;
    results are always computed from the store.
    """

    def __init__(self):
        """Initialize cache."""
        self._experiments: dict[str, Experiment] = {}
        self._lock = threading.RLock()

    def populate(self, store: ExperimentStore) -> int:
        """Replace the cache contents with the store's running experiments.

        Returns:
            Number of cached experiments.
        """
        running = store.list_experiments(status=ExperimentStatus.RUNNING)
        with self._lock:
            self._experiments = {e.id: e for e in running}
        logger.info(f"Loaded {len(running)} running experiments into cache")
        return len(running)

    def get(self, experiment_id: str) -> Experiment | None:
        """Get a cached experiment."""
        with self._lock:
            experiment = self._experiments.get(experiment_id)
            return copy.deepcopy(experiment) if experiment else None

    def put(self, experiment: Experiment) -> None:
        """Cache a running experiment."""
        with self._lock:
            self._experiments[experiment.id] = copy.deepcopy(experiment)

    def invalidate(self, experiment_id: str) -> None:
        """Drop an experiment from the cache."""
        with self._lock:
            self._experiments.pop(experiment_id, None)

    def list_experiments(self, scenario: str | None = None) -> list[Experiment]:
        """Cached experiments, optionally for one business scenario."""
        with self._lock:
            experiments = list(self._experiments.values())
            if scenario:
                experiments = [e for e in experiments if e.business_scenario == scenario]
            return [copy.deepcopy(e) for e in experiments]

    def clear(self) -> None:
        """Drop all cached experiments."""
        with self._lock:
            self._experiments.clear()

    def __contains__(self, experiment_id: str) -> bool:
        with self._lock:
            return experiment_id in self._experiments

    def __len__(self) -> int:
        with self._lock:
            return len(self._experiments)
