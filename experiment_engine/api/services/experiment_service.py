"""Experiment service wiring for the API."""

from experiment_engine.experimentation.lifecycle import ExperimentLifecycleController
from experiment_engine.experimentation.store import InMemoryExperimentStore

# In-memory store (for demo purposes)
# In production, pass an ExperimentStore backed by the service database
experiment_store = InMemoryExperimentStore()
experiment_service = ExperimentLifecycleController(store=experiment_store)
