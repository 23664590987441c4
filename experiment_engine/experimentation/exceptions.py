"""Exceptions raised by the experimentation engine."""


class ExperimentEngineError(Exception):
    """Base class for engine errors."""


class StoreError(ExperimentEngineError):
    """Persistent store operation failed."""
