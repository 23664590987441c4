"""Append-only audit sinks for experiment lifecycle events."""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from experiment_engine.experimentation.models import utc_now

EXPERIMENT_CREATED = "experiment_created"
EXPERIMENT_STARTED = "experiment_started"
EXPERIMENT_PAUSED = "experiment_paused"
EXPERIMENT_RESUMED = "experiment_resumed"
EXPERIMENT_CANCELLED = "experiment_cancelled"
EXPERIMENT_STOPPED = "experiment_stopped"
WINNER_DECLARED = "winner_declared"


@dataclass
class AuditEvent:
    """Single lifecycle event."""

    experiment_id: str
    event_type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "experiment_id": self.experiment_id,
            "event_type": self.event_type,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


class EventSink(ABC):
    """Abstract base class for audit event sinks."""

    @abstractmethod
    def emit(self, experiment_id: str, event_type: str, data: dict[str, Any] | None = None) -> None:
        """Append an event."""
        pass


class LoggingEventSink(EventSink):
    """Writes audit events to the application log."""

    def emit(self, experiment_id: str, event_type: str, data: dict[str, Any] | None = None) -> None:
        """Log an event with experiment context bound."""
        logger.bind(experiment_id=experiment_id, event_type=event_type).info(
            f"Experiment event {event_type} for {experiment_id}: {data or {}}"
        )


class InMemoryEventSink(EventSink):
    """Keeps audit events in memory for development/testing."""

    def __init__(self):
        """Initialize sink."""
        self._events: list[AuditEvent] = []
        self._lock = threading.Lock()

    def emit(self, experiment_id: str, event_type: str, data: dict[str, Any] | None = None) -> None:
        """Append an event."""
        with self._lock:
            self._events.append(AuditEvent(experiment_id, event_type, dict(data or {})))

    @property
    def events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)

    def events_of_type(self, event_type: str, experiment_id: str | None = None) -> list[AuditEvent]:
        """Events of one type, optionally for a single experiment."""
        return [
            e
            for e in self.events
            if e.event_type == event_type
            and (experiment_id is None or e.experiment_id == experiment_id)
        ]
