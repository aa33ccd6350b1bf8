"""Observability module for scheduling telemetry."""

from hospital_os.observability.events import (
    BookingEvent,
    CacheEvent,
    DegradationEvent,
    EventType,
    ObservabilityEvent,
    OptimizationEvent,
)
from hospital_os.observability.logger import ObservabilityLogger, get_observability_logger

__all__ = [
    "BookingEvent",
    "CacheEvent",
    "DegradationEvent",
    "EventType",
    "ObservabilityEvent",
    "ObservabilityLogger",
    "OptimizationEvent",
    "get_observability_logger",
]
