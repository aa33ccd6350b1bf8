"""Structured observability events for scheduling telemetry."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of observability events."""

    OPTIMIZATION_START = "optimization_start"
    OPTIMIZATION_SUCCESS = "optimization_success"
    OPTIMIZATION_ERROR = "optimization_error"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    CACHE_SHARED = "cache_shared"
    DEPENDENCY_DEGRADED = "dependency_degraded"
    BOOKING_COMMITTED = "booking_committed"
    BOOKING_CONFLICT = "booking_conflict"


class ObservabilityEvent(BaseModel):
    """Base class for all observability events."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class OptimizationEvent(ObservabilityEvent):
    """Event for one slot optimization computation."""

    fingerprint: str
    appointment_type: str
    urgency: str
    department: Optional[str] = None

    # Search space
    providers_considered: int = 0
    candidates_generated: int = 0
    candidates_booked: int = 0
    candidates_scored: int = 0

    # Results
    recommended_count: int = 0
    alternatives_count: int = 0
    top_score: Optional[float] = None
    scorer: Optional[str] = None
    degraded: list[str] = Field(default_factory=list)

    # Error fields
    error_type: Optional[str] = None
    error_message: Optional[str] = None


class CacheEvent(ObservabilityEvent):
    """Event for result cache lookups."""

    fingerprint: str
    backend: str


class DegradationEvent(ObservabilityEvent):
    """A dependency failed and a default was substituted."""

    event_type: EventType = EventType.DEPENDENCY_DEGRADED
    dependency: str
    substitute: str
    reason: str


class BookingEvent(ObservabilityEvent):
    """Event for booking commits at the store boundary."""

    provider_id: str
    start_time: datetime
    duration_minutes: int
    booking_id: Optional[str] = None
