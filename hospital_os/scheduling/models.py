"""Pydantic models for the scheduling engine."""

import hashlib
import json
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Appointment types that may be booked on weekends and are always urgent.
EMERGENCY_TYPES: frozenset[str] = frozenset({"emergency", "urgent-care"})

# Appointment types classified as high urgency regardless of lead time.
HIGH_PRIORITY_TYPES: frozenset[str] = frozenset({"surgery", "oncology"})

# Ordered appointment-type vocabulary used for feature encoding.
APPOINTMENT_TYPES: tuple[str, ...] = (
    "consultation",
    "follow-up",
    "emergency",
    "surgery",
    "diagnostic",
)


class Urgency(str, Enum):
    """Ranked urgency categories (routine < urgent < emergency)."""

    ROUTINE = "routine"
    URGENT = "urgent"
    EMERGENCY = "emergency"

    @property
    def ordinal(self) -> int:
        return list(Urgency).index(self)

    @classmethod
    def highest(cls) -> "Urgency":
        return list(cls)[-1]


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class UrgencyLevel(str, Enum):
    """Urgency classification reported in insights."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ResourceAvailability(str, Enum):
    """Qualitative resource availability reported in insights."""

    GOOD = "good"
    LIMITED = "limited"


class HourWindow(BaseModel):
    """A whole-hour window within a single day, ``[start_hour, end_hour)``."""

    model_config = ConfigDict(frozen=True)

    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=1, le=24)

    @model_validator(mode="after")
    def _check_order(self) -> "HourWindow":
        if self.start_hour >= self.end_hour:
            raise ValueError(
                f"start_hour ({self.start_hour}) must be before end_hour ({self.end_hour})"
            )
        return self

    def contains(self, hour: int) -> bool:
        return self.start_hour <= hour < self.end_hour

    @property
    def length(self) -> int:
        return self.end_hour - self.start_hour


class WorkingHours(HourWindow):
    """A provider's working window for one weekday."""


class BreakWindow(HourWindow):
    """A provider's daily break."""

    start_hour: int = Field(default=12, ge=0, le=23)
    end_hour: int = Field(default=13, ge=1, le=24)


class Provider(BaseModel):
    """A bookable provider as returned by the availability provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    department: Optional[str] = None
    specialization: str = "general"
    working_hours: dict[int, WorkingHours] = Field(
        default_factory=dict,
        description="Working window keyed by weekday (0=Mon..6=Sun)",
    )
    current_load: int = Field(default=0, ge=0)
    max_capacity: int = Field(default=20, gt=0)
    break_window: BreakWindow = Field(default_factory=BreakWindow)
    preferred_appointment_types: list[str] = Field(default_factory=list)

    @field_validator("working_hours")
    @classmethod
    def _check_weekdays(cls, value: dict[int, WorkingHours]) -> dict[int, WorkingHours]:
        bad = [day for day in value if not 0 <= day <= 6]
        if bad:
            raise ValueError(f"Weekday keys must be 0..6, got {bad}")
        return value

    def hours_for(self, weekday: int) -> Optional[WorkingHours]:
        """Return the working window for *weekday*, or None if off that day."""
        return self.working_hours.get(weekday)

    @property
    def load_ratio(self) -> float:
        return min(self.current_load / self.max_capacity, 1.0)


class Booking(BaseModel):
    """An existing booking held by the booking store."""

    id: str
    provider_id: str
    patient_id: str
    start_time: datetime
    duration_minutes: int = Field(gt=0)
    status: BookingStatus = BookingStatus.ACTIVE
    appointment_type: Optional[str] = None

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        return self.status == BookingStatus.ACTIVE


class HistoricalAppointment(BaseModel):
    """A past appointment used for demand, wait-time and duration statistics."""

    appointment_type: str
    scheduled_time: datetime
    duration_minutes: int = Field(gt=0)
    wait_minutes: Optional[float] = Field(default=None, ge=0)
    provider_id: Optional[str] = None


class SchedulingRequest(BaseModel):
    """A patient's request for an appointment recommendation."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    appointment_type: str
    preferred_date: date
    urgency: Urgency = Urgency.ROUTINE
    department: Optional[str] = None
    provider_id: Optional[str] = Field(
        default=None,
        description="Restrict primary recommendations to this provider",
    )
    duration_minutes: Optional[int] = Field(default=None, gt=0)

    @field_validator("appointment_type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def is_emergency_class(self) -> bool:
        return self.appointment_type in EMERGENCY_TYPES

    @property
    def allows_weekends(self) -> bool:
        return self.is_emergency_class or self.urgency == Urgency.highest()

    def fingerprint(self) -> str:
        """Deterministic cache key derived from the request's defining fields."""
        payload = json.dumps(
            [
                self.patient_id,
                self.appointment_type,
                self.preferred_date.isoformat(),
                self.urgency.value,
            ],
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class CandidateSlot(BaseModel):
    """A scored, unbooked provider/time pairing."""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    start_time: datetime
    score: float = Field(ge=0.0, le=1.0)
    estimated_wait_minutes: float = Field(ge=0.0, le=120.0)
    resource_utilization: float = Field(ge=0.0, le=1.0)


class AlternativeSlot(BaseModel):
    """A secondary option offered alongside the ranked candidates."""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    start_time: datetime
    reason: str


class Insights(BaseModel):
    """Summary of scheduling conditions for the requested appointment."""

    model_config = ConfigDict(frozen=True)

    best_hour: int = Field(ge=0, le=23)
    best_time_of_day: str
    expected_duration_minutes: int = Field(gt=0)
    urgency_level: UrgencyLevel
    resource_availability: ResourceAvailability


class OptimizationResult(BaseModel):
    """Result of a slot optimization for one request."""

    model_config = ConfigDict(frozen=True)

    fingerprint: str
    recommended_slots: list[CandidateSlot] = Field(default_factory=list, max_length=10)
    alternative_options: list[AlternativeSlot] = Field(default_factory=list, max_length=5)
    insights: Insights
    degraded: list[str] = Field(
        default_factory=list,
        description="Dependencies that were substituted with defaults",
    )
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
