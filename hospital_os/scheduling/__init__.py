"""Appointment scheduling and slot optimization engine."""

from hospital_os.scheduling.models import (
    AlternativeSlot,
    Booking,
    BookingStatus,
    CandidateSlot,
    HistoricalAppointment,
    Insights,
    OptimizationResult,
    Provider,
    SchedulingRequest,
    Urgency,
    WorkingHours,
)
from hospital_os.scheduling.base import (
    AvailabilityProvider,
    BookingStore,
    CollaboratorError,
    DemandForecaster,
    EngineInitializationError,
    HistoryProvider,
    InvalidScoreError,
    SchedulingConflict,
    SchedulingError,
    Scorer,
    WaitEstimatorBackend,
)
from hospital_os.scheduling.conflicts import find_conflicts, has_conflict
from hospital_os.scheduling.cache import InMemoryCacheBackend, RedisCacheBackend, ResultCache
from hospital_os.scheduling.scoring import HeuristicScorer
from hospital_os.scheduling.engine import SchedulingEngine, build_engine_from_settings

__all__ = [
    "AlternativeSlot",
    "AvailabilityProvider",
    "Booking",
    "BookingStatus",
    "BookingStore",
    "CandidateSlot",
    "CollaboratorError",
    "DemandForecaster",
    "EngineInitializationError",
    "HeuristicScorer",
    "HistoricalAppointment",
    "HistoryProvider",
    "InMemoryCacheBackend",
    "Insights",
    "InvalidScoreError",
    "OptimizationResult",
    "Provider",
    "RedisCacheBackend",
    "ResultCache",
    "SchedulingConflict",
    "SchedulingEngine",
    "SchedulingError",
    "SchedulingRequest",
    "Scorer",
    "Urgency",
    "WaitEstimatorBackend",
    "WorkingHours",
    "build_engine_from_settings",
    "find_conflicts",
    "has_conflict",
]
