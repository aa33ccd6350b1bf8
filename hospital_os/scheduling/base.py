"""Capability interfaces and errors for the scheduling engine."""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

from hospital_os.scheduling.models import Booking, HistoricalAppointment, Provider

if TYPE_CHECKING:
    from hospital_os.scheduling.features import SlotFeatures


class SchedulingError(Exception):
    """Base exception for scheduling errors."""

    pass


class EngineInitializationError(SchedulingError):
    """A required capability is missing or unusable."""

    pass


class CollaboratorError(SchedulingError):
    """An external collaborator lookup failed."""

    pass


class CollaboratorUnavailableError(CollaboratorError):
    """The collaborator could not be reached."""

    pass


class CollaboratorTimeoutError(CollaboratorError):
    """The collaborator did not answer in time."""

    pass


class InvalidScoreError(SchedulingError):
    """A scorer returned a value outside [0, 1]."""

    pass


class SchedulingConflict(SchedulingError):
    """The requested slot overlaps an active booking for the provider."""

    def __init__(self, provider_id: str, start_time: datetime, message: Optional[str] = None):
        self.provider_id = provider_id
        self.start_time = start_time
        super().__init__(
            message
            or f"Provider {provider_id} already has an active booking overlapping {start_time.isoformat()}"
        )


class BookingNotFoundError(SchedulingError):
    """No booking exists with the given id."""

    pass


class AvailabilityProvider(ABC):
    """Source of provider schedules."""

    @abstractmethod
    async def get_provider_schedules(
        self,
        department: Optional[str] = None,
        appointment_type: Optional[str] = None,
    ) -> list[Provider]:
        """Return providers with working windows and current load.

        Raises:
            CollaboratorError: If the schedules cannot be loaded
        """
        pass


class BookingStore(ABC):
    """Owner of bookings; the only writer of new appointments."""

    @abstractmethod
    async def get_bookings_for_provider(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
    ) -> list[Booking]:
        """Return bookings for *provider_id* starting in ``[start, end)``."""
        pass

    @abstractmethod
    async def commit_booking(
        self,
        provider_id: str,
        start: datetime,
        duration_minutes: int,
        patient_id: str,
        appointment_type: Optional[str] = None,
    ) -> Booking:
        """Insert a booking if it overlaps no active booking for the provider.

        The overlap check and the insert happen atomically.

        Raises:
            SchedulingConflict: If the slot was taken
        """
        pass


class DemandForecaster(ABC):
    """Predicts appointment demand per hour of a day."""

    @abstractmethod
    async def predict_demand(
        self,
        day: date,
        appointment_type: str,
        department: Optional[str] = None,
    ) -> list[float]:
        """Return 24 demand estimates, one per hour of *day*.

        Raises:
            CollaboratorError: If no forecast can be produced
        """
        pass


class HistoryProvider(ABC):
    """Source of past appointments."""

    @abstractmethod
    async def get_historical_appointments(
        self,
        appointment_type: Optional[str] = None,
        department: Optional[str] = None,
    ) -> list[HistoricalAppointment]:
        pass


class WaitEstimatorBackend(ABC):
    """Predicts how long a patient waits for a given slot."""

    @abstractmethod
    def estimate(self, provider_id: str, start_time: datetime, appointment_type: str) -> float:
        """Return the estimated wait in minutes (unclamped)."""
        pass


class Scorer(ABC):
    """Maps slot features to a suitability score in [0, 1]."""

    @abstractmethod
    def score(self, features: "SlotFeatures") -> float:
        pass

    @property
    def name(self) -> str:
        return type(self).__name__
