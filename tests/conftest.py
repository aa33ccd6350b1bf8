"""Pytest configuration and fixtures."""

from datetime import date, datetime, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from hospital_os.config import Settings
from hospital_os.observability import ObservabilityLogger
from hospital_os.scheduling.base import AvailabilityProvider, BookingStore, DemandForecaster
from hospital_os.scheduling.models import (
    BreakWindow,
    Provider,
    SchedulingRequest,
    Urgency,
    WorkingHours,
)

# Monday 2025-03-03, 07:00 UTC: before every provider's first hour.
NOW = datetime(2025, 3, 3, 7, 0, tzinfo=timezone.utc)
MONDAY = date(2025, 3, 3)
SATURDAY = date(2025, 3, 8)

WEEKDAYS = range(0, 5)


def weekday_hours(start: int, end: int, days=WEEKDAYS) -> dict[int, WorkingHours]:
    return {day: WorkingHours(start_hour=start, end_hour=end) for day in days}


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        observability_enabled=False,
        observability_log_dir=tmp_path / "logs",
    )


@pytest.fixture
def obs(tmp_path):
    """Observability logger writing into a temp directory."""
    return ObservabilityLogger(log_dir=tmp_path / "obs", enabled=True)


@pytest.fixture
def cardiologist():
    return Provider(
        id="dr-heart",
        name="Dr. Heart",
        department="cardiology",
        specialization="cardiology",
        working_hours=weekday_hours(9, 17),
        current_load=4,
        max_capacity=20,
        preferred_appointment_types=["consultation"],
    )


@pytest.fixture
def orthopedist():
    return Provider(
        id="dr-bones",
        name="Dr. Bones",
        department="orthopedics",
        specialization="orthopedics",
        working_hours=weekday_hours(8, 12, days=range(0, 6)),
        current_load=2,
        max_capacity=10,
        break_window=BreakWindow(start_hour=10, end_hour=11),
    )


@pytest.fixture
def generalist():
    return Provider(
        id="dr-general",
        name="Dr. General",
        department="cardiology",
        working_hours=weekday_hours(8, 16),
        current_load=18,
        max_capacity=20,
    )


@pytest.fixture
def providers(cardiologist, orthopedist, generalist):
    return [cardiologist, orthopedist, generalist]


@pytest.fixture
def routine_request():
    return SchedulingRequest(
        patient_id="patient-1",
        appointment_type="Heart consultation",
        preferred_date=MONDAY,
        urgency=Urgency.ROUTINE,
    )


@pytest.fixture
def mock_availability(providers):
    """Availability provider returning the fixture providers."""
    availability = MagicMock(spec=AvailabilityProvider)
    availability.get_provider_schedules = AsyncMock(return_value=providers)
    return availability


@pytest.fixture
def mock_bookings():
    """Booking store with no existing bookings."""
    store = MagicMock(spec=BookingStore)
    store.get_bookings_for_provider = AsyncMock(return_value=[])
    store.commit_booking = AsyncMock()
    return store


@pytest.fixture
def mock_forecaster():
    """Forecaster returning a flat 5.0 per hour."""
    forecaster = MagicMock(spec=DemandForecaster)
    forecaster.predict_demand = AsyncMock(return_value=[5.0] * 24)
    return forecaster
