"""Database-backed collaborators: availability, bookings and history."""

import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from hospital_os.core.models import AppointmentDB, ProviderDB
from hospital_os.core.repository import (
    MAX_BOOKING_MINUTES,
    AppointmentRepository,
    ProviderRepository,
)
from hospital_os.observability import EventType, ObservabilityLogger, get_observability_logger
from hospital_os.scheduling.base import (
    AvailabilityProvider,
    BookingNotFoundError,
    BookingStore,
    CollaboratorUnavailableError,
    HistoryProvider,
    SchedulingConflict,
    SchedulingError,
)
from hospital_os.scheduling.clock import ensure_aware
from hospital_os.scheduling.conflicts import find_conflicts
from hospital_os.scheduling.models import (
    Booking,
    BookingStatus,
    BreakWindow,
    HistoricalAppointment,
    Provider,
    WorkingHours,
)

logger = logging.getLogger(__name__)


def provider_from_db(row: ProviderDB) -> Provider:
    """Convert a provider row and its availability rules to the scheduling model."""
    return Provider(
        id=row.id,
        name=row.name,
        department=row.department,
        specialization=row.specialization or "general",
        working_hours={
            rule.day_of_week: WorkingHours(start_hour=rule.start_hour, end_hour=rule.end_hour)
            for rule in row.availability_rules
            if rule.is_available
        },
        current_load=row.current_load,
        max_capacity=row.max_capacity,
        break_window=BreakWindow(start_hour=row.break_start_hour, end_hour=row.break_end_hour),
        preferred_appointment_types=list(row.preferred_appointment_types or []),
    )


def booking_from_db(row: AppointmentDB, tz: tzinfo) -> Booking:
    return Booking(
        id=str(row.id),
        provider_id=row.provider_id,
        patient_id=row.patient_id,
        start_time=ensure_aware(row.start_time, tz),
        duration_minutes=row.duration_minutes,
        status=BookingStatus(row.status),
        appointment_type=row.appointment_type,
    )


class DatabaseAvailabilityProvider(AvailabilityProvider):
    """Active providers and their weekly availability rules."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_provider_schedules(
        self,
        department: Optional[str] = None,
        appointment_type: Optional[str] = None,
    ) -> list[Provider]:
        try:
            async with self.session_factory() as session:
                rows = await ProviderRepository(session).list_active(department)
        except SQLAlchemyError as e:
            raise CollaboratorUnavailableError(f"Provider schedules unavailable: {e}") from e
        return [provider_from_db(row) for row in rows]


class DatabaseHistoryProvider(HistoryProvider):
    """Completed appointments as historical records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], tz: tzinfo = timezone.utc):
        self.session_factory = session_factory
        self.tz = tz

    async def get_historical_appointments(
        self,
        appointment_type: Optional[str] = None,
        department: Optional[str] = None,
    ) -> list[HistoricalAppointment]:
        try:
            async with self.session_factory() as session:
                rows = await AppointmentRepository(session).list_history(appointment_type, department)
        except SQLAlchemyError as e:
            raise CollaboratorUnavailableError(f"Appointment history unavailable: {e}") from e
        return [
            HistoricalAppointment(
                appointment_type=row.appointment_type or "unknown",
                scheduled_time=ensure_aware(row.start_time, self.tz).astimezone(self.tz),
                duration_minutes=row.duration_minutes,
                wait_minutes=row.wait_minutes,
                provider_id=row.provider_id,
            )
            for row in rows
        ]


class DatabaseBookingStore(BookingStore):
    """Booking store whose commits are atomic insert-if-no-overlap operations.

    Each commit runs in one transaction that locks the provider row before
    reading overlapping active bookings. SQLite has no row locks, so the
    session factory must come from an engine built by
    ``hospital_os.core.database.build_engine``, whose transactions take the
    database write lock at BEGIN. Commits for the same provider are also
    serialized in-process so they queue on the lock rather than the busy
    timeout.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tz: tzinfo = timezone.utc,
        obs: Optional[ObservabilityLogger] = None,
    ):
        self.session_factory = session_factory
        self.tz = tz
        self.obs = obs or get_observability_logger()
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _local(self, value: datetime) -> datetime:
        return ensure_aware(value, self.tz).astimezone(self.tz)

    async def get_bookings_for_provider(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
    ) -> list[Booking]:
        try:
            async with self.session_factory() as session:
                rows = await AppointmentRepository(session).list_by_provider_date_range(
                    provider_id, self._local(start), self._local(end)
                )
        except SQLAlchemyError as e:
            raise CollaboratorUnavailableError(f"Bookings unavailable for {provider_id}: {e}") from e
        return [booking_from_db(row, self.tz) for row in rows]

    async def commit_booking(
        self,
        provider_id: str,
        start: datetime,
        duration_minutes: int,
        patient_id: str,
        appointment_type: Optional[str] = None,
    ) -> Booking:
        self._check_duration(duration_minutes)
        start = self._local(start)

        async with self._locks[provider_id]:
            async with self.session_factory() as session:
                async with session.begin():
                    if await ProviderRepository(session).lock_for_update(provider_id) is None:
                        raise SchedulingError(f"Unknown provider: {provider_id}")

                    repo = AppointmentRepository(session)
                    await self._ensure_free(repo, provider_id, start, duration_minutes)

                    row = await repo.create(
                        provider_id=provider_id,
                        patient_id=patient_id,
                        appointment_type=appointment_type,
                        start_time=start,
                        duration_minutes=duration_minutes,
                        status=BookingStatus.ACTIVE.value,
                    )
                    booking = booking_from_db(row, self.tz)

        logger.info(f"Committed booking {booking.id} for provider {provider_id} at {start.isoformat()}")
        self.obs.log_booking(
            EventType.BOOKING_COMMITTED, provider_id, start, duration_minutes, booking.id
        )
        return booking

    async def reschedule_booking(
        self,
        booking_id: str,
        new_start: datetime,
        duration_minutes: Optional[int] = None,
    ) -> Booking:
        """Move an active booking, checking overlap against every other booking."""
        appt_id = self._parse_id(booking_id)
        new_start = self._local(new_start)

        async with self.session_factory() as session:
            current = await AppointmentRepository(session).get_by_id(appt_id)
            if current is None:
                raise BookingNotFoundError(f"No booking {booking_id}")
            provider_id = current.provider_id

        async with self._locks[provider_id]:
            async with self.session_factory() as session:
                async with session.begin():
                    await ProviderRepository(session).lock_for_update(provider_id)
                    repo = AppointmentRepository(session)
                    appt = await repo.get_by_id(appt_id)
                    if appt is None:
                        raise BookingNotFoundError(f"No booking {booking_id}")
                    if appt.status != BookingStatus.ACTIVE.value:
                        raise SchedulingError(f"Booking {booking_id} is {appt.status}")

                    duration = duration_minutes or appt.duration_minutes
                    self._check_duration(duration)
                    await self._ensure_free(repo, provider_id, new_start, duration, exclude_id=appt_id)

                    appt.start_time = new_start
                    appt.duration_minutes = duration
                    appt.updated_at = datetime.now(timezone.utc)
                    await session.flush()
                    booking = booking_from_db(appt, self.tz)

        logger.info(f"Rescheduled booking {booking_id} to {new_start.isoformat()}")
        return booking

    async def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        appt_id = self._parse_id(booking_id)
        async with self.session_factory() as session:
            async with session.begin():
                appt = await AppointmentRepository(session).update_status(
                    appt_id, BookingStatus.CANCELLED.value, cancel_reason=reason
                )
                if appt is None:
                    raise BookingNotFoundError(f"No booking {booking_id}")
                booking = booking_from_db(appt, self.tz)
        logger.info(f"Cancelled booking {booking_id}")
        return booking

    async def _ensure_free(
        self,
        repo: AppointmentRepository,
        provider_id: str,
        start: datetime,
        duration_minutes: int,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Raise SchedulingConflict if an active booking overlaps the proposal."""
        nearby = [
            booking_from_db(row, self.tz)
            for row in await repo.list_active_near(
                provider_id, start, start + timedelta(minutes=duration_minutes), exclude_id
            )
        ]
        conflicts = find_conflicts(provider_id, start, duration_minutes, nearby)
        if not conflicts:
            return

        ids = ", ".join(b.id for b in conflicts)
        logger.warning(f"Booking conflict for provider {provider_id} at {start.isoformat()}: {ids}")
        self.obs.log_booking(EventType.BOOKING_CONFLICT, provider_id, start, duration_minutes)
        raise SchedulingConflict(
            provider_id,
            start,
            f"Provider {provider_id} already has active booking(s) {ids} overlapping {start.isoformat()}",
        )

    @staticmethod
    def _check_duration(duration_minutes: int) -> None:
        if not 0 < duration_minutes <= MAX_BOOKING_MINUTES:
            raise ValueError(
                f"duration_minutes must be in 1..{MAX_BOOKING_MINUTES}, got {duration_minutes}"
            )

    @staticmethod
    def _parse_id(booking_id: str) -> uuid.UUID:
        try:
            return uuid.UUID(booking_id)
        except ValueError:
            raise BookingNotFoundError(f"Invalid booking id: {booking_id}")
