"""Repositories for providers, availability rules and appointments."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hospital_os.core.models import AppointmentDB, ProviderAvailability, ProviderDB

# Upper bound on a single booking; bounds the overlap lookup window.
MAX_BOOKING_MINUTES = 24 * 60


class ProviderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> ProviderDB:
        provider = ProviderDB(**kwargs)
        self.session.add(provider)
        await self.session.flush()
        return provider

    async def get_by_id(self, provider_id: str) -> Optional[ProviderDB]:
        return await self.session.get(ProviderDB, provider_id)

    async def lock_for_update(self, provider_id: str) -> Optional[ProviderDB]:
        """Load the provider row with a write lock held until the transaction ends."""
        stmt = select(ProviderDB).where(ProviderDB.id == provider_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_active(self, department: Optional[str] = None) -> Sequence[ProviderDB]:
        stmt = (
            select(ProviderDB)
            .where(ProviderDB.active.is_(True))
            .options(selectinload(ProviderDB.availability_rules))
            .order_by(ProviderDB.id)
        )
        if department:
            stmt = stmt.where(ProviderDB.department == department)
        result = await self.session.execute(stmt)
        return result.scalars().all()


class ProviderAvailabilityRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_provider(self, provider_id: str) -> Sequence[ProviderAvailability]:
        stmt = (
            select(ProviderAvailability)
            .where(ProviderAvailability.provider_id == provider_id)
            .order_by(ProviderAvailability.day_of_week)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def set_rule(
        self,
        provider_id: str,
        day_of_week: int,
        start_hour: int,
        end_hour: int,
        is_available: bool = True,
    ) -> ProviderAvailability:
        """Create or replace the provider's rule for *day_of_week*."""
        stmt = select(ProviderAvailability).where(
            ProviderAvailability.provider_id == provider_id,
            ProviderAvailability.day_of_week == day_of_week,
        )
        result = await self.session.execute(stmt)
        rule = result.scalar_one_or_none()
        if rule is None:
            rule = ProviderAvailability(provider_id=provider_id, day_of_week=day_of_week)
            self.session.add(rule)
        rule.start_hour = start_hour
        rule.end_hour = end_hour
        rule.is_available = is_available
        await self.session.flush()
        return rule


class AppointmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> AppointmentDB:
        appt = AppointmentDB(**kwargs)
        self.session.add(appt)
        await self.session.flush()
        return appt

    async def get_by_id(self, appointment_id: uuid.UUID) -> Optional[AppointmentDB]:
        return await self.session.get(AppointmentDB, appointment_id)

    async def list_by_provider_date_range(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        active_only: bool = False,
    ) -> Sequence[AppointmentDB]:
        """Appointments for the provider starting in ``[start, end)``."""
        stmt = select(AppointmentDB).where(
            AppointmentDB.provider_id == provider_id,
            AppointmentDB.start_time >= start,
            AppointmentDB.start_time < end,
        )
        if active_only:
            stmt = stmt.where(AppointmentDB.status == "active")
        stmt = stmt.order_by(AppointmentDB.start_time)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_active_near(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Sequence[AppointmentDB]:
        """Active appointments of the provider that could overlap ``[start, end)``.

        Superset of the overlapping rows: anything starting before *end* and
        no more than ``MAX_BOOKING_MINUTES`` before *start*.
        """
        stmt = select(AppointmentDB).where(
            AppointmentDB.provider_id == provider_id,
            AppointmentDB.status == "active",
            AppointmentDB.start_time < end,
            AppointmentDB.start_time > start - timedelta(minutes=MAX_BOOKING_MINUTES),
        )
        if exclude_id is not None:
            stmt = stmt.where(AppointmentDB.id != exclude_id)
        result = await self.session.execute(stmt.order_by(AppointmentDB.start_time))
        return result.scalars().all()

    async def list_history(
        self,
        appointment_type: Optional[str] = None,
        department: Optional[str] = None,
        limit: int = 5000,
    ) -> Sequence[AppointmentDB]:
        """Most recent completed appointments, optionally filtered."""
        stmt = select(AppointmentDB).where(AppointmentDB.status == "completed")
        if appointment_type:
            stmt = stmt.where(AppointmentDB.appointment_type == appointment_type)
        if department:
            stmt = stmt.join(ProviderDB).where(ProviderDB.department == department)
        stmt = stmt.order_by(AppointmentDB.start_time.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def update_status(
        self,
        appointment_id: uuid.UUID,
        status: str,
        cancel_reason: Optional[str] = None,
    ) -> Optional[AppointmentDB]:
        appt = await self.get_by_id(appointment_id)
        if appt:
            appt.status = status
            if cancel_reason is not None:
                appt.cancel_reason = cancel_reason
            appt.updated_at = datetime.now(timezone.utc)
            await self.session.flush()
        return appt
