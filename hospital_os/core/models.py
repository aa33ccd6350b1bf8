"""SQLAlchemy 2.0 async models for providers, availability and bookings."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import JSON


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class Base(DeclarativeBase):
    pass


class ProviderDB(Base):
    __tablename__ = "providers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(200))
    department: Mapped[str | None] = mapped_column(String(100))
    specialization: Mapped[str] = mapped_column(String(100), default="general")
    current_load: Mapped[int] = mapped_column(Integer, default=0)
    max_capacity: Mapped[int] = mapped_column(Integer, default=20)
    break_start_hour: Mapped[int] = mapped_column(Integer, default=12)
    break_end_hour: Mapped[int] = mapped_column(Integer, default=13)
    preferred_appointment_types: Mapped[list | None] = mapped_column(JSON)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    availability_rules: Mapped[list[ProviderAvailability]] = relationship(
        back_populates="provider", cascade="all, delete-orphan"
    )
    appointments: Mapped[list[AppointmentDB]] = relationship(back_populates="provider")

    __table_args__ = (
        Index("ix_providers_department", "department"),
    )


class ProviderAvailability(Base):
    __tablename__ = "provider_availability"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    provider_id: Mapped[str] = mapped_column(String(64), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0=Mon..6=Sun
    start_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    end_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)

    provider: Mapped[ProviderDB] = relationship(back_populates="availability_rules")

    __table_args__ = (
        Index("ix_provider_availability_provider", "provider_id"),
        Index("ix_provider_availability_day", "provider_id", "day_of_week"),
    )


class AppointmentDB(Base):
    __tablename__ = "appointments"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    provider_id: Mapped[str] = mapped_column(String(64), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    appointment_type: Mapped[str | None] = mapped_column(String(50))
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active")  # active, cancelled, completed
    wait_minutes: Mapped[float | None] = mapped_column(Float)
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    provider: Mapped[ProviderDB] = relationship(back_populates="appointments")

    __table_args__ = (
        Index("ix_appointments_patient_id", "patient_id"),
        Index("ix_appointments_status", "status"),
        Index("ix_appointments_provider_start", "provider_id", "start_time"),
        Index("ix_appointments_type", "appointment_type"),
    )
