"""Time-overlap checks between a proposed interval and existing bookings."""

from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Optional

from hospital_os.scheduling.models import Booking


def intervals_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """Half-open overlap test: intervals that only touch do not overlap."""
    return start_a < end_b and start_b < end_a


def _blocking(
    provider_id: str,
    bookings: Iterable[Booking],
    exclude_booking_id: Optional[str],
) -> Iterable[Booking]:
    for booking in bookings:
        if booking.provider_id != provider_id or not booking.is_active:
            continue
        if exclude_booking_id is not None and booking.id == exclude_booking_id:
            continue
        yield booking


def has_conflict(
    provider_id: str,
    proposed_start: datetime,
    proposed_duration: int,
    existing_bookings: Optional[Iterable[Booking]],
    exclude_booking_id: Optional[str] = None,
) -> bool:
    """Return True if the proposal overlaps any active booking of the provider.

    Args:
        provider_id: Provider the proposal is for
        proposed_start: Proposed start time
        proposed_duration: Proposed length in minutes
        existing_bookings: Known bookings; None is treated as "no bookings"
        exclude_booking_id: Booking to ignore (the one being rescheduled)
    """
    if existing_bookings is None:
        return False

    proposed_end = proposed_start + timedelta(minutes=proposed_duration)
    for booking in _blocking(provider_id, existing_bookings, exclude_booking_id):
        if intervals_overlap(proposed_start, proposed_end, booking.start_time, booking.end_time):
            return True
    return False


def find_conflicts(
    provider_id: str,
    proposed_start: datetime,
    proposed_duration: int,
    existing_bookings: Optional[Iterable[Booking]],
    exclude_booking_id: Optional[str] = None,
) -> list[Booking]:
    """Return every active booking of the provider that overlaps the proposal."""
    if existing_bookings is None:
        return []

    proposed_end = proposed_start + timedelta(minutes=proposed_duration)
    return [
        booking
        for booking in _blocking(provider_id, existing_bookings, exclude_booking_id)
        if intervals_overlap(proposed_start, proposed_end, booking.start_time, booking.end_time)
    ]
