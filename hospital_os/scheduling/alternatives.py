"""Secondary scheduling options offered next to the ranked candidates."""

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional

from hospital_os.scheduling.candidates import is_bookable_day, provider_hours
from hospital_os.scheduling.conflicts import has_conflict
from hospital_os.scheduling.models import (
    AlternativeSlot,
    Booking,
    CandidateSlot,
    Provider,
    SchedulingRequest,
)

logger = logging.getLogger(__name__)

REASON_ALTERNATIVE_SPECIALIST = "Alternative specialist available"
REASON_LATER_PREFERRED = "Later availability with preferred doctor"


class AlternativeFinder:
    """Finds later slots with other providers and with the top-ranked ones."""

    def __init__(
        self,
        tz: tzinfo = timezone.utc,
        lead_days: int = 7,
        search_days: int = 14,
        max_alternatives: int = 5,
        max_preferred_providers: int = 3,
    ) -> None:
        self.tz = tz
        self.lead_days = lead_days
        self.search_days = search_days
        self.max_alternatives = max_alternatives
        self.max_preferred_providers = max_preferred_providers

    def next_available_slot(
        self,
        provider: Provider,
        from_day: date,
        request: SchedulingRequest,
        bookings: Optional[list[Booking]],
        now: datetime,
        duration_minutes: int,
    ) -> Optional[datetime]:
        """First free whole-hour start on or after *from_day*, outside the break."""
        for offset in range(self.search_days):
            day = from_day + timedelta(days=offset)
            if not is_bookable_day(day, request):
                continue
            for start in provider_hours(provider, day, now, self.tz):
                if provider.break_window.contains(start.hour):
                    continue
                if has_conflict(provider.id, start, duration_minutes, bookings):
                    continue
                return start
        return None

    def find(
        self,
        request: SchedulingRequest,
        providers: list[Provider],
        ranked: list[CandidateSlot],
        bookings_by_provider: dict[str, list[Booking]],
        now: datetime,
        duration_minutes: int,
    ) -> list[AlternativeSlot]:
        from_day = request.preferred_date + timedelta(days=self.lead_days)
        ranked_ids = {slot.provider_id for slot in ranked}
        by_id = {p.id: p for p in providers}
        alternatives: list[AlternativeSlot] = []

        for provider in providers:
            if provider.id in ranked_ids:
                continue
            start = self.next_available_slot(
                provider, from_day, request,
                bookings_by_provider.get(provider.id), now, duration_minutes,
            )
            if start is not None:
                alternatives.append(
                    AlternativeSlot(
                        provider_id=provider.id,
                        start_time=start,
                        reason=REASON_ALTERNATIVE_SPECIALIST,
                    )
                )

        preferred: list[str] = []
        for slot in ranked:
            if slot.provider_id not in preferred:
                preferred.append(slot.provider_id)
            if len(preferred) == self.max_preferred_providers:
                break

        for provider_id in preferred:
            provider = by_id.get(provider_id)
            if provider is None:
                continue
            start = self.next_available_slot(
                provider, from_day, request,
                bookings_by_provider.get(provider_id), now, duration_minutes,
            )
            if start is not None:
                alternatives.append(
                    AlternativeSlot(
                        provider_id=provider_id,
                        start_time=start,
                        reason=REASON_LATER_PREFERRED,
                    )
                )

        logger.debug("Found %d alternatives for %s", len(alternatives), request.patient_id)
        return alternatives[: self.max_alternatives]
