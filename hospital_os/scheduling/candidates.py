"""Enumeration of feasible provider/time pairs over the scheduling horizon."""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo

from hospital_os.scheduling.clock import slot_at
from hospital_os.scheduling.models import Provider, SchedulingRequest

logger = logging.getLogger(__name__)

SATURDAY = 5


@dataclass(frozen=True)
class SlotCandidate:
    """Unscored placeholder: a provider and a start time."""

    provider_id: str
    start_time: datetime
    day_offset: int = 0


def is_bookable_day(day: date, request: SchedulingRequest) -> bool:
    """Weekends are only bookable for emergency-class or highest-urgency requests."""
    if day.weekday() >= SATURDAY:
        return request.allows_weekends
    return True


def provider_hours(
    provider: Provider,
    day: date,
    now: datetime,
    tz: tzinfo,
) -> Iterator[datetime]:
    """Yield each whole-hour start in the provider's window for *day* not before *now*."""
    hours = provider.hours_for(day.weekday())
    if hours is None:
        return
    for hour in range(hours.start_hour, hours.end_hour):
        start = slot_at(day, hour, tz)
        if start < now:
            continue
        yield start


class CandidateGenerator:
    """Builds the raw search space for a request.

    Conflicts are not filtered here; admission is decided at commit time.
    """

    def __init__(self, horizon_days: int = 7, tz: tzinfo = timezone.utc) -> None:
        self.horizon_days = horizon_days
        self.tz = tz

    def generate(
        self,
        request: SchedulingRequest,
        providers: list[Provider],
        now: datetime,
    ) -> list[SlotCandidate]:
        candidates: list[SlotCandidate] = []
        for offset in range(self.horizon_days):
            day = request.preferred_date + timedelta(days=offset)
            if not is_bookable_day(day, request):
                continue
            for provider in providers:
                for start in provider_hours(provider, day, now, self.tz):
                    candidates.append(SlotCandidate(provider.id, start, offset))

        logger.debug(
            "Generated %d candidates for %d providers over %d days",
            len(candidates), len(providers), self.horizon_days,
        )
        return candidates
