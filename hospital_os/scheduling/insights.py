"""Scheduling insights derived from history and the demand forecast."""

from collections import defaultdict
from datetime import date
from statistics import fmean
from typing import Optional

from hospital_os.scheduling.models import (
    EMERGENCY_TYPES,
    HIGH_PRIORITY_TYPES,
    HistoricalAppointment,
    Insights,
    ResourceAvailability,
    SchedulingRequest,
    UrgencyLevel,
)


def hourly_wait_averages(history: list[HistoricalAppointment]) -> dict[int, float]:
    """Mean observed wait per hour of day; hours without observations are absent."""
    waits: dict[int, list[float]] = defaultdict(list)
    for appt in history:
        if appt.wait_minutes is not None:
            waits[appt.scheduled_time.hour].append(appt.wait_minutes)
    return {hour: fmean(values) for hour, values in waits.items()}


def classify_urgency(appointment_type: str, preferred_date: date, today: date) -> UrgencyLevel:
    if appointment_type in EMERGENCY_TYPES or appointment_type in HIGH_PRIORITY_TYPES:
        return UrgencyLevel.HIGH

    days_until = (preferred_date - today).days
    if days_until <= 1:
        return UrgencyLevel.HIGH
    if days_until <= 7:
        return UrgencyLevel.MEDIUM
    return UrgencyLevel.LOW


def assess_resources(demand_by_hour: list[float], limited_ratio: float = 1.5) -> ResourceAvailability:
    if not demand_by_hour:
        return ResourceAvailability.GOOD
    peak = max(demand_by_hour)
    mean = fmean(demand_by_hour)
    if peak > mean * limited_ratio:
        return ResourceAvailability.LIMITED
    return ResourceAvailability.GOOD


class InsightGenerator:
    """Summarizes the best hour, expected duration, urgency and resource level."""

    def __init__(
        self,
        default_duration_minutes: int = 30,
        limited_ratio: float = 1.5,
        business_hours: tuple[int, int] = (8, 18),
    ) -> None:
        self.default_duration_minutes = default_duration_minutes
        self.limited_ratio = limited_ratio
        self.business_hours = business_hours

    def best_hour(
        self,
        history: list[HistoricalAppointment],
        demand_by_hour: list[float],
    ) -> int:
        averages = hourly_wait_averages(history)
        if averages:
            # Ties resolve to the earliest hour.
            return min(sorted(averages), key=lambda hour: averages[hour])

        start, end = self.business_hours
        hours = [h for h in range(start, end) if h < len(demand_by_hour)]
        if not hours:
            return start
        return min(hours, key=lambda hour: demand_by_hour[hour])

    def expected_duration(
        self,
        appointment_type: str,
        history: list[HistoricalAppointment],
    ) -> int:
        durations = [
            appt.duration_minutes
            for appt in history
            if appt.appointment_type.lower() == appointment_type
        ]
        if not durations:
            return self.default_duration_minutes
        return max(1, round(fmean(durations)))

    def summarize(
        self,
        request: SchedulingRequest,
        history: Optional[list[HistoricalAppointment]],
        demand_by_hour: list[float],
        today: date,
    ) -> Insights:
        history = history or []
        hour = self.best_hour(history, demand_by_hour)
        return Insights(
            best_hour=hour,
            best_time_of_day=f"{hour:02d}:00 - {(hour + 1) % 24:02d}:00",
            expected_duration_minutes=self.expected_duration(request.appointment_type, history),
            urgency_level=classify_urgency(request.appointment_type, request.preferred_date, today),
            resource_availability=assess_resources(demand_by_hour, self.limited_ratio),
        )
