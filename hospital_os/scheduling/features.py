"""Feature extraction for slot scoring.

Every feature is bounded: ratios and indicators lie in [0, 1], the seasonal
pair in [-1, 1].
"""

import math
from dataclasses import asdict, dataclass
from datetime import date

from hospital_os.scheduling.candidates import SlotCandidate
from hospital_os.scheduling.models import (
    APPOINTMENT_TYPES,
    Provider,
    SchedulingRequest,
    Urgency,
)

SPECIALIZATION_KEYWORDS: dict[str, tuple[str, ...]] = {
    "cardiology": ("heart", "cardiac", "cardiovascular"),
    "neurology": ("brain", "neurological", "nerve"),
    "orthopedics": ("bone", "joint", "fracture"),
    "pediatrics": ("child", "pediatric", "infant"),
}

# (month, day)
HOLIDAYS: frozenset[tuple[int, int]] = frozenset({(1, 1), (7, 4), (12, 25)})


@dataclass(frozen=True)
class SlotFeatures:
    """Normalized inputs for a scorer."""

    hour_of_day: float
    day_of_week: float
    load_ratio: float
    appointment_type: float
    urgency: float
    demand: float
    specialization_match: float
    break_proximity: float
    season_sin: float
    season_cos: float
    day_position: float
    preferred_type_match: float
    days_out: float
    holiday: float
    resource_availability: float

    def as_vector(self) -> list[float]:
        return list(asdict(self).values())


def specialization_match(appointment_type: str, specialization: str) -> float:
    """1.0 keyword match, 0.5 known specialization without match, 0.3 otherwise."""
    appointment_type = appointment_type.lower()
    specialization = specialization.lower()
    for specialty, keywords in SPECIALIZATION_KEYWORDS.items():
        if specialty in specialization:
            if specialty in appointment_type or any(k in appointment_type for k in keywords):
                return 1.0
            return 0.5
    return 0.3


def break_proximity(hour: int, provider: Provider) -> float:
    """0 during the break, 0.3 in the adjacent hours, 1 otherwise."""
    window = provider.break_window
    if window.contains(hour):
        return 0.0
    if hour == window.start_hour - 1 or hour == window.end_hour:
        return 0.3
    return 1.0


def resource_availability(hour: int) -> float:
    """Lower availability during the morning and afternoon peaks."""
    if 9 <= hour <= 11:
        return 0.6
    if 14 <= hour <= 16:
        return 0.7
    return 0.9


def is_holiday(day: date) -> bool:
    return (day.month, day.day) in HOLIDAYS


def type_ordinal(appointment_type: str) -> float:
    try:
        return APPOINTMENT_TYPES.index(appointment_type) / len(APPOINTMENT_TYPES)
    except ValueError:
        return 0.0


def extract_features(
    candidate: SlotCandidate,
    request: SchedulingRequest,
    provider: Provider,
    demand_by_hour: list[float],
    horizon_days: int = 7,
    demand_cap: float = 20.0,
) -> SlotFeatures:
    start = candidate.start_time
    hour = start.hour
    day = start.date()

    demand = demand_by_hour[hour] if hour < len(demand_by_hour) else 0.0
    demand = min(max(demand, 0.0), demand_cap) / demand_cap

    hours = provider.hours_for(start.weekday())
    day_position = 0.0
    if hours:
        day_position = min(max((hour - hours.start_hour) / hours.length, 0.0), 1.0)

    day_of_year = day.timetuple().tm_yday
    angle = 2 * math.pi * day_of_year / 365

    return SlotFeatures(
        hour_of_day=hour / 23,
        day_of_week=start.weekday() / 6,
        load_ratio=provider.load_ratio,
        appointment_type=type_ordinal(request.appointment_type),
        urgency=request.urgency.ordinal / len(Urgency),
        demand=demand,
        specialization_match=specialization_match(
            request.appointment_type, provider.specialization
        ),
        break_proximity=break_proximity(hour, provider),
        season_sin=math.sin(angle),
        season_cos=math.cos(angle),
        day_position=day_position,
        preferred_type_match=(
            1.0
            if request.appointment_type
            in {t.lower() for t in provider.preferred_appointment_types}
            else 0.0
        ),
        days_out=min(candidate.day_offset / horizon_days, 1.0) if horizon_days else 0.0,
        holiday=1.0 if is_holiday(day) else 0.0,
        resource_availability=resource_availability(hour),
    )
