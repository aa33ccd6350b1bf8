"""Demand forecasters and curve validation."""

import logging
import math
from collections import defaultdict
from datetime import date
from typing import Optional

from hospital_os.scheduling.base import (
    CollaboratorError,
    CollaboratorUnavailableError,
    DemandForecaster,
    HistoryProvider,
)

logger = logging.getLogger(__name__)

HOURS_PER_DAY = 24


def flat_curve(value: float) -> list[float]:
    return [float(value)] * HOURS_PER_DAY


def validate_curve(values: list[float]) -> list[float]:
    """Require 24 finite, non-negative estimates."""
    try:
        curve = [float(v) for v in values]
    except (TypeError, ValueError) as e:
        raise CollaboratorError(f"Demand forecast is not a list of numbers: {e}") from e
    if len(curve) != HOURS_PER_DAY:
        raise CollaboratorError(f"Expected {HOURS_PER_DAY} hourly estimates, got {len(curve)}")
    if any(math.isnan(v) or math.isinf(v) or v < 0 for v in curve):
        raise CollaboratorError("Demand forecast contains negative or non-finite values")
    return curve


class FlatDemandForecaster(DemandForecaster):
    """Constant demand for every hour."""

    def __init__(self, per_hour: float = 5.0) -> None:
        self.per_hour = per_hour

    async def predict_demand(
        self,
        day: date,
        appointment_type: str,
        department: Optional[str] = None,
    ) -> list[float]:
        return flat_curve(self.per_hour)


class HistoricalDemandForecaster(DemandForecaster):
    """Average hourly appointment count on past days sharing the weekday."""

    def __init__(self, history: HistoryProvider) -> None:
        self.history = history

    async def predict_demand(
        self,
        day: date,
        appointment_type: str,
        department: Optional[str] = None,
    ) -> list[float]:
        records = await self.history.get_historical_appointments(appointment_type, department)
        same_weekday = [r for r in records if r.scheduled_time.weekday() == day.weekday()]
        if not same_weekday:
            raise CollaboratorUnavailableError(
                f"No history for {appointment_type!r} on weekday {day.weekday()}"
            )

        counts: dict[int, int] = defaultdict(int)
        days = set()
        for record in same_weekday:
            counts[record.scheduled_time.hour] += 1
            days.add(record.scheduled_time.date())

        curve = [counts.get(hour, 0) / len(days) for hour in range(HOURS_PER_DAY)]
        logger.debug("Forecast for %s built from %d past days", day, len(days))
        return curve
