"""Patient wait-time estimation for candidate slots."""

import logging
import math
from collections import defaultdict
from datetime import datetime
from statistics import fmean
from typing import Optional

from hospital_os.scheduling.base import CollaboratorError, WaitEstimatorBackend
from hospital_os.scheduling.models import HistoricalAppointment

logger = logging.getLogger(__name__)


class HistoricalWaitEstimator(WaitEstimatorBackend):
    """Mean observed wait, from the most to the least specific sample set.

    Lookup order: same provider and hour, any provider at that hour, all
    observations, then *default_minutes*.
    """

    def __init__(self, history: list[HistoricalAppointment], default_minutes: float = 15.0):
        self.default_minutes = default_minutes
        by_provider_hour: dict[tuple[str, int], list[float]] = defaultdict(list)
        by_hour: dict[int, list[float]] = defaultdict(list)
        overall: list[float] = []

        for appt in history:
            if appt.wait_minutes is None:
                continue
            hour = appt.scheduled_time.hour
            if appt.provider_id:
                by_provider_hour[(appt.provider_id, hour)].append(appt.wait_minutes)
            by_hour[hour].append(appt.wait_minutes)
            overall.append(appt.wait_minutes)

        self._by_provider_hour = {k: fmean(v) for k, v in by_provider_hour.items()}
        self._by_hour = {k: fmean(v) for k, v in by_hour.items()}
        self._overall = fmean(overall) if overall else None

    def estimate(self, provider_id: str, start_time: datetime, appointment_type: str) -> float:
        hour = start_time.hour
        if (provider_id, hour) in self._by_provider_hour:
            return self._by_provider_hour[(provider_id, hour)]
        if hour in self._by_hour:
            return self._by_hour[hour]
        if self._overall is not None:
            return self._overall
        return self.default_minutes


class WaitTimeEstimator:
    """Clamps a wait backend's output; falls back to a default without one."""

    def __init__(
        self,
        backend: Optional[WaitEstimatorBackend] = None,
        default_minutes: float = 15.0,
        max_minutes: float = 120.0,
    ) -> None:
        self.backend = backend
        self.default_minutes = default_minutes
        self.max_minutes = max_minutes
        self.degraded = False

    def estimate_wait(self, provider_id: str, start_time: datetime, appointment_type: str) -> float:
        if self.backend is None:
            return self.default_minutes

        try:
            minutes = float(self.backend.estimate(provider_id, start_time, appointment_type))
        except CollaboratorError as e:
            logger.warning(f"Wait estimator unavailable, using {self.default_minutes} min: {e}")
            self.degraded = True
            return self.default_minutes

        if math.isnan(minutes):
            return self.default_minutes
        return max(0.0, min(minutes, self.max_minutes))
