"""Slot optimization engine.

Ties the collaborators, the pure scheduling stages and the result cache
together:

    request -> cache -> (providers, bookings, demand, history)
            -> candidates -> features -> scores -> ranking
            -> alternatives + insights -> OptimizationResult
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timedelta
from typing import Optional, TypeVar

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hospital_os.config import Settings, get_settings
from hospital_os.observability import ObservabilityLogger, get_observability_logger
from hospital_os.scheduling.alternatives import AlternativeFinder
from hospital_os.scheduling.base import (
    AvailabilityProvider,
    BookingStore,
    CollaboratorError,
    CollaboratorTimeoutError,
    DemandForecaster,
    EngineInitializationError,
    HistoryProvider,
    Scorer,
    WaitEstimatorBackend,
)
from hospital_os.scheduling.cache import (
    CacheBackend,
    InMemoryCacheBackend,
    RedisCacheBackend,
    ResultCache,
)
from hospital_os.scheduling.candidates import CandidateGenerator, SlotCandidate
from hospital_os.scheduling.clock import clinic_tz, slot_at
from hospital_os.scheduling.conflicts import has_conflict
from hospital_os.scheduling.features import extract_features
from hospital_os.scheduling.forecasting import flat_curve, validate_curve
from hospital_os.scheduling.insights import InsightGenerator
from hospital_os.scheduling.models import (
    Booking,
    CandidateSlot,
    HistoricalAppointment,
    OptimizationResult,
    Provider,
    SchedulingRequest,
)
from hospital_os.scheduling.scoring import (
    HeuristicScorer,
    ScoredCandidate,
    rank_candidates,
    validate_score,
)
from hospital_os.scheduling.wait_time import HistoricalWaitEstimator, WaitTimeEstimator

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Alternatives are searched from one week after the preferred date.
ALTERNATIVE_LEAD_DAYS = 7


def resource_utilization(load_ratio: float, demand: float) -> float:
    """Blend provider load with hourly demand, capped at 1."""
    return min(load_ratio + min(demand / 10.0, 1.0) * 0.3, 1.0)


async def gather_all(*aws: Awaitable[T]) -> list[T]:
    """Await concurrently; on the first failure cancel the rest and re-raise it."""
    try:
        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(aw) for aw in aws]
    except ExceptionGroup as eg:
        raise eg.exceptions[0]
    return [task.result() for task in tasks]


class SchedulingEngine:
    """Recommends appointment slots for scheduling requests.

    Build with :meth:`create`, which refuses to return an engine missing a
    required capability.
    """

    def __init__(
        self,
        availability: AvailabilityProvider,
        bookings: BookingStore,
        scorer: Scorer,
        forecaster: Optional[DemandForecaster] = None,
        history: Optional[HistoryProvider] = None,
        wait_backend: Optional[WaitEstimatorBackend] = None,
        cache: Optional[ResultCache] = None,
        settings: Optional[Settings] = None,
        now: Optional[Callable[[], datetime]] = None,
        obs: Optional[ObservabilityLogger] = None,
    ):
        self.settings = settings or get_settings()
        self.tz = clinic_tz(self.settings.clinic_timezone)
        self.obs = obs or get_observability_logger()

        self.availability = availability
        self.bookings = bookings
        self.scorer = scorer
        self.forecaster = forecaster
        self.history = history
        self.wait_backend = wait_backend
        self.cache = cache or ResultCache(
            InMemoryCacheBackend(),
            key_prefix=self.settings.cache_key_prefix,
            single_flight=self.settings.single_flight_enabled,
            obs=self.obs,
        )
        self._now = now or (lambda: datetime.now(self.tz))

        self.generator = CandidateGenerator(self.settings.scheduling_horizon_days, self.tz)
        self.alternatives = AlternativeFinder(
            tz=self.tz,
            lead_days=ALTERNATIVE_LEAD_DAYS,
            search_days=self.settings.alternative_search_days,
            max_alternatives=self.settings.max_alternatives,
        )
        self.insights = InsightGenerator(
            default_duration_minutes=self.settings.default_duration_minutes,
            limited_ratio=self.settings.limited_resource_ratio,
        )

    @classmethod
    def create(
        cls,
        availability: Optional[AvailabilityProvider] = None,
        bookings: Optional[BookingStore] = None,
        scorer: Optional[Scorer] = None,
        **kwargs,
    ) -> "SchedulingEngine":
        """Build an engine, validating the required capabilities.

        Raises:
            EngineInitializationError: If a required capability is missing
        """
        missing = [
            name
            for name, value in (
                ("scorer", scorer),
                ("availability provider", availability),
                ("booking store", bookings),
            )
            if value is None
        ]
        if missing:
            raise EngineInitializationError(f"Missing required capability: {', '.join(missing)}")
        return cls(availability, bookings, scorer, **kwargs)

    async def optimize(self, request: SchedulingRequest) -> OptimizationResult:
        """Return ranked slots, alternatives and insights for *request*.

        Identical requests within the cache TTL receive the same result.
        """
        fingerprint = request.fingerprint()
        return await self.cache.get_or_compute(
            fingerprint,
            self.settings.cache_ttl_seconds,
            lambda: self._compute(request, fingerprint),
        )

    async def book(
        self,
        request: SchedulingRequest,
        slot: CandidateSlot | datetime,
        provider_id: Optional[str] = None,
    ) -> Booking:
        """Commit a recommended slot through the booking store.

        Without an explicit request duration the booking lasts the expected
        duration from history, the same length recommendations were checked
        against.

        Raises:
            SchedulingConflict: If the slot was taken since it was recommended
        """
        if isinstance(slot, CandidateSlot):
            start, provider_id = slot.start_time, slot.provider_id
        else:
            start = slot
        if provider_id is None:
            raise ValueError("provider_id is required when booking a bare start time")
        duration = request.duration_minutes
        if duration is None:
            history = await self._fetch_history(request, set())
            duration = self.insights.expected_duration(request.appointment_type, history)
        return await self.bookings.commit_booking(
            provider_id, start, duration, request.patient_id, request.appointment_type
        )

    async def close(self) -> None:
        await self.cache.backend.close()

    # Collaborator access

    @retry(
        retry=retry_if_exception_type(CollaboratorTimeoutError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        reraise=True,
    )
    async def _call(self, what: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run one collaborator lookup under the configured timeout."""
        timeout = self.settings.collaborator_timeout_seconds
        try:
            return await asyncio.wait_for(factory(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"{what} timed out after {timeout}s")
            raise CollaboratorTimeoutError(f"{what} timed out after {timeout}s") from e

    async def _fetch_providers(self, request: SchedulingRequest) -> list[Provider]:
        return await self._call(
            "availability provider",
            lambda: self.availability.get_provider_schedules(
                request.department, request.appointment_type
            ),
        )

    async def _fetch_bookings(
        self,
        providers: list[Provider],
        start: datetime,
        end: datetime,
    ) -> dict[str, list[Booking]]:
        async def one(provider: Provider) -> list[Booking]:
            return await self._call(
                f"booking store ({provider.id})",
                lambda: self.bookings.get_bookings_for_provider(provider.id, start, end),
            )

        results = await gather_all(*(one(p) for p in providers))
        return {p.id: list(r) for p, r in zip(providers, results)}

    async def _fetch_demand(
        self,
        request: SchedulingRequest,
        days: list[date],
        degraded: set[str],
    ) -> dict[date, list[float]]:
        if self.forecaster is None:
            return {day: flat_curve(self.settings.default_demand_per_hour) for day in days}

        async def one(day: date) -> list[float]:
            try:
                raw = await self._call(
                    "demand forecaster",
                    lambda: self.forecaster.predict_demand(
                        day, request.appointment_type, request.department
                    ),
                )
                return validate_curve(raw)
            except CollaboratorError as e:
                self._degrade(
                    degraded, "demand_forecaster",
                    f"flat {self.settings.default_demand_per_hour}/h", str(e),
                )
                return flat_curve(self.settings.default_demand_per_hour)

        curves = await gather_all(*(one(day) for day in days))
        return dict(zip(days, curves))

    async def _fetch_history(
        self,
        request: SchedulingRequest,
        degraded: set[str],
    ) -> list[HistoricalAppointment]:
        if self.history is None:
            return []
        try:
            return list(
                await self._call(
                    "history provider",
                    lambda: self.history.get_historical_appointments(
                        request.appointment_type, request.department
                    ),
                )
            )
        except CollaboratorError as e:
            self._degrade(degraded, "history_provider", "empty history", str(e))
            return []

    def _degrade(self, degraded: set[str], dependency: str, substitute: str, reason: str) -> None:
        if dependency not in degraded:
            logger.warning(f"{dependency} unavailable, using {substitute}: {reason}")
            self.obs.log_degraded(dependency, substitute, reason)
        degraded.add(dependency)

    # Computation

    async def _compute(self, request: SchedulingRequest, fingerprint: str) -> OptimizationResult:
        with self.obs.optimization_run(
            fingerprint=fingerprint,
            appointment_type=request.appointment_type,
            urgency=request.urgency.value,
            department=request.department,
        ) as event:
            now = self._now()
            today = now.astimezone(self.tz).date()
            degraded: set[str] = set()

            providers = await self._fetch_providers(request)
            primary = providers
            if request.provider_id is not None:
                primary = [p for p in providers if p.id == request.provider_id]
            event.providers_considered = len(primary)

            horizon = self.settings.scheduling_horizon_days
            days = [request.preferred_date + timedelta(days=i) for i in range(horizon)]
            window_start = slot_at(request.preferred_date - timedelta(days=1), 0, self.tz)
            window_end = slot_at(
                request.preferred_date
                + timedelta(days=ALTERNATIVE_LEAD_DAYS + self.settings.alternative_search_days),
                0,
                self.tz,
            )

            bookings_by_provider, demand_by_day, history = await gather_all(
                self._fetch_bookings(providers, window_start, window_end),
                self._fetch_demand(request, days, degraded),
                self._fetch_history(request, degraded),
            )

            insights = self.insights.summarize(
                request, history, demand_by_day[request.preferred_date], today
            )
            duration = request.duration_minutes or insights.expected_duration_minutes

            candidates = self.generator.generate(request, primary, now)
            event.candidates_generated = len(candidates)
            open_candidates = [
                c for c in candidates
                if not has_conflict(
                    c.provider_id, c.start_time, duration, bookings_by_provider.get(c.provider_id)
                )
            ]
            event.candidates_booked = len(candidates) - len(open_candidates)

            by_id = {p.id: p for p in providers}
            ranked = self._rank(request, open_candidates, by_id, demand_by_day)
            event.candidates_scored = len(open_candidates)
            event.scorer = self.scorer.name

            wait = WaitTimeEstimator(
                self._wait_backend(history),
                default_minutes=self.settings.default_wait_minutes,
                max_minutes=self.settings.max_wait_minutes,
            )
            recommended = [
                self._to_slot(s, by_id[s.candidate.provider_id], request, demand_by_day, wait)
                for s in ranked
            ]
            if wait.degraded:
                self._degrade(
                    degraded, "wait_estimator",
                    f"{self.settings.default_wait_minutes} min", "estimator raised",
                )

            alternatives = self.alternatives.find(
                request, providers, recommended, bookings_by_provider, now, duration
            )

            result = OptimizationResult(
                fingerprint=fingerprint,
                recommended_slots=recommended,
                alternative_options=alternatives,
                insights=insights,
                degraded=sorted(degraded),
            )

            event.recommended_count = len(recommended)
            event.alternatives_count = len(alternatives)
            event.top_score = recommended[0].score if recommended else None
            event.degraded = result.degraded

        logger.info(
            f"Optimized {request.appointment_type} request: "
            f"{len(recommended)} slots, {len(alternatives)} alternatives"
        )
        return result

    def _rank(
        self,
        request: SchedulingRequest,
        candidates: list[SlotCandidate],
        providers: dict[str, Provider],
        demand_by_day: dict[date, list[float]],
    ) -> list[ScoredCandidate]:
        scored = []
        for candidate in candidates:
            features = extract_features(
                candidate,
                request,
                providers[candidate.provider_id],
                demand_by_day[candidate.start_time.date()],
                horizon_days=self.settings.scheduling_horizon_days,
                demand_cap=self.settings.demand_cap,
            )
            score = validate_score(self.scorer.score(features), self.scorer)
            scored.append(ScoredCandidate(candidate, score))

        return rank_candidates(
            scored,
            threshold=self.settings.score_threshold,
            limit=self.settings.max_recommended_slots,
        )

    def _wait_backend(self, history: list[HistoricalAppointment]) -> Optional[WaitEstimatorBackend]:
        if self.wait_backend is not None:
            return self.wait_backend
        if history:
            return HistoricalWaitEstimator(history, self.settings.default_wait_minutes)
        return None

    def _to_slot(
        self,
        scored: ScoredCandidate,
        provider: Provider,
        request: SchedulingRequest,
        demand_by_day: dict[date, list[float]],
        wait: WaitTimeEstimator,
    ) -> CandidateSlot:
        candidate = scored.candidate
        demand = demand_by_day[candidate.start_time.date()][candidate.start_time.hour]
        return CandidateSlot(
            provider_id=candidate.provider_id,
            start_time=candidate.start_time,
            score=scored.score,
            estimated_wait_minutes=wait.estimate_wait(
                candidate.provider_id, candidate.start_time, request.appointment_type
            ),
            resource_utilization=resource_utilization(provider.load_ratio, demand),
        )


def build_cache_from_settings(
    settings: Optional[Settings] = None,
    obs: Optional[ObservabilityLogger] = None,
) -> ResultCache:
    settings = settings or get_settings()
    backend: CacheBackend
    if settings.uses_redis:
        backend = RedisCacheBackend.from_url(settings.redis_url)
    else:
        backend = InMemoryCacheBackend()
    return ResultCache(
        backend,
        key_prefix=settings.cache_key_prefix,
        single_flight=settings.single_flight_enabled,
        obs=obs,
    )


def build_engine_from_settings(
    settings: Optional[Settings] = None,
    scorer: Optional[Scorer] = None,
    obs: Optional[ObservabilityLogger] = None,
) -> SchedulingEngine:
    """Create a database-backed engine from application settings.

    Args:
        settings: Optional settings (uses default if not provided)
        scorer: Optional scorer (defaults to HeuristicScorer)
        obs: Optional observability logger
    """
    from hospital_os.core.database import get_session_factory
    from hospital_os.scheduling.forecasting import HistoricalDemandForecaster
    from hospital_os.scheduling.stores import (
        DatabaseAvailabilityProvider,
        DatabaseBookingStore,
        DatabaseHistoryProvider,
    )

    settings = settings or get_settings()
    obs = obs or get_observability_logger()
    tz = clinic_tz(settings.clinic_timezone)
    session_factory = get_session_factory()
    history = DatabaseHistoryProvider(session_factory, tz)

    return SchedulingEngine.create(
        availability=DatabaseAvailabilityProvider(session_factory),
        bookings=DatabaseBookingStore(session_factory, tz, obs),
        scorer=scorer or HeuristicScorer(),
        forecaster=HistoricalDemandForecaster(history),
        history=history,
        cache=build_cache_from_settings(settings, obs),
        settings=settings,
        obs=obs,
    )
