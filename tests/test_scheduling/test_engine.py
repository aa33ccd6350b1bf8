"""Tests for the scheduling engine."""

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from hospital_os.config import Settings
from hospital_os.scheduling.alternatives import (
    REASON_ALTERNATIVE_SPECIALIST,
    REASON_LATER_PREFERRED,
)
from hospital_os.scheduling.base import (
    CollaboratorUnavailableError,
    EngineInitializationError,
    HistoryProvider,
    InvalidScoreError,
    Scorer,
    WaitEstimatorBackend,
)
from hospital_os.scheduling.cache import InMemoryCacheBackend, ResultCache
from hospital_os.scheduling.engine import SchedulingEngine, resource_utilization
from hospital_os.scheduling.models import (
    Booking,
    HistoricalAppointment,
    ResourceAvailability,
    SchedulingRequest,
    Urgency,
)
from hospital_os.scheduling.scoring import HeuristicScorer

NOW = datetime(2025, 3, 3, 7, 0, tzinfo=timezone.utc)
MONDAY = date(2025, 3, 3)
SATURDAY = date(2025, 3, 8)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class ConstantScorer(Scorer):
    def __init__(self, value):
        self.value = value

    def score(self, features):
        return self.value


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_engine(settings, obs, clock, mock_availability, mock_bookings, mock_forecaster):
    """Factory building an engine around the mock collaborators."""

    def _make(**overrides) -> SchedulingEngine:
        kwargs = dict(
            availability=mock_availability,
            bookings=mock_bookings,
            scorer=HeuristicScorer(),
            forecaster=mock_forecaster,
            settings=settings,
            now=lambda: NOW,
            obs=obs,
            cache=ResultCache(InMemoryCacheBackend(clock=clock), obs=obs),
        )
        kwargs.update(overrides)
        return SchedulingEngine.create(**kwargs)

    return _make


class TestCreate:
    @pytest.mark.parametrize("missing", ["scorer", "availability", "bookings"])
    def test_missing_capability_is_fatal(self, make_engine, missing):
        with pytest.raises(EngineInitializationError):
            make_engine(**{missing: None})

    def test_optional_capabilities(self, make_engine):
        engine = make_engine(forecaster=None)
        assert engine.history is None
        assert engine.wait_backend is None


class TestOptimize:
    async def test_result_invariants(self, make_engine, routine_request):
        result = await make_engine().optimize(routine_request)

        slots = result.recommended_slots
        assert 0 < len(slots) <= 10
        assert all(0.6 < s.score <= 1.0 for s in slots)
        scores = [s.score for s in slots]
        assert scores == sorted(scores, reverse=True)
        assert all(s.start_time >= NOW for s in slots)
        assert all(s.estimated_wait_minutes == 15.0 for s in slots)
        assert all(0.0 <= s.resource_utilization <= 1.0 for s in slots)

        assert len(result.alternative_options) <= 5
        ranked = {s.provider_id for s in slots}
        for alt in result.alternative_options:
            if alt.reason == REASON_ALTERNATIVE_SPECIALIST:
                assert alt.provider_id not in ranked
            else:
                assert alt.reason == REASON_LATER_PREFERRED
                assert alt.provider_id in ranked
            assert alt.start_time.date() >= MONDAY + timedelta(days=7)

        assert result.fingerprint == routine_request.fingerprint()
        assert result.insights.resource_availability == ResourceAvailability.GOOD
        assert result.degraded == []

    async def test_cardiology_match_ranks_first(self, make_engine, routine_request):
        result = await make_engine().optimize(routine_request)
        assert result.recommended_slots[0].provider_id == "dr-heart"

    async def test_passes_request_filters_to_collaborators(
        self, make_engine, mock_availability, mock_forecaster
    ):
        request = SchedulingRequest(
            patient_id="patient-1",
            appointment_type="consultation",
            preferred_date=MONDAY,
            department="cardiology",
        )
        await make_engine().optimize(request)

        mock_availability.get_provider_schedules.assert_awaited_once_with(
            "cardiology", "consultation"
        )
        # One forecast per horizon day.
        assert mock_forecaster.predict_demand.await_count == 7
        mock_forecaster.predict_demand.assert_any_await(MONDAY, "consultation", "cardiology")

    async def test_saturday_routine_request_only_weekdays(self, make_engine):
        request = SchedulingRequest(
            patient_id="patient-1", appointment_type="consultation", preferred_date=SATURDAY
        )
        result = await make_engine(scorer=ConstantScorer(0.9)).optimize(request)

        assert result.recommended_slots
        assert all(s.start_time.weekday() < 5 for s in result.recommended_slots)

    async def test_emergency_saturday_request_gets_saturday_slot(self, make_engine):
        request = SchedulingRequest(
            patient_id="patient-1",
            appointment_type="consultation",
            preferred_date=SATURDAY,
            urgency=Urgency.EMERGENCY,
        )
        result = await make_engine(scorer=ConstantScorer(0.9)).optimize(request)

        # Equal scores: earliest start first, the orthopedist's Saturday 08:00.
        first = result.recommended_slots[0]
        assert (first.provider_id, first.start_time.date(), first.start_time.hour) == (
            "dr-bones", SATURDAY, 8,
        )

    async def test_no_strong_candidates_is_not_an_error(self, make_engine, routine_request):
        result = await make_engine(scorer=ConstantScorer(0.6)).optimize(routine_request)

        assert result.recommended_slots == []
        assert {a.reason for a in result.alternative_options} == {REASON_ALTERNATIVE_SPECIALIST}
        assert len(result.alternative_options) == 3

    async def test_known_bookings_are_skipped(self, make_engine, mock_bookings, routine_request):
        taken = Booking(
            id="b-1",
            provider_id="dr-heart",
            patient_id="patient-2",
            start_time=datetime(2025, 3, 3, 9, tzinfo=timezone.utc),
            duration_minutes=60,
        )

        async def bookings_for(provider_id, start, end):
            return [taken] if provider_id == "dr-heart" else []

        mock_bookings.get_bookings_for_provider = AsyncMock(side_effect=bookings_for)
        result = await make_engine(scorer=ConstantScorer(0.9)).optimize(routine_request)

        starts = {(s.provider_id, s.start_time) for s in result.recommended_slots}
        assert ("dr-heart", taken.start_time) not in starts
        assert ("dr-heart", taken.start_time + timedelta(hours=1)) in starts

    async def test_provider_filter_restricts_primary_list(self, make_engine):
        request = SchedulingRequest(
            patient_id="patient-1",
            appointment_type="consultation",
            preferred_date=MONDAY,
            provider_id="dr-bones",
        )
        result = await make_engine(scorer=ConstantScorer(0.9)).optimize(request)

        assert {s.provider_id for s in result.recommended_slots} == {"dr-bones"}
        specialists = {
            a.provider_id
            for a in result.alternative_options
            if a.reason == REASON_ALTERNATIVE_SPECIALIST
        }
        assert specialists == {"dr-heart", "dr-general"}

    async def test_utilization_blends_load_and_demand(self, make_engine, routine_request):
        result = await make_engine().optimize(routine_request)
        heart = next(s for s in result.recommended_slots if s.provider_id == "dr-heart")
        assert heart.resource_utilization == pytest.approx(resource_utilization(0.2, 5.0))
        assert resource_utilization(0.9, 50.0) == 1.0


class TestCaching:
    async def test_identical_request_within_ttl_is_cached(
        self, make_engine, mock_availability, routine_request
    ):
        engine = make_engine()
        first = await engine.optimize(routine_request)
        second = await engine.optimize(routine_request)

        assert mock_availability.get_provider_schedules.await_count == 1
        assert second == first

    async def test_expiry_recomputes(
        self, make_engine, mock_availability, routine_request, clock, settings
    ):
        engine = make_engine()
        await engine.optimize(routine_request)
        clock.now += settings.cache_ttl_seconds
        await engine.optimize(routine_request)

        assert mock_availability.get_provider_schedules.await_count == 2

    async def test_concurrent_identical_requests_compute_once(
        self, make_engine, mock_availability, providers, routine_request
    ):
        async def slow_schedules(*args):
            await asyncio.sleep(0.01)
            return providers

        mock_availability.get_provider_schedules = AsyncMock(side_effect=slow_schedules)
        engine = make_engine()
        results = await asyncio.gather(*(engine.optimize(routine_request) for _ in range(5)))

        assert mock_availability.get_provider_schedules.await_count == 1
        assert all(r == results[0] for r in results)

    async def test_different_patients_are_not_shared(
        self, make_engine, mock_availability, routine_request
    ):
        engine = make_engine()
        await engine.optimize(routine_request)
        await engine.optimize(routine_request.model_copy(update={"patient_id": "patient-2"}))

        assert mock_availability.get_provider_schedules.await_count == 2


class TestDegradation:
    async def test_forecaster_failure_uses_flat_curve(
        self, make_engine, mock_forecaster, routine_request, obs
    ):
        mock_forecaster.predict_demand = AsyncMock(
            side_effect=CollaboratorUnavailableError("forecast service down")
        )
        result = await make_engine().optimize(routine_request)

        assert result.degraded == ["demand_forecaster"]
        assert result.recommended_slots
        assert result.insights.resource_availability == ResourceAvailability.GOOD
        degraded_events = obs.get_recent_events("degraded")
        assert len(degraded_events) == 1
        assert degraded_events[0]["dependency"] == "demand_forecaster"

    @pytest.mark.parametrize("curve", [[1.0] * 12, [None] + [1.0] * 23, ["n/a"] * 24, None])
    async def test_malformed_forecast_uses_flat_curve(
        self, make_engine, mock_forecaster, routine_request, curve
    ):
        mock_forecaster.predict_demand = AsyncMock(return_value=curve)
        result = await make_engine().optimize(routine_request)
        assert result.degraded == ["demand_forecaster"]

    async def test_history_failure_uses_empty_history(self, make_engine, routine_request):
        history = MagicMock(spec=HistoryProvider)
        history.get_historical_appointments = AsyncMock(
            side_effect=CollaboratorUnavailableError("warehouse offline")
        )
        result = await make_engine(history=history).optimize(routine_request)

        assert result.degraded == ["history_provider"]
        assert result.insights.expected_duration_minutes == 30

    async def test_wait_backend_failure_uses_default(self, make_engine, routine_request):
        backend = MagicMock(spec=WaitEstimatorBackend)
        backend.estimate = MagicMock(side_effect=CollaboratorUnavailableError("model offline"))
        result = await make_engine(wait_backend=backend).optimize(routine_request)

        assert result.degraded == ["wait_estimator"]
        assert all(s.estimated_wait_minutes == 15.0 for s in result.recommended_slots)

    async def test_history_drives_waits_and_duration(self, make_engine, routine_request):
        history = MagicMock(spec=HistoryProvider)
        history.get_historical_appointments = AsyncMock(
            return_value=[
                HistoricalAppointment(
                    appointment_type="heart consultation",
                    scheduled_time=datetime(2025, 2, 24, hour, tzinfo=timezone.utc),
                    duration_minutes=45,
                    wait_minutes=wait,
                    provider_id="dr-heart",
                )
                for hour, wait in ((9, 40.0), (14, 5.0))
            ]
        )
        result = await make_engine(history=history).optimize(routine_request)

        assert result.insights.expected_duration_minutes == 45
        assert result.insights.best_hour == 14
        nine = [s for s in result.recommended_slots if s.start_time.hour == 9]
        assert nine and all(s.estimated_wait_minutes == 40.0 for s in nine)


class TestFailures:
    async def test_availability_failure_is_fatal(
        self, make_engine, mock_availability, routine_request
    ):
        mock_availability.get_provider_schedules = AsyncMock(
            side_effect=CollaboratorUnavailableError("schedules offline")
        )
        with pytest.raises(CollaboratorUnavailableError):
            await make_engine().optimize(routine_request)

    async def test_booking_lookup_failure_is_fatal(self, make_engine, mock_bookings, routine_request):
        mock_bookings.get_bookings_for_provider = AsyncMock(
            side_effect=CollaboratorUnavailableError("store offline")
        )
        with pytest.raises(CollaboratorUnavailableError):
            await make_engine().optimize(routine_request)

    async def test_booking_lookup_failure_cancels_other_lookups(
        self, make_engine, mock_bookings, routine_request
    ):
        finished = []

        async def lookup(provider_id, start, end):
            if provider_id == "dr-bones":
                raise CollaboratorUnavailableError("shard offline")
            await asyncio.sleep(30)
            finished.append(provider_id)
            return []

        mock_bookings.get_bookings_for_provider = AsyncMock(side_effect=lookup)

        with pytest.raises(CollaboratorUnavailableError, match="shard offline"):
            await asyncio.wait_for(make_engine().optimize(routine_request), timeout=5)

        assert finished == []
        pending = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        assert pending == []

    async def test_availability_timeout_is_retried(
        self, make_engine, mock_availability, providers, routine_request, tmp_path
    ):
        calls = 0

        async def flaky(*args):
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(1)
            return providers

        mock_availability.get_provider_schedules = AsyncMock(side_effect=flaky)
        fast = Settings(
            _env_file=None,
            observability_enabled=False,
            observability_log_dir=tmp_path,
            collaborator_timeout_seconds=0.05,
        )
        result = await make_engine(settings=fast).optimize(routine_request)

        assert calls == 2
        assert result.recommended_slots

    async def test_invalid_score_is_fatal_and_not_cached(self, make_engine, routine_request):
        engine = make_engine(scorer=ConstantScorer(1.5))
        with pytest.raises(InvalidScoreError):
            await engine.optimize(routine_request)

        engine.scorer = ConstantScorer(0.9)
        result = await engine.optimize(routine_request)
        assert result.recommended_slots

    async def test_failure_is_recorded(self, make_engine, mock_availability, routine_request, obs):
        mock_availability.get_provider_schedules = AsyncMock(
            side_effect=CollaboratorUnavailableError("schedules offline")
        )
        with pytest.raises(CollaboratorUnavailableError):
            await make_engine().optimize(routine_request)

        event = obs.get_recent_events("optimizations")[-1]
        assert event["event_type"] == "optimization_error"
        assert event["error_type"] == "CollaboratorUnavailableError"


class TestObservability:
    async def test_optimization_event(self, make_engine, routine_request, obs):
        result = await make_engine().optimize(routine_request)

        event = obs.get_recent_events("optimizations")[-1]
        assert event["event_type"] == "optimization_success"
        assert event["fingerprint"] == result.fingerprint
        assert event["providers_considered"] == 3
        assert event["candidates_generated"] > 0
        assert event["recommended_count"] == len(result.recommended_slots)
        assert event["scorer"] == "HeuristicScorer"
        assert "patient-1" not in str(event)


async def test_book_commits_through_store(make_engine, mock_bookings, routine_request):
    engine = make_engine()
    result = await engine.optimize(routine_request)
    slot = result.recommended_slots[0]

    await engine.book(routine_request, slot)

    mock_bookings.commit_booking.assert_awaited_once_with(
        slot.provider_id,
        slot.start_time,
        30,
        "patient-1",
        "heart consultation",
    )


async def test_book_uses_expected_duration_from_history(make_engine, mock_bookings, routine_request):
    history = MagicMock(spec=HistoryProvider)
    history.get_historical_appointments = AsyncMock(
        return_value=[
            HistoricalAppointment(
                appointment_type="heart consultation",
                scheduled_time=datetime(2025, 2, 24, 10, tzinfo=timezone.utc),
                duration_minutes=60,
                provider_id="dr-heart",
            )
        ]
    )
    engine = make_engine(history=history)
    result = await engine.optimize(routine_request)
    assert result.insights.expected_duration_minutes == 60

    await engine.book(routine_request, result.recommended_slots[0])

    assert mock_bookings.commit_booking.await_args.args[2] == 60


async def test_book_prefers_explicit_duration(make_engine, mock_bookings, routine_request):
    request = routine_request.model_copy(update={"duration_minutes": 20})
    await make_engine().book(request, NOW, provider_id="dr-heart")

    assert mock_bookings.commit_booking.await_args.args[2] == 20


async def test_book_bare_start_requires_provider(make_engine, routine_request):
    with pytest.raises(ValueError):
        await make_engine().book(routine_request, NOW)
