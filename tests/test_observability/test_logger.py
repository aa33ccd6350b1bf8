"""Tests for observability logger."""

import json
from datetime import datetime, timezone

import pytest

from hospital_os.config import get_settings
from hospital_os.observability import (
    BookingEvent,
    EventType,
    ObservabilityLogger,
    OptimizationEvent,
    get_observability_logger,
)


@pytest.fixture
def temp_log_dir(tmp_path):
    """Create temporary log directory."""
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    return log_dir


@pytest.fixture
def obs_logger(temp_log_dir):
    """Create observability logger with temp directory."""
    return ObservabilityLogger(log_dir=temp_log_dir, enabled=True)


def _read(path):
    return [json.loads(line) for line in path.read_text().strip().split("\n")]


class TestObservabilityLogger:
    """Tests for ObservabilityLogger."""

    def test_init_creates_log_directory(self, tmp_path):
        """Test that init creates log directory if needed."""
        log_dir = tmp_path / "new_logs"
        ObservabilityLogger(log_dir=log_dir)

        assert log_dir.exists()

    def test_disabled_logger_writes_nothing(self, tmp_path):
        """Test that disabled logger neither creates files nor writes."""
        log_dir = tmp_path / "disabled"
        logger = ObservabilityLogger(log_dir=log_dir, enabled=False)

        with logger.optimization_run("fp", "consultation", "routine") as event:
            event.recommended_count = 3

        assert not log_dir.exists()

    def test_optimization_run_success(self, obs_logger, temp_log_dir):
        """Test logging a successful optimization."""
        with obs_logger.optimization_run(
            fingerprint="abc123",
            appointment_type="consultation",
            urgency="routine",
            department="cardiology",
        ) as event:
            event.candidates_generated = 40
            event.recommended_count = 10
            event.top_score = 0.91

        events = _read(temp_log_dir / "optimizations.jsonl")
        assert len(events) == 1
        assert events[0]["event_type"] == "optimization_success"
        assert events[0]["department"] == "cardiology"
        assert events[0]["candidates_generated"] == 40
        assert events[0]["top_score"] == 0.91
        assert events[0]["duration_ms"] is not None
        assert events[0]["request_id"]

    def test_optimization_run_error(self, obs_logger, temp_log_dir):
        """Test logging a failed optimization."""
        with pytest.raises(RuntimeError):
            with obs_logger.optimization_run("abc123", "surgery", "urgent"):
                raise RuntimeError("availability lookup failed")

        events = _read(temp_log_dir / "optimizations.jsonl")
        assert events[0]["event_type"] == "optimization_error"
        assert events[0]["error_type"] == "RuntimeError"
        assert "availability lookup failed" in events[0]["error_message"]

    def test_cache_events(self, obs_logger, temp_log_dir):
        obs_logger.log_cache_event(EventType.CACHE_MISS, "abc123", "memory")
        obs_logger.log_cache_event(EventType.CACHE_HIT, "abc123", "redis")

        events = _read(temp_log_dir / "cache.jsonl")
        assert [(e["event_type"], e["backend"]) for e in events] == [
            ("cache_miss", "memory"),
            ("cache_hit", "redis"),
        ]

    def test_degraded_event_truncates_reason(self, obs_logger, temp_log_dir):
        obs_logger.log_degraded("demand_forecaster", "flat 5.0/h", "x" * 500)

        events = _read(temp_log_dir / "degraded.jsonl")
        assert events[0]["event_type"] == "dependency_degraded"
        assert events[0]["dependency"] == "demand_forecaster"
        assert len(events[0]["reason"]) == 200

    def test_booking_events(self, obs_logger, temp_log_dir):
        start = datetime(2025, 3, 4, 10, tzinfo=timezone.utc)
        obs_logger.log_booking(EventType.BOOKING_COMMITTED, "dr-heart", start, 30, "b-1")
        obs_logger.log_booking(EventType.BOOKING_CONFLICT, "dr-heart", start, 30)

        events = _read(temp_log_dir / "bookings.jsonl")
        assert [e["event_type"] for e in events] == ["booking_committed", "booking_conflict"]
        assert events[0]["booking_id"] == "b-1"
        assert events[1]["booking_id"] is None

    def test_callback_on_event(self, obs_logger):
        """Test that callbacks are called on events."""
        callback_events = []
        obs_logger.add_callback(callback_events.append)

        with obs_logger.optimization_run("fp", "consultation", "routine"):
            pass

        assert len(callback_events) == 1
        assert callback_events[0].event_type == EventType.OPTIMIZATION_SUCCESS

    def test_failing_callback_does_not_break_logging(self, obs_logger, temp_log_dir):
        def broken(event):
            raise RuntimeError("monitor down")

        obs_logger.add_callback(broken)
        obs_logger.log_cache_event(EventType.CACHE_MISS, "fp", "memory")

        assert len(_read(temp_log_dir / "cache.jsonl")) == 1

    def test_get_recent_events(self, obs_logger):
        """Test retrieving recent events."""
        for i in range(5):
            obs_logger.log_cache_event(EventType.CACHE_MISS, f"fp-{i}", "memory")

        events = obs_logger.get_recent_events("cache", limit=3)
        assert len(events) == 3
        assert events[-1]["fingerprint"] == "fp-4"

    def test_get_recent_events_unknown_type(self, obs_logger):
        assert obs_logger.get_recent_events("nothing") == []

    def test_get_stats(self, obs_logger):
        """Test getting statistics."""
        for _ in range(3):
            with obs_logger.optimization_run("fp", "consultation", "routine"):
                pass

        with pytest.raises(ValueError):
            with obs_logger.optimization_run("fp", "consultation", "routine"):
                raise ValueError("test")

        stats = obs_logger.get_stats("optimizations")
        assert stats["total"] == 4
        assert stats["errors"] == 1
        assert stats["error_rate"] == 0.25


class TestGetObservabilityLogger:
    """Tests for singleton getter."""

    @pytest.fixture(autouse=True)
    def reset(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OBSERVABILITY_ENABLED", "false")
        monkeypatch.setenv("OBSERVABILITY_LOG_DIR", str(tmp_path / "logs"))
        get_settings.cache_clear()
        ObservabilityLogger._instance = None
        yield
        ObservabilityLogger._instance = None
        get_settings.cache_clear()

    def test_returns_singleton(self):
        """Test that get_observability_logger returns singleton."""
        assert get_observability_logger() is get_observability_logger()

    def test_configured_from_settings(self, tmp_path):
        logger = get_observability_logger()
        assert logger.enabled is False
        assert logger.log_dir == tmp_path / "logs"


class TestEventModels:
    """Tests for event Pydantic models."""

    def test_optimization_event_serialization(self):
        event = OptimizationEvent(
            event_type=EventType.OPTIMIZATION_SUCCESS,
            fingerprint="abc",
            appointment_type="consultation",
            urgency="routine",
            degraded=["demand_forecaster"],
        )

        data = json.loads(event.model_dump_json())
        assert data["degraded"] == ["demand_forecaster"]
        assert "timestamp" in data

    def test_booking_event_serialization(self):
        event = BookingEvent(
            event_type=EventType.BOOKING_COMMITTED,
            provider_id="dr-heart",
            start_time=datetime(2025, 3, 4, 10, tzinfo=timezone.utc),
            duration_minutes=30,
        )
        data = event.model_dump()
        assert data["provider_id"] == "dr-heart"
        assert data["duration_minutes"] == 30
