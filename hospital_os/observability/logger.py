"""Observability logger for structured scheduling telemetry."""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from hospital_os.observability.events import (
    BookingEvent,
    CacheEvent,
    DegradationEvent,
    EventType,
    ObservabilityEvent,
    OptimizationEvent,
)

logger = logging.getLogger(__name__)


class ObservabilityLogger:
    """Central logger for scheduling observability events.

    Writes structured events to JSON Lines files for later analysis.
    Patient identifiers are never written.
    """

    _instance: Optional["ObservabilityLogger"] = None

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        enabled: bool = True,
    ):
        """Initialize observability logger.

        Args:
            log_dir: Directory for log files (default: data/logs)
            enabled: Whether logging is enabled
        """
        self.enabled = enabled

        if log_dir is None:
            log_dir = Path("data/logs")
        self.log_dir = log_dir
        if self.enabled:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._log_files: dict[str, Path] = {
            "optimizations": self.log_dir / "optimizations.jsonl",
            "cache": self.log_dir / "cache.jsonl",
            "degraded": self.log_dir / "degraded.jsonl",
            "bookings": self.log_dir / "bookings.jsonl",
        }

        # Event callbacks for real-time monitoring
        self._callbacks: list[Callable[[ObservabilityEvent], None]] = []

    @classmethod
    def get_instance(cls) -> "ObservabilityLogger":
        """Get or create singleton instance configured from settings."""
        if cls._instance is None:
            from hospital_os.config import get_settings

            settings = get_settings()
            cls._instance = cls(
                log_dir=settings.observability_log_dir,
                enabled=settings.observability_enabled,
            )
        return cls._instance

    def generate_request_id(self) -> str:
        """Generate a unique request ID."""
        return str(uuid.uuid4())[:8]

    def add_callback(self, callback: Callable[[ObservabilityEvent], None]) -> None:
        """Add callback for real-time event monitoring."""
        self._callbacks.append(callback)

    def _write_event(self, event: ObservabilityEvent, log_type: str) -> None:
        """Write event to appropriate log file."""
        if not self.enabled:
            return

        try:
            log_file = self._log_files.get(log_type)
            if log_file:
                with open(log_file, "a") as f:
                    f.write(event.model_dump_json() + "\n")

            for callback in self._callbacks:
                try:
                    callback(event)
                except Exception as e:
                    logger.warning(f"Observability callback failed: {e}")

        except OSError as e:
            logger.warning(f"Failed to write observability event: {e}")

    # Optimization Logging

    @contextmanager
    def optimization_run(
        self,
        fingerprint: str,
        appointment_type: str,
        urgency: str,
        department: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        """Context manager for logging one optimization computation.

        Usage:
            with obs.optimization_run(fp, "consultation", "routine") as event:
                result = compute()
                event.recommended_count = len(result.recommended_slots)
        """
        start_time = time.time()
        request_id = request_id or self.generate_request_id()

        event = OptimizationEvent(
            event_type=EventType.OPTIMIZATION_START,
            fingerprint=fingerprint,
            appointment_type=appointment_type,
            urgency=urgency,
            department=department,
            request_id=request_id,
        )

        try:
            yield event
            event.event_type = EventType.OPTIMIZATION_SUCCESS

        except Exception as e:
            event.event_type = EventType.OPTIMIZATION_ERROR
            event.error_type = type(e).__name__
            event.error_message = str(e)[:200]
            raise

        finally:
            event.duration_ms = (time.time() - start_time) * 1000
            self._write_event(event, "optimizations")

    # Cache Logging

    def log_cache_event(
        self,
        event_type: EventType,
        fingerprint: str,
        backend: str,
        request_id: Optional[str] = None,
    ) -> None:
        """Log a cache hit, miss, or shared in-flight computation."""
        event = CacheEvent(
            event_type=event_type,
            fingerprint=fingerprint,
            backend=backend,
            request_id=request_id,
        )
        self._write_event(event, "cache")

    # Degradation Logging

    def log_degraded(
        self,
        dependency: str,
        substitute: str,
        reason: str,
        request_id: Optional[str] = None,
    ) -> None:
        """Log a dependency replaced by a default."""
        event = DegradationEvent(
            dependency=dependency,
            substitute=substitute,
            reason=reason[:200],
            request_id=request_id,
        )
        self._write_event(event, "degraded")

    # Booking Logging

    def log_booking(
        self,
        event_type: EventType,
        provider_id: str,
        start_time: datetime,
        duration_minutes: int,
        booking_id: Optional[str] = None,
    ) -> None:
        """Log a booking commit or a commit-time conflict."""
        event = BookingEvent(
            event_type=event_type,
            provider_id=provider_id,
            start_time=start_time,
            duration_minutes=duration_minutes,
            booking_id=booking_id,
        )
        self._write_event(event, "bookings")

    # Utility methods

    def get_recent_events(
        self,
        log_type: str,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Read recent events from a log file."""
        log_file = self._log_files.get(log_type)
        if not log_file or not log_file.exists():
            return []

        events = []
        with open(log_file) as f:
            for line in f:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue

        return events[-limit:]

    def get_stats(self, log_type: str) -> dict[str, Any]:
        """Get basic statistics for a log type."""
        events = self.get_recent_events(log_type, limit=1000)
        if not events:
            return {"total": 0}

        total = len(events)
        errors = sum(1 for e in events if "error" in e.get("event_type", ""))
        avg_duration = sum(e.get("duration_ms") or 0 for e in events) / total

        return {
            "total": total,
            "errors": errors,
            "error_rate": errors / total if total > 0 else 0,
            "avg_duration_ms": avg_duration,
        }


def get_observability_logger() -> ObservabilityLogger:
    """Get the global observability logger instance."""
    return ObservabilityLogger.get_instance()
