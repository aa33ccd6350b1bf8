"""Main entry point for the hospital scheduling engine."""

import logging
import sys
from datetime import date
from typing import Optional

from hospital_os.config import get_settings


def setup_logging():
    """Configure logging based on settings."""
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


async def run_optimization(
    patient_id: str,
    appointment_type: str,
    preferred_date: date,
    urgency: str = "routine",
    department: Optional[str] = None,
    provider_id: Optional[str] = None,
    duration_minutes: Optional[int] = None,
):
    """Programmatic API for recommending appointment slots.

    Example:
        import asyncio
        from datetime import date
        from hospital_os.main import run_optimization

        result = asyncio.run(run_optimization(
            "patient-42",
            "consultation",
            date(2025, 3, 10),
            department="cardiology",
        ))
    """
    from hospital_os.core.database import init_db
    from hospital_os.scheduling import SchedulingRequest, Urgency, build_engine_from_settings

    setup_logging()
    await init_db()

    request = SchedulingRequest(
        patient_id=patient_id,
        appointment_type=appointment_type,
        preferred_date=preferred_date,
        urgency=Urgency(urgency),
        department=department,
        provider_id=provider_id,
        duration_minutes=duration_minutes,
    )

    engine = build_engine_from_settings()
    try:
        return await engine.optimize(request)
    finally:
        await engine.close()
