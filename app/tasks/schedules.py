"""Schedule Tasks: the periodic tick that fires due backup schedules."""

from __future__ import annotations

import logging
import time

from celery import shared_task

from app.db import SessionLocal
from app.metrics import observe_job

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=2, default_retry_delay=60)
def run_schedule_tick(self) -> dict:
    """Periodic task: fire every due backup schedule.

    Runs every ``SCHEDULER_TICK_SECONDS`` via Celery beat. Backups for due
    schedules execute inline so ``last_run_at`` and ``next_run_at`` are only
    advanced once the run has an outcome.
    """
    started = time.monotonic()
    with SessionLocal() as db:
        from app.services.schedule_service import ScheduleService

        result = ScheduleService(db).tick()
        db.commit()
    observe_job("run_schedule_tick", "completed", time.monotonic() - started)
    logger.info(
        "Scheduled backup check: %d fired, %d failed",
        len(result["fired"]),
        len(result["failed"]),
    )
    return result
