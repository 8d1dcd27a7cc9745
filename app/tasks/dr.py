"""Disaster Recovery Tasks: run DR plan drills on a worker."""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task

from app.db import SessionLocal

logger = logging.getLogger(__name__)


@shared_task
def run_dr_test(dr_plan_id: str) -> dict:
    with SessionLocal() as db:
        from app.services.dr_service import DisasterRecoveryService

        svc = DisasterRecoveryService(db)
        result = svc.test_plan(UUID(dr_plan_id))
        db.commit()
        logger.info("DR drill for plan %s: success=%s", dr_plan_id, result.success)
        return svc.serialize_result(result)
