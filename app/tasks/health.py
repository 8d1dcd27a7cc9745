"""
Health Task: Celery beat task to evaluate backup health and raise alerts.
"""

import logging

from celery import shared_task

from app.db import SessionLocal

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=30)
def check_backup_health(self) -> dict:
    """Check backup SLAs and queue an alert when they are breached."""
    with SessionLocal() as db:
        from app.services.health_service import BackupHealthService

        result = BackupHealthService(db).check_and_alert()
        db.commit()

    logger.info("Backup health: %s (%d issues)", result["status"], len(result["issues"]))
    return result
