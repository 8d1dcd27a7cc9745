"""Backup Tasks: run queued backups and restores, and the retention sweep."""

from __future__ import annotations

import logging
import time
from uuid import UUID

from celery import shared_task

from app.db import SessionLocal
from app.errors import BackupEngineError
from app.metrics import observe_job

logger = logging.getLogger(__name__)


@shared_task
def run_backup(backup_id: str) -> dict:
    """Execute a pending backup allocated by ``BackupService.submit_*``."""
    started = time.monotonic()
    with SessionLocal() as db:
        from app.services.backup_service import BackupService

        svc = BackupService(db, commit_transitions=True)
        try:
            backup = svc.execute(UUID(backup_id))
        except BackupEngineError as exc:
            db.commit()
            observe_job("run_backup", "failed", time.monotonic() - started)
            return {"backup_id": backup_id, "status": "failed", "code": exc.code, "error": exc.message}
        db.commit()
        observe_job("run_backup", "completed", time.monotonic() - started)
        return {"backup_id": backup_id, "status": backup.status.value}


@shared_task
def run_restore(
    backup_id: str,
    target_location: str | None = None,
    overwrite: bool = False,
    validate_integrity: bool = True,
) -> dict:
    started = time.monotonic()
    with SessionLocal() as db:
        from app.services.restore_service import RestoreService

        try:
            point = RestoreService(db).restore(
                UUID(backup_id),
                target_location=target_location,
                overwrite=overwrite,
                validate_integrity=validate_integrity,
            )
        except BackupEngineError as exc:
            db.rollback()
            observe_job("run_restore", "failed", time.monotonic() - started)
            return {"backup_id": backup_id, "success": False, "code": exc.code, "error": exc.message}
        db.commit()
        observe_job("run_restore", "completed", time.monotonic() - started)
        return {"backup_id": backup_id, "success": True, "restore_point_id": str(point.restore_point_id)}


@shared_task(bind=True, max_retries=2, default_retry_delay=120)
def cleanup_expired_backups(self) -> dict:
    """Periodic task: delete expired backups that nothing depends on."""
    with SessionLocal() as db:
        from app.services.retention_service import RetentionService
        from app.services.storage import get_storage

        result = RetentionService(db, get_storage()).cleanup_expired()
        db.commit()
    return result
