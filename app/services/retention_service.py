"""Retention: expire backups without breaking incremental chains.

A backup past ``expires_at`` is removed only when nothing still needs it:
it is not running, no surviving backup names it as ``base_backup_id`` and no
in-flight restore has pinned it. The pass and the pins share one lock, so
a restore either pins its chain before the pass starts or waits for it to
finish and then re-reads the chain.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.metrics import RETENTION_DELETED
from app.models.backup import Backup, BackupStatus
from app.services.catalog_service import CatalogService
from app.services.common import utcnow
from app.services.storage import BackupStorage

logger = logging.getLogger(__name__)

# Process-local: Celery workers each hold their own. Cross-worker safety
# comes from the dependents check, which reads committed catalog state.
_retention_lock = threading.RLock()
_pinned: Counter[UUID] = Counter()

_ACTIVE_STATUSES = (BackupStatus.pending, BackupStatus.in_progress)


def expires_at_for(created_at: datetime, retention_days: int) -> datetime:
    return created_at + timedelta(days=retention_days)


@contextmanager
def pin(backup_ids: Iterable[UUID]) -> Iterator[None]:
    """Protect ``backup_ids`` from the retention pass while the block runs."""
    ids = list(backup_ids)
    with _retention_lock:
        _pinned.update(ids)
    try:
        yield
    finally:
        with _retention_lock:
            _pinned.subtract(ids)
            for backup_id in ids:
                if _pinned[backup_id] <= 0:
                    del _pinned[backup_id]


def is_pinned(backup_id: UUID) -> bool:
    with _retention_lock:
        return _pinned[backup_id] > 0


class RetentionService:
    def __init__(self, db: Session, storage: BackupStorage):
        self.db = db
        self.storage = storage
        self.catalog = CatalogService(db)

    def expired_candidates(self, now: datetime) -> list[Backup]:
        # Newest first so incrementals are released before their bases.
        stmt = select(Backup).where(Backup.expires_at <= now).order_by(Backup.created_at.desc())
        return list(self.db.scalars(stmt).all())

    def cleanup_expired(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        deleted: list[str] = []
        protected: list[str] = []
        errors = 0

        with _retention_lock:
            removed: set[UUID] = set()
            for backup in self.expired_candidates(now):
                if backup.status in _ACTIVE_STATUSES:
                    protected.append(str(backup.backup_id))
                    continue
                if _pinned[backup.backup_id] > 0:
                    logger.info("Backup %s is pinned by a restore, keeping", backup.backup_id)
                    protected.append(str(backup.backup_id))
                    continue
                live_dependents = [
                    d for d in self.catalog.dependents_of(backup.backup_id) if d.backup_id not in removed
                ]
                if live_dependents:
                    logger.info(
                        "Backup %s is the base of %d live backup(s), keeping",
                        backup.backup_id,
                        len(live_dependents),
                    )
                    protected.append(str(backup.backup_id))
                    continue
                try:
                    if backup.location:
                        self.storage.delete(backup.location)
                    self.db.delete(backup)
                    self.db.flush()
                except Exception:
                    logger.exception("Failed to remove expired backup %s", backup.backup_id)
                    errors += 1
                    continue
                removed.add(backup.backup_id)
                deleted.append(str(backup.backup_id))

        if deleted:
            RETENTION_DELETED.inc(len(deleted))
        logger.info(
            "Retention pass: %d deleted, %d protected, %d errors",
            len(deleted),
            len(protected),
            errors,
        )
        return {"deleted": deleted, "skipped_protected": protected, "errors": errors}
