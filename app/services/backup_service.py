"""
Backup Service: create full, incremental and differential backups.

Each run walks one record through pending → in_progress → completed|failed.
Only the run that owns a record moves its status; every transition goes
through ``_transition`` so a terminal record can never be reopened.
"""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.orm import Session

from app.config import settings
from app.errors import (
    BackupCreationFailed,
    BackupInUse,
    BaseBackupNotFound,
    InvalidStatusTransition,
    OperationCancelled,
)
from app.metrics import BACKUP_LAST_SUCCESS, BACKUP_SIZE, BACKUPS_TOTAL
from app.models.backup import ALLOWED_TRANSITIONS, Backup, BackupStatus, BackupType
from app.services.catalog_service import CatalogService
from app.services.common import CancellationToken, ensure_utc, run_with_deadline, utcnow
from app.services.data_source import DataSource, get_data_source
from app.services.encryption import PayloadCipher, get_cipher
from app.services.retention_service import RetentionService, expires_at_for, is_pinned
from app.services.storage import BackupStorage, get_storage

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = settings.default_retention_days


def storage_key(backup: Backup) -> str:
    """Storage key derived from the record id, so a retried write lands on the same object."""
    return f"{backup.backup_type.value}/{backup.backup_id}.bak"


class BackupService:
    def __init__(
        self,
        db: Session,
        storage: BackupStorage | None = None,
        data_source: DataSource | None = None,
        cipher: PayloadCipher | None = None,
        *,
        commit_transitions: bool = False,
        storage_timeout: float | None = None,
    ):
        self.db = db
        self.storage = storage if storage is not None else get_storage()
        self.data_source = data_source if data_source is not None else get_data_source()
        self.cipher = cipher if cipher is not None else get_cipher()
        self.commit_transitions = commit_transitions
        self.storage_timeout = storage_timeout if storage_timeout is not None else settings.storage_timeout_seconds
        self.catalog = CatalogService(db)

    # -- record allocation ---------------------------------------------------

    def _allocate(
        self,
        backup_type: BackupType,
        *,
        name: str | None,
        description: str | None,
        tags: list[str] | None,
        encrypt: bool,
        retention_days: int,
        created_by: str,
        base: Backup | None = None,
        schedule_id: UUID | None = None,
    ) -> Backup:
        if retention_days < 1:
            raise BackupCreationFailed("retention_days must be >= 1")
        created_at = utcnow()
        label = backup_type.value.capitalize()
        backup = Backup(
            name=name or f"{label} Backup {created_at.isoformat()}",
            backup_type=backup_type,
            status=BackupStatus.pending,
            size_bytes=0,
            encrypted=encrypt,
            retention_days=retention_days,
            created_at=created_at,
            expires_at=expires_at_for(created_at, retention_days),
            tags=list(tags or []),
            description=description,
            created_by=created_by,
            base_backup_id=base.backup_id if base else None,
            schedule_id=schedule_id,
        )
        self.db.add(backup)
        self._persist()
        return backup

    def _persist(self) -> None:
        if self.commit_transitions:
            self.db.commit()
        else:
            self.db.flush()

    def _transition(self, backup: Backup, new_status: BackupStatus) -> None:
        if new_status not in ALLOWED_TRANSITIONS[backup.status]:
            raise InvalidStatusTransition(
                f"Backup {backup.backup_id} cannot move from {backup.status.value} to {new_status.value}"
            )
        backup.status = new_status

    def _resolve_base(self, base_backup_id: UUID, *, require_full: bool = False) -> Backup:
        base = self.catalog.get(base_backup_id)
        if not base or base.status != BackupStatus.completed:
            raise BaseBackupNotFound(f"Base backup {base_backup_id} not found or not completed")
        if require_full and base.backup_type != BackupType.full:
            raise BaseBackupNotFound(f"Base backup {base_backup_id} is not a full backup")
        return base

    # -- public operations ---------------------------------------------------

    def create_full(
        self,
        name: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
        encrypt: bool = True,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        created_by: str = "system",
        schedule_id: UUID | None = None,
        cancel_token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> Backup:
        """Take a full backup synchronously and return the completed record."""
        backup = self._allocate(
            BackupType.full,
            name=name,
            description=description,
            tags=tags,
            encrypt=encrypt,
            retention_days=retention_days,
            created_by=created_by,
            schedule_id=schedule_id,
        )
        return self.execute(backup, cancel_token=cancel_token, timeout=timeout)

    def create_incremental(
        self,
        base_backup_id: UUID,
        name: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
        encrypt: bool | None = None,
        retention_days: int | None = None,
        created_by: str = "system",
        schedule_id: UUID | None = None,
        cancel_token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> Backup:
        """Back up changes since ``base_backup_id``; encryption and retention default to the base's."""
        base = self._resolve_base(base_backup_id)
        backup = self._allocate(
            BackupType.incremental,
            name=name,
            description=description,
            tags=tags,
            encrypt=base.encrypted if encrypt is None else encrypt,
            retention_days=base.retention_days if retention_days is None else retention_days,
            created_by=created_by,
            base=base,
            schedule_id=schedule_id,
        )
        return self.execute(backup, cancel_token=cancel_token, timeout=timeout)

    def create_differential(
        self,
        base_backup_id: UUID,
        name: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
        encrypt: bool | None = None,
        retention_days: int | None = None,
        created_by: str = "system",
        cancel_token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> Backup:
        """Back up everything changed since a full backup."""
        base = self._resolve_base(base_backup_id, require_full=True)
        backup = self._allocate(
            BackupType.differential,
            name=name,
            description=description,
            tags=tags,
            encrypt=base.encrypted if encrypt is None else encrypt,
            retention_days=base.retention_days if retention_days is None else retention_days,
            created_by=created_by,
            base=base,
        )
        return self.execute(backup, cancel_token=cancel_token, timeout=timeout)

    def submit_full(self, **options) -> Backup:
        """Allocate a pending full backup and run it on a worker."""
        backup = self._allocate(
            BackupType.full,
            name=options.get("name"),
            description=options.get("description"),
            tags=options.get("tags"),
            encrypt=options.get("encrypt", True),
            retention_days=options.get("retention_days", DEFAULT_RETENTION_DAYS),
            created_by=options.get("created_by", "system"),
        )
        return self._dispatch(backup)

    def submit_incremental(self, base_backup_id: UUID, **options) -> Backup:
        base = self._resolve_base(base_backup_id)
        encrypt = options.get("encrypt")
        retention_days = options.get("retention_days")
        backup = self._allocate(
            BackupType.incremental,
            name=options.get("name"),
            description=options.get("description"),
            tags=options.get("tags"),
            encrypt=base.encrypted if encrypt is None else encrypt,
            retention_days=base.retention_days if retention_days is None else retention_days,
            created_by=options.get("created_by", "system"),
            base=base,
        )
        return self._dispatch(backup)

    def _dispatch(self, backup: Backup) -> Backup:
        from app.tasks.backups import run_backup

        # The worker opens its own session, so the pending row must be visible to it.
        self.db.commit()
        run_backup.delay(str(backup.backup_id))
        logger.info("Queued %s backup %s", backup.backup_type.value, backup.backup_id)
        return backup

    def execute(
        self, backup: Backup | UUID, cancel_token: CancellationToken | None = None, timeout: float | None = None
    ) -> Backup:
        """Run a pending record to completion.

        The export and the storage write are each bounded by ``timeout``, or
        by the configured storage timeout when it is not given.

        Raises ``BackupCreationFailed`` (or ``OperationCancelled``) after the
        record has been marked failed.
        """
        if not isinstance(backup, Backup):
            backup = self.catalog.require(backup)
        token = cancel_token or CancellationToken()
        deadline = timeout or self.storage_timeout
        started = time.monotonic()

        self._transition(backup, BackupStatus.in_progress)
        backup.started_at = utcnow()
        self._persist()

        try:
            token.raise_if_cancelled()
            since = self._delta_since(backup)
            payload = run_with_deadline(self.data_source.export, deadline, since=since, label="data export")
            if backup.encrypted:
                if self.cipher is None:
                    raise BackupCreationFailed("Encryption requested but no backup encryption key is configured")
                payload = self.cipher.encrypt(payload).to_bytes()
            token.raise_if_cancelled()
            stored = run_with_deadline(
                self.storage.write, deadline, storage_key(backup), payload, label="storage write"
            )
            backup.location = stored.location
            backup.size_bytes = stored.size
            backup.checksum = stored.checksum
            self._transition(backup, BackupStatus.completed)
            backup.completed_at = utcnow()
            self._persist()
        except Exception as exc:
            self._mark_failed(backup, exc)
            BACKUPS_TOTAL.labels(backup_type=backup.backup_type.value, status="failed").inc()
            logger.exception("Backup %s (%s) failed", backup.backup_id, backup.backup_type.value)
            if isinstance(exc, (BackupCreationFailed, OperationCancelled)):
                raise
            raise BackupCreationFailed(f"Backup {backup.backup_id} failed: {exc}") from exc

        BACKUPS_TOTAL.labels(backup_type=backup.backup_type.value, status="completed").inc()
        BACKUP_SIZE.labels(backup_type=backup.backup_type.value).observe(backup.size_bytes)
        BACKUP_LAST_SUCCESS.labels(backup_type=backup.backup_type.value).set(time.time())
        logger.info(
            "Backup %s completed: %s (%s bytes) in %.2fs",
            backup.backup_id,
            backup.location,
            backup.size_bytes,
            time.monotonic() - started,
        )

        if backup.backup_type == BackupType.full:
            self._run_retention()
        return backup

    def _delta_since(self, backup: Backup) -> datetime | None:
        if backup.backup_type == BackupType.full:
            return None
        base = self.catalog.require(backup.base_backup_id)
        return ensure_utc(base.created_at)

    def _mark_failed(self, backup: Backup, exc: Exception) -> None:
        if BackupStatus.failed not in ALLOWED_TRANSITIONS[backup.status]:
            return
        backup.status = BackupStatus.failed
        backup.error_message = str(exc)[:2000] or exc.__class__.__name__
        backup.completed_at = datetime.now(UTC)
        try:
            self._persist()
        except Exception:
            logger.exception("Could not persist failure of backup %s", backup.backup_id)

    def _run_retention(self) -> None:
        try:
            RetentionService(self.db, self.storage).cleanup_expired()
            self._persist()
        except Exception:
            logger.exception("Post-backup retention pass failed")

    def delete_backup(self, backup_id: UUID) -> bool:
        """Delete a backup and its payload. Returns False when it does not exist."""
        backup = self.catalog.get(backup_id)
        if not backup:
            return False
        if backup.status in (BackupStatus.pending, BackupStatus.in_progress):
            raise BackupInUse(f"Backup {backup_id} is still running")
        if self.catalog.dependents_of(backup_id):
            raise BackupInUse(f"Backup {backup_id} is the base of other backups")
        if is_pinned(backup_id):
            raise BackupInUse(f"Backup {backup_id} is being restored")
        if backup.location:
            self.storage.delete(backup.location)
        self.db.delete(backup)
        self.db.flush()
        logger.info("Deleted backup %s", backup_id)
        return True
