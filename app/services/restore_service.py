"""Restore Service: rebuild data from a backup chain and record a RestorePoint."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import (
    BackupNotFound,
    BackupNotRestorable,
    IntegrityCheckFailed,
    RestoreFailed,
    RestoreTargetConflict,
    StorageError,
    StorageTimeout,
)
from app.metrics import RESTORES_TOTAL
from app.models.backup import Backup, BackupStatus
from app.models.restore_point import RestorePoint
from app.services.catalog_service import CatalogService
from app.services.common import CancellationToken, isoformat, run_with_deadline
from app.services.data_source import DataSource, DataSourceError, get_data_source
from app.services.encryption import EncryptedEnvelope, EncryptionError, PayloadCipher, get_cipher
from app.services.integrity_service import IntegrityService
from app.services.retention_service import pin
from app.services.storage import BackupStorage, get_storage

logger = logging.getLogger(__name__)

RESTORE_POINT_VERSION = "1.0.0"


class RestoreService:
    def __init__(
        self,
        db: Session,
        storage: BackupStorage | None = None,
        data_source: DataSource | None = None,
        cipher: PayloadCipher | None = None,
        *,
        storage_timeout: float | None = None,
    ):
        self.db = db
        self.storage = storage if storage is not None else get_storage()
        self.data_source = data_source if data_source is not None else get_data_source()
        self.cipher = cipher if cipher is not None else get_cipher()
        self.storage_timeout = storage_timeout if storage_timeout is not None else settings.storage_timeout_seconds
        self.catalog = CatalogService(db)
        self.integrity = IntegrityService(self.storage, timeout=self.storage_timeout)

    def _resolve_chain(self, backup: Backup) -> list[Backup]:
        try:
            chain = self.catalog.chain_for(backup)
        except BackupNotFound as exc:
            raise BackupNotRestorable(str(exc)) from exc
        for link in chain:
            if link.status != BackupStatus.completed:
                raise BackupNotRestorable(
                    f"Backup {link.backup_id} in the chain is {link.status.value}, not completed"
                )
        return chain

    def restore(
        self,
        backup_id: UUID,
        target_location: str | None = None,
        overwrite: bool = False,
        validate_integrity: bool = True,
        cancel_token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> RestorePoint:
        """Restore ``backup_id`` (and its base chain) into ``target_location``.

        Without a target the chain is replayed over the live source, replacing
        it in place. An explicit target is only overwritten when ``overwrite``
        is set; otherwise any existing path the chain would replace makes the
        restore fail with ``RestoreTargetConflict`` before anything is written.

        Nothing is written until every payload in the chain has been read,
        verified and decrypted. ``timeout`` bounds each storage read instead
        of the configured storage timeout, and when given also bounds each
        apply.
        """
        backup = self.catalog.require(backup_id)
        if backup.status != BackupStatus.completed:
            RESTORES_TOTAL.labels(status="rejected").inc()
            raise BackupNotRestorable(f"Cannot restore from {backup.status.value} backup {backup_id}")

        replace = overwrite or target_location is None
        token = cancel_token or CancellationToken()
        chain = self._resolve_chain(backup)
        chain_ids = [link.backup_id for link in chain]

        with pin(chain_ids):
            # The retention pass may have run between resolving and pinning.
            for link_id in chain_ids:
                if self.db.get(Backup, link_id, populate_existing=True) is None:
                    raise BackupNotRestorable(f"Backup {link_id} was removed before the restore started")

            try:
                payloads = self._load_payloads(chain, validate_integrity, token, timeout or self.storage_timeout)
                token.raise_if_cancelled()
                if not replace:
                    self._check_target(payloads, target_location)
                for index, payload in enumerate(payloads):
                    try:
                        # Later links layer their changes over the base.
                        run_with_deadline(
                            self.data_source.apply,
                            timeout,
                            payload,
                            target_location,
                            overwrite=replace or index > 0,
                            label="restore apply",
                        )
                    except (DataSourceError, OSError) as exc:
                        raise RestoreFailed(
                            f"Applying backup {chain_ids[index]} to {target_location or 'the source'} failed: {exc}"
                        ) from exc
            except Exception:
                RESTORES_TOTAL.labels(status="failed").inc()
                logger.exception("Restore of backup %s failed", backup_id)
                raise

        restore_point = RestorePoint(
            backup_id=backup.backup_id,
            version=RESTORE_POINT_VERSION,
            description=f"Restore from {backup.name}",
            target_location=target_location,
            data_integrity=validate_integrity,
            dependencies=[str(link_id) for link_id in chain_ids],
        )
        self.db.add(restore_point)
        self.db.flush()
        RESTORES_TOTAL.labels(status="completed").inc()
        logger.info(
            "Restored backup %s (%d link chain) to %s",
            backup_id,
            len(chain),
            target_location or "source location",
        )
        return restore_point

    def _check_target(self, payloads: list[bytes], target_location: str | None) -> None:
        try:
            existing = sorted(
                {path for payload in payloads for path in self.data_source.conflicts(payload, target_location)}
            )
        except (DataSourceError, OSError) as exc:
            raise RestoreFailed(f"Cannot inspect restore target {target_location}: {exc}") from exc
        if existing:
            raise RestoreTargetConflict(
                f"{len(existing)} path(s) already exist in {target_location} and overwrite is disabled",
                details=existing[:50],
            )

    def _load_payloads(
        self, chain: list[Backup], validate_integrity: bool, token: CancellationToken, timeout: float | None
    ) -> list[bytes]:
        payloads = []
        for link in chain:
            token.raise_if_cancelled()
            try:
                raw = run_with_deadline(self.storage.read, timeout, link.location, label="storage read")
            except StorageTimeout:
                raise
            except StorageError as exc:
                if validate_integrity:
                    raise IntegrityCheckFailed(f"Backup {link.backup_id} payload is unreadable: {exc}") from exc
                raise
            # Verify and apply the same bytes; a second read could return something else.
            if validate_integrity and not self.integrity.verify_payload(link, raw):
                raise IntegrityCheckFailed(f"Backup {link.backup_id} failed integrity validation")
            if link.encrypted:
                if self.cipher is None:
                    raise BackupNotRestorable(f"Backup {link.backup_id} is encrypted and no key is configured")
                try:
                    raw = self.cipher.decrypt(EncryptedEnvelope.from_bytes(raw))
                except EncryptionError as exc:
                    raise IntegrityCheckFailed(f"Backup {link.backup_id} could not be decrypted: {exc}") from exc
            payloads.append(raw)
        return payloads

    def submit_restore(self, backup_id: UUID, **options) -> dict:
        """Validate the request and run the restore on a worker."""
        from app.tasks.backups import run_restore

        backup = self.catalog.require(backup_id)
        if backup.status != BackupStatus.completed:
            raise BackupNotRestorable(f"Cannot restore from {backup.status.value} backup {backup_id}")
        result = run_restore.delay(str(backup_id), **options)
        return {"queued": True, "backup_id": str(backup_id), "task_id": str(result.id)}

    def list_restore_points(self, backup_id: UUID | None = None, limit: int = 100) -> list[RestorePoint]:
        stmt = select(RestorePoint)
        if backup_id is not None:
            stmt = stmt.where(RestorePoint.backup_id == backup_id)
        stmt = stmt.order_by(RestorePoint.restored_at.desc()).limit(limit)
        return list(self.db.scalars(stmt).all())

    @staticmethod
    def serialize_restore_point(point: RestorePoint) -> dict:
        return {
            "restore_point_id": str(point.restore_point_id),
            "backup_id": str(point.backup_id),
            "restored_at": isoformat(point.restored_at),
            "version": point.version,
            "description": point.description,
            "target_location": point.target_location,
            "data_integrity": point.data_integrity,
            "dependencies": list(point.dependencies or []),
        }
