"""Catalog: query side of the backup record store."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import BackupNotFound
from app.models.backup import Backup, BackupStatus, BackupType
from app.services.common import ensure_utc, isoformat

logger = logging.getLogger(__name__)


class CatalogService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, backup_id: UUID) -> Backup | None:
        return self.db.get(Backup, backup_id)

    def require(self, backup_id: UUID) -> Backup:
        backup = self.get(backup_id)
        if not backup:
            raise BackupNotFound(f"Backup {backup_id} not found")
        return backup

    def list_backups(
        self,
        backup_type: BackupType | None = None,
        status: BackupStatus | None = None,
        tags: list[str] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Backup]:
        """Backups newest first. ``tags`` matches records carrying any of the given tags."""
        stmt = select(Backup)
        if backup_type is not None:
            stmt = stmt.where(Backup.backup_type == backup_type)
        if status is not None:
            stmt = stmt.where(Backup.status == status)
        if start is not None:
            stmt = stmt.where(Backup.created_at >= start)
        if end is not None:
            stmt = stmt.where(Backup.created_at <= end)
        stmt = stmt.order_by(Backup.created_at.desc())
        backups = list(self.db.scalars(stmt).all())
        if tags:
            wanted = set(tags)
            backups = [b for b in backups if wanted.intersection(b.tags or [])]
        if limit is not None:
            backups = backups[offset : offset + limit]
        return backups

    def latest_completed(self, backup_type: BackupType | None = None, schedule_id: UUID | None = None) -> Backup | None:
        stmt = select(Backup).where(Backup.status == BackupStatus.completed)
        if backup_type is not None:
            stmt = stmt.where(Backup.backup_type == backup_type)
        if schedule_id is not None:
            stmt = stmt.where(Backup.schedule_id == schedule_id)
        stmt = stmt.order_by(Backup.created_at.desc()).limit(1)
        return self.db.scalar(stmt)

    def dependents_of(self, backup_id: UUID) -> list[Backup]:
        stmt = select(Backup).where(Backup.base_backup_id == backup_id)
        return list(self.db.scalars(stmt).all())

    def chain_for(self, backup: Backup) -> list[Backup]:
        """Return the backups needed to reconstruct ``backup``, base first."""
        chain = [backup]
        seen = {backup.backup_id}
        current = backup
        while current.base_backup_id is not None:
            base = self.get(current.base_backup_id)
            if base is None:
                raise BackupNotFound(
                    f"Base backup {current.base_backup_id} of {current.backup_id} is missing"
                )
            if base.backup_id in seen:
                raise BackupNotFound(f"Backup chain for {backup.backup_id} is circular")
            seen.add(base.backup_id)
            chain.append(base)
            current = base
        chain.reverse()
        return chain

    def get_statistics(self) -> dict:
        backups = list(self.db.scalars(select(Backup)).all())
        by_type: dict[str, int] = {}
        by_status: dict[str, int] = {}
        total_size = 0
        oldest: datetime | None = None
        newest: datetime | None = None
        for backup in backups:
            by_type[backup.backup_type.value] = by_type.get(backup.backup_type.value, 0) + 1
            by_status[backup.status.value] = by_status.get(backup.status.value, 0) + 1
            total_size += backup.size_bytes or 0
            created = ensure_utc(backup.created_at)
            if oldest is None or created < oldest:
                oldest = created
            if newest is None or created > newest:
                newest = created
        return {
            "total": len(backups),
            "by_type": by_type,
            "by_status": by_status,
            "total_size": total_size,
            "oldest": oldest,
            "newest": newest,
        }

    @staticmethod
    def serialize(backup: Backup) -> dict:
        return {
            "backup_id": str(backup.backup_id),
            "name": backup.name,
            "backup_type": backup.backup_type.value,
            "status": backup.status.value,
            "size_bytes": backup.size_bytes,
            "location": backup.location,
            "checksum": backup.checksum,
            "encrypted": backup.encrypted,
            "retention_days": backup.retention_days,
            "expires_at": isoformat(backup.expires_at),
            "tags": list(backup.tags or []),
            "description": backup.description,
            "created_by": backup.created_by,
            "base_backup_id": str(backup.base_backup_id) if backup.base_backup_id else None,
            "schedule_id": str(backup.schedule_id) if backup.schedule_id else None,
            "error_message": backup.error_message,
            "created_at": isoformat(backup.created_at),
            "completed_at": isoformat(backup.completed_at),
        }
