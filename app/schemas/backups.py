"""Backup API schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.config import settings


class FullBackupCreate(BaseModel):
    name: str | None = None
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    encrypt: bool = True
    retention_days: int = Field(default=settings.default_retention_days, ge=1)
    run_async: bool = True


class DeltaBackupCreate(BaseModel):
    base_backup_id: UUID
    name: str | None = None
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    encrypt: bool | None = None
    retention_days: int | None = Field(default=None, ge=1)
    run_async: bool = True


class RestoreRequest(BaseModel):
    target_location: str | None = None
    overwrite: bool = False
    validate_integrity: bool = True
    run_async: bool = True


class BackupRead(BaseModel):
    backup_id: str
    name: str
    backup_type: str
    status: str
    size_bytes: int
    location: str | None = None
    checksum: str | None = None
    encrypted: bool
    retention_days: int
    expires_at: str | None = None
    tags: list[str]
    description: str | None = None
    created_by: str
    base_backup_id: str | None = None
    schedule_id: str | None = None
    error_message: str | None = None
    created_at: str | None = None
    completed_at: str | None = None


class RestorePointRead(BaseModel):
    restore_point_id: str
    backup_id: str
    restored_at: str | None = None
    version: str
    description: str | None = None
    target_location: str | None = None
    data_integrity: bool
    dependencies: list[str]


class BackupStatistics(BaseModel):
    total: int
    by_type: dict[str, int]
    by_status: dict[str, int]
    total_size: int
    oldest: datetime | None = None
    newest: datetime | None = None
