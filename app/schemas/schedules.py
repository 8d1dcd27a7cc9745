"""Backup schedule API schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from app.config import settings
from app.models.schedule import ScheduleBackupType, ScheduleFrequency


class ScheduleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    backup_type: ScheduleBackupType = ScheduleBackupType.full
    frequency: ScheduleFrequency
    time_of_day: str = Field(pattern=r"^([01]\d|2[0-3]):([0-5]\d)$")
    weekday: int | None = Field(default=None, ge=0, le=6)
    enabled: bool = True
    retention_days: int = Field(default=settings.default_retention_days, ge=1)
    notify: bool = True


class ScheduleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    backup_type: ScheduleBackupType | None = None
    frequency: ScheduleFrequency | None = None
    time_of_day: str | None = Field(default=None, pattern=r"^([01]\d|2[0-3]):([0-5]\d)$")
    weekday: int | None = Field(default=None, ge=0, le=6)
    enabled: bool | None = None
    retention_days: int | None = Field(default=None, ge=1)
    notify: bool | None = None


class ScheduleRead(BaseModel):
    schedule_id: str
    name: str
    backup_type: str
    frequency: str
    time_of_day: str
    weekday: int | None = None
    enabled: bool
    retention_days: int
    notify: bool
    created_at: str | None = None
    last_run_at: str | None = None
    next_run_at: str | None = None
    last_backup_id: str | None = None
