import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Enum, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base


class ScheduleBackupType(str, enum.Enum):
    full = "full"
    incremental = "incremental"


class ScheduleFrequency(str, enum.Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


class BackupSchedule(Base):
    __tablename__ = "backup_schedules"

    schedule_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    backup_type: Mapped[ScheduleBackupType] = mapped_column(
        Enum(ScheduleBackupType), default=ScheduleBackupType.full
    )
    frequency: Mapped[ScheduleFrequency] = mapped_column(Enum(ScheduleFrequency), nullable=False)
    time_of_day: Mapped[str] = mapped_column(String(5), nullable=False)
    # 0=Monday .. 6=Sunday, only used by weekly schedules
    weekday: Mapped[int | None] = mapped_column(Integer)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    retention_days: Mapped[int] = mapped_column(Integer, default=30)
    notify: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    next_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    last_backup_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    last_full_backup_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
