"""Schedule Service: recurring backup schedules and the scheduler tick."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ScheduleInvalid, ScheduleNotFound
from app.models.backup import Backup, BackupStatus, BackupType
from app.models.schedule import BackupSchedule, ScheduleBackupType, ScheduleFrequency
from app.services.common import isoformat, utcnow

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time_of_day(value: str) -> tuple[int, int]:
    match = _TIME_RE.match(value or "")
    if not match:
        raise ScheduleInvalid(f"Invalid time of day {value!r}, expected HH:MM")
    return int(match.group(1)), int(match.group(2))


def _coerce_frequency(value: ScheduleFrequency | str) -> ScheduleFrequency:
    try:
        return ScheduleFrequency(value)
    except ValueError as exc:
        raise ScheduleInvalid(f"Invalid frequency {value!r}") from exc


def _coerce_backup_type(value: ScheduleBackupType | str) -> ScheduleBackupType:
    try:
        return ScheduleBackupType(value)
    except ValueError as exc:
        raise ScheduleInvalid(f"Invalid schedule backup type {value!r}") from exc


def _validate_weekday(weekday: int | None) -> int | None:
    if weekday is not None and not 0 <= weekday <= 6:
        raise ScheduleInvalid(f"Invalid weekday {weekday!r}, expected 0 (Monday) to 6 (Sunday)")
    return weekday


def compute_next_run(
    frequency: ScheduleFrequency | str,
    time_of_day: str,
    now: datetime,
    weekday: int | None = None,
) -> datetime:
    """Next fire time after ``now``.

    daily: today at ``time_of_day`` if still ahead, else tomorrow.
    weekly: next ``weekday`` (0=Monday, default from settings) at ``time_of_day``.
    monthly: first day of the next calendar month at ``time_of_day``.
    """
    frequency = _coerce_frequency(frequency)
    hour, minute = parse_time_of_day(time_of_day)
    at_time = now.replace(hour=hour, minute=minute, second=0, microsecond=0)

    if frequency == ScheduleFrequency.daily:
        if at_time <= now:
            at_time += timedelta(days=1)
        return at_time

    if frequency == ScheduleFrequency.weekly:
        target = _validate_weekday(weekday)
        if target is None:
            target = settings.default_weekday
        candidate = at_time + timedelta(days=(target - now.weekday()) % 7)
        if candidate <= now:
            candidate += timedelta(days=7)
        return candidate

    year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
    return at_time.replace(year=year, month=month, day=1)


class ScheduleService:
    def __init__(self, db: Session, backup_service=None, health_service=None):
        self.db = db
        self._backup_service = backup_service
        self._health_service = health_service

    @property
    def backups(self):
        if self._backup_service is None:
            from app.services.backup_service import BackupService

            self._backup_service = BackupService(self.db)
        return self._backup_service

    @property
    def health(self):
        if self._health_service is None:
            from app.services.health_service import BackupHealthService

            self._health_service = BackupHealthService(self.db, storage=self.backups.storage)
        return self._health_service

    # -- CRUD ------------------------------------------------------------------

    def schedule(
        self,
        name: str,
        backup_type: ScheduleBackupType | str,
        frequency: ScheduleFrequency | str,
        time_of_day: str,
        enabled: bool = True,
        retention_days: int = settings.default_retention_days,
        notify: bool = True,
        weekday: int | None = None,
        now: datetime | None = None,
    ) -> BackupSchedule:
        if not name or not name.strip():
            raise ScheduleInvalid("Schedule name is required")
        if retention_days < 1:
            raise ScheduleInvalid("retention_days must be >= 1")
        frequency = _coerce_frequency(frequency)
        weekday = _validate_weekday(weekday)
        now = now or utcnow()
        sched = BackupSchedule(
            name=name.strip(),
            backup_type=_coerce_backup_type(backup_type),
            frequency=frequency,
            time_of_day=time_of_day,
            weekday=weekday if frequency == ScheduleFrequency.weekly else None,
            enabled=enabled,
            retention_days=retention_days,
            notify=notify,
            created_at=now,
            next_run_at=compute_next_run(frequency, time_of_day, now, weekday),
        )
        self.db.add(sched)
        self.db.flush()
        logger.info("Backup schedule %s created, next run %s", sched.name, sched.next_run_at.isoformat())
        return sched

    def get_by_id(self, schedule_id: UUID) -> BackupSchedule | None:
        return self.db.get(BackupSchedule, schedule_id)

    def require(self, schedule_id: UUID) -> BackupSchedule:
        sched = self.get_by_id(schedule_id)
        if not sched:
            raise ScheduleNotFound(f"Schedule {schedule_id} not found")
        return sched

    def list_schedules(self, enabled: bool | None = None) -> list[BackupSchedule]:
        stmt = select(BackupSchedule)
        if enabled is not None:
            stmt = stmt.where(BackupSchedule.enabled.is_(enabled))
        return list(self.db.scalars(stmt.order_by(BackupSchedule.created_at)).all())

    def update_schedule(self, schedule_id: UUID, now: datetime | None = None, **fields) -> BackupSchedule:
        sched = self.require(schedule_id)
        if "frequency" in fields and fields["frequency"] is not None:
            fields["frequency"] = _coerce_frequency(fields["frequency"])
        if "backup_type" in fields and fields["backup_type"] is not None:
            fields["backup_type"] = _coerce_backup_type(fields["backup_type"])
        if "time_of_day" in fields and fields["time_of_day"] is not None:
            parse_time_of_day(fields["time_of_day"])
        if "weekday" in fields:
            _validate_weekday(fields["weekday"])
        if fields.get("retention_days") is not None and fields["retention_days"] < 1:
            raise ScheduleInvalid("retention_days must be >= 1")

        timing_changed = False
        for key in ("name", "backup_type", "frequency", "time_of_day", "weekday", "enabled", "retention_days", "notify"):
            if key in fields and (fields[key] is not None or key == "weekday"):
                if key in ("frequency", "time_of_day", "weekday", "enabled"):
                    timing_changed = True
                setattr(sched, key, fields[key])

        if timing_changed:
            sched.next_run_at = compute_next_run(sched.frequency, sched.time_of_day, now or utcnow(), sched.weekday)
        self.db.flush()
        return sched

    def delete_schedule(self, schedule_id: UUID) -> None:
        sched = self.require(schedule_id)
        self.db.delete(sched)
        self.db.flush()

    # -- control loop --------------------------------------------------------

    def due_schedules(self, now: datetime) -> list[BackupSchedule]:
        stmt = (
            select(BackupSchedule)
            .where(BackupSchedule.enabled.is_(True))
            .where(BackupSchedule.next_run_at <= now)
            .order_by(BackupSchedule.next_run_at)
        )
        return list(self.db.scalars(stmt).all())

    def tick(self, now: datetime | None = None) -> dict:
        """Fire every enabled schedule whose next run is due, then run retention."""
        now = now or utcnow()
        fired: list[str] = []
        failed: list[str] = []

        for sched in self.due_schedules(now):
            try:
                backup = self._fire(sched)
                sched.last_backup_id = backup.backup_id
                if backup.backup_type == BackupType.full:
                    sched.last_full_backup_id = backup.backup_id
                fired.append(str(sched.schedule_id))
                if sched.notify:
                    self._alert("success", f"Scheduled backup '{sched.name}' completed ({backup.size_bytes} bytes)")
            except Exception as exc:
                logger.exception("Scheduled backup %s failed", sched.name)
                failed.append(str(sched.schedule_id))
                if sched.notify:
                    self._alert("error", f"Scheduled backup '{sched.name}' failed: {str(exc)[:200]}")
            finally:
                sched.last_run_at = now
                sched.next_run_at = compute_next_run(sched.frequency, sched.time_of_day, now, sched.weekday)
                self.db.flush()

        retention = self._run_retention(now)
        logger.info("Scheduler tick: %d fired, %d failed", len(fired), len(failed))
        return {"fired": fired, "failed": failed, "retention": retention}

    def _fire(self, sched: BackupSchedule) -> Backup:
        name = f"{sched.name} {utcnow().strftime('%Y-%m-%d %H:%M')}"
        if sched.backup_type == ScheduleBackupType.incremental:
            base = self._incremental_base(sched)
            if base is not None:
                return self.backups.create_incremental(
                    base.backup_id,
                    name=name,
                    retention_days=sched.retention_days,
                    schedule_id=sched.schedule_id,
                )
            logger.warning("No completed full backup to chain from for %s, taking a full backup", sched.name)
        return self.backups.create_full(
            name=name,
            retention_days=sched.retention_days,
            schedule_id=sched.schedule_id,
        )

    def _incremental_base(self, sched: BackupSchedule) -> Backup | None:
        if sched.last_full_backup_id is not None:
            base = self.db.get(Backup, sched.last_full_backup_id)
            if base is not None and base.status == BackupStatus.completed:
                return base
        return self.backups.catalog.latest_completed(BackupType.full)

    def _alert(self, kind: str, message: str) -> None:
        try:
            self.health.send_alert(kind, message)
        except Exception:
            logger.exception("Failed to record schedule alert")

    def _run_retention(self, now: datetime) -> dict | None:
        from app.services.retention_service import RetentionService

        try:
            return RetentionService(self.db, self.backups.storage).cleanup_expired(now)
        except Exception:
            logger.exception("Retention pass after scheduler tick failed")
            return None

    @staticmethod
    def serialize(sched: BackupSchedule) -> dict:
        return {
            "schedule_id": str(sched.schedule_id),
            "name": sched.name,
            "backup_type": sched.backup_type.value,
            "frequency": sched.frequency.value,
            "time_of_day": sched.time_of_day,
            "weekday": sched.weekday,
            "enabled": sched.enabled,
            "retention_days": sched.retention_days,
            "notify": sched.notify,
            "created_at": isoformat(sched.created_at),
            "last_run_at": isoformat(sched.last_run_at),
            "next_run_at": isoformat(sched.next_run_at),
            "last_backup_id": str(sched.last_backup_id) if sched.last_backup_id else None,
        }
