"""Backup Health Service: SLA checks over the catalog and the alert queue."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import BACKUP_HEALTH
from app.models.alert import AlertKind, BackupAlert
from app.models.backup import Backup, BackupStatus
from app.services.common import isoformat, utcnow
from app.services.notifier import Notifier, get_notifier
from app.services.storage import BackupStorage, get_storage

logger = logging.getLogger(__name__)

_STATUS_LEVEL = {"healthy": 0, "warning": 1, "critical": 2}


class BackupHealthService:
    def __init__(
        self,
        db: Session,
        storage: BackupStorage | None = None,
        notifier: Notifier | None = None,
        *,
        lookback_hours: int | None = None,
        capacity_bytes: int | None = None,
        warning_fraction: float | None = None,
    ):
        self.db = db
        self.storage = storage if storage is not None else get_storage()
        self.notifier = notifier if notifier is not None else get_notifier()
        self.lookback_hours = lookback_hours if lookback_hours is not None else settings.health_lookback_hours
        self.capacity_bytes = capacity_bytes if capacity_bytes is not None else settings.storage_capacity_bytes
        self.warning_fraction = warning_fraction if warning_fraction is not None else settings.storage_warning_fraction

    def storage_available(self) -> bool:
        try:
            return bool(self.storage.ping())
        except Exception:
            logger.warning("Backup storage ping failed", exc_info=True)
            return False

    def check_health(self, now: datetime | None = None) -> dict:
        """Return ``{"status", "issues", "recommendations"}`` for the backup estate."""
        now = now or utcnow()
        issues: list[str] = []
        recommendations: list[str] = []
        critical = False

        if not self.storage_available():
            critical = True
            issues.append("Backup storage is unavailable")
            recommendations.append("Check the backup storage mount and permissions")

        try:
            window_start = now - timedelta(hours=self.lookback_hours)
            recent = self.db.scalar(
                select(func.count())
                .select_from(Backup)
                .where(Backup.status == BackupStatus.completed)
                .where(Backup.created_at > window_start)
            )
            failed = self.db.scalar(
                select(func.count()).select_from(Backup).where(Backup.status == BackupStatus.failed)
            )
            total_size = self.db.scalar(select(func.coalesce(func.sum(Backup.size_bytes), 0)))
        except Exception:
            logger.exception("Backup catalog query failed during health check")
            self.db.rollback()
            critical = True
            issues.append("Backup catalog is unavailable")
            recommendations.append("Check database connectivity")
        else:
            if not recent:
                critical = True
                issues.append(f"No successful backups in the last {self.lookback_hours} hours")
                recommendations.append("Schedule daily backups to ensure data protection")
            if failed:
                issues.append(f"{failed} failed backup(s) detected")
                recommendations.append("Review and resolve backup failures")
            if total_size > self.capacity_bytes * self.warning_fraction:
                issues.append(
                    f"Backup storage usage is high ({total_size} of {self.capacity_bytes} bytes)"
                )
                recommendations.append("Consider cleaning up old backups or increasing storage capacity")

        if critical:
            status = "critical"
        elif issues:
            status = "warning"
        else:
            status = "healthy"
        BACKUP_HEALTH.set(_STATUS_LEVEL[status])
        return {"status": status, "issues": issues, "recommendations": recommendations}

    def check_and_alert(self, now: datetime | None = None) -> dict:
        result = self.check_health(now)
        if result["status"] != "healthy":
            kind = AlertKind.error if result["status"] == "critical" else AlertKind.warning
            self.send_alert(kind, "; ".join(result["issues"]))
        return result

    # -- alerts ------------------------------------------------------------------

    def send_alert(self, kind: AlertKind | str, message: str) -> BackupAlert:
        kind = AlertKind(kind)
        alert = BackupAlert(kind=kind, message=message, created_at=utcnow())
        self.db.add(alert)
        self.db.flush()
        try:
            self.notifier.send(kind.value, message)
        except Exception:
            logger.exception("Failed to deliver backup alert %s", alert.alert_id)
        return alert

    def acknowledge_alert(self, alert_id: UUID) -> bool:
        alert = self.db.get(BackupAlert, alert_id)
        if not alert:
            return False
        if not alert.acknowledged:
            alert.acknowledged = True
            alert.acknowledged_at = utcnow()
            self.db.flush()
        return True

    def list_alerts(self, unacknowledged_only: bool = False, limit: int = 200) -> list[BackupAlert]:
        stmt = select(BackupAlert)
        if unacknowledged_only:
            stmt = stmt.where(BackupAlert.acknowledged.is_(False))
        stmt = stmt.order_by(BackupAlert.created_at.desc()).limit(limit)
        return list(self.db.scalars(stmt).all())

    @staticmethod
    def serialize_alert(alert: BackupAlert) -> dict:
        return {
            "alert_id": str(alert.alert_id),
            "kind": alert.kind.value,
            "message": alert.message,
            "created_at": isoformat(alert.created_at),
            "acknowledged": alert.acknowledged,
            "acknowledged_at": isoformat(alert.acknowledged_at),
        }
