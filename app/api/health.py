import re
from datetime import UTC, datetime
from typing import cast
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.db import SessionLocal
from app.schemas.health import AlertCreate, AlertRead, BackupHealthRead
from app.services.health_service import BackupHealthService

router = APIRouter(prefix="/health", tags=["health"])

_QUEUE_POOL_STATUS_PATTERN = re.compile(
    r"Pool size:\s*(?P<pool_size>-?\d+)\s+"
    r"Connections in pool:\s*(?P<checked_in>-?\d+)\s+"
    r"Current Overflow:\s*(?P<overflow>-?\d+)\s+"
    r"Current Checked out connections:\s*(?P<checked_out>-?\d+)"
)


@router.get("/ready")
def readiness() -> dict[str, str]:
    return {
        "status": "ready",
        "timestamp": datetime.now(UTC).isoformat(),
    }


def _get_db_engine() -> Engine:
    bind = SessionLocal.kw.get("bind")
    if bind is None:
        raise RuntimeError("SessionLocal is not bound to a database engine")
    return cast(Engine, bind)


def _parse_pool_status(status: str) -> dict[str, int] | None:
    match = _QUEUE_POOL_STATUS_PATTERN.search(status)
    if match is None:
        return None
    return {
        "pool_size": int(match.group("pool_size")),
        "checked_in": int(match.group("checked_in")),
        "checked_out": int(match.group("checked_out")),
        "overflow": int(match.group("overflow")),
    }


@router.get("/db-pool")
def db_pool_status() -> dict[str, int]:
    engine = _get_db_engine()
    metrics = _parse_pool_status(engine.pool.status())
    if metrics is None:
        raise HTTPException(status_code=500, detail="Unable to parse database pool status")
    return metrics


@router.get("/backups", response_model=BackupHealthRead)
def backup_health(alert: bool = Query(default=False), db: Session = Depends(get_db)):
    """Evaluate backup SLAs; with ``alert=true`` a breach is also recorded as an alert."""
    svc = BackupHealthService(db)
    result = svc.check_and_alert() if alert else svc.check_health()
    db.commit()
    return result


@router.get("/alerts", response_model=list[AlertRead])
def list_alerts(
    unacknowledged: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    svc = BackupHealthService(db)
    return [svc.serialize_alert(a) for a in svc.list_alerts(unacknowledged_only=unacknowledged, limit=limit)]


@router.post("/alerts", response_model=AlertRead, status_code=status.HTTP_201_CREATED)
def create_alert(payload: AlertCreate, db: Session = Depends(get_db)):
    svc = BackupHealthService(db)
    alert = svc.send_alert(payload.kind, payload.message)
    db.commit()
    return svc.serialize_alert(alert)


@router.post("/alerts/{alert_id}/acknowledge")
def acknowledge_alert(alert_id: UUID, db: Session = Depends(get_db)):
    if not BackupHealthService(db).acknowledge_alert(alert_id):
        raise HTTPException(status_code=404, detail="Alert not found")
    db.commit()
    return {"acknowledged": str(alert_id)}
