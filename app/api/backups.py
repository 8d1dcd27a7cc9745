"""Backups API: create, inspect, restore and delete backups."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.models.backup import BackupStatus, BackupType
from app.schemas.backups import (
    BackupRead,
    BackupStatistics,
    DeltaBackupCreate,
    FullBackupCreate,
    RestorePointRead,
    RestoreRequest,
)
from app.services.backup_service import BackupService
from app.services.catalog_service import CatalogService
from app.services.restore_service import RestoreService

router = APIRouter(prefix="/backups", tags=["backups"])


def _created(backup, queued: bool) -> JSONResponse:
    code = status.HTTP_202_ACCEPTED if queued else status.HTTP_201_CREATED
    return JSONResponse(status_code=code, content=CatalogService.serialize(backup))


@router.get("", response_model=list[BackupRead])
def list_backups(
    backup_type: BackupType | None = None,
    backup_status: BackupStatus | None = Query(default=None, alias="status"),
    tag: list[str] | None = Query(default=None),
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    svc = CatalogService(db)
    backups = svc.list_backups(
        backup_type=backup_type,
        status=backup_status,
        tags=tag,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    return [svc.serialize(b) for b in backups]


@router.get("/statistics", response_model=BackupStatistics)
def backup_statistics(db: Session = Depends(get_db)):
    return CatalogService(db).get_statistics()


@router.get("/restore-points", response_model=list[RestorePointRead])
def list_restore_points(
    backup_id: UUID | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    svc = RestoreService(db)
    return [svc.serialize_restore_point(p) for p in svc.list_restore_points(backup_id, limit=limit)]


@router.get("/{backup_id}", response_model=BackupRead)
def get_backup(backup_id: UUID, db: Session = Depends(get_db)):
    return CatalogService.serialize(CatalogService(db).require(backup_id))


@router.post("/full", response_model=BackupRead)
def create_full_backup(payload: FullBackupCreate, db: Session = Depends(get_db)):
    svc = BackupService(db, commit_transitions=True)
    options = payload.model_dump(exclude={"run_async"})
    try:
        if payload.run_async:
            backup = svc.submit_full(**options)
        else:
            backup = svc.create_full(**options)
    except Exception:
        db.rollback()
        raise
    db.commit()
    return _created(backup, payload.run_async)


@router.post("/incremental", response_model=BackupRead)
def create_incremental_backup(payload: DeltaBackupCreate, db: Session = Depends(get_db)):
    svc = BackupService(db, commit_transitions=True)
    options = payload.model_dump(exclude={"run_async", "base_backup_id"})
    try:
        if payload.run_async:
            backup = svc.submit_incremental(payload.base_backup_id, **options)
        else:
            backup = svc.create_incremental(payload.base_backup_id, **options)
    except Exception:
        db.rollback()
        raise
    db.commit()
    return _created(backup, payload.run_async)


@router.post("/differential", response_model=BackupRead, status_code=status.HTTP_201_CREATED)
def create_differential_backup(payload: DeltaBackupCreate, db: Session = Depends(get_db)):
    svc = BackupService(db, commit_transitions=True)
    options = payload.model_dump(exclude={"run_async", "base_backup_id"})
    try:
        backup = svc.create_differential(payload.base_backup_id, **options)
    except Exception:
        db.rollback()
        raise
    db.commit()
    return svc.catalog.serialize(backup)


@router.post("/{backup_id}/restore")
def restore_backup(backup_id: UUID, payload: RestoreRequest, db: Session = Depends(get_db)):
    svc = RestoreService(db)
    options = payload.model_dump(exclude={"run_async"})
    if payload.run_async:
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=svc.submit_restore(backup_id, **options))
    try:
        point = svc.restore(backup_id, **options)
    except Exception:
        db.rollback()
        raise
    db.commit()
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=svc.serialize_restore_point(point))


@router.delete("/{backup_id}")
def delete_backup(backup_id: UUID, db: Session = Depends(get_db)):
    if not BackupService(db).delete_backup(backup_id):
        raise HTTPException(status_code=404, detail="Backup not found")
    db.commit()
    return {"deleted": str(backup_id)}
