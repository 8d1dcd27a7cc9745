"""Backup Schedules API: recurring backups and the scheduler tick."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.schedules import ScheduleCreate, ScheduleRead, ScheduleUpdate
from app.services.schedule_service import ScheduleService

router = APIRouter(prefix="/schedules", tags=["schedules"])


@router.post("", response_model=ScheduleRead, status_code=status.HTTP_201_CREATED)
def create_schedule(payload: ScheduleCreate, db: Session = Depends(get_db)):
    sched = ScheduleService(db).schedule(**payload.model_dump())
    db.commit()
    return ScheduleService.serialize(sched)


@router.get("", response_model=list[ScheduleRead])
def list_schedules(
    enabled: bool | None = Query(default=None),
    db: Session = Depends(get_db),
):
    return [ScheduleService.serialize(s) for s in ScheduleService(db).list_schedules(enabled=enabled)]


@router.get("/{schedule_id}", response_model=ScheduleRead)
def get_schedule(schedule_id: UUID, db: Session = Depends(get_db)):
    return ScheduleService.serialize(ScheduleService(db).require(schedule_id))


@router.patch("/{schedule_id}", response_model=ScheduleRead)
def update_schedule(schedule_id: UUID, payload: ScheduleUpdate, db: Session = Depends(get_db)):
    sched = ScheduleService(db).update_schedule(schedule_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    return ScheduleService.serialize(sched)


@router.delete("/{schedule_id}")
def delete_schedule(schedule_id: UUID, db: Session = Depends(get_db)):
    ScheduleService(db).delete_schedule(schedule_id)
    db.commit()
    return {"deleted": str(schedule_id)}


@router.post("/tick")
def run_tick(db: Session = Depends(get_db)):
    """Fire every due schedule now instead of waiting for the beat."""
    result = ScheduleService(db).tick()
    db.commit()
    return result
