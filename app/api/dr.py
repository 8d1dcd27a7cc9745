"""Disaster Recovery API: manage DR plans and run drills."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.dr import DRPlanCreate, DRPlanUpdate, DRTaskResponse, DRTestResultRead
from app.services.dr_service import DisasterRecoveryService

router = APIRouter(prefix="/dr/plans", tags=["disaster-recovery"])


@router.post("", status_code=status.HTTP_201_CREATED)
def create_dr_plan(payload: DRPlanCreate, db: Session = Depends(get_db)):
    svc = DisasterRecoveryService(db)
    data = payload.model_dump()
    plan = svc.create_plan(**data)
    db.commit()
    return svc.serialize_plan(plan)


@router.get("")
def list_dr_plans(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    svc = DisasterRecoveryService(db)
    return [svc.serialize_plan(p) for p in svc.list_plans(limit=limit, offset=offset)]


@router.get("/{dr_plan_id}")
def get_dr_plan(dr_plan_id: UUID, db: Session = Depends(get_db)):
    svc = DisasterRecoveryService(db)
    return svc.serialize_plan(svc.require(dr_plan_id))


@router.put("/{dr_plan_id}")
def update_dr_plan(dr_plan_id: UUID, payload: DRPlanUpdate, db: Session = Depends(get_db)):
    svc = DisasterRecoveryService(db)
    plan = svc.update_plan(dr_plan_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    return svc.serialize_plan(plan)


@router.delete("/{dr_plan_id}")
def delete_dr_plan(dr_plan_id: UUID, db: Session = Depends(get_db)):
    DisasterRecoveryService(db).delete_plan(dr_plan_id)
    db.commit()
    return {"deleted": str(dr_plan_id)}


@router.post("/{dr_plan_id}/test", response_model=DRTestResultRead)
def test_dr_plan(dr_plan_id: UUID, db: Session = Depends(get_db)):
    """Run a drill inline and return its result."""
    svc = DisasterRecoveryService(db)
    result = svc.test_plan(dr_plan_id)
    db.commit()
    return svc.serialize_result(result)


@router.post("/{dr_plan_id}/test/async", response_model=DRTaskResponse, status_code=status.HTTP_202_ACCEPTED)
def queue_dr_test(dr_plan_id: UUID, db: Session = Depends(get_db)):
    from app.tasks.dr import run_dr_test

    DisasterRecoveryService(db).require(dr_plan_id)
    run_dr_test.delay(str(dr_plan_id))
    return {"queued": True, "dr_plan_id": str(dr_plan_id)}


@router.get("/{dr_plan_id}/results", response_model=list[DRTestResultRead])
def list_dr_test_results(dr_plan_id: UUID, db: Session = Depends(get_db)):
    svc = DisasterRecoveryService(db)
    plan = svc.require(dr_plan_id)
    return [svc.serialize_result(r) for r in plan.test_results]
