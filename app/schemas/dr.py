"""Disaster Recovery API schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from app.models.dr_plan import DRPriority


class RecoveryStepIn(BaseModel):
    step_key: str = Field(min_length=1, max_length=80)
    order: int
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    estimated_minutes: int = Field(default=0, ge=0)
    dependencies: list[str] = Field(default_factory=list)
    automated: bool = False
    script: str | None = None


class EmergencyContact(BaseModel):
    name: str = Field(min_length=1)
    role: str | None = None
    email: str | None = None
    phone: str | None = None
    priority: int = 1


class DRPlanCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    priority: DRPriority = DRPriority.medium
    rto_minutes: int = Field(ge=0)
    rpo_minutes: int = Field(ge=0)
    steps: list[RecoveryStepIn] = Field(default_factory=list)
    contacts: list[EmergencyContact] = Field(default_factory=list)


class DRPlanUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    priority: DRPriority | None = None
    rto_minutes: int | None = Field(default=None, ge=0)
    rpo_minutes: int | None = Field(default=None, ge=0)
    steps: list[RecoveryStepIn] | None = None
    contacts: list[EmergencyContact] | None = None
    is_active: bool | None = None


class DRTestResultRead(BaseModel):
    test_result_id: str
    tested_at: str | None = None
    success: bool
    duration_ms: int
    issues: list[str]
    recommendations: list[str]


class DRTaskResponse(BaseModel):
    queued: bool
    dr_plan_id: str
