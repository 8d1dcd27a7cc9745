from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from app.db import Base


class DRPriority(str, enum.Enum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


class DisasterRecoveryPlan(Base):
    __tablename__ = "disaster_recovery_plans"

    dr_plan_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    priority: Mapped[DRPriority] = mapped_column(Enum(DRPriority, name="drpriority"), default=DRPriority.medium)
    rto_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    rpo_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    contacts: Mapped[list] = mapped_column(JSON, default=list)
    last_tested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    steps: Mapped[list[RecoveryStep]] = relationship(
        "RecoveryStep",
        back_populates="plan",
        order_by="RecoveryStep.order",
        cascade="all, delete-orphan",
    )
    test_results: Mapped[list[DRTestResult]] = relationship(
        "DRTestResult",
        back_populates="plan",
        order_by="DRTestResult.tested_at",
        cascade="all, delete-orphan",
    )


class RecoveryStep(Base):
    __tablename__ = "recovery_steps"

    step_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dr_plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("disaster_recovery_plans.dr_plan_id"), nullable=False, index=True
    )
    step_key: Mapped[str] = mapped_column(String(80), nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    estimated_minutes: Mapped[int] = mapped_column(Integer, default=0)
    dependencies: Mapped[list] = mapped_column(JSON, default=list)
    automated: Mapped[bool] = mapped_column(Boolean, default=False)
    script: Mapped[str | None] = mapped_column(Text)

    plan: Mapped[DisasterRecoveryPlan] = relationship("DisasterRecoveryPlan", back_populates="steps")


class DRTestResult(Base):
    __tablename__ = "dr_test_results"

    test_result_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dr_plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("disaster_recovery_plans.dr_plan_id"), nullable=False, index=True
    )
    tested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    success: Mapped[bool] = mapped_column(Boolean, default=False)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    issues: Mapped[list] = mapped_column(JSON, default=list)
    recommendations: Mapped[list] = mapped_column(JSON, default=list)

    plan: Mapped[DisasterRecoveryPlan] = relationship("DisasterRecoveryPlan", back_populates="test_results")
