"""Disaster Recovery Service: DR plans and drills."""

from __future__ import annotations

import heapq
import logging
import shutil
import tempfile
import time
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import PlanInvalid, PlanNotFound, StepExecutionFailed
from app.metrics import DR_TESTS_TOTAL
from app.models.backup import BackupType
from app.models.dr_plan import DisasterRecoveryPlan, DRPriority, DRTestResult, RecoveryStep
from app.services.catalog_service import CatalogService
from app.services.common import apply_pagination, ensure_utc, isoformat, utcnow
from app.services.script_runner import ScriptRunner, get_script_runner

logger = logging.getLogger(__name__)

DRILL_TAG = "dr-drill"
DRILL_RETENTION_DAYS = 1

_CONTACT_FIELDS = ("name", "role", "email", "phone", "priority")


def execution_order(steps: list[RecoveryStep]) -> list[RecoveryStep]:
    """Order steps so each runs after its dependencies; ties go to the lower ``order``.

    Raises ``PlanInvalid`` on unknown dependencies or a cycle.
    """
    by_key = {s.step_key: s for s in steps}
    indegree = {s.step_key: 0 for s in steps}
    dependents: dict[str, list[str]] = {s.step_key: [] for s in steps}
    for step in steps:
        for dep in step.dependencies or []:
            if dep not in by_key:
                raise PlanInvalid(f"Step {step.step_key!r} depends on unknown step {dep!r}")
            if dep == step.step_key:
                raise PlanInvalid(f"Step {step.step_key!r} depends on itself")
            indegree[step.step_key] += 1
            dependents[dep].append(step.step_key)

    ready = [(by_key[k].order, k) for k, n in indegree.items() if n == 0]
    heapq.heapify(ready)
    ordered: list[RecoveryStep] = []
    while ready:
        _, key = heapq.heappop(ready)
        ordered.append(by_key[key])
        for child in dependents[key]:
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(ready, (by_key[child].order, child))

    if len(ordered) != len(steps):
        cyclic = sorted(k for k, n in indegree.items() if n > 0)
        raise PlanInvalid(f"Recovery steps form a dependency cycle: {', '.join(cyclic)}")
    return ordered


def _build_steps(raw_steps: list[dict]) -> list[RecoveryStep]:
    steps = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_steps or []):
        key = str(raw.get("step_key") or raw.get("id") or "").strip()
        if not key:
            raise PlanInvalid(f"Step #{index + 1} has no step_key")
        if key in seen:
            raise PlanInvalid(f"Duplicate step_key {key!r}")
        seen.add(key)
        title = (raw.get("title") or "").strip()
        if not title:
            raise PlanInvalid(f"Step {key!r} has no title")
        estimated = int(raw.get("estimated_minutes") or 0)
        if estimated < 0:
            raise PlanInvalid(f"Step {key!r} has a negative estimate")
        steps.append(
            RecoveryStep(
                step_key=key,
                order=int(raw.get("order", index + 1)),
                title=title,
                description=raw.get("description"),
                estimated_minutes=estimated,
                dependencies=[str(d) for d in raw.get("dependencies") or []],
                automated=bool(raw.get("automated", False)),
                script=raw.get("script") or None,
            )
        )
    execution_order(steps)
    return steps


def _clean_contacts(contacts: list[dict] | None) -> list[dict]:
    cleaned = []
    for contact in contacts or []:
        if not contact.get("name"):
            raise PlanInvalid("Emergency contact requires a name")
        cleaned.append({k: contact.get(k) for k in _CONTACT_FIELDS})
    return sorted(cleaned, key=lambda c: c.get("priority") or 0)


def _coerce_priority(value: DRPriority | str) -> DRPriority:
    try:
        return DRPriority(value)
    except ValueError as exc:
        raise PlanInvalid(f"Invalid priority {value!r}") from exc


class DisasterRecoveryService:
    def __init__(
        self,
        db: Session,
        script_runner: ScriptRunner | None = None,
        backup_service=None,
        restore_service=None,
        *,
        step_timeout: float | None = None,
    ):
        self.db = db
        self.script_runner = script_runner if script_runner is not None else get_script_runner()
        self._backup_service = backup_service
        self._restore_service = restore_service
        self.step_timeout = step_timeout if step_timeout is not None else settings.step_timeout_seconds
        self.catalog = CatalogService(db)

    @property
    def backups(self):
        if self._backup_service is None:
            from app.services.backup_service import BackupService

            self._backup_service = BackupService(self.db)
        return self._backup_service

    @property
    def restores(self):
        if self._restore_service is None:
            from app.services.restore_service import RestoreService

            self._restore_service = RestoreService(
                self.db,
                storage=self.backups.storage,
                data_source=self.backups.data_source,
                cipher=self.backups.cipher,
            )
        return self._restore_service

    # -- plan CRUD -------------------------------------------------------------

    def create_plan(
        self,
        name: str,
        priority: DRPriority | str = DRPriority.medium,
        rto_minutes: int = 60,
        rpo_minutes: int = 60,
        steps: list[dict] | None = None,
        contacts: list[dict] | None = None,
    ) -> DisasterRecoveryPlan:
        if not name or not name.strip():
            raise PlanInvalid("Plan name is required")
        if rto_minutes < 0 or rpo_minutes < 0:
            raise PlanInvalid("RTO and RPO must be non-negative")
        plan = DisasterRecoveryPlan(
            name=name.strip(),
            priority=_coerce_priority(priority),
            rto_minutes=rto_minutes,
            rpo_minutes=rpo_minutes,
            contacts=_clean_contacts(contacts),
            is_active=True,
        )
        plan.steps = _build_steps(steps or [])
        self.db.add(plan)
        self.db.flush()
        logger.info("DR plan %s created with %d steps", plan.name, len(plan.steps))
        return plan

    def update_plan(self, dr_plan_id: UUID, **kwargs) -> DisasterRecoveryPlan:
        plan = self.require(dr_plan_id)
        if kwargs.get("priority") is not None:
            kwargs["priority"] = _coerce_priority(kwargs["priority"])
        if kwargs.get("contacts") is not None:
            kwargs["contacts"] = _clean_contacts(kwargs["contacts"])
        for key in ("rto_minutes", "rpo_minutes"):
            if kwargs.get(key) is not None and kwargs[key] < 0:
                raise PlanInvalid("RTO and RPO must be non-negative")
        steps = kwargs.pop("steps", None)
        for key, value in kwargs.items():
            if key in ("name", "priority", "rto_minutes", "rpo_minutes", "contacts", "is_active") and value is not None:
                setattr(plan, key, value)
        if steps is not None:
            plan.steps = _build_steps(steps)
        self.db.flush()
        return plan

    def delete_plan(self, dr_plan_id: UUID) -> None:
        plan = self.require(dr_plan_id)
        self.db.delete(plan)
        self.db.flush()

    def list_plans(self, limit: int = 200, offset: int = 0) -> list[DisasterRecoveryPlan]:
        stmt = select(DisasterRecoveryPlan).order_by(DisasterRecoveryPlan.created_at.desc())
        stmt = apply_pagination(stmt, limit, offset)
        return list(self.db.scalars(stmt).all())

    def get_by_id(self, dr_plan_id: UUID) -> DisasterRecoveryPlan | None:
        return self.db.get(DisasterRecoveryPlan, dr_plan_id)

    def require(self, dr_plan_id: UUID) -> DisasterRecoveryPlan:
        plan = self.get_by_id(dr_plan_id)
        if not plan:
            raise PlanNotFound(f"DR plan {dr_plan_id} not found")
        return plan

    # -- drills ----------------------------------------------------------------

    def test_plan(self, dr_plan_id: UUID) -> DRTestResult:
        """Run a drill of the plan and append the outcome to its history.

        Steps run in dependency order. A failing step does not stop the
        drill, but every step that depends on it is reported as blocked.
        """
        plan = self.require(dr_plan_id)
        ordered = execution_order(list(plan.steps))
        tested_at = utcnow()
        started = time.monotonic()
        issues: list[str] = []
        failed_keys: set[str] = set()

        for step in ordered:
            blocked = [d for d in step.dependencies or [] if d in failed_keys]
            if blocked:
                failed_keys.add(step.step_key)
                issues.append(f'Step "{step.title}" blocked by failed dependencies: {", ".join(blocked)}')
                continue
            step_issues = self._execute_step(plan, step)
            if step_issues:
                failed_keys.add(step.step_key)
                issues.extend(step_issues)

        duration_ms = int((time.monotonic() - started) * 1000)
        result = DRTestResult(
            tested_at=tested_at,
            success=not issues,
            duration_ms=duration_ms,
            issues=issues,
            recommendations=self._recommendations(plan, ordered, failed_keys, duration_ms, tested_at),
        )
        plan.test_results.append(result)
        plan.last_tested_at = tested_at
        self.db.flush()

        DR_TESTS_TOTAL.labels(result="passed" if result.success else "failed").inc()
        logger.info(
            "DR drill for %s %s in %dms (%d issues)",
            plan.name,
            "passed" if result.success else "failed",
            duration_ms,
            len(issues),
        )
        return result

    def _execute_step(self, plan: DisasterRecoveryPlan, step: RecoveryStep) -> list[str]:
        if not (step.automated and step.script):
            logger.info("Manual checkpoint for %s: %s", plan.name, step.title)
            return []
        logger.info("Executing automated step for %s: %s", plan.name, step.title)
        try:
            if step.script.split(":", 1)[0] in ("backup", "restore", "verify"):
                return self._run_builtin(step)
            result = self.script_runner.run(step.script, timeout=self.step_timeout)
            return [f'Issue in step "{step.title}": {issue}' for issue in result.issues]
        except Exception as exc:
            failure = StepExecutionFailed(f'Step "{step.title}" failed: {exc}')
            logger.warning("%s", failure.message, exc_info=True)
            return [failure.message]

    def _run_builtin(self, step: RecoveryStep) -> list[str]:
        """Engine actions used as steps. Every storage and data-source call is bounded by the step timeout."""
        action = step.script.strip()
        if action == "backup:full":
            self.backups.create_full(
                name=f"DR drill: {step.title}",
                tags=[DRILL_TAG],
                retention_days=DRILL_RETENTION_DAYS,
                timeout=self.step_timeout,
            )
            return []
        if action == "backup:incremental":
            base = self.catalog.latest_completed(BackupType.full)
            if base is None:
                return [f'Step "{step.title}": no completed full backup to chain from']
            self.backups.create_incremental(
                base.backup_id, name=f"DR drill: {step.title}", tags=[DRILL_TAG], timeout=self.step_timeout
            )
            return []
        if action == "verify:latest":
            latest = self.catalog.latest_completed()
            if latest is None:
                return [f'Step "{step.title}": no completed backup to verify']
            if not self.restores.integrity.verify(latest, timeout=self.step_timeout):
                return [f'Step "{step.title}": backup {latest.backup_id} failed integrity validation']
            return []
        if action == "restore:latest":
            latest = self.catalog.latest_completed()
            if latest is None:
                return [f'Step "{step.title}": no completed backup to restore']
            scratch = tempfile.mkdtemp(prefix="dr-drill-")
            try:
                self.restores.restore(
                    latest.backup_id, target_location=scratch, overwrite=True, timeout=self.step_timeout
                )
            finally:
                shutil.rmtree(scratch, ignore_errors=True)
            return []
        return [f'Step "{step.title}": unknown built-in action {action!r}']

    def _recommendations(
        self,
        plan: DisasterRecoveryPlan,
        ordered: list[RecoveryStep],
        failed_keys: set[str],
        duration_ms: int,
        now: datetime,
    ) -> list[str]:
        recs: list[str] = []
        if failed_keys:
            titles = [s.title for s in ordered if s.step_key in failed_keys]
            recs.append(f"Review and fix failing recovery steps: {', '.join(titles)}")
        estimated = sum(s.estimated_minutes or 0 for s in ordered)
        if plan.rto_minutes and estimated > plan.rto_minutes:
            recs.append(f"Estimated recovery time {estimated} min exceeds the RTO of {plan.rto_minutes} min")
        if plan.rto_minutes and duration_ms > plan.rto_minutes * 60_000:
            recs.append("Drill duration exceeded the RTO")
        manual = [s for s in ordered if not (s.automated and s.script)]
        if manual:
            recs.append(f"Consider automating {len(manual)} manual step(s)")
        if not plan.contacts:
            recs.append("Add emergency contacts to the plan")
        latest = self.catalog.latest_completed()
        if latest is None:
            recs.append("No completed backup exists to recover from")
        elif plan.rpo_minutes and (now - ensure_utc(latest.created_at)).total_seconds() > plan.rpo_minutes * 60:
            recs.append(f"Latest backup is older than the RPO of {plan.rpo_minutes} min")
        return recs

    # -- serialization ---------------------------------------------------------

    @staticmethod
    def serialize_step(step: RecoveryStep) -> dict:
        return {
            "step_key": step.step_key,
            "order": step.order,
            "title": step.title,
            "description": step.description,
            "estimated_minutes": step.estimated_minutes,
            "dependencies": list(step.dependencies or []),
            "automated": step.automated,
            "script": step.script,
        }

    @staticmethod
    def serialize_result(result: DRTestResult) -> dict:
        return {
            "test_result_id": str(result.test_result_id),
            "tested_at": isoformat(result.tested_at),
            "success": result.success,
            "duration_ms": result.duration_ms,
            "issues": list(result.issues or []),
            "recommendations": list(result.recommendations or []),
        }

    def serialize_plan(self, plan: DisasterRecoveryPlan) -> dict:
        return {
            "dr_plan_id": str(plan.dr_plan_id),
            "name": plan.name,
            "priority": plan.priority.value,
            "rto_minutes": plan.rto_minutes,
            "rpo_minutes": plan.rpo_minutes,
            "steps": [self.serialize_step(s) for s in plan.steps],
            "contacts": list(plan.contacts or []),
            "is_active": plan.is_active,
            "last_tested_at": isoformat(plan.last_tested_at),
            "created_at": isoformat(plan.created_at),
            "test_results": [self.serialize_result(r) for r in plan.test_results],
        }
