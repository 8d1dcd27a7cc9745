"""Celery configuration and the beat schedule that drives the control loop."""

from __future__ import annotations

from datetime import timedelta

from app.config import settings


def get_celery_config() -> dict:
    return {
        "broker_url": settings.celery_broker_url,
        "result_backend": settings.celery_result_backend,
        "task_serializer": "json",
        "result_serializer": "json",
        "accept_content": ["json"],
        "timezone": "UTC",
        "enable_utc": True,
        # Backups and restores are long running; hand out one at a time.
        "worker_prefetch_multiplier": 1,
        "task_acks_late": True,
        "task_always_eager": settings.testing,
    }


def build_beat_schedule() -> dict:
    return {
        "backup-schedule-tick": {
            "task": "app.tasks.schedules.run_schedule_tick",
            "schedule": timedelta(seconds=settings.scheduler_tick_seconds),
        },
        "backup-retention-cleanup": {
            "task": "app.tasks.backups.cleanup_expired_backups",
            "schedule": timedelta(hours=1),
        },
        "backup-health-check": {
            "task": "app.tasks.health.check_backup_health",
            "schedule": timedelta(minutes=15),
        },
    }
