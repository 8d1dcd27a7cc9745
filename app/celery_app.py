from celery import Celery

from app.services.scheduler_config import build_beat_schedule, get_celery_config

celery_app = Celery(
    "backup_orchestrator",
    include=[
        "app.tasks.backups",
        "app.tasks.schedules",
        "app.tasks.dr",
        "app.tasks.health",
    ],
)
celery_app.conf.update(get_celery_config())
celery_app.conf.beat_schedule = build_beat_schedule()
