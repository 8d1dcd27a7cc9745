import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, model_validator

load_dotenv()


_TRUTHY_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in _TRUTHY_VALUES


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str | None = os.getenv("DATABASE_URL")
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    # Celery
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    celery_result_backend: str = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

    # Storage and data source
    backup_storage_dir: str = os.getenv("BACKUP_STORAGE_DIR", "/var/lib/backups")
    backup_source_dir: str = os.getenv("BACKUP_SOURCE_DIR", "/var/lib/data")
    storage_timeout_seconds: int = int(os.getenv("STORAGE_TIMEOUT_SECONDS", "300"))
    storage_capacity_bytes: int = int(os.getenv("STORAGE_CAPACITY_BYTES", str(10 * 1024 * 1024 * 1024)))
    storage_warning_fraction: float = float(os.getenv("STORAGE_WARNING_FRACTION", "0.8"))

    # Encryption
    backup_encryption_key: str | None = os.getenv("BACKUP_ENCRYPTION_KEY") or None
    encryption_iterations: int = int(os.getenv("ENCRYPTION_ITERATIONS", "100000"))

    # Retention / scheduling
    default_retention_days: int = int(os.getenv("DEFAULT_RETENTION_DAYS", "30"))
    scheduler_tick_seconds: int = int(os.getenv("SCHEDULER_TICK_SECONDS", "60"))
    default_weekday: int = int(os.getenv("DEFAULT_BACKUP_WEEKDAY", "6"))

    # Health monitoring
    health_lookback_hours: int = int(os.getenv("HEALTH_LOOKBACK_HOURS", "24"))
    alert_webhook_url: str | None = os.getenv("ALERT_WEBHOOK_URL") or None

    # DR drills
    step_timeout_seconds: int = int(os.getenv("STEP_TIMEOUT_SECONDS", "600"))

    # Runtime flags
    testing: bool = _env_bool("TESTING")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = _env_bool("LOG_JSON")

    @model_validator(mode="after")
    def require_database_url_when_not_testing(self) -> "Settings":
        if not self.testing and not (self.database_url and self.database_url.strip()):
            raise ValueError("DATABASE_URL must be set when TESTING is false")
        if not 0 < self.storage_warning_fraction <= 1:
            raise ValueError("STORAGE_WARNING_FRACTION must be in (0, 1]")
        return self


settings = Settings()
