from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)

BACKUPS_TOTAL = Counter(
    "backup_runs_total",
    "Total backup runs by kind and outcome",
    ["backup_type", "status"],
)
BACKUP_SIZE = Histogram(
    "backup_size_bytes",
    "Size of stored backup payloads",
    ["backup_type"],
    buckets=(1e3, 1e4, 1e5, 1e6, 1e7, 1e8, 1e9, 1e10),
)
BACKUP_LAST_SUCCESS = Gauge(
    "backup_last_success_timestamp",
    "Last successful backup time (unix timestamp)",
    ["backup_type"],
)
RESTORES_TOTAL = Counter(
    "backup_restores_total",
    "Total restore attempts by outcome",
    ["status"],
)
RETENTION_DELETED = Counter(
    "backup_retention_deleted_total",
    "Backups deleted by the retention pass",
)
DR_TESTS_TOTAL = Counter(
    "dr_plan_tests_total",
    "DR plan drills by outcome",
    ["result"],
)
BACKUP_HEALTH = Gauge(
    "backup_health_status",
    "Backup health (0=healthy, 1=warning, 2=critical)",
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)
