from time import perf_counter

import redis as redis_lib
from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from starlette.responses import Response

from app.api.backups import router as backups_router
from app.api.dr import router as dr_api_router
from app.api.health import router as health_router
from app.api.schedules import router as schedules_router
from app.config import settings
from app.db import SessionLocal
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.metrics import REQUEST_COUNT, REQUEST_LATENCY
from app.services.storage import get_storage

app = FastAPI(title="Backup Orchestrator API")

configure_logging()
register_error_handlers(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    started = perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    labels = (request.method, path, str(response.status_code))
    REQUEST_COUNT.labels(*labels).inc()
    REQUEST_LATENCY.labels(*labels).observe(perf_counter() - started)
    return response


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(backups_router)
_include_api_router(schedules_router)
_include_api_router(dr_api_router)
_include_api_router(health_router)


@app.get("/health")
def health_check():
    checks = {"db": False, "redis": False, "storage": False}

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["db"] = True
    except Exception:
        pass
    finally:
        db.close()

    try:
        r = redis_lib.from_url(settings.celery_broker_url, socket_timeout=2)
        r.ping()
        checks["redis"] = True
    except Exception:
        pass

    try:
        checks["storage"] = bool(get_storage().ping())
    except Exception:
        pass

    all_ok = all(checks.values())
    return {
        "status": "ok" if all_ok else "degraded",
        "checks": checks,
    }


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
