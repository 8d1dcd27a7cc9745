import asyncio
import hashlib
import os
import threading
import time
from datetime import datetime

import fastapi.dependencies.utils as fastapi_deps_utils
import fastapi.routing as fastapi_routing
import httpx
import pytest
import starlette.concurrency as starlette_concurrency
import starlette.routing as starlette_routing

# Settings are read at import time, so the environment must be in place
# before anything under app/ is imported.
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///file:backup_engine_test?mode=memory&cache=shared&uri=true"
os.environ["DEFAULT_RETENTION_DAYS"] = "21"
os.environ.pop("BACKUP_ENCRYPTION_KEY", None)
os.environ.pop("ALERT_WEBHOOK_URL", None)


async def _patched_run_in_threadpool(func, *args, **kwargs):
    """Run inline in tests to avoid cross-thread sqlite/session deadlocks."""
    return func(*args, **kwargs)


starlette_concurrency.run_in_threadpool = _patched_run_in_threadpool
starlette_routing.run_in_threadpool = _patched_run_in_threadpool
fastapi_routing.run_in_threadpool = _patched_run_in_threadpool
fastapi_deps_utils.run_in_threadpool = _patched_run_in_threadpool

import app.models  # noqa: E402,F401
from app.db import Base, SessionLocal, get_engine  # noqa: E402
from app.errors import StorageError  # noqa: E402
from app.services.data_source import DataSourceError  # noqa: E402
from app.services.encryption import AesGcmCipher  # noqa: E402
from app.services.script_runner import ScriptResult  # noqa: E402
from app.services.storage import StoredObject, sha256_hex  # noqa: E402

_test_engine = get_engine()
Base.metadata.create_all(_test_engine)

TEST_ENCRYPTION_KEY = "test-backup-key"


class SyncASGIClient:
    def __init__(self, app):
        self._app = app

    async def _request(self, method: str, url: str, **kwargs):
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=self._app, raise_app_exceptions=False),
            base_url="http://testserver",
        ) as client:
            return await client.request(method, url, **kwargs)

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs):
        return self.request("PUT", url, **kwargs)

    def patch(self, url: str, **kwargs):
        return self.request("PATCH", url, **kwargs)

    def delete(self, url: str, **kwargs):
        return self.request("DELETE", url, **kwargs)


# ============ Fakes for the engine's collaborators ============


class MemoryStorage:
    """Dict-backed storage with switches for simulating outages."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.fail_writes = False
        self.fail_reads = False
        self.available = True
        self.write_delay = 0.0
        self.deleted: list[str] = []

    def write(self, key: str, payload: bytes) -> StoredObject:
        if self.write_delay:
            threading.Event().wait(self.write_delay)
        if self.fail_writes:
            raise StorageError(f"Failed to write {key}: disk full")
        self.objects[key] = bytes(payload)
        return StoredObject(location=key, size=len(payload), checksum=sha256_hex(payload))

    def read(self, location: str) -> bytes:
        if self.fail_reads or location not in self.objects:
            raise StorageError(f"Failed to read {location}")
        return self.objects[location]

    def delete(self, location: str) -> None:
        self.deleted.append(location)
        self.objects.pop(location, None)

    def ping(self) -> bool:
        return self.available

    def corrupt(self, location: str) -> None:
        self.objects[location] = self.objects[location] + b"\x00corrupt"


class MemoryDataSource:
    """Exports a growing list of records and replays payloads into ``applied``.

    A delta export only contains records added after ``since``.
    """

    def __init__(self):
        self.records: list[tuple[datetime | None, bytes]] = [(None, b"initial-state")]
        self.applied: list[tuple[bytes, str | None, bool]] = []
        self.fail_export = False
        self.fail_apply = False
        self.existing: list[str] = []
        self.export_delay = 0.0

    def add(self, data: bytes, at: datetime) -> None:
        self.records.append((at, data))

    def export(self, since: datetime | None = None) -> bytes:
        if self.fail_export:
            raise OSError("source unreadable")
        if self.export_delay:
            time.sleep(self.export_delay)
        chosen = [data for at, data in self.records if since is None or (at is not None and at > since)]
        return b"|".join(chosen)

    def conflicts(self, payload: bytes, target: str | None = None) -> list[str]:
        return list(self.existing)

    def apply(self, payload: bytes, target: str | None = None, overwrite: bool = False) -> None:
        if self.fail_apply:
            raise DataSourceError("target is read-only")
        self.applied.append((payload, target, overwrite))


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, str]] = []
        self.fail = fail

    def send(self, kind: str, message: str) -> bool:
        if self.fail:
            raise RuntimeError("notifier down")
        self.sent.append((kind, message))
        return True


class ScriptedRunner:
    """Script runner returning canned results keyed by script text."""

    def __init__(self, results: dict[str, ScriptResult] | None = None, raises: dict[str, Exception] | None = None):
        self.results = results or {}
        self.raises = raises or {}
        self.calls: list[str] = []

    def run(self, script: str, timeout: float | None = None) -> ScriptResult:
        self.calls.append(script)
        if script in self.raises:
            raise self.raises[script]
        return self.results.get(script, ScriptResult())


def payload_digest(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


# ============ Fixtures ============


@pytest.fixture(scope="session")
def engine():
    return _test_engine


@pytest.fixture()
def db_session(engine):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        with engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())


@pytest.fixture()
def storage():
    return MemoryStorage()


@pytest.fixture()
def data_source():
    return MemoryDataSource()


@pytest.fixture()
def cipher():
    return AesGcmCipher(TEST_ENCRYPTION_KEY, iterations=1000)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def backup_service(db_session, storage, data_source, cipher):
    from app.services.backup_service import BackupService

    return BackupService(db_session, storage=storage, data_source=data_source, cipher=cipher)


@pytest.fixture()
def restore_service(db_session, storage, data_source, cipher):
    from app.services.restore_service import RestoreService

    return RestoreService(db_session, storage=storage, data_source=data_source, cipher=cipher)


@pytest.fixture()
def health_service(db_session, storage, notifier):
    from app.services.health_service import BackupHealthService

    return BackupHealthService(db_session, storage=storage, notifier=notifier)


# ============ FastAPI Test Client Fixtures ============


@pytest.fixture()
def client(db_session, storage, data_source, cipher, notifier, monkeypatch):
    """Test client with the database and engine collaborators overridden."""
    from app.api.deps import get_db
    from app.main import app

    def override_get_db():
        return db_session

    for module in (
        "app.services.backup_service",
        "app.services.restore_service",
        "app.services.health_service",
    ):
        monkeypatch.setattr(f"{module}.get_storage", lambda: storage)
    for module in ("app.services.backup_service", "app.services.restore_service"):
        monkeypatch.setattr(f"{module}.get_data_source", lambda: data_source)
        monkeypatch.setattr(f"{module}.get_cipher", lambda: cipher)
    monkeypatch.setattr("app.services.health_service.get_notifier", lambda: notifier)

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield SyncASGIClient(app)
    finally:
        app.dependency_overrides.clear()
