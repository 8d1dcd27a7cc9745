import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import UTC, datetime
from typing import Any, Callable, TypeVar

from app.errors import OperationCancelled, StorageTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


def apply_pagination(stmt: Any, limit: int, offset: int) -> Any:
    return stmt.limit(limit).offset(offset)


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def isoformat(value: datetime | None) -> str | None:
    value = ensure_utc(value)
    return value.isoformat() if value else None


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a running operation."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(f"Operation cancelled: {self.reason}")


def run_with_deadline(fn: Callable[..., T], timeout: float | None, *args, label: str = "storage call", **kwargs) -> T:
    """Run ``fn`` on a worker thread and give up after ``timeout`` seconds.

    The worker is not killed on timeout; callers rely on idempotent writes so
    a late completion is harmless.
    """
    if not timeout:
        return fn(*args, **kwargs)
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="deadline")
    future = pool.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout as exc:
        logger.warning("%s exceeded %ss deadline", label, timeout)
        raise StorageTimeout(f"{label} timed out after {timeout}s") from exc
    finally:
        pool.shutdown(wait=False)
