"""Backup payload storage.

The engine only depends on the ``BackupStorage`` contract; ``FileSystemStorage``
is the default medium and keeps one file per storage key.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from app.errors import StorageError

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/-]{0,250}$")


@dataclass(frozen=True)
class StoredObject:
    location: str
    size: int
    checksum: str


def sha256_hex(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


class BackupStorage(Protocol):
    def write(self, key: str, payload: bytes) -> StoredObject: ...

    def read(self, location: str) -> bytes: ...

    def delete(self, location: str) -> None: ...

    def ping(self) -> bool: ...


class FileSystemStorage:
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _path(self, location: str) -> Path:
        if not _KEY_RE.match(location) or ".." in location:
            raise StorageError(f"Invalid storage key: {location!r}")
        return self.root / location

    def write(self, key: str, payload: bytes) -> StoredObject:
        """Write ``payload`` under ``key``; rewriting the same key replaces it atomically."""
        path = self._path(key)
        tmp = path.with_name(f".{path.name}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {key}: {exc}") from exc
        logger.debug("Stored %s (%d bytes)", key, len(payload))
        return StoredObject(location=key, size=len(payload), checksum=sha256_hex(payload))

    def read(self, location: str) -> bytes:
        try:
            return self._path(location).read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read {location}: {exc}") from exc

    def delete(self, location: str) -> None:
        try:
            self._path(location).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete {location}: {exc}") from exc

    def ping(self) -> bool:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self.root, os.W_OK)


def get_storage() -> BackupStorage:
    from app.config import settings

    return FileSystemStorage(settings.backup_storage_dir)
