"""The protected data store: export snapshots/deltas and apply them back."""

from __future__ import annotations

import io
import logging
import tarfile
from datetime import datetime
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class DataSourceError(RuntimeError):
    """Raised when a payload cannot be read from or written to the data store."""


class DataSource(Protocol):
    def export(self, since: datetime | None = None) -> bytes: ...

    def conflicts(self, payload: bytes, target: str | None = None) -> list[str]: ...

    def apply(self, payload: bytes, target: str | None = None, overwrite: bool = False) -> None: ...


class DirectoryDataSource:
    """Archives a directory tree as tar.gz.

    A delta export (``since`` set) contains only files modified after ``since``.
    Deletions are not tracked, so a restored chain is a superset of the source.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def export(self, since: datetime | None = None) -> bytes:
        cutoff = since.timestamp() if since else None
        buf = io.BytesIO()
        count = 0
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            if self.root.exists():
                for path in sorted(self.root.rglob("*")):
                    if not path.is_file():
                        continue
                    if cutoff is not None and path.stat().st_mtime <= cutoff:
                        continue
                    tar.add(path, arcname=str(path.relative_to(self.root)))
                    count += 1
        logger.debug("Exported %d files from %s (since=%s)", count, self.root, since)
        return buf.getvalue()

    def _destination(self, target: str | None) -> Path:
        return Path(target) if target else self.root

    @staticmethod
    def _members(tar: tarfile.TarFile) -> list[tarfile.TarInfo]:
        members = tar.getmembers()
        for member in members:
            if member.name.startswith("/") or ".." in Path(member.name).parts:
                raise DataSourceError(f"Unsafe archive member: {member.name}")
        return members

    def conflicts(self, payload: bytes, target: str | None = None) -> list[str]:
        """Paths in ``target`` that applying ``payload`` would replace."""
        dest = self._destination(target)
        try:
            with tarfile.open(fileobj=io.BytesIO(payload), mode="r:gz") as tar:
                members = self._members(tar)
        except tarfile.TarError as exc:
            raise DataSourceError(f"Unreadable backup archive: {exc}") from exc
        return [str(dest / m.name) for m in members if m.isfile() and (dest / m.name).exists()]

    def apply(self, payload: bytes, target: str | None = None, overwrite: bool = False) -> None:
        dest = self._destination(target)
        if not overwrite:
            existing = self.conflicts(payload, target)
            if existing:
                raise DataSourceError(f"{existing[0]} exists and overwrite is disabled")
        try:
            dest.mkdir(parents=True, exist_ok=True)
            with tarfile.open(fileobj=io.BytesIO(payload), mode="r:gz") as tar:
                tar.extractall(dest, members=self._members(tar), filter="data")
        except (OSError, tarfile.TarError) as exc:
            raise DataSourceError(f"Failed to apply backup to {dest}: {exc}") from exc


def get_data_source() -> DataSource:
    from app.config import settings

    return DirectoryDataSource(settings.backup_source_dir)
