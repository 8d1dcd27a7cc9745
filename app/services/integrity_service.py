"""Integrity checks for stored backup payloads."""

from __future__ import annotations

import hmac
import logging

from app.models.backup import Backup
from app.services.common import run_with_deadline
from app.services.storage import BackupStorage, sha256_hex

logger = logging.getLogger(__name__)


class IntegrityService:
    def __init__(self, storage: BackupStorage, timeout: float | None = None):
        self.storage = storage
        self.timeout = timeout

    def verify(self, backup: Backup, timeout: float | None = None) -> bool:
        """Re-read the stored payload and check it against the catalogued checksum."""
        if not backup.location or not backup.checksum:
            logger.warning("Backup %s has no stored payload to verify", backup.backup_id)
            return False
        try:
            payload = run_with_deadline(
                self.storage.read, timeout or self.timeout, backup.location, label="storage read"
            )
        except Exception:
            logger.warning("Backup %s payload unreadable at %s", backup.backup_id, backup.location, exc_info=True)
            return False
        return self.verify_payload(backup, payload)

    def verify_payload(self, backup: Backup, payload: bytes) -> bool:
        """Check bytes already read from storage, so callers can use exactly what was verified."""
        if not backup.checksum:
            return False
        actual = sha256_hex(payload)
        if not hmac.compare_digest(actual, backup.checksum):
            logger.warning(
                "Checksum mismatch for backup %s: expected %s, got %s",
                backup.backup_id,
                backup.checksum,
                actual,
            )
            return False
        return True
